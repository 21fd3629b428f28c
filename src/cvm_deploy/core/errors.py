"""cvm_deploy error-code hierarchy.

Every failure the SDK surfaces to a caller is a concrete subclass of
:class:`CvmDeployError`.  Third-party exceptions (``httpx``,
``cryptography``, ``pydantic``) are wrapped at the seam where they occur
and chained with ``raise ... from exc``.

Hierarchy
---------
::

    CvmDeployError
    +-- ValidationError        (CD-E1xx)
    +-- TransportError         (CD-E2xx)
    +-- RemoteError            (CD-E3xx)
    |   +-- RemoteClientError
    |   +-- RemoteServerError
    |   +-- MalformedResponse
    +-- CryptoError            (CD-E4xx)
    +-- NoAvailableSlotError   (CD-E5xx)

Usage
-----
Raise concrete subclasses directly::

    raise InvalidKeyFormat("Public key has an odd number of hex digits")

Catch by category::

    try:
        ...
    except CryptoError:
        # handles InvalidKeyFormat, EncryptionFailed, ...
        ...
"""
from __future__ import annotations

from typing import Any

# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------

class CvmDeployError(Exception):
    """Base exception for all cvm_deploy errors.

    Attributes
    ----------
    code : str
        Error code, e.g. ``"CD-E100"``.
    message : str
        Human-readable description (MUST NOT contain secret values).
    details : dict[str, Any]
        Machine-readable context specific to the error instance.
    resolution : str
        Suggested action for the caller.
    retryable : bool
        Whether the transport may transparently repeat the request that
        produced this error.
    """

    code: str = "CD-E000"
    message: str = "Unknown cvm_deploy error"
    resolution: str = ""
    retryable: bool = False

    def __init__(
        self,
        message: str | None = None,
        *,
        details: dict[str, Any] | None = None,
        resolution: str | None = None,
    ) -> None:
        self.details: dict[str, Any] = details or {}
        if message is not None:
            self.message = message
        if resolution is not None:
            self.resolution = resolution
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Serialise the error to a JSON-friendly mapping."""
        payload: dict[str, Any] = {
            "code": self.code,
            "message": self.message,
        }
        if self.details:
            payload["detail"] = self.details
        if self.resolution:
            payload["resolution"] = self.resolution
        return {"error": payload}

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


# ===================================================================
# Category base classes
# ===================================================================

class ValidationError(CvmDeployError):
    """CD-E1xx -- Missing or malformed caller input.  Never retried."""

    code = "CD-E1XX"


class TransportError(CvmDeployError):
    """CD-E2xx -- No response was received (connection failure or timeout)."""

    code = "CD-E200"
    message = "No response received from the remote service"
    resolution = "Check network connectivity and retry later."
    retryable = True


class RemoteError(CvmDeployError):
    """CD-E3xx -- The remote service answered, but not with what we asked for.

    Attributes
    ----------
    status_code : int | None
        HTTP status of the offending response, when there is one.
    body : Any
        Decoded JSON body (or raw text) of the offending response.
    """

    code = "CD-E3XX"

    def __init__(
        self,
        message: str | None = None,
        *,
        status_code: int | None = None,
        body: Any = None,
        details: dict[str, Any] | None = None,
        resolution: str | None = None,
    ) -> None:
        self.status_code = status_code
        self.body = body
        merged: dict[str, Any] = dict(details or {})
        if status_code is not None:
            merged.setdefault("status_code", status_code)
        super().__init__(message, details=merged, resolution=resolution)


class CryptoError(CvmDeployError):
    """CD-E4xx -- Key material or cipher failures.  Never retried."""

    code = "CD-E4XX"


class NoAvailableSlotError(CvmDeployError):
    """CD-E500 -- No execution slot reports itself available and online."""

    code = "CD-E500"
    message = "No available execution slot was found"
    resolution = "Retry later or pin a slot explicitly with slot_id."


# ===================================================================
# CD-E1xx  Validation
# ===================================================================

class InvalidSpec(ValidationError):
    """CD-E100 -- A deployment, upgrade or compose-update spec is invalid."""

    code = "CD-E100"
    message = "Deployment spec is invalid"
    resolution = "Provide every required field with a valid value."


class InvalidIdentifier(ValidationError):
    """CD-E101 -- An application identifier is empty or malformed."""

    code = "CD-E101"
    message = "Application identifier is invalid"


# ===================================================================
# CD-E3xx  Remote
# ===================================================================

class RemoteClientError(RemoteError):
    """CD-E300 -- The service rejected the request (HTTP 4xx).

    Repeating the same request will not succeed, so the transport never
    retries it.
    """

    code = "CD-E300"
    message = "The remote service rejected the request"
    resolution = "Inspect status_code and body; fix the request before retrying."


class RemoteServerError(RemoteError):
    """CD-E301 -- The service failed while handling the request (HTTP 5xx)."""

    code = "CD-E301"
    message = "The remote service failed to handle the request"
    resolution = "The request was retried; try again later."
    retryable = True


class MalformedResponse(RemoteError):
    """CD-E302 -- A response body did not match the expected schema."""

    code = "CD-E302"
    message = "The remote service returned an unexpected response body"


# ===================================================================
# CD-E4xx  Crypto
# ===================================================================

class InvalidKeyFormat(CryptoError):
    """CD-E400 -- A public key string is not valid hex or has the wrong size."""

    code = "CD-E400"
    message = "Public key is not a valid hex-encoded X25519 key"
    resolution = "Pass the 32-byte key as 64 hex digits, optionally 0x-prefixed."


class EncryptionFailed(CryptoError):
    """CD-E401 -- The key exchange or AEAD encryption failed."""

    code = "CD-E401"
    message = "Secret encryption failed"


class DecryptionFailed(CryptoError):
    """CD-E402 -- A payload could not be decrypted or authenticated."""

    code = "CD-E402"
    message = "Encrypted payload could not be decrypted"


class MissingEncryptionKey(CryptoError):
    """CD-E403 -- Secrets were supplied but the deployment has no bound key."""

    code = "CD-E403"
    message = "Deployment has no encryption public key for its secrets"
    resolution = "Redeploy the application or submit without secrets."
