"""Ephemeral-key hybrid encryption of deployment secrets.

Secrets leave the caller's trust boundary only as an opaque payload that
the attested remote environment alone can open:

1. The secret list is serialised as ``{"env": [{"key": ..., "value": ...}]}``
   (compact JSON, UTF-8).
2. A fresh X25519 keypair is generated for every call.
3. The shared secret between that ephemeral private key and the remote
   static public key is used directly as an AES-256-GCM key.
4. A fresh 96-bit nonce is drawn and the JSON is sealed with AES-GCM.

Wire format (hex-encoded, no length prefix)::

    ephemeral_public_key (32) || nonce (12) || ciphertext || tag (16)

Because the key is fresh per call, nonce reuse under one key cannot
happen.  Both sources of randomness are injectable so that tests can pin
the output.
"""
from __future__ import annotations

import json
import logging
import os
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.asymmetric.x25519 import (
    X25519PrivateKey,
    X25519PublicKey,
)
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from cvm_deploy.core.errors import (
    DecryptionFailed,
    EncryptionFailed,
    InvalidKeyFormat,
)
from cvm_deploy.core.types import SecretEntry

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

PUBLIC_KEY_SIZE: int = 32
"""Size in bytes of a raw X25519 public key."""

NONCE_SIZE: int = 12
"""Size in bytes of an AES-GCM nonce (96 bits)."""

TAG_SIZE: int = 16
"""Size in bytes of the AES-GCM authentication tag."""

_HEX_RE = re.compile(r"[0-9a-fA-F]*")

KeyFactory = Callable[[], X25519PrivateKey]
NonceFactory = Callable[[], bytes]


def _random_nonce() -> bytes:
    return os.urandom(NONCE_SIZE)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def serialize_secrets(secrets: Iterable[SecretEntry]) -> bytes:
    """Serialise *secrets* to the canonical UTF-8 JSON plaintext.

    List order is preserved.  The JSON is compact and keeps non-ASCII
    characters unescaped.
    """
    document = {"env": [{"key": s.key, "value": s.value} for s in secrets]}
    return json.dumps(document, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def decode_hex(value: str) -> bytes:
    """Decode a hex string with an optional ``0x`` prefix.

    Raises
    ------
    InvalidKeyFormat
        If the string has an odd number of digits or a non-hex character.
    """
    digits = value[2:] if value.startswith("0x") else value
    if len(digits) % 2 != 0:
        raise InvalidKeyFormat(
            "Hex string has an odd number of digits",
            details={"length": len(digits)},
        )
    if not _HEX_RE.fullmatch(digits):
        raise InvalidKeyFormat("Hex string contains non-hex characters")
    return bytes.fromhex(digits)


def load_public_key(remote_public_key_hex: str) -> X25519PublicKey:
    """Parse a hex-encoded raw X25519 public key."""
    raw = decode_hex(remote_public_key_hex)
    if len(raw) != PUBLIC_KEY_SIZE:
        raise InvalidKeyFormat(
            f"Public key must be {PUBLIC_KEY_SIZE} bytes, got {len(raw)}",
            details={"length": len(raw)},
        )
    return X25519PublicKey.from_public_bytes(raw)


@dataclass(frozen=True)
class EncryptedPayload:
    """The three fixed-boundary fields of an encrypted secret payload."""

    ephemeral_public_key: bytes
    nonce: bytes
    ciphertext: bytes
    """Ciphertext with the 16-byte GCM tag appended."""

    def to_hex(self) -> str:
        return (self.ephemeral_public_key + self.nonce + self.ciphertext).hex()

    @classmethod
    def from_hex(cls, payload_hex: str) -> EncryptedPayload:
        """Slice a hex payload at its fixed wire boundaries."""
        try:
            raw = decode_hex(payload_hex)
        except InvalidKeyFormat as exc:
            raise DecryptionFailed(f"Payload is not valid hex: {exc.message}") from exc
        header = PUBLIC_KEY_SIZE + NONCE_SIZE
        if len(raw) < header + TAG_SIZE:
            raise DecryptionFailed(
                "Payload is too short to contain a key, nonce and tag",
                details={"length": len(raw)},
            )
        return cls(
            ephemeral_public_key=raw[:PUBLIC_KEY_SIZE],
            nonce=raw[PUBLIC_KEY_SIZE:header],
            ciphertext=raw[header:],
        )


# ---------------------------------------------------------------------------
# SecretCodec
# ---------------------------------------------------------------------------

class SecretCodec:
    """Encrypts secret sets against a remote static X25519 public key.

    The codec holds no per-call state and is safe to share between
    concurrent tasks.

    Parameters
    ----------
    key_factory:
        Returns a fresh ephemeral private key.  Defaults to
        :meth:`X25519PrivateKey.generate`.
    nonce_factory:
        Returns a fresh 12-byte nonce.  Defaults to ``os.urandom``.
    logger:
        Logger for debug output.  Secret values are never logged.
    """

    def __init__(
        self,
        *,
        key_factory: KeyFactory | None = None,
        nonce_factory: NonceFactory | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._key_factory: KeyFactory = key_factory or X25519PrivateKey.generate
        self._nonce_factory: NonceFactory = nonce_factory or _random_nonce
        self._logger = logger if logger is not None else logging.getLogger(__name__)

    def encrypt(
        self,
        secrets: Iterable[SecretEntry],
        remote_public_key_hex: str,
    ) -> str:
        """Encrypt *secrets* for the holder of *remote_public_key_hex*.

        Returns
        -------
        str
            Hex-encoded ``ephemeral_pub || nonce || ciphertext_with_tag``.

        Raises
        ------
        InvalidKeyFormat
            If the remote key is not 32 bytes of valid hex.
        EncryptionFailed
            If the key exchange or the AEAD operation fails.
        """
        entries = list(secrets)
        remote_key = load_public_key(remote_public_key_hex)
        plaintext = serialize_secrets(entries)
        self._logger.debug("Encrypting %d secret(s)", len(entries))

        try:
            ephemeral = self._key_factory()
            shared = ephemeral.exchange(remote_key)
            nonce = self._nonce_factory()
            if len(nonce) != NONCE_SIZE:
                raise ValueError(f"nonce must be {NONCE_SIZE} bytes, got {len(nonce)}")
            ciphertext = AESGCM(shared).encrypt(nonce, plaintext, None)
        except ValueError as exc:
            raise EncryptionFailed(f"Secret encryption failed: {exc}") from exc

        payload = EncryptedPayload(
            ephemeral_public_key=ephemeral.public_key().public_bytes_raw(),
            nonce=nonce,
            ciphertext=ciphertext,
        )
        return payload.to_hex()

    def decrypt(
        self,
        payload_hex: str,
        private_key: X25519PrivateKey,
    ) -> list[SecretEntry]:
        """Open a payload produced by :meth:`encrypt`.

        This is the operation the remote environment performs with its
        static private key; the SDK ships it for verification tooling
        and tests.

        Raises
        ------
        DecryptionFailed
            If the payload is malformed, was sealed for another key, or
            was tampered with.
        """
        payload = EncryptedPayload.from_hex(payload_hex)
        try:
            peer = X25519PublicKey.from_public_bytes(payload.ephemeral_public_key)
            shared = private_key.exchange(peer)
            plaintext = AESGCM(shared).decrypt(payload.nonce, payload.ciphertext, None)
        except (InvalidTag, ValueError) as exc:
            raise DecryptionFailed("Payload authentication failed") from exc

        try:
            document = json.loads(plaintext.decode("utf-8"))
            return [SecretEntry(key=item["key"], value=item["value"]) for item in document["env"]]
        except (UnicodeDecodeError, ValueError, KeyError, TypeError) as exc:
            raise DecryptionFailed("Decrypted payload is not a secret document") from exc


_default_codec = SecretCodec()


def encrypt_secrets(secrets: Iterable[SecretEntry], remote_public_key_hex: str) -> str:
    """Encrypt *secrets* with a module-level :class:`SecretCodec`."""
    return _default_codec.encrypt(secrets, remote_public_key_hex)
