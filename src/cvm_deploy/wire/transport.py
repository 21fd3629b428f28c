"""HTTP transport with bounded exponential-backoff retry.

Every request the SDK issues goes through :class:`RetryingTransport`.
It provides:

* **Standard headers** -- ``X-API-Key``, ``User-Agent`` and the JSON
  content type on every call.
* **Retry policy** -- requests that produced no response (connection
  error, timeout) or a 5xx response are repeated after an exponentially
  growing delay, up to ``max_retries`` times.  4xx responses are never
  repeated.
* **Per-call timeouts** -- a :class:`RequestDescriptor` may carry its own
  timeout; otherwise the transport's default applies.
* **Error mapping** -- ``httpx`` failures become :class:`TransportError`,
  error statuses become :class:`RemoteClientError` /
  :class:`RemoteServerError`.  After the last retry the final error is
  raised unchanged in kind.

The transport is stateless per call and may be shared by concurrent
tasks.
"""
from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field

from cvm_deploy import __version__
from cvm_deploy.core.errors import (
    CvmDeployError,
    RemoteClientError,
    RemoteServerError,
    TransportError,
)

logger = logging.getLogger(__name__)

USER_AGENT: str = f"cvm-deploy-sdk/{__version__}"
"""Client-identifier header value sent with every request."""

Sleep = Callable[[float], Awaitable[None]]


# ---------------------------------------------------------------------------
# Request descriptor
# ---------------------------------------------------------------------------

class RequestDescriptor(BaseModel):
    """One logical request: method, path, body and optional timeout."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    method: str = "GET"
    path: str
    json_body: Any = Field(default=None, alias="json")
    params: dict[str, Any] | None = None
    timeout: float | None = Field(
        default=None,
        gt=0,
        description="Per-call timeout in seconds; overrides the transport default.",
    )


def backoff_delay(retry: int, base_delay: float) -> float:
    """Return the delay before retry number *retry* (1-based).

    The first retry waits *base_delay*; each further retry doubles it.
    """
    return base_delay * (2 ** (retry - 1))


def _decode_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


# ---------------------------------------------------------------------------
# RetryingTransport
# ---------------------------------------------------------------------------

class RetryingTransport:
    """Async HTTP client for the deployment API with retry on transient failures.

    Parameters
    ----------
    base_url:
        Base URL of the API (e.g. ``https://cloud-api.phala.network``).
    api_key:
        Value for the ``X-API-Key`` header; omitted when ``None``.
    timeout:
        Default request timeout in seconds.
    max_retries:
        Maximum number of retries after the first attempt.
    base_delay:
        Delay in seconds before the first retry.
    client:
        Optional pre-built :class:`httpx.AsyncClient`.  A client passed in
        is not closed by :meth:`aclose`.
    sleep:
        Coroutine used to wait between retries (``asyncio.sleep`` by
        default).
    logger:
        Logger for request tracing.
    """

    def __init__(
        self,
        base_url: str,
        *,
        api_key: str | None = None,
        timeout: float = 30.0,
        max_retries: int = 2,
        base_delay: float = 2.0,
        client: httpx.AsyncClient | None = None,
        sleep: Sleep | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._max_retries = max_retries
        self._base_delay = base_delay
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=self._base_url)
        self._sleep: Sleep = sleep or asyncio.sleep
        self._logger = logger if logger is not None else logging.getLogger(__name__)

    @property
    def max_retries(self) -> int:
        return self._max_retries

    def _build_headers(self) -> dict[str, str]:
        headers: dict[str, str] = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": USER_AGENT,
        }
        if self._api_key:
            headers["X-API-Key"] = self._api_key
        return headers

    def _url(self, path: str) -> str:
        return f"{self._base_url}{path}"

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def execute(self, request: RequestDescriptor) -> httpx.Response:
        """Send *request*, retrying network failures and 5xx responses.

        Returns
        -------
        httpx.Response
            The first response with a status below 400.

        Raises
        ------
        RemoteClientError
            On any 4xx response (never retried).
        RemoteServerError
            If the last attempt produced a 5xx response.
        TransportError
            If the last attempt produced no response at all.
        """
        retry = 0
        while True:
            if retry > 0:
                delay = backoff_delay(retry, self._base_delay)
                self._logger.debug(
                    "Retrying %s %s (%d/%d) in %.1fs",
                    request.method, request.path, retry, self._max_retries, delay,
                )
                await self._sleep(delay)
            try:
                return await self._send_once(request)
            except CvmDeployError as exc:
                if not exc.retryable or retry >= self._max_retries:
                    raise
                retry += 1

    async def request_json(self, request: RequestDescriptor) -> Any:
        """Execute *request* and return its decoded body."""
        response = await self.execute(request)
        return _decode_body(response)

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this transport created it."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> RetryingTransport:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _send_once(self, request: RequestDescriptor) -> httpx.Response:
        timeout = request.timeout if request.timeout is not None else self._timeout
        started = time.monotonic()
        try:
            response = await self._client.request(
                request.method,
                self._url(request.path),
                json=request.json_body,
                params=request.params,
                headers=self._build_headers(),
                timeout=timeout,
            )
        except httpx.TimeoutException as exc:
            elapsed_ms = (time.monotonic() - started) * 1000
            self._logger.error(
                "Request timed out: %s %s (%.0fms)", request.method, request.path, elapsed_ms,
            )
            raise TransportError(
                f"Request to {request.path} timed out after {timeout}s",
                details={"path": request.path, "timeout": timeout},
            ) from exc
        except httpx.TransportError as exc:
            elapsed_ms = (time.monotonic() - started) * 1000
            self._logger.error(
                "No response: %s %s (%.0fms) - %s", request.method, request.path, elapsed_ms, exc,
            )
            raise TransportError(
                f"Request to {request.path} failed: {exc}",
                details={"path": request.path},
            ) from exc

        elapsed_ms = (time.monotonic() - started) * 1000
        if response.status_code < 400:
            self._logger.debug(
                "%s %s -> %d (%.0fms)",
                request.method, request.path, response.status_code, elapsed_ms,
            )
            return response

        body = _decode_body(response)
        self._log_failure(request, response.status_code, body, elapsed_ms)
        error_cls = RemoteServerError if response.status_code >= 500 else RemoteClientError
        raise error_cls(
            f"{request.method} {request.path} returned HTTP {response.status_code}",
            status_code=response.status_code,
            body=body,
            details={"path": request.path},
        )

    def _log_failure(
        self,
        request: RequestDescriptor,
        status: int,
        body: Any,
        elapsed_ms: float,
    ) -> None:
        self._logger.error(
            "Request failed: %s %s -> %d (%.0fms)",
            request.method, request.path, status, elapsed_ms,
        )
        self._logger.debug("Error response body: %r", body)
        if status in (401, 403):
            self._logger.error("Authentication failed: check that the API key is valid")
        elif status == 400:
            self._logger.error("Bad request: check the request parameters")
        elif status == 404:
            self._logger.error("Resource not found: check the identifier and endpoint")
        elif status == 409:
            self._logger.error(
                "Conflict: the deployment is in a state that does not allow this action"
            )
        elif status == 422:
            detail = body.get("detail") if isinstance(body, dict) else None
            if isinstance(detail, list):
                for item in detail:
                    if isinstance(item, dict):
                        loc = ".".join(str(part) for part in item.get("loc", []))
                        self._logger.error("Invalid request field %s: %s", loc, item.get("msg"))
            elif detail is not None:
                self._logger.error("Invalid request: %s", detail)
        elif status >= 500:
            self._logger.error("Server error: the request will be retried if attempts remain")
