"""Shared fixtures for the cvm_deploy test suite.

Provides key material, an in-process fake of the deployment API built
on ``httpx.MockTransport``, and recording doubles for sleep and the
poller observer.
"""
from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any

import httpx
import pytest
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey

from cvm_deploy.core.config import TimeoutPolicy
from cvm_deploy.core.types import DeploymentStatusSnapshot, SecretEntry
from cvm_deploy.deploy.poller import DeploymentObserver
from cvm_deploy.wire.client import CloudApiClient
from cvm_deploy.wire.transport import RetryingTransport

BASE_URL = "https://api.test"
API_KEY = "test-api-key"
APP_ID = "0123abcd"

Handler = Callable[[httpx.Request], httpx.Response]


# ---------------------------------------------------------------------------
# Recording doubles
# ---------------------------------------------------------------------------

class RecordingSleep:
    """Async stand-in for ``asyncio.sleep`` that records every delay."""

    def __init__(self, clock: FakeClock | None = None) -> None:
        self.delays: list[float] = []
        self._clock = clock

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        if self._clock is not None:
            self._clock.advance(delay)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingObserver(DeploymentObserver):
    """Observer that records every notification as ``(event, args)``."""

    def __init__(self) -> None:
        self.events: list[tuple[str, tuple[Any, ...]]] = []

    def on_status_change(self, status: str, snapshot: DeploymentStatusSnapshot) -> None:
        self.events.append(("status_change", (status, snapshot)))

    def on_success(self, snapshot: DeploymentStatusSnapshot) -> None:
        self.events.append(("success", (snapshot,)))

    def on_failure(self, status: str, snapshot: DeploymentStatusSnapshot) -> None:
        self.events.append(("failure", (status, snapshot)))

    def on_timeout(self, snapshot: DeploymentStatusSnapshot | None) -> None:
        self.events.append(("timeout", (snapshot,)))

    def on_error(self, error: Exception) -> None:
        self.events.append(("error", (error,)))

    def of(self, event: str) -> list[tuple[Any, ...]]:
        return [args for name, args in self.events if name == event]


# ---------------------------------------------------------------------------
# HTTP fakes
# ---------------------------------------------------------------------------

class FakeApi:
    """Route table for ``httpx.MockTransport`` that records every request."""

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], Handler] = {}
        self.requests: list[httpx.Request] = []

    def on(self, method: str, path: str, handler: Handler | Any, status: int = 200) -> None:
        """Register a handler, or a static JSON body returned with *status*."""
        if callable(handler):
            self.routes[(method, path)] = handler
        else:
            body = handler
            self.routes[(method, path)] = lambda _req: httpx.Response(status, json=body)

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]

    def body(self, request: httpx.Request) -> Any:
        return json.loads(request.content)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get((request.method, request.url.path))
        if handler is None:
            return httpx.Response(404, json={"detail": "Not Found"})
        return handler(request)


def make_transport(
    handler: Handler,
    *,
    sleep: RecordingSleep | None = None,
    max_retries: int = 2,
    base_delay: float = 1.0,
) -> RetryingTransport:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return RetryingTransport(
        BASE_URL,
        api_key=API_KEY,
        max_retries=max_retries,
        base_delay=base_delay,
        client=client,
        sleep=sleep or RecordingSleep(),
    )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture()
def remote_private_key() -> X25519PrivateKey:
    """Static key of the simulated remote environment."""
    return X25519PrivateKey.generate()


@pytest.fixture()
def remote_public_key_hex(remote_private_key: X25519PrivateKey) -> str:
    return remote_private_key.public_key().public_bytes_raw().hex()


@pytest.fixture()
def secrets() -> list[SecretEntry]:
    return [
        SecretEntry(key="DB_PASSWORD", value="hunter2"),
        SecretEntry(key="API_TOKEN", value="tok_9f8e7d"),
    ]


@pytest.fixture()
def fake_api() -> FakeApi:
    return FakeApi()


@pytest.fixture()
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture()
def api_client(fake_api: FakeApi, sleep: RecordingSleep) -> CloudApiClient:
    """Typed client wired to :class:`FakeApi` with zero retries."""
    transport = make_transport(fake_api, sleep=sleep, max_retries=0)
    return CloudApiClient(transport, timeouts=TimeoutPolicy())


@pytest.fixture()
def observer() -> RecordingObserver:
    return RecordingObserver()
