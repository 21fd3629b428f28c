"""Wire subpackage -- retrying HTTP transport and typed endpoint bindings."""
from __future__ import annotations

from cvm_deploy.wire.client import CloudApiClient
from cvm_deploy.wire.transport import (
    USER_AGENT,
    RequestDescriptor,
    RetryingTransport,
    backoff_delay,
)

__all__ = [
    "USER_AGENT",
    "CloudApiClient",
    "RequestDescriptor",
    "RetryingTransport",
    "backoff_delay",
]
