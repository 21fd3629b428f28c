"""cvm_deploy -- confidential workload deployment SDK.

Submits container workloads with encrypted secrets to an attested
confidential VM service and tracks their provisioning.

Layers
------
* Core types, errors and config (:mod:`cvm_deploy.core`)
* Secret encryption (:mod:`cvm_deploy.crypto`)
* Retrying transport and typed endpoints (:mod:`cvm_deploy.wire`)
* Submission and status polling (:mod:`cvm_deploy.deploy`)
"""
from __future__ import annotations

__version__ = "0.1.0"

# ---------------------------------------------------------------------------
# Core types, errors, config
# ---------------------------------------------------------------------------
from cvm_deploy.core.config import ClientConfig, MonitorOptions, TimeoutPolicy
from cvm_deploy.core.errors import (
    CryptoError,
    CvmDeployError,
    DecryptionFailed,
    EncryptionFailed,
    InvalidIdentifier,
    InvalidKeyFormat,
    InvalidSpec,
    MalformedResponse,
    MissingEncryptionKey,
    NoAvailableSlotError,
    RemoteClientError,
    RemoteError,
    RemoteServerError,
    TransportError,
    ValidationError,
)
from cvm_deploy.core.types import (
    ComposeUpdateSpec,
    CreateDeploymentResponse,
    DeploymentActionResponse,
    DeploymentSpec,
    DeploymentStatusSnapshot,
    MonitorOutcome,
    RemoteEncryptionKey,
    SecretEntry,
    Slot,
    UpgradeSpec,
)

# ---------------------------------------------------------------------------
# Secret encryption
# ---------------------------------------------------------------------------
from cvm_deploy.crypto import SecretCodec, encrypt_secrets, parse_env_lines, parse_env_text

# ---------------------------------------------------------------------------
# Submission and polling
# ---------------------------------------------------------------------------
from cvm_deploy.deploy import DeploymentObserver, DeploymentSubmitter, StatusPoller

# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------
from cvm_deploy.wire import CloudApiClient, RequestDescriptor, RetryingTransport

# ---------------------------------------------------------------------------
# Main entry point
# ---------------------------------------------------------------------------
from cvm_deploy.cloud import CloudClient, logs_url

__all__ = [
    # Meta
    "__version__",
    # Config
    "ClientConfig",
    "MonitorOptions",
    "TimeoutPolicy",
    # Types
    "ComposeUpdateSpec",
    "CreateDeploymentResponse",
    "DeploymentActionResponse",
    "DeploymentSpec",
    "DeploymentStatusSnapshot",
    "MonitorOutcome",
    "RemoteEncryptionKey",
    "SecretEntry",
    "Slot",
    "UpgradeSpec",
    # Error hierarchy
    "CvmDeployError",
    "ValidationError",
    "InvalidSpec",
    "InvalidIdentifier",
    "TransportError",
    "RemoteError",
    "RemoteClientError",
    "RemoteServerError",
    "MalformedResponse",
    "CryptoError",
    "InvalidKeyFormat",
    "EncryptionFailed",
    "DecryptionFailed",
    "MissingEncryptionKey",
    "NoAvailableSlotError",
    # Crypto
    "SecretCodec",
    "encrypt_secrets",
    "parse_env_lines",
    "parse_env_text",
    # Wire
    "RequestDescriptor",
    "RetryingTransport",
    "CloudApiClient",
    # Deploy
    "DeploymentSubmitter",
    "StatusPoller",
    "DeploymentObserver",
    # Entry point
    "CloudClient",
    "logs_url",
]
