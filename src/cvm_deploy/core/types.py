"""cvm_deploy shared domain types.

This module defines every value type, enum and Pydantic model shared
across the SDK.  Remote response bodies are parsed into these models at
the HTTP boundary so that internal code never branches on untyped
``dict`` shapes.

Key design decisions:

* ``SecretEntry.value`` is excluded from ``repr`` so a secret never leaks
  into a log line or a traceback.
* Request-side models (``VmConfig``, ``ComposeManifest``) are frozen: the
  remote service binds the per-deployment encryption key to the exact
  configuration content, so the object must not change between the key
  request and the final submission.
* Response-side models allow extra fields; the service adds fields
  freely and callers may still want to read them.
* Enums use *string* values so they serialise cleanly to JSON.
"""
from __future__ import annotations

import enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from cvm_deploy.core.config import DEFAULT_IMAGE

DEFAULT_FEATURES: tuple[str, ...] = ("kms", "tproxy-net")
"""Feature flags enabled on every compose manifest unless overridden."""


def normalize_app_id(identifier: str) -> str:
    """Return *identifier* without its optional ``app_`` prefix."""
    return identifier.removeprefix("app_")


# ---------------------------------------------------------------------------
# Secrets
# ---------------------------------------------------------------------------

class SecretEntry(BaseModel):
    """One secret environment variable destined for the workload."""

    model_config = ConfigDict(frozen=True)

    key: str = Field(min_length=1)
    value: str = Field(repr=False)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class MonitorOutcome(enum.StrEnum):
    """Terminal states of the deployment status poller."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


# ---------------------------------------------------------------------------
# Caller-side specs
# ---------------------------------------------------------------------------

class DockerConfig(BaseModel):
    """Private registry credentials for pulling the workload's images."""

    model_config = ConfigDict(frozen=True)

    registry: str | None = ""
    username: str = ""
    password: str = Field(default="", repr=False)


class DeploymentSpec(BaseModel):
    """Everything needed to create a new deployment."""

    name: str = Field(min_length=1)
    compose: str = Field(min_length=1, description="Docker Compose file content.")
    slot_id: int | None = Field(
        default=None,
        description="Pin the deployment to a slot; resolved automatically if unset.",
    )
    image: str = DEFAULT_IMAGE
    vcpu: int = Field(default=1, ge=1)
    memory: int = Field(default=2048, ge=1, description="Memory in MB.")
    disk_size: int = Field(default=40, ge=1, description="Disk size in GB.")
    features: list[str] = Field(default_factory=lambda: list(DEFAULT_FEATURES))
    kms_enabled: bool = True
    tproxy_enabled: bool = True
    public_logs: bool = True
    public_sysinfo: bool = True
    listed: bool = False
    secrets: list[SecretEntry] = Field(default_factory=list)


class UpgradeSpec(BaseModel):
    """Replace the compose file and secrets of an existing deployment."""

    app_id: str = Field(min_length=1)
    compose: str = Field(min_length=1)
    features: list[str] = Field(default_factory=lambda: list(DEFAULT_FEATURES))
    allow_restart: bool = True
    secrets: list[SecretEntry] = Field(default_factory=list)

    @field_validator("app_id")
    @classmethod
    def _strip_prefix(cls, value: str) -> str:
        stripped = normalize_app_id(value)
        if not stripped:
            raise ValueError("app_id must not be empty")
        return stripped


class ComposeUpdateSpec(BaseModel):
    """Full compose-manifest replacement, including launch scripts and flags."""

    identifier: str = Field(min_length=1)
    compose: str = Field(min_length=1)
    docker_config: DockerConfig = Field(default_factory=DockerConfig)
    features: list[str] = Field(default_factory=lambda: list(DEFAULT_FEATURES))
    kms_enabled: bool = True
    tproxy_enabled: bool = True
    public_logs: bool = True
    public_sysinfo: bool = True
    pre_launch_script: str = ""
    bash_script: str = ""
    allow_restart: bool = True
    secrets: list[SecretEntry] = Field(default_factory=list)

    @field_validator("identifier")
    @classmethod
    def _strip_prefix(cls, value: str) -> str:
        stripped = normalize_app_id(value)
        if not stripped:
            raise ValueError("identifier must not be empty")
        return stripped


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------

class ComposeManifest(BaseModel):
    """Compose manifest embedded in a new deployment's configuration."""

    model_config = ConfigDict(frozen=True)

    docker_compose_file: str
    docker_config: dict[str, str] = Field(
        default_factory=lambda: {"url": "", "username": "", "password": ""},
    )
    features: tuple[str, ...] = DEFAULT_FEATURES
    kms_enabled: bool = True
    manifest_version: int = 2
    name: str
    public_logs: bool = True
    public_sysinfo: bool = True
    tproxy_enabled: bool = True


class VmConfig(BaseModel):
    """The unencrypted configuration of a new deployment.

    This object is sent as-is to request the encryption key and then
    again, together with the encrypted secrets, to create the deployment.
    """

    model_config = ConfigDict(frozen=True)

    teepod_id: int
    name: str
    image: str
    vcpu: int
    memory: int
    disk_size: int
    compose_manifest: ComposeManifest
    listed: bool = False


class DeploymentRequest(VmConfig):
    """Final create-deployment body: configuration plus encrypted secrets."""

    encrypted_env: str = ""
    app_env_encrypt_pubkey: str
    app_id_salt: str


class UpgradeManifest(BaseModel):
    """Compose manifest sent when upgrading an existing deployment."""

    model_config = ConfigDict(frozen=True)

    docker_compose_file: str
    manifest_version: int = 1
    runner: str = "docker-compose"
    version: str = "1.0.0"
    features: tuple[str, ...] = DEFAULT_FEATURES
    name: str


class UpgradeRequest(BaseModel):
    """Body of the configuration-replace (upgrade) call."""

    model_config = ConfigDict(frozen=True)

    compose_manifest: UpgradeManifest
    allow_restart: bool = True
    encrypted_env: str = ""


class ComposeUpdateManifest(BaseModel):
    """Full compose manifest sent by a compose update."""

    model_config = ConfigDict(frozen=True)

    docker_compose_file: str
    docker_config: DockerConfig
    features: tuple[str, ...] = DEFAULT_FEATURES
    kms_enabled: bool = True
    manifest_version: int = 1
    name: str
    pre_launch_script: str = ""
    bash_script: str = ""
    public_logs: bool = True
    public_sysinfo: bool = True
    tproxy_enabled: bool = True
    runner: str = "docker-compose"
    version: str = "1.0.0"


class ComposeUpdateRequest(BaseModel):
    """Body of the compose-update call.  ``allow_restart`` travels as 1/0."""

    model_config = ConfigDict(frozen=True)

    id: str
    compose_manifest: ComposeUpdateManifest
    encrypted_env: str = ""
    allow_restart: int = 1


# ---------------------------------------------------------------------------
# Response bodies
# ---------------------------------------------------------------------------

class _Response(BaseModel):
    model_config = ConfigDict(extra="allow")


class UserInfo(_Response):
    """Identity of the API key's owner."""

    id: str | int
    username: str


class Slot(_Response):
    """An execution pool ("teepod") able to host deployments."""

    id: int
    name: str = ""
    available: bool = False
    status: str = ""

    @property
    def usable(self) -> bool:
        """Return ``True`` if the slot is available and online."""
        return self.available and self.status == "online"


class SlotList(_Response):
    data: list[Slot] = Field(default_factory=list)


class RemoteEncryptionKey(_Response):
    """Per-deployment X25519 public key and the salt it was derived with."""

    model_config = ConfigDict(populate_by_name=True)

    public_key: str = Field(alias="app_env_encrypt_pubkey", min_length=1)
    salt: str = Field(alias="app_id_salt")


class CreateDeploymentResponse(_Response):
    """Result of a successful create-deployment call."""

    app_id: str
    app_url: str | None = None

    @property
    def identifier(self) -> str:
        return self.app_id

    @property
    def url(self) -> str | None:
        return self.app_url


class ReplaceConfigurationResponse(_Response):
    """Result of a compose upgrade or update."""

    detail: Any = None


class DeploymentActionResponse(_Response):
    """Result of a start or stop request; the service echoes the deployment."""

    id: str | int | None = None
    name: str | None = None
    app_id: str | None = None
    status: str | None = None


class DeploymentStatusSnapshot(_Response):
    """Point-in-time view of a deployment, refreshed by each status query."""

    id: str | int | None = None
    name: str | None = None
    app_id: str | None = None
    app_url: str | None = None
    status: str
    encrypted_env_pubkey: str | None = None
    instance_id: str | None = None

    def with_app_url(self, app_url: str) -> DeploymentStatusSnapshot:
        """Return a copy of this snapshot carrying *app_url*."""
        return self.model_copy(update={"app_url": app_url})


class PublicUrl(_Response):
    app: str = ""
    instance: str = ""


class NetworkInfo(_Response):
    """Network details of a running deployment."""

    public_urls: list[PublicUrl] = Field(default_factory=list)
