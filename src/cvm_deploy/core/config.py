"""cvm_deploy client configuration.

Defines the validated configuration models consumed by the transport,
the submitter and the status poller.  All fields carry defaults so that
a minimal configuration (just ``api_key``) is enough to talk to the
hosted service.
"""
from __future__ import annotations

import os

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_API_URL: str = "https://cloud-api.phala.network"
"""Base URL of the hosted deployment API."""

DEFAULT_IMAGE: str = "dstack-dev-0.3.5"
"""Base OS image used for new deployments when the caller does not pick one."""

ENV_API_URL = "CVM_DEPLOY_API_URL"
ENV_API_KEY = "CVM_DEPLOY_API_KEY"
ENV_LOG_LEVEL = "CVM_DEPLOY_LOG_LEVEL"


class TimeoutPolicy(BaseModel):
    """Default per-operation timeouts, in seconds.

    A timeout passed explicitly on a single request always wins over
    these defaults.
    """

    model_config = ConfigDict(strict=True, frozen=True)

    default: float = Field(
        default=30.0,
        gt=0,
        description="Timeout for ordinary read and write operations.",
    )
    status_query: float = Field(
        default=15.0,
        gt=0,
        description="Timeout for deployment status lookups.",
    )
    submission: float = Field(
        default=60.0,
        gt=0,
        description=(
            "Timeout for create-deployment and configuration-replace "
            "operations, which the service handles slowly."
        ),
    )


class ClientConfig(BaseModel):
    """Configuration for a :class:`~cvm_deploy.cloud.CloudClient`."""

    model_config = ConfigDict(strict=True)

    api_url: str = Field(
        default=DEFAULT_API_URL,
        min_length=1,
        description="Base URL of the deployment API.",
    )
    api_key: str | None = Field(
        default=None,
        description="API key sent in the X-API-Key header.",
    )
    max_retries: int = Field(
        default=2,
        ge=0,
        le=10,
        description=(
            "Maximum number of retries for network failures and 5xx "
            "responses (total attempts = max_retries + 1)."
        ),
    )
    retry_base_delay: float = Field(
        default=2.0,
        ge=0.0,
        description=(
            "Delay in seconds before the first retry; doubled for each "
            "subsequent retry."
        ),
    )
    timeouts: TimeoutPolicy = Field(default_factory=TimeoutPolicy)
    log_level: str = Field(
        default="WARNING",
        description="Level applied to the ``cvm_deploy`` logger.",
    )

    @classmethod
    def from_env(cls, **overrides: object) -> ClientConfig:
        """Build a config from ``CVM_DEPLOY_*`` environment variables.

        Keyword arguments take precedence over the environment.
        """
        values: dict[str, object] = {}
        if api_url := os.environ.get(ENV_API_URL):
            values["api_url"] = api_url
        if api_key := os.environ.get(ENV_API_KEY):
            values["api_key"] = api_key
        if log_level := os.environ.get(ENV_LOG_LEVEL):
            values["log_level"] = log_level.upper()
        values.update(overrides)
        return cls.model_validate(values)


class MonitorOptions(BaseModel):
    """Settings for one :meth:`StatusPoller.monitor` call.

    Intervals are expressed in milliseconds to match the remote
    service's documentation.
    """

    model_config = ConfigDict(strict=True, frozen=True)

    interval: int = Field(
        default=5000,
        ge=0,
        description="Target time between two status checks, in ms.",
    )
    max_attempts: int = Field(
        default=36,
        ge=1,
        description="Number of status checks before giving up (~3 minutes).",
    )
    query_timeout: int = Field(
        default=8000,
        gt=0,
        description="Timeout for a single status query, in ms.",
    )
    max_consecutive_errors: int = Field(
        default=3,
        ge=1,
        description=(
            "Consecutive query failures that trigger an extended "
            "recovery pause of twice the interval."
        ),
    )
