"""CloudClient -- the main entry point.

Composes the transport, the typed API bindings, the submitter and the
status poller behind one async context manager.

Usage
-----
::

    from cvm_deploy import CloudClient, ClientConfig, DeploymentSpec, SecretEntry

    async with CloudClient(ClientConfig.from_env()) as cloud:
        created = await cloud.deploy(
            DeploymentSpec(
                name="my-app",
                compose=compose_text,
                secrets=[SecretEntry(key="TOKEN", value="...")],
            )
        )
        snapshot = await cloud.monitor(created.identifier)
"""
from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any
from urllib.parse import quote

from cvm_deploy.core.config import ClientConfig, MonitorOptions
from cvm_deploy.core.types import (
    ComposeUpdateSpec,
    CreateDeploymentResponse,
    DeploymentActionResponse,
    DeploymentSpec,
    DeploymentStatusSnapshot,
    NetworkInfo,
    RemoteEncryptionKey,
    ReplaceConfigurationResponse,
    Slot,
    UpgradeSpec,
    UserInfo,
    normalize_app_id,
)
from cvm_deploy.crypto.codec import SecretCodec
from cvm_deploy.deploy.poller import DeploymentObserver, StatusPoller
from cvm_deploy.deploy.submitter import DeploymentSubmitter
from cvm_deploy.wire.client import CloudApiClient
from cvm_deploy.wire.transport import RetryingTransport

PACKAGE_LOGGER = "cvm_deploy"
LOGS_HOST_SUFFIX = "dstack-prod5.phala.network"


def logs_url(
    app_id: str,
    container: str,
    *,
    port: int = 8090,
    tail: int = 400,
    follow: bool = True,
    timestamps: bool = True,
    bare: bool = True,
    text: bool = True,
) -> str:
    """Build the log-streaming URL of one container of a deployment."""
    params: list[str] = []
    if text:
        params.append("text")
    if bare:
        params.append("bare")
    if timestamps:
        params.append("timestamps")
    if follow:
        params.append("follow")
    if tail:
        params.append(f"tail={tail}")
    query = f"?{'&'.join(params)}" if params else ""
    app = normalize_app_id(app_id)
    return f"https://{app}-{port}.{LOGS_HOST_SUFFIX}/logs/{quote(container)}{query}"


class CloudClient:
    """Deploy, upgrade and monitor confidential workloads.

    Parameters
    ----------
    config:
        Client configuration; ``ClientConfig()`` when omitted.
    transport:
        Pre-built transport (tests inject one backed by
        ``httpx.MockTransport``).  Built from *config* when omitted.
    codec:
        Secret encryptor shared by every submission.
    logger:
        Parent logger for all components.  When omitted the
        ``cvm_deploy`` package logger is used; its level is changed only
        if ``config.log_level`` was set explicitly (or from the
        environment), so clients built with defaults never override a
        level configured elsewhere.
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        *,
        transport: RetryingTransport | None = None,
        codec: SecretCodec | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._config = config or ClientConfig()
        if logger is None:
            logger = logging.getLogger(PACKAGE_LOGGER)
            if "log_level" in self._config.model_fields_set:
                logger.setLevel(self._config.log_level)
        self._logger = logger
        self._transport = transport or RetryingTransport(
            self._config.api_url,
            api_key=self._config.api_key,
            timeout=self._config.timeouts.default,
            max_retries=self._config.max_retries,
            base_delay=self._config.retry_base_delay,
            logger=logger.getChild("transport"),
        )
        self.api = CloudApiClient(
            self._transport,
            timeouts=self._config.timeouts,
            logger=logger.getChild("client"),
        )
        self.submitter = DeploymentSubmitter(
            self.api,
            codec=codec or SecretCodec(logger=logger.getChild("codec")),
            logger=logger.getChild("submitter"),
        )
        self.poller = StatusPoller(self.api, logger=logger.getChild("poller"))
        self._logger.debug("CloudClient initialised for %s", self._config.api_url)

    @property
    def config(self) -> ClientConfig:
        return self._config

    async def aclose(self) -> None:
        await self._transport.aclose()

    async def __aenter__(self) -> CloudClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # -- reads ---------------------------------------------------------

    async def get_user_info(self) -> UserInfo:
        return await self.api.get_user_info()

    async def list_slots(self) -> list[Slot]:
        return await self.api.list_slots()

    async def get_deployment(self, app_id: str) -> DeploymentStatusSnapshot:
        return await self.api.get_deployment(app_id)

    async def get_network(self, app_id: str) -> NetworkInfo:
        return await self.api.get_network(app_id)

    async def get_bound_key(self, app_id: str) -> RemoteEncryptionKey:
        return await self.api.get_bound_key(app_id)

    # -- writes --------------------------------------------------------

    async def deploy(
        self,
        spec: DeploymentSpec | Mapping[str, Any],
    ) -> CreateDeploymentResponse:
        """See :meth:`DeploymentSubmitter.submit`."""
        return await self.submitter.submit(spec)

    async def upgrade(
        self,
        spec: UpgradeSpec | Mapping[str, Any],
    ) -> ReplaceConfigurationResponse:
        """See :meth:`DeploymentSubmitter.upgrade`."""
        return await self.submitter.upgrade(spec)

    async def update_compose(
        self,
        spec: ComposeUpdateSpec | Mapping[str, Any],
    ) -> ReplaceConfigurationResponse:
        """See :meth:`DeploymentSubmitter.update_compose`."""
        return await self.submitter.update_compose(spec)

    async def start_deployment(
        self,
        app_id: str,
        *,
        timeout: float | None = None,
    ) -> DeploymentActionResponse:
        """Start a stopped deployment; follow with :meth:`monitor` to wait for it."""
        return await self.api.start_deployment(app_id, timeout=timeout)

    async def stop_deployment(
        self,
        app_id: str,
        *,
        timeout: float | None = None,
    ) -> DeploymentActionResponse:
        return await self.api.stop_deployment(app_id, timeout=timeout)

    # -- monitoring ----------------------------------------------------

    async def monitor(
        self,
        app_id: str,
        options: MonitorOptions | None = None,
        observer: DeploymentObserver | None = None,
    ) -> DeploymentStatusSnapshot | None:
        """See :meth:`StatusPoller.monitor`."""
        return await self.poller.monitor(app_id, options, observer)

    def logs_url(self, app_id: str, container: str, **options: Any) -> str:
        return logs_url(app_id, container, **options)
