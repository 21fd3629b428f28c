"""Typed endpoint bindings for the deployment API.

:class:`CloudApiClient` maps each remote operation to one method that
builds a :class:`~cvm_deploy.wire.transport.RequestDescriptor`, sends it
through the :class:`~cvm_deploy.wire.transport.RetryingTransport`, and
validates the response body into a Pydantic model.  A body that does not
match its model raises :class:`MalformedResponse`.
"""
from __future__ import annotations

import logging
from typing import Any, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from cvm_deploy.core.config import TimeoutPolicy
from cvm_deploy.core.errors import InvalidIdentifier, MalformedResponse
from cvm_deploy.core.types import (
    ComposeUpdateRequest,
    CreateDeploymentResponse,
    DeploymentActionResponse,
    DeploymentRequest,
    DeploymentStatusSnapshot,
    NetworkInfo,
    RemoteEncryptionKey,
    ReplaceConfigurationResponse,
    Slot,
    SlotList,
    UpgradeRequest,
    UserInfo,
    VmConfig,
    normalize_app_id,
)
from cvm_deploy.wire.transport import RequestDescriptor, RetryingTransport

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

API_PREFIX = "/api/v1"


def _app_path(app_id: str, suffix: str = "") -> str:
    stripped = normalize_app_id(app_id)
    if not stripped:
        raise InvalidIdentifier(details={"identifier": app_id})
    return f"{API_PREFIX}/cvms/app_{stripped}{suffix}"


def _parse(model: type[ModelT], body: Any, path: str) -> ModelT:
    try:
        return model.model_validate(body)
    except PydanticValidationError as exc:
        raise MalformedResponse(
            f"Response from {path} does not match {model.__name__}",
            body=body,
            details={"path": path, "errors": exc.errors(include_url=False)},
        ) from exc


class CloudApiClient:
    """One method per remote operation, each returning a validated model.

    Parameters
    ----------
    transport:
        The retrying transport used for every call.
    timeouts:
        Default timeouts per logical operation.  Status queries use the
        short timeout, create and replace calls the long one.
    logger:
        Logger for operation tracing.
    """

    def __init__(
        self,
        transport: RetryingTransport,
        *,
        timeouts: TimeoutPolicy | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._transport = transport
        self._timeouts = timeouts or TimeoutPolicy()
        self._logger = logger if logger is not None else logging.getLogger(__name__)

    async def _call(
        self,
        model: type[ModelT],
        method: str,
        path: str,
        *,
        body: Any = None,
        timeout: float | None = None,
    ) -> ModelT:
        request = RequestDescriptor(
            method=method,
            path=path,
            json=body,
            timeout=timeout if timeout is not None else self._timeouts.default,
        )
        data = await self._transport.request_json(request)
        return _parse(model, data, path)

    # ------------------------------------------------------------------
    # Account and capacity
    # ------------------------------------------------------------------

    async def get_user_info(self) -> UserInfo:
        """``GET /api/v1/auth/me``"""
        self._logger.debug("Getting user info")
        return await self._call(UserInfo, "GET", f"{API_PREFIX}/auth/me")

    async def list_slots(self) -> list[Slot]:
        """``GET /api/v1/teepods`` -- slots in the order the service returns them."""
        self._logger.debug("Listing slots")
        path = f"{API_PREFIX}/teepods"
        data = await self._transport.request_json(
            RequestDescriptor(method="GET", path=path, timeout=self._timeouts.default)
        )
        # Normally wrapped in {"data": [...]}; a bare list is accepted too.
        if isinstance(data, list):
            data = {"data": data}
        slots = _parse(SlotList, data, path)
        self._logger.debug("Found %d slot(s)", len(slots.data))
        return slots.data

    # ------------------------------------------------------------------
    # Deployments
    # ------------------------------------------------------------------

    async def request_encryption_key(self, vm_config: VmConfig) -> RemoteEncryptionKey:
        """Ask the service for a public key bound to *vm_config*."""
        self._logger.debug("Requesting encryption key for %s", vm_config.name)
        return await self._call(
            RemoteEncryptionKey,
            "POST",
            f"{API_PREFIX}/cvms/pubkey/from_cvm_configuration",
            body=vm_config.model_dump(mode="json"),
        )

    async def create_deployment(self, request: DeploymentRequest) -> CreateDeploymentResponse:
        """Create a deployment from a configuration and its encrypted secrets."""
        self._logger.debug("Creating deployment %s", request.name)
        return await self._call(
            CreateDeploymentResponse,
            "POST",
            f"{API_PREFIX}/cvms/from_cvm_configuration",
            body=request.model_dump(mode="json"),
            timeout=self._timeouts.submission,
        )

    async def replace_configuration(
        self,
        app_id: str,
        request: UpgradeRequest,
    ) -> ReplaceConfigurationResponse:
        """``POST /api/v1/cvms/app_<id>/compose``"""
        self._logger.debug("Replacing configuration of %s", app_id)
        return await self._call(
            ReplaceConfigurationResponse,
            "POST",
            _app_path(app_id, "/compose"),
            body=request.model_dump(mode="json"),
            timeout=self._timeouts.submission,
        )

    async def update_compose(
        self,
        app_id: str,
        request: ComposeUpdateRequest,
    ) -> ReplaceConfigurationResponse:
        """``PUT /api/v1/cvms/app_<id>/compose``"""
        self._logger.debug("Updating compose of %s", app_id)
        return await self._call(
            ReplaceConfigurationResponse,
            "PUT",
            _app_path(app_id, "/compose"),
            body=request.model_dump(mode="json"),
            timeout=self._timeouts.submission,
        )

    async def get_deployment(
        self,
        app_id: str,
        *,
        timeout: float | None = None,
    ) -> DeploymentStatusSnapshot:
        """``GET /api/v1/cvms/app_<id>`` with the short status timeout by default."""
        self._logger.debug("Getting deployment %s", app_id)
        return await self._call(
            DeploymentStatusSnapshot,
            "GET",
            _app_path(app_id),
            timeout=timeout if timeout is not None else self._timeouts.status_query,
        )

    async def get_network(self, app_id: str) -> NetworkInfo:
        """``GET /api/v1/cvms/app_<id>/network``"""
        self._logger.debug("Getting network info for %s", app_id)
        return await self._call(NetworkInfo, "GET", _app_path(app_id, "/network"))

    async def get_bound_key(self, app_id: str) -> RemoteEncryptionKey:
        """``GET /api/v1/cvms/app_<id>/pubkey`` -- the key secrets must be sealed to."""
        self._logger.debug("Getting bound encryption key of %s", app_id)
        return await self._call(RemoteEncryptionKey, "GET", _app_path(app_id, "/pubkey"))

    # ------------------------------------------------------------------
    # Lifecycle actions
    # ------------------------------------------------------------------

    async def start_deployment(
        self,
        app_id: str,
        *,
        timeout: float | None = None,
    ) -> DeploymentActionResponse:
        """``POST /api/v1/cvms/app_<id>/start``"""
        self._logger.debug("Starting %s", app_id)
        return await self._call(
            DeploymentActionResponse,
            "POST",
            _app_path(app_id, "/start"),
            body={},
            timeout=timeout,
        )

    async def stop_deployment(
        self,
        app_id: str,
        *,
        timeout: float | None = None,
    ) -> DeploymentActionResponse:
        """``POST /api/v1/cvms/app_<id>/stop``"""
        self._logger.debug("Stopping %s", app_id)
        return await self._call(
            DeploymentActionResponse,
            "POST",
            _app_path(app_id, "/stop"),
            body={},
            timeout=timeout,
        )
