"""Deployment submission protocol.

Creating a deployment is a strictly ordered exchange with the service:

1. **Validate** the caller's spec -- no network call happens before this.
2. **Resolve a slot** if the caller did not pin one: the first slot, in
   the service's own order, that is available and online.
3. **Assemble** the unencrypted :class:`VmConfig`.
4. **Request an encryption key** bound to that exact configuration.
5. **Encrypt** the secrets with :class:`SecretCodec` (skipped when there
   are none; the payload field is then empty).
6. **Submit** the configuration, the encrypted payload, and the key and
   salt from step 4.

A failure at any step aborts the whole submission.  Retrying
:meth:`DeploymentSubmitter.submit` starts over and requests a fresh key;
keys are never cached between attempts.

Upgrades and compose updates follow the same shape but reuse the key
already bound to the existing deployment instead of requesting one.
"""
from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from cvm_deploy.core.errors import (
    InvalidSpec,
    MissingEncryptionKey,
    NoAvailableSlotError,
)
from cvm_deploy.core.types import (
    ComposeManifest,
    ComposeUpdateManifest,
    ComposeUpdateRequest,
    ComposeUpdateSpec,
    CreateDeploymentResponse,
    DeploymentRequest,
    DeploymentSpec,
    ReplaceConfigurationResponse,
    SecretEntry,
    Slot,
    UpgradeManifest,
    UpgradeRequest,
    UpgradeSpec,
    VmConfig,
)
from cvm_deploy.crypto.codec import SecretCodec
from cvm_deploy.wire.client import CloudApiClient

logger = logging.getLogger(__name__)

SpecT = TypeVar("SpecT", bound=BaseModel)


def validate_spec(model: type[SpecT], spec: SpecT | Mapping[str, Any]) -> SpecT:
    """Validate *spec* against *model*, raising :class:`InvalidSpec` on failure.

    Model instances are re-validated because plain Pydantic models do not
    validate on attribute assignment.
    """
    data = spec.model_dump() if isinstance(spec, BaseModel) else spec
    try:
        return model.model_validate(data)
    except PydanticValidationError as exc:
        fields = sorted({".".join(str(p) for p in err["loc"]) for err in exc.errors()})
        raise InvalidSpec(
            f"Invalid {model.__name__}: {', '.join(fields)}",
            details={"fields": fields},
        ) from exc


def select_slot(slots: Sequence[Slot]) -> Slot:
    """Return the first usable slot in list order.

    Raises
    ------
    NoAvailableSlotError
        If the list is empty or no slot is available and online.
    """
    for slot in slots:
        if slot.usable:
            return slot
    raise NoAvailableSlotError(details={"slots_seen": len(slots)})


def build_vm_config(spec: DeploymentSpec, slot_id: int) -> VmConfig:
    """Assemble the unencrypted configuration for a new deployment."""
    return VmConfig(
        teepod_id=slot_id,
        name=spec.name,
        image=spec.image,
        vcpu=spec.vcpu,
        memory=spec.memory,
        disk_size=spec.disk_size,
        compose_manifest=ComposeManifest(
            docker_compose_file=spec.compose,
            features=tuple(spec.features),
            kms_enabled=spec.kms_enabled,
            name=spec.name,
            public_logs=spec.public_logs,
            public_sysinfo=spec.public_sysinfo,
            tproxy_enabled=spec.tproxy_enabled,
        ),
        listed=spec.listed,
    )


class DeploymentSubmitter:
    """Runs the fetch-key / encrypt / submit protocol.

    Parameters
    ----------
    api:
        Typed API bindings; every network call is routed through its
        retrying transport.
    codec:
        Secret encryptor.  A default :class:`SecretCodec` is created when
        omitted.
    logger:
        Logger for progress messages.
    """

    def __init__(
        self,
        api: CloudApiClient,
        *,
        codec: SecretCodec | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._api = api
        self._codec = codec or SecretCodec()
        self._logger = logger if logger is not None else logging.getLogger(__name__)

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def resolve_slot(self, spec: DeploymentSpec) -> int:
        """Return the pinned slot, or pick the first usable one."""
        if spec.slot_id is not None:
            return spec.slot_id
        self._logger.debug("No slot pinned, looking for an available one")
        slot = select_slot(await self._api.list_slots())
        self._logger.debug("Selected slot %s (%s)", slot.id, slot.name)
        return slot.id

    async def submit(
        self,
        spec: DeploymentSpec | Mapping[str, Any],
    ) -> CreateDeploymentResponse:
        """Create a new deployment.

        Returns
        -------
        CreateDeploymentResponse
            The new deployment's ``identifier`` and ``url``.

        Raises
        ------
        InvalidSpec
            If *spec* is incomplete; raised before any network call.
        NoAvailableSlotError
            If no slot is pinned and none is available and online.
        CryptoError
            If the returned key is malformed or encryption fails.
        RemoteError, TransportError
            If any remote call fails after the transport's retries.
        """
        deployment = validate_spec(DeploymentSpec, spec)
        self._logger.debug("Deploying %s", deployment.name)

        slot_id = await self.resolve_slot(deployment)
        vm_config = build_vm_config(deployment, slot_id)

        key = await self._api.request_encryption_key(vm_config)
        self._logger.debug("Received encryption key %s", key.public_key)

        encrypted_env = self._encrypt(deployment.secrets, key.public_key)

        request = DeploymentRequest(
            **vm_config.model_dump(),
            encrypted_env=encrypted_env,
            app_env_encrypt_pubkey=key.public_key,
            app_id_salt=key.salt,
        )
        response = await self._api.create_deployment(request)
        self._logger.info("Deployment %s created as app_%s", deployment.name, response.app_id)
        return response

    # ------------------------------------------------------------------
    # Upgrade / compose update
    # ------------------------------------------------------------------

    async def upgrade(
        self,
        spec: UpgradeSpec | Mapping[str, Any],
    ) -> ReplaceConfigurationResponse:
        """Replace the compose file and secrets of an existing deployment.

        Reuses the public key already bound to the deployment; no new key
        is requested.
        """
        upgrade = validate_spec(UpgradeSpec, spec)
        self._logger.debug("Upgrading app_%s", upgrade.app_id)

        encrypted_env = await self._encrypt_for_existing(upgrade.app_id, upgrade.secrets)
        request = UpgradeRequest(
            compose_manifest=UpgradeManifest(
                docker_compose_file=upgrade.compose,
                features=tuple(upgrade.features),
                name=f"app_{upgrade.app_id}",
            ),
            allow_restart=upgrade.allow_restart,
            encrypted_env=encrypted_env,
        )
        return await self._api.replace_configuration(upgrade.app_id, request)

    async def update_compose(
        self,
        spec: ComposeUpdateSpec | Mapping[str, Any],
    ) -> ReplaceConfigurationResponse:
        """Replace the full compose manifest of an existing deployment."""
        update = validate_spec(ComposeUpdateSpec, spec)
        identifier = f"app_{update.identifier}"
        self._logger.debug("Updating compose of %s", identifier)

        encrypted_env = await self._encrypt_for_existing(update.identifier, update.secrets)
        request = ComposeUpdateRequest(
            id=identifier,
            compose_manifest=ComposeUpdateManifest(
                docker_compose_file=update.compose,
                docker_config=update.docker_config,
                features=tuple(update.features),
                kms_enabled=update.kms_enabled,
                name=identifier,
                pre_launch_script=update.pre_launch_script,
                bash_script=update.bash_script,
                public_logs=update.public_logs,
                public_sysinfo=update.public_sysinfo,
                tproxy_enabled=update.tproxy_enabled,
            ),
            encrypted_env=encrypted_env,
            allow_restart=1 if update.allow_restart else 0,
        )
        return await self._api.update_compose(update.identifier, request)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _encrypt(self, secrets: Sequence[SecretEntry], public_key: str) -> str:
        if not secrets:
            return ""
        self._logger.debug("Encrypting %d environment variable(s)", len(secrets))
        return self._codec.encrypt(secrets, public_key)

    async def _encrypt_for_existing(self, app_id: str, secrets: Sequence[SecretEntry]) -> str:
        if not secrets:
            return ""
        deployment = await self._api.get_deployment(app_id)
        if not deployment.encrypted_env_pubkey:
            raise MissingEncryptionKey(details={"app_id": app_id})
        return self._encrypt(secrets, deployment.encrypted_env_pubkey)
