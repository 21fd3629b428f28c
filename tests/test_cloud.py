"""End-to-end tests for the CloudClient facade against an in-process API."""
from __future__ import annotations

import logging

import httpx
import pytest
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey

from conftest import APP_ID, FakeApi, FakeClock, RecordingObserver, RecordingSleep, make_transport
from cvm_deploy import (
    ClientConfig,
    CloudClient,
    DeploymentSpec,
    MonitorOptions,
    SecretCodec,
    SecretEntry,
    __version__,
    logs_url,
)
from cvm_deploy.core.config import ENV_LOG_LEVEL
from cvm_deploy.deploy.poller import StatusPoller
from cvm_deploy.wire.transport import USER_AGENT


@pytest.fixture()
def cloud(fake_api: FakeApi, sleep: RecordingSleep) -> CloudClient:
    client = CloudClient(
        ClientConfig(api_key="test-api-key"),
        transport=make_transport(fake_api, sleep=sleep),
    )
    # Keep monitoring instant.
    clock = FakeClock()
    client.poller = StatusPoller(client.api, clock=clock, sleep=RecordingSleep(clock))
    return client


class TestLogsUrl:
    def test_defaults(self) -> None:
        assert logs_url("app_abc", "web") == (
            "https://abc-8090.dstack-prod5.phala.network/logs/web"
            "?text&bare&timestamps&follow&tail=400"
        )

    def test_options(self) -> None:
        url = logs_url("abc", "db", port=9000, tail=0, follow=False, bare=False)
        assert url == "https://abc-9000.dstack-prod5.phala.network/logs/db?text&timestamps"

    def test_no_query(self) -> None:
        url = logs_url("abc", "web", tail=0, follow=False, timestamps=False, bare=False, text=False)
        assert url.endswith("/logs/web")


class TestCloudClient:
    async def test_deploy_and_monitor(
        self,
        cloud: CloudClient,
        fake_api: FakeApi,
        remote_private_key: X25519PrivateKey,
        remote_public_key_hex: str,
        secrets: list[SecretEntry],
    ) -> None:
        fake_api.on("GET", "/api/v1/teepods", {"data": [{"id": 4, "available": True, "status": "online"}]})
        fake_api.on("POST", "/api/v1/cvms/pubkey/from_cvm_configuration", {
            "app_env_encrypt_pubkey": remote_public_key_hex,
            "app_id_salt": "salt",
        })
        fake_api.on("POST", "/api/v1/cvms/from_cvm_configuration", {"app_id": APP_ID})
        statuses = iter(["starting", "running"])
        fake_api.on(
            "GET",
            f"/api/v1/cvms/app_{APP_ID}",
            lambda _req: httpx.Response(200, json={"status": next(statuses)}),
        )
        fake_api.on(
            "GET",
            f"/api/v1/cvms/app_{APP_ID}/network",
            {"public_urls": [{"app": "https://demo.example", "instance": ""}]},
        )
        observer = RecordingObserver()

        async with cloud:
            created = await cloud.deploy(
                DeploymentSpec(name="demo", compose="services: {}", secrets=secrets)
            )
            snapshot = await cloud.monitor(
                f"app_{created.identifier}", MonitorOptions(interval=1000), observer,
            )

        assert snapshot is not None
        assert snapshot.status == "running"
        assert snapshot.app_url == "https://demo.example"
        create = fake_api.body(fake_api.calls("POST", "/api/v1/cvms/from_cvm_configuration")[0])
        assert create["teepod_id"] == 4
        assert SecretCodec().decrypt(create["encrypted_env"], remote_private_key) == secrets
        assert [args[0] for args in observer.of("status_change")] == ["running"]

    async def test_reads(self, cloud: CloudClient, fake_api: FakeApi) -> None:
        fake_api.on("GET", "/api/v1/auth/me", {"id": "u1", "username": "alice"})
        fake_api.on("GET", "/api/v1/teepods", {"data": []})

        assert (await cloud.get_user_info()).username == "alice"
        assert await cloud.list_slots() == []

    def test_config_property(self) -> None:
        config = ClientConfig(api_key="k", log_level="DEBUG")
        client = CloudClient(config)
        assert client.config is config
        package_logger = logging.getLogger("cvm_deploy")
        assert package_logger.level == logging.DEBUG
        package_logger.setLevel(logging.NOTSET)

    def test_logs_url_method(self, cloud: CloudClient) -> None:
        assert cloud.logs_url(APP_ID, "web", tail=10).endswith("tail=10")

    def test_version_in_user_agent(self) -> None:
        assert USER_AGENT.endswith(__version__)

    def test_default_config_leaves_logger_level(self) -> None:
        package_logger = logging.getLogger("cvm_deploy")
        package_logger.setLevel(logging.WARNING)
        try:
            CloudClient(ClientConfig(api_key="k"))
            assert package_logger.level == logging.WARNING
        finally:
            package_logger.setLevel(logging.NOTSET)

    def test_env_log_level_applied(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv(ENV_LOG_LEVEL, "error")
        package_logger = logging.getLogger("cvm_deploy")
        try:
            CloudClient(ClientConfig.from_env(api_key="k"))
            assert package_logger.level == logging.ERROR
        finally:
            package_logger.setLevel(logging.NOTSET)


class TestLifecycle:
    async def test_stop_then_start_and_monitor(self, cloud: CloudClient, fake_api: FakeApi) -> None:
        fake_api.on("POST", f"/api/v1/cvms/app_{APP_ID}/stop", {"app_id": APP_ID, "status": "stopping"})
        fake_api.on("POST", f"/api/v1/cvms/app_{APP_ID}/start", {"app_id": APP_ID, "status": "starting"})
        statuses = iter(["starting", "running"])
        fake_api.on(
            "GET",
            f"/api/v1/cvms/app_{APP_ID}",
            lambda _req: httpx.Response(200, json={"status": next(statuses)}),
        )
        fake_api.on("GET", f"/api/v1/cvms/app_{APP_ID}/network", {"public_urls": []})

        async with cloud:
            stopped = await cloud.stop_deployment(f"app_{APP_ID}")
            started = await cloud.start_deployment(APP_ID, timeout=5.0)
            snapshot = await cloud.monitor(APP_ID, MonitorOptions(interval=1000))

        assert stopped.status == "stopping"
        assert started.status == "starting"
        assert snapshot is not None
        assert snapshot.status == "running"
        start = fake_api.calls("POST", f"/api/v1/cvms/app_{APP_ID}/start")[0]
        assert fake_api.body(start) == {}
        assert start.extensions["timeout"]["read"] == 5.0

    async def test_get_bound_key(
        self, cloud: CloudClient, fake_api: FakeApi, remote_public_key_hex: str,
    ) -> None:
        fake_api.on(
            "GET",
            f"/api/v1/cvms/app_{APP_ID}/pubkey",
            {"app_env_encrypt_pubkey": remote_public_key_hex, "app_id_salt": "salt"},
        )

        key = await cloud.get_bound_key(APP_ID)

        assert key.public_key == remote_public_key_hex
        assert key.salt == "salt"
