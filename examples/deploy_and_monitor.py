#!/usr/bin/env python3
"""Deploy a compose file with encrypted secrets and wait for it to run.

Demonstrates the core workflow of the SDK:

1. Build a client from ``CVM_DEPLOY_*`` environment variables.
2. Check the API key by fetching the account.
3. Parse secrets from ``KEY=VALUE`` assignments and an env file.
4. Deploy; the secrets are encrypted to a key bound to the new VM.
5. Poll the deployment until it is running, failed or timed out.

Run:
    CVM_DEPLOY_API_KEY=... python examples/deploy_and_monitor.py docker-compose.yml [.env]
"""
from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path

from cvm_deploy import (
    ClientConfig,
    CloudClient,
    CvmDeployError,
    DeploymentObserver,
    DeploymentSpec,
    DeploymentStatusSnapshot,
    MonitorOptions,
    parse_env_lines,
)


class PrintingObserver(DeploymentObserver):
    def on_status_change(self, status: str, snapshot: DeploymentStatusSnapshot) -> None:
        print(f"    status -> {status}")

    def on_error(self, error: Exception) -> None:
        print(f"    query failed: {error}")

    def on_timeout(self, snapshot: DeploymentStatusSnapshot | None) -> None:
        print("    gave up waiting; the deployment may still come up")


async def main(compose_path: str, env_path: str | None) -> int:
    logging.basicConfig(level=logging.INFO)

    # -- Step 1: Client ------------------------------------------------------
    config = ClientConfig.from_env()
    async with CloudClient(config) as cloud:
        # -- Step 2: Account -------------------------------------------------
        user = await cloud.get_user_info()
        print(f"[1] Authenticated as {user.username}")

        # -- Step 3: Secrets -------------------------------------------------
        env_lines = Path(env_path).read_text().splitlines() if env_path else []
        secrets = parse_env_lines(["APP_MODE=production"], env_lines)
        print(f"[2] {len(secrets)} secret(s): {', '.join(s.key for s in secrets)}")

        # -- Step 4: Deploy --------------------------------------------------
        spec = DeploymentSpec(
            name=Path(compose_path).stem,
            compose=Path(compose_path).read_text(),
            secrets=secrets,
        )
        created = await cloud.deploy(spec)
        print(f"[3] Created app_{created.identifier}")

        # -- Step 5: Monitor -------------------------------------------------
        snapshot = await cloud.monitor(
            created.identifier,
            MonitorOptions(interval=5000, max_attempts=36),
            PrintingObserver(),
        )
        if snapshot is None or snapshot.status.lower() != "running":
            print("[4] Deployment did not reach running")
            return 1
        print(f"[4] Running at {snapshot.app_url}")
        print(f"    logs: {cloud.logs_url(created.identifier, 'web')}")
    return 0


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print(__doc__)
        sys.exit(2)
    try:
        sys.exit(asyncio.run(main(sys.argv[1], sys.argv[2] if len(sys.argv) > 2 else None)))
    except CvmDeployError as exc:
        print(exc.to_dict(), file=sys.stderr)
        sys.exit(1)
