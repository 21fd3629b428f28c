"""Deploy subpackage -- submission protocol and status polling."""
from __future__ import annotations

from cvm_deploy.deploy.poller import (
    DeploymentObserver,
    PollingSession,
    StatusPoller,
    classify_status,
)
from cvm_deploy.deploy.submitter import (
    DeploymentSubmitter,
    build_vm_config,
    select_slot,
    validate_spec,
)

__all__ = [
    "DeploymentObserver",
    "PollingSession",
    "StatusPoller",
    "classify_status",
    "DeploymentSubmitter",
    "build_vm_config",
    "select_slot",
    "validate_spec",
]
