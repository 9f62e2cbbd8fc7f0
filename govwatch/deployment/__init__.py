"""Deployment correlation: baseline, id discovery, status polling, deltas."""

from govwatch.deployment.config import DeploymentConfig
from govwatch.deployment.correlator import DeploymentCorrelator
from govwatch.deployment.process import AsyncioProcessHandle, ProcessHandle, spawn_external_process
from govwatch.deployment.schemas import DeployStatus, OperationSession, ProcessResult
from govwatch.deployment.status import DeployStatusResolver

__all__ = [
    "AsyncioProcessHandle",
    "DeployStatus",
    "DeployStatusResolver",
    "DeploymentConfig",
    "DeploymentCorrelator",
    "OperationSession",
    "ProcessHandle",
    "ProcessResult",
    "spawn_external_process",
]
