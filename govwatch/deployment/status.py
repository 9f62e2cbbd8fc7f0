"""Two-path deployment status resolution.

Primary path: structured deploy-result API by id. If it raises, the
fallback path looks the id up as a DeployRequest record. If both fail (or
the record does not exist) a minimal ``Unknown`` status is returned, so a
transient status-check failure never crashes the polling loop.
"""

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from govwatch.deployment.schemas import DeployStatus
from govwatch.observability.metrics import get_metrics

logger = logging.getLogger(__name__)

FetchDeployResult = Callable[[str], Awaitable[dict[str, Any]]]
FetchDeployRecord = Callable[[str], Awaitable[dict[str, Any] | None]]


class DeployStatusResolver:
    """Resolves a deployment id to a ``DeployStatus``; never raises.

    Args:
        fetch_result: Primary lookup returning the structured deploy result.
        fetch_record: Fallback lookup returning a DeployRequest record or None.
    """

    def __init__(
        self,
        fetch_result: FetchDeployResult,
        fetch_record: FetchDeployRecord | None = None,
    ) -> None:
        self._fetch_result = fetch_result
        self._fetch_record = fetch_record
        self._metrics = get_metrics()

    async def __call__(self, deployment_id: str) -> DeployStatus:
        return await self.resolve(deployment_id)

    async def resolve(self, deployment_id: str) -> DeployStatus:
        """Look up the deployment status, falling back as needed.

        Args:
            deployment_id: Deployment identifier.

        Returns:
            DeployStatus with ``source`` telling which path answered.
        """
        try:
            result = await self._fetch_result(deployment_id)
            self._metrics.record_status_check("api")
            return DeployStatus.from_deploy_result(deployment_id, result)
        except Exception as primary_error:
            logger.warning(
                "Deploy status API failed for %s, trying record lookup: %s",
                deployment_id, primary_error,
            )
            status = await self._resolve_fallback(deployment_id, primary_error)

        self._metrics.record_status_check(status.source)
        return status

    async def _resolve_fallback(
        self,
        deployment_id: str,
        primary_error: Exception,
    ) -> DeployStatus:
        if self._fetch_record is None:
            return DeployStatus.unknown(deployment_id, str(primary_error))

        try:
            record = await self._fetch_record(deployment_id)
        except Exception as e:
            logger.warning(
                "Deploy record lookup failed for %s: %s", deployment_id, e,
            )
            return DeployStatus.unknown(deployment_id, str(primary_error))

        if record is None:
            logger.debug("No DeployRequest record for %s", deployment_id)
            return DeployStatus.unknown(deployment_id, str(primary_error))

        return DeployStatus.from_record(deployment_id, record)
