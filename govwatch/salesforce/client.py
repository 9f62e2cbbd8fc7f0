"""
Salesforce REST client for limits and deployment status.

Provides:
- RetryConfig: Exponential backoff configuration
- SalesforceClient: Async client for the limits, metadata deploy and
  tooling query endpoints, with automatic retry

Every failure surfaces as ``TransientFetchError`` so callers on the
sampling path can log and continue.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any

import httpx

from govwatch.config.settings import Settings, get_settings
from govwatch.exceptions import ConfigurationError, TransientFetchError

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})

DEPLOY_REQUEST_SOQL = (
    "SELECT Id, Status, CreatedDate, CompletedDate, ErrorMessage "
    "FROM DeployRequest WHERE Id = '{deploy_id}'"
)
ORG_INFO_SOQL = "SELECT Id, Name, OrganizationType, InstanceName FROM Organization LIMIT 1"


@dataclass
class RetryConfig:
    """
    Exponential backoff configuration for HTTP retries.

    Formula: min(max_backoff, base_delay * 2^attempt) * (1 + random(0, jitter_factor))
    """

    max_retries: int = 3
    max_backoff_seconds: float = 60.0
    base_delay: float = 1.0
    jitter_factor: float = 0.1

    def calculate_backoff(self, attempt: int) -> float:
        """
        Calculate backoff duration for a given retry attempt.

        Args:
            attempt: The retry attempt number (0-indexed)

        Returns:
            Backoff duration in seconds with jitter applied
        """
        delay = min(self.base_delay * (2**attempt), self.max_backoff_seconds)
        return delay + delay * self.jitter_factor * random.random()

    def is_retryable_status(self, status_code: int) -> bool:
        """429 and gateway/server errors are retried."""
        return status_code in RETRYABLE_STATUS

    def is_retryable_exception(self, exc: Exception) -> bool:
        """Timeouts and connection-level failures are retried."""
        return isinstance(
            exc,
            (
                httpx.TimeoutException,
                httpx.ConnectError,
                httpx.ReadError,
            ),
        )


class SalesforceClient:
    """
    Async client for one org's REST API.

    Example:
        async with SalesforceClient.from_settings() as client:
            raw = await client.fetch_raw_limits()
    """

    def __init__(
        self,
        instance_url: str,
        access_token: str,
        api_version: str = "59.0",
        retry_config: RetryConfig | None = None,
        timeout: float = 30.0,
    ):
        """
        Initialize client.

        Args:
            instance_url: Org instance URL (e.g. https://acme.my.salesforce.com)
            access_token: OAuth access token for the org
            api_version: REST API version without the ``v`` prefix
            retry_config: Retry behavior. Uses defaults if None.
            timeout: Request timeout in seconds
        """
        if not instance_url or not access_token:
            raise ConfigurationError("instance_url and access_token are required")
        self.instance_url = instance_url.rstrip("/")
        self.api_version = api_version
        self.retry_config = retry_config or RetryConfig()
        self.timeout = timeout
        self._access_token = access_token
        self._client: httpx.AsyncClient | None = None

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "SalesforceClient":
        """Build a client from ``SF_*`` settings."""
        settings = settings or get_settings()
        if not settings.salesforce_configured:
            raise ConfigurationError(
                "Salesforce connection not configured: set SF_INSTANCE_URL and SF_ACCESS_TOKEN"
            )
        return cls(
            instance_url=settings.sf_instance_url,
            access_token=settings.sf_access_token,
            api_version=settings.sf_api_version,
            retry_config=RetryConfig(
                max_retries=settings.max_http_retries,
                max_backoff_seconds=settings.max_backoff_seconds,
            ),
            timeout=settings.http_timeout_seconds,
        )

    async def __aenter__(self) -> "SalesforceClient":
        """Enter async context manager, create client."""
        self._client = httpx.AsyncClient(
            base_url=self.instance_url,
            timeout=self.timeout,
            headers={
                "Authorization": f"Bearer {self._access_token}",
                "Accept": "application/json",
            },
        )
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Exit async context manager, close client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def data_path(self) -> str:
        return f"/services/data/v{self.api_version}"

    async def fetch_raw_limits(self) -> dict[str, Any]:
        """
        Fetch the org's limits payload.

        Returns:
            Mapping of limit name to ``{"Max": ..., "Remaining": ...}``

        Raises:
            TransientFetchError: On failure after retries
        """
        response = await self._get(f"{self.data_path}/limits")
        return response.json()

    async def check_deploy_status(self, deploy_id: str) -> dict[str, Any]:
        """
        Fetch the structured deploy result for a deployment.

        Raises:
            TransientFetchError: On failure, or when the response has no deployResult
        """
        response = await self._get(
            f"{self.data_path}/metadata/deployRequest/{deploy_id}",
            params={"includeDetails": "true"},
        )
        body = response.json()
        result = body.get("deployResult")
        if not isinstance(result, dict):
            raise TransientFetchError(f"No deployResult for deployment {deploy_id}")
        return result

    async def query_deploy_request(self, deploy_id: str) -> dict[str, Any] | None:
        """
        Look up a deployment as a DeployRequest record (tooling API).

        Returns:
            The first matching record, or None

        Raises:
            TransientFetchError: On failure after retries
        """
        if not deploy_id.isalnum():
            raise TransientFetchError(f"Invalid deployment id {deploy_id!r}")
        records = await self._query(
            f"{self.data_path}/tooling/query",
            DEPLOY_REQUEST_SOQL.format(deploy_id=deploy_id),
        )
        return records[0] if records else None

    async def get_org_info(self) -> dict[str, Any] | None:
        """Organization record used as baseline context; None on failure."""
        try:
            records = await self._query(f"{self.data_path}/query", ORG_INFO_SOQL)
        except TransientFetchError as e:
            logger.debug("Org info unavailable: %s", e)
            return None
        return records[0] if records else None

    async def _query(self, path: str, soql: str) -> list[dict[str, Any]]:
        response = await self._get(path, params={"q": soql})
        return response.json().get("records") or []

    async def _get(self, path: str, params: dict[str, Any] | None = None) -> httpx.Response:
        """
        Execute GET with retry logic.

        Implements exponential backoff with jitter on retryable errors.
        """
        if not self._client:
            raise RuntimeError("SalesforceClient must be used as async context manager")

        attempts = self.retry_config.max_retries + 1
        for attempt in range(attempts):
            try:
                response = await self._client.get(path, params=params)
            except httpx.HTTPError as e:
                if self.retry_config.is_retryable_exception(e) and attempt < attempts - 1:
                    backoff = self.retry_config.calculate_backoff(attempt)
                    logger.warning(
                        f"Retryable error {type(e).__name__} for {path}, "
                        f"attempt {attempt + 1}/{attempts}, backing off {backoff:.2f}s"
                    )
                    await asyncio.sleep(backoff)
                    continue
                raise TransientFetchError(
                    f"Request to {path} failed after {attempt + 1} attempts: {e}"
                ) from e

            if self.retry_config.is_retryable_status(response.status_code):
                if attempt < attempts - 1:
                    backoff = self.retry_config.calculate_backoff(attempt)
                    logger.warning(
                        f"Retryable status {response.status_code} from {path}, "
                        f"attempt {attempt + 1}/{attempts}, backing off {backoff:.2f}s"
                    )
                    await asyncio.sleep(backoff)
                    continue
                raise TransientFetchError(
                    f"Request to {path} failed with status {response.status_code} "
                    f"after {attempt + 1} attempts",
                    status_code=response.status_code,
                )

            if response.status_code >= 400:
                raise TransientFetchError(
                    f"Request to {path} failed with status {response.status_code}",
                    status_code=response.status_code,
                )

            return response

        raise TransientFetchError(f"Request to {path} failed after {attempts} attempts")
