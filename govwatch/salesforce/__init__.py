"""Salesforce REST adapter for limits and deployment status."""

from govwatch.salesforce.client import RetryConfig, SalesforceClient

__all__ = ["RetryConfig", "SalesforceClient"]
