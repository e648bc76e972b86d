"""Provider view of security groups via Azure Resource Graph.

The reconciler only needs one call from a provider: list every security
group currently present, each with a stable global id. Resource Graph
answers that for a whole subscription in a single paged query, which is
much cheaper than walking resource groups through the network API.

SECURITY:
- All queries use Managed Identity authentication
- Query results are bounded to prevent OOM
- Subscription and resource group are validated by Config before use
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Protocol

from azure.core.credentials import TokenCredential
from azure.core.exceptions import AzureError
from azure.mgmt.resourcegraph import ResourceGraphClient
from azure.mgmt.resourcegraph.models import (
    QueryRequest,
    QueryRequestOptions,
    ResultFormat,
)
from pydantic import ValidationError

from .config import MAX_PROVIDER_RESULTS, Config
from .errors import ProviderError
from .models import RemoteSecurityGroup

logger = logging.getLogger(__name__)

NSG_RESOURCE_TYPE = "microsoft.network/networksecuritygroups"

# Network security groups have no description field; it is carried as a tag
DESCRIPTION_TAG = "description"

# Rows per Resource Graph page (service maximum is 1000)
PAGE_SIZE = 1000


class ProviderView(Protocol):
    """Read-only view of the provider's current security groups."""

    async def list_security_groups(self) -> list[RemoteSecurityGroup]: ...


class AzureSecurityGroupProvider:
    """Lists network security groups in the configured scope.

    The full result set is paged in before returning, so callers always get
    a complete snapshot or a ProviderError, never a truncated list.
    """

    def __init__(self, credential: TokenCredential, config: Config) -> None:
        """Initialize Resource Graph client.

        Args:
            credential: Azure credential (must be Managed Identity)
            config: Sync process configuration
        """
        self._config = config
        self._client = ResourceGraphClient(credential=credential)

    async def list_security_groups(self) -> list[RemoteSecurityGroup]:
        """Return every network security group in scope.

        Raises:
            ProviderError: If the query fails, times out, exceeds
                MAX_PROVIDER_RESULTS, or returns malformed rows.
        """
        start_time = time.monotonic()

        rows = await self._query_all(self._build_query())

        groups: list[RemoteSecurityGroup] = []
        for row in rows:
            tags = row.get("tags") or {}
            try:
                groups.append(
                    RemoteSecurityGroup(
                        global_id=row.get("id", ""),
                        name=row.get("name", ""),
                        description=tags.get(DESCRIPTION_TAG, ""),
                    )
                )
            except ValidationError as e:
                raise ProviderError(
                    f"Malformed security group record {row.get('id')!r}: {e}"
                ) from e

        logger.info(
            "Listed provider security groups",
            extra={
                "scope_key": self._config.scope_key,
                "groups_found": len(groups),
                "query_time_seconds": round(time.monotonic() - start_time, 2),
            },
        )
        return groups

    def _build_query(self) -> str:
        scope_filter = f"| where subscriptionId == '{self._config.subscription_id}'"
        if self._config.resource_group_name:
            scope_filter += f" and resourceGroup =~ '{self._config.resource_group_name}'"

        query = f"""
        Resources
        | where type =~ '{NSG_RESOURCE_TYPE}'
        {scope_filter}
        | project id, name, tags
        | order by id asc
        """
        return query.strip()

    async def _query_all(self, query: str) -> list[dict[str, Any]]:
        """Run a query and follow skip tokens until the last page."""
        rows: list[dict[str, Any]] = []
        skip_token: str | None = None

        while True:
            data, skip_token = await self._execute_query(query, skip_token)
            rows.extend(data)

            if len(rows) > MAX_PROVIDER_RESULTS:
                raise ProviderError(
                    f"Provider returned more than {MAX_PROVIDER_RESULTS} security groups"
                )
            if not skip_token:
                return rows

    async def _execute_query(
        self, query: str, skip_token: str | None
    ) -> tuple[list[dict[str, Any]], str | None]:
        """Execute one page of a Resource Graph query.

        Returns:
            The page rows and the skip token of the next page, if any.
        """
        request = QueryRequest(
            subscriptions=[self._config.subscription_id],
            query=query,
            options=QueryRequestOptions(
                result_format=ResultFormat.OBJECT_ARRAY,
                top=PAGE_SIZE,
                skip_token=skip_token,
            ),
        )

        try:
            # Resource Graph client is synchronous, wrap in executor
            loop = asyncio.get_running_loop()
            response = await asyncio.wait_for(
                loop.run_in_executor(None, lambda: self._client.resources(request)),
                timeout=self._config.provider_query_timeout_seconds,
            )
        except TimeoutError as e:
            logger.error(
                "Resource Graph query timed out",
                extra={
                    "scope_key": self._config.scope_key,
                    "timeout_seconds": self._config.provider_query_timeout_seconds,
                },
            )
            raise ProviderError("Resource Graph query timed out") from e
        except AzureError as e:
            logger.error(
                "Resource Graph query failed",
                extra={"scope_key": self._config.scope_key, "error": str(e)},
            )
            raise ProviderError(f"Resource Graph query failed: {e}") from e

        data = response.data if isinstance(response.data, list) else []
        next_token = response.skip_token if isinstance(response.skip_token, str) else None
        return data, next_token
