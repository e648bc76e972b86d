"""Tests for the Resource Graph provider view."""

from __future__ import annotations

from unittest.mock import patch

import pytest
from azure.core.exceptions import HttpResponseError
from azure_mock import (
    MockNetworkSecurityGroup,
    MockResourceGraphClient,
    create_mock_credential,
    create_mock_graph_client,
)

from secgroups.config import MAX_PROVIDER_RESULTS, Config
from secgroups.errors import ProviderError
from secgroups.provider import AzureSecurityGroupProvider

SUBSCRIPTION_ID = "00000000-0000-0000-0000-000000000000"


@pytest.fixture
def mock_graph_client() -> MockResourceGraphClient:
    """Create mock Resource Graph client."""
    return create_mock_graph_client()


def make_provider(config: Config, client: MockResourceGraphClient) -> AzureSecurityGroupProvider:
    with patch("secgroups.provider.ResourceGraphClient", return_value=client):
        return AzureSecurityGroupProvider(create_mock_credential(), config)


class TestListSecurityGroups:
    """Tests for AzureSecurityGroupProvider.list_security_groups."""

    @pytest.mark.asyncio
    async def test_empty_subscription(
        self, test_config: Config, mock_graph_client: MockResourceGraphClient
    ) -> None:
        """Test that no security groups give an empty list."""
        provider = make_provider(test_config, mock_graph_client)

        assert await provider.list_security_groups() == []
        assert mock_graph_client.query_count == 1

    @pytest.mark.asyncio
    async def test_maps_rows(
        self, test_config: Config, mock_graph_client: MockResourceGraphClient
    ) -> None:
        """Test that rows become remote records keyed by resource id."""
        nsg = MockNetworkSecurityGroup(name="nsg-web", tags={"description": "web tier"})
        mock_graph_client.add_security_group(nsg)
        mock_graph_client.add_security_group(MockNetworkSecurityGroup(name="nsg-db"))
        provider = make_provider(test_config, mock_graph_client)

        groups = await provider.list_security_groups()

        assert [g.name for g in groups] == ["nsg-web", "nsg-db"]
        assert groups[0].global_id == nsg.resource_id
        assert groups[0].description == "web tier"
        assert groups[1].description == ""

    @pytest.mark.asyncio
    async def test_follows_skip_tokens(self, test_config: Config) -> None:
        """Test that every page is fetched before returning."""
        client = create_mock_graph_client(page_size=2)
        for i in range(5):
            client.add_security_group(MockNetworkSecurityGroup(name=f"nsg-{i}"))
        provider = make_provider(test_config, client)

        groups = await provider.list_security_groups()

        assert len(groups) == 5
        assert client.query_count == 3
        assert client.requests[1].options.skip_token == "2"

    @pytest.mark.asyncio
    async def test_too_many_results(self, test_config: Config) -> None:
        """Test that an unbounded result set is refused."""
        client = create_mock_graph_client(page_size=500)
        for i in range(MAX_PROVIDER_RESULTS + 1):
            client.add_security_group(MockNetworkSecurityGroup(name=f"nsg-{i}"))
        provider = make_provider(test_config, client)

        with pytest.raises(ProviderError) as exc_info:
            await provider.list_security_groups()

        assert "more than" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_query_failure(
        self, test_config: Config, mock_graph_client: MockResourceGraphClient
    ) -> None:
        """Test that SDK errors become ProviderError."""
        mock_graph_client.set_error(HttpResponseError(message="throttled"))
        provider = make_provider(test_config, mock_graph_client)

        with pytest.raises(ProviderError) as exc_info:
            await provider.list_security_groups()

        assert "throttled" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_malformed_row(
        self, test_config: Config, mock_graph_client: MockResourceGraphClient
    ) -> None:
        """Test that a row without id fails the listing."""
        mock_graph_client.add_raw_row({"name": "orphan", "tags": None})
        provider = make_provider(test_config, mock_graph_client)

        with pytest.raises(ProviderError) as exc_info:
            await provider.list_security_groups()

        assert "Malformed" in str(exc_info.value)


class TestQuery:
    """Tests for the generated Resource Graph query."""

    @pytest.mark.asyncio
    async def test_subscription_filter(
        self, test_config: Config, mock_graph_client: MockResourceGraphClient
    ) -> None:
        """Test that the query targets network security groups in the subscription."""
        provider = make_provider(test_config, mock_graph_client)

        await provider.list_security_groups()

        request = mock_graph_client.requests[0]
        assert request.subscriptions == [SUBSCRIPTION_ID]
        assert "microsoft.network/networksecuritygroups" in request.query
        assert f"subscriptionId == '{SUBSCRIPTION_ID}'" in request.query
        assert "resourceGroup" not in request.query

    @pytest.mark.asyncio
    async def test_resource_group_filter(self, mock_graph_client: MockResourceGraphClient) -> None:
        """Test that a configured resource group narrows the query."""
        config = Config(
            project_id="project-a",
            subscription_id=SUBSCRIPTION_ID,
            resource_group_name="rg-network",
        )
        provider = make_provider(config, mock_graph_client)

        await provider.list_security_groups()

        assert "resourceGroup =~ 'rg-network'" in mock_graph_client.requests[0].query
