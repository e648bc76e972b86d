"""Azure mocks for provider tests.

Usage:
    from azure_mock import MockNetworkSecurityGroup, create_mock_graph_client

    client = create_mock_graph_client()
    client.add_security_group(MockNetworkSecurityGroup(name="nsg-web"))

    with patch("secgroups.provider.ResourceGraphClient", return_value=client):
        provider = AzureSecurityGroupProvider(create_mock_credential(), config)
        groups = await provider.list_security_groups()
"""

from .credential import MockManagedIdentityCredential, create_mock_credential
from .graph import MockNetworkSecurityGroup, MockResourceGraphClient, create_mock_graph_client

__all__ = [
    "MockManagedIdentityCredential",
    "MockNetworkSecurityGroup",
    "MockResourceGraphClient",
    "create_mock_credential",
    "create_mock_graph_client",
]
