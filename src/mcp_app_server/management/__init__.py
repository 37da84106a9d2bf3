"""Management clients for different endpoint types."""
from .base import ManagementClient, ServerConfig, ServerStatus
from .http import HttpManagementClient

__all__ = [
    "ManagementClient",
    "ServerConfig",
    "ServerStatus",
    "HttpManagementClient",
]

# Client type registry
CLIENT_TYPES = {
    "http": HttpManagementClient,
    "wildfly": HttpManagementClient,
}


def create_client(server_id: str, config: dict) -> ManagementClient:
    """Factory function to create client instances."""
    client_type = config.get("type", "").lower()
    if client_type not in CLIENT_TYPES:
        raise ValueError(f"Unknown server type: {client_type}")

    client_class = CLIENT_TYPES[client_type]
    return client_class(server_id, ServerConfig(**config))
