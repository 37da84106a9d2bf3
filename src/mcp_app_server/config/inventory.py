"""Server inventory loaded from YAML configuration.

Example ``servers.yaml``:

```yaml
defaults:
  type: http
  port: 9990
  username: admin
  password_env: WILDFLY_PASSWORD

servers:
  local:
    name: Local standalone
    host: 127.0.0.1
  domain-dc:
    name: Domain controller
    host: dc.example.com
    protocol: https
```
"""
import logging
import os
from pathlib import Path
from typing import Optional

import yaml

from ..management import create_client, ManagementClient

logger = logging.getLogger(__name__)

CONFIG_ENV = "MGMTCRAFT_SERVERS"


class ServerInventory:
    """Manages the server inventory loaded from YAML config.

    Clients are created fresh on every request: a client belongs to one
    goal invocation and is never shared between goals.
    """

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = config_path or self._find_config()
        self._config: dict = {}
        self._load_config()

    def _find_config(self) -> str:
        """Find the servers.yaml config file."""
        env_path = os.environ.get(CONFIG_ENV)
        if env_path:
            return env_path

        search_paths = [
            Path.cwd() / "configs" / "servers.yaml",
            Path.cwd() / "servers.yaml",
            Path.home() / ".config" / "mgmtcraft" / "servers.yaml",
            Path("/etc/mgmtcraft/servers.yaml"),
        ]

        for path in search_paths:
            if path.exists():
                return str(path)

        raise FileNotFoundError(
            f"Could not find servers.yaml. Create one in ./configs/servers.yaml "
            f"or point {CONFIG_ENV} at it"
        )

    def _load_config(self) -> None:
        """Load the YAML configuration and merge defaults into each server."""
        with open(self.config_path, encoding="utf-8") as f:
            self._config = yaml.safe_load(f) or {}

        defaults = self._config.get("defaults", {}) or {}
        servers = self._config.get("servers", {}) or {}
        for server_id, server_config in servers.items():
            for key, value in defaults.items():
                server_config.setdefault(key, value)
            server_config.setdefault("name", server_id)
        self._config["servers"] = servers
        logger.debug(f"Loaded {len(servers)} servers from {self.config_path}")

    def get_server_ids(self) -> list[str]:
        """Get all server IDs."""
        return list(self._config["servers"].keys())

    def get_server_config(self, server_id: str) -> dict:
        """Get raw config for a server."""
        servers = self._config["servers"]
        if server_id not in servers:
            raise KeyError(f"Unknown server: {server_id}")
        return servers[server_id]

    def get_client(self, server_id: str) -> ManagementClient:
        """Create a new, unconnected client for a server."""
        return create_client(server_id, dict(self.get_server_config(server_id)))

    def get_servers_by_type(self, server_type: str) -> list[str]:
        """Get server IDs filtered by type."""
        return [
            server_id
            for server_id, config in self._config["servers"].items()
            if config.get("type") == server_type
        ]

    def default_server_id(self) -> str:
        """The only configured server, or the one named ``default``."""
        server_ids = self.get_server_ids()
        if len(server_ids) == 1:
            return server_ids[0]
        if "default" in server_ids:
            return "default"
        raise KeyError(
            f"No server given and {len(server_ids)} servers configured: "
            f"{', '.join(server_ids) or 'none'}"
        )
