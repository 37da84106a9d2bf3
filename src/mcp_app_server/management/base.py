"""Base management client abstraction for application servers."""
import os
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

from ..config_engine.schema import Operation

logger = logging.getLogger(__name__)


@dataclass
class ServerConfig:
    """Configuration for a managed application server."""
    type: str
    name: str
    host: str
    port: int = 9990
    protocol: str = "http"
    username: Optional[str] = None
    password: Optional[str] = None
    password_env: str = "WILDFLY_PASSWORD"
    timeout: int = 60
    retries: int = 3
    retry_delay: float = 2
    verify_ssl: bool = True
    management_path: str = "/management"

    def get_password(self) -> str:
        """Get password from config or environment variable."""
        if self.password:
            return self.password
        return os.environ.get(self.password_env, "")

    @property
    def url(self) -> str:
        return f"{self.protocol}://{self.host}:{self.port}{self.management_path}"


@dataclass
class ServerStatus:
    """Server reachability and identity information."""
    reachable: bool
    launch_type: Optional[str] = None
    product_name: Optional[str] = None
    product_version: Optional[str] = None
    release_version: Optional[str] = None
    server_state: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "reachable": self.reachable,
            "launch_type": self.launch_type,
            "product_name": self.product_name,
            "product_version": self.product_version,
            "release_version": self.release_version,
            "server_state": self.server_state,
            "error": self.error,
        }


class ManagementClient(ABC):
    """Abstract base class for management endpoint clients.

    A client serves one goal invocation at a time: operations are sent one
    after another, never concurrently.
    """

    def __init__(self, server_id: str, config: ServerConfig):
        self.server_id = server_id
        self.config = config
        self._connected = False

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def host(self) -> str:
        return self.config.host

    @property
    def is_connected(self) -> bool:
        return self._connected

    # Connection management

    @abstractmethod
    async def connect(self) -> bool:
        """Establish connection to the management endpoint."""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Close connection to the management endpoint."""
        pass

    @abstractmethod
    async def check_health(self) -> ServerStatus:
        """Check reachability and read server identity."""
        pass

    # Operation execution

    @abstractmethod
    async def execute(self, operation: Operation) -> dict[str, Any]:
        """Send one operation and return the raw result.

        Returns:
            Raw result dict with ``outcome`` and ``result`` or
            ``failure-description``

        Raises:
            TransportError: If the endpoint cannot be reached
        """
        pass

    # Context manager support

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.disconnect()
        return False
