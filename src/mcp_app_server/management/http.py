"""HTTP management client.

Sends operations as JSON to the server's HTTP management endpoint
(``http://host:9990/management``), authenticating with HTTP Digest.
"""
import logging
from typing import Any, Optional

import httpx

from .base import ManagementClient, ServerConfig, ServerStatus
from ..config_engine.errors import ManagementError, TransportError
from ..config_engine.interpreter import ResultInterpreter
from ..config_engine.operations import (
    build_read_attribute_operation,
    build_read_resource_operation,
)
from ..config_engine.schema import OUTCOME, RESULT, SUCCESS, Address, Operation
from ..utils.connection import with_retry
from ..utils.logging_config import timed

logger = logging.getLogger(__name__)

LAUNCH_TYPE = "launch-type"


class HttpManagementClient(ManagementClient):
    """Management client for the HTTP/JSON management API."""

    def __init__(
        self,
        server_id: str,
        config: ServerConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        super().__init__(server_id, config)
        self._http: Optional[httpx.AsyncClient] = None
        self._transport = transport
        self.launch_type: Optional[str] = None

    @timed("connect")
    async def connect(self) -> bool:
        """
        Open the HTTP client and probe the endpoint.

        The probe (``read-attribute launch-type``) is retried with backoff;
        an authentication failure is not.

        Raises:
            TransportError: If the endpoint stays unreachable
        """
        logger.info(f"Connecting to {self.server_id} at {self.config.url}")

        if self._http is None:
            auth = None
            if self.config.username:
                auth = httpx.DigestAuth(self.config.username, self.config.get_password())
            self._http = httpx.AsyncClient(
                auth=auth,
                timeout=httpx.Timeout(self.config.timeout),
                verify=self.config.verify_ssl,
                transport=self._transport,
            )

        probe = with_retry(
            max_attempts=max(1, self.config.retries),
            min_wait=self.config.retry_delay,
            max_wait=max(self.config.retry_delay, 10),
            exceptions=(httpx.TransportError,),
        )(self._post)

        op = build_read_attribute_operation(Address(), LAUNCH_TYPE)
        try:
            raw = await probe(op.to_dmr())
        except httpx.TransportError as e:
            await self._close_http()
            raise TransportError(
                f"Cannot reach management endpoint {self.config.url}: {e}",
                self.server_id,
            ) from e
        except TransportError:
            await self._close_http()
            raise

        if raw.get(OUTCOME) == SUCCESS:
            self.launch_type = raw.get(RESULT)
        self._connected = True
        logger.info(f"Connected to {self.server_id} (launch-type: {self.launch_type})")
        return True

    async def disconnect(self) -> None:
        """Close the HTTP client."""
        await self._close_http()
        self._connected = False
        logger.info(f"Disconnected from {self.server_id}")

    async def _close_http(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    async def check_health(self) -> ServerStatus:
        """Read the root resource's identity attributes."""
        try:
            if not self._connected:
                await self.connect()
            op = build_read_resource_operation(Address())
            op.params["attributes-only"] = True
            op.params["include-runtime"] = True
            result = ResultInterpreter().check(await self.execute(op), op)
        except ManagementError as e:
            return ServerStatus(reachable=False, error=str(e))

        attrs = result.value or {}
        return ServerStatus(
            reachable=True,
            launch_type=attrs.get(LAUNCH_TYPE, self.launch_type),
            product_name=attrs.get("product-name"),
            product_version=attrs.get("product-version"),
            release_version=attrs.get("release-version"),
            server_state=attrs.get("server-state"),
        )

    async def execute(self, operation: Operation) -> dict[str, Any]:
        """
        Send one operation.

        A dropped connection is re-established here, before sending. The
        send itself is never retried: the server may already have applied it.

        Raises:
            TransportError: On connection failure, timeout or a non-JSON reply
        """
        if not self._connected:
            await self.connect()

        logger.debug(f"[{self.server_id}] >>> {operation}")
        try:
            raw = await self._post(operation.to_dmr())
        except httpx.TimeoutException as e:
            self._connected = False
            raise TransportError(
                f"Timed out after {self.config.timeout}s waiting for {self.config.url}",
                self.server_id,
            ) from e
        except httpx.TransportError as e:
            self._connected = False
            raise TransportError(
                f"Connection to {self.config.url} failed: {e}",
                self.server_id,
            ) from e

        logger.debug(f"[{self.server_id}] <<< {raw.get(OUTCOME)}")
        return raw

    async def _post(self, payload: dict[str, Any]) -> dict[str, Any]:
        """POST a JSON operation and decode the JSON reply."""
        if self._http is None:
            raise TransportError(f"Not connected to {self.server_id}", self.server_id)

        resp = await self._http.post(
            self.config.url,
            json=payload,
            headers={"Accept": "application/json"},
        )

        if resp.status_code == 401:
            raise TransportError(
                f"Authentication failed for {self.config.username or 'anonymous'} "
                f"at {self.config.url}",
                self.server_id,
            )

        # Failed operations come back as HTTP 500 with a JSON result
        try:
            raw = resp.json()
        except ValueError:
            raise TransportError(
                f"Unexpected reply from {self.config.url} "
                f"(HTTP {resp.status_code}): {resp.text[:200]}",
                self.server_id,
            )

        if not isinstance(raw, dict) or OUTCOME not in raw:
            raise TransportError(
                f"Unexpected reply from {self.config.url} (HTTP {resp.status_code}): {raw!r}",
                self.server_id,
            )
        return raw
