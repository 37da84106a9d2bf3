"""Shared fixtures: an in-memory management controller.

The fake controller keeps a resource tree keyed by address and answers JSON
operations the way the real endpoint does, including composite rollback.
"""
import copy
import logging
from typing import Any, Optional

import pytest

from mcp_app_server.config_engine.errors import TransportError
from mcp_app_server.config_engine.schema import Address, Operation
from mcp_app_server.management.base import (
    ManagementClient,
    ServerConfig,
    ServerStatus,
)
from mcp_app_server.utils.logging_config import PACKAGE_LOGGER, perf_logger


def fmt_address(address: Address) -> str:
    """Address the way the server prints it in messages."""
    return "[" + ",".join(f'("{t}" => "{n}")' for t, n in address) + "]"


def success(result: Any = None) -> dict:
    raw = {"outcome": "success"}
    if result is not None:
        raw["result"] = result
    return raw


def failed(description: Any, **extra: Any) -> dict:
    return {"outcome": "failed", "failure-description": description, **extra}


class FakeController:
    """In-memory management model answering JSON operations."""

    def __init__(self, launch_type: str = "STANDALONE"):
        self.launch_type = launch_type
        self.resources: dict[Address, dict[str, Any]] = {Address(): {}}
        self.received: list[dict] = []
        # (operation name, address) -> failure description to report
        self.failures: dict[tuple[str, Address], str] = {}

    # === Test helpers ===

    def add(self, address: Address | str, **attributes: Any) -> None:
        if isinstance(address, str):
            address = Address.parse(address)
        self.resources[address] = dict(attributes)

    def exists(self, address: Address | str) -> bool:
        if isinstance(address, str):
            address = Address.parse(address)
        return address in self.resources

    def attributes(self, address: Address | str) -> dict[str, Any]:
        if isinstance(address, str):
            address = Address.parse(address)
        return self.resources[address]

    def fail(self, name: str, address: Address | str, description: str) -> None:
        if isinstance(address, str):
            address = Address.parse(address)
        self.failures[(name, address)] = description

    def sent_operations(self) -> list[str]:
        """Names of the top-level operations received, in order."""
        return [op["operation"] for op in self.received]

    def writes(self) -> list[dict]:
        """Received operations other than reads."""
        return [op for op in self.received if not op["operation"].startswith("read-")]

    # === Dispatch ===

    def handle(self, op: dict) -> dict:
        self.received.append(copy.deepcopy(op))
        return self._dispatch(op)

    def _dispatch(self, op: dict) -> dict:
        name = op["operation"]
        address = Address.from_dmr(op.get("address"))

        injected = self.failures.get((name, address))
        if injected is not None:
            return failed(injected)

        handler = {
            "add": self._add,
            "remove": self._remove,
            "read-attribute": self._read_attribute,
            "read-resource": self._read_resource,
            "write-attribute": self._write_attribute,
            "undefine-attribute": self._undefine_attribute,
            "enable": self._enable,
            "composite": self._composite,
        }.get(name)
        if handler is None:
            return failed(
                f"WFLYCTL0031: No operation named '{name}' exists at address {fmt_address(address)}"
            )
        return handler(address, op)

    def _not_found(self, address: Address) -> dict:
        return failed(f"WFLYCTL0216: Management resource '{fmt_address(address)}' not found")

    def _params(self, op: dict) -> dict:
        return {
            k: v for k, v in op.items()
            if k not in ("operation", "address", "operation-headers")
        }

    def _children(self, address: Address) -> list[Address]:
        depth = len(address.segments)
        return [
            a for a in self.resources
            if len(a.segments) > depth and a.segments[:depth] == address.segments
        ]

    def _add(self, address: Address, op: dict) -> dict:
        if address in self.resources:
            return failed(f"WFLYCTL0212: Duplicate resource {fmt_address(address)}")
        if address.parent not in self.resources:
            return failed(
                f"WFLYCTL0175: Resource {fmt_address(address.parent)} does not exist; "
                f"a resource at address {fmt_address(address)} cannot be created "
                "until all ancestor resources have been added"
            )
        self.resources[address] = self._params(op)
        return success()

    def _remove(self, address: Address, op: dict) -> dict:
        if address not in self.resources or address.is_root:
            return self._not_found(address)
        children = self._children(address)
        if children and not op.get("recursive"):
            return failed(
                f"WFLYCTL0367: Cannot remove resource {fmt_address(address)} "
                "because it has child resources"
            )
        for child in children:
            del self.resources[child]
        del self.resources[address]
        return success()

    def _read_attribute(self, address: Address, op: dict) -> dict:
        if address not in self.resources:
            return self._not_found(address)
        name = op.get("name")
        if address.is_root and name == "launch-type":
            return success(self.launch_type)
        attrs = self.resources[address]
        if name not in attrs:
            return failed(f"WFLYCTL0201: Unknown attribute '{name}'")
        return success(attrs[name])

    def _read_resource(self, address: Address, op: dict) -> dict:
        if address not in self.resources:
            return self._not_found(address)
        return success(self._describe(address, bool(op.get("recursive"))))

    def _describe(self, address: Address, recursive: bool) -> dict:
        node = dict(self.resources[address])
        depth = len(address.segments)
        for child in self._children(address):
            if len(child.segments) != depth + 1:
                continue
            child_type, child_name = child.last
            node.setdefault(child_type, {})[child_name] = (
                self._describe(child, True) if recursive else None
            )
        return node

    def _write_attribute(self, address: Address, op: dict) -> dict:
        if address not in self.resources:
            return self._not_found(address)
        self.resources[address][op["name"]] = op.get("value")
        return success()

    def _undefine_attribute(self, address: Address, op: dict) -> dict:
        if address not in self.resources:
            return self._not_found(address)
        self.resources[address].pop(op["name"], None)
        return success()

    def _enable(self, address: Address, op: dict) -> dict:
        if address not in self.resources:
            return self._not_found(address)
        self.resources[address]["enabled"] = True
        return success()

    def _composite(self, address: Address, op: dict) -> dict:
        snapshot = copy.deepcopy(self.resources)
        results: dict[str, dict] = {}

        for number, step in enumerate(op.get("steps", []), start=1):
            step_id = f"step-{number}"
            step_result = self._dispatch(step)
            if step_result["outcome"] != "success":
                self.resources = snapshot
                for done in results.values():
                    done["outcome"] = "failed"
                    done["rolled-back"] = True
                results[step_id] = {**step_result, "rolled-back": True}
                return failed(
                    {
                        "WFLYCTL0062: Composite operation failed and was rolled back. "
                        "Steps that failed:": {
                            f"Operation {step_id}": step_result["failure-description"]
                        }
                    },
                    result=results,
                    **{"rolled-back": True},
                )
            results[step_id] = step_result

        return success(results)


class FakeManagementClient(ManagementClient):
    """Management client sending JSON operations to a FakeController."""

    def __init__(
        self,
        controller: FakeController,
        server_id: str = "local",
        config: Optional[ServerConfig] = None
    ):
        super().__init__(
            server_id,
            config or ServerConfig(type="fake", name=server_id, host="fake.local"),
        )
        self.controller = controller
        self.unreachable = False
        self.connect_count = 0

    async def connect(self) -> bool:
        if self.unreachable:
            raise TransportError(f"Cannot reach {self.server_id}", self.server_id)
        self.connect_count += 1
        self._connected = True
        return True

    async def disconnect(self) -> None:
        self._connected = False

    async def check_health(self) -> ServerStatus:
        return ServerStatus(reachable=not self.unreachable, launch_type=self.controller.launch_type)

    async def execute(self, operation: Operation) -> dict[str, Any]:
        if self.unreachable:
            raise TransportError(f"Connection to {self.server_id} refused", self.server_id)
        return self.controller.handle(operation.to_dmr())


class FakeInventory:
    """Inventory handing out fresh fake clients bound to one controller."""

    def __init__(self, controller: FakeController, server_ids: tuple[str, ...] = ("local",)):
        self.controller = controller
        self.server_ids = list(server_ids)
        self.clients: list[FakeManagementClient] = []
        self.unreachable = False

    def get_server_ids(self) -> list[str]:
        return list(self.server_ids)

    def get_server_config(self, server_id: str) -> dict:
        if server_id not in self.server_ids:
            raise KeyError(f"Unknown server: {server_id}")
        return {"type": "fake", "name": server_id, "host": "fake.local", "port": 9990}

    def default_server_id(self) -> str:
        if len(self.server_ids) == 1:
            return self.server_ids[0]
        raise KeyError("No server given")

    def get_client(self, server_id: str) -> FakeManagementClient:
        self.get_server_config(server_id)
        client = FakeManagementClient(self.controller, server_id)
        client.unreachable = self.unreachable
        self.clients.append(client)
        return client


@pytest.fixture
def controller() -> FakeController:
    return FakeController()


@pytest.fixture
def client(controller: FakeController) -> FakeManagementClient:
    return FakeManagementClient(controller)


@pytest.fixture
def fake_inventory(controller: FakeController) -> FakeInventory:
    return FakeInventory(controller)


@pytest.fixture(autouse=True)
def reset_logging():
    """Drop handlers installed by setup_logging during a test."""
    yield
    for name in (PACKAGE_LOGGER, perf_logger.name):
        target = logging.getLogger(name)
        for handler in list(target.handlers):
            target.removeHandler(handler)
            handler.close()
