"""Diff engine comparing resource specs with the server's current state.

Only resources with an existence policy other than ``add`` are read; a plain
add leaves duplicate detection to the server.
"""
import logging
import re
from typing import TYPE_CHECKING, Any, Optional

from .errors import OperationFailedError
from .interpreter import ResultInterpreter, format_value
from .operations import build_read_resource_operation
from .schema import (
    FAILURE_DESCRIPTION,
    Address,
    ResourceState,
)

if TYPE_CHECKING:
    from ..management.base import ManagementClient

logger = logging.getLogger(__name__)

# Failure descriptions reporting a missing resource
NOT_FOUND_PATTERN = re.compile(
    r"WFLYCTL0216|JBAS014807|not found|no such resource",
    re.IGNORECASE,
)


def is_not_found(raw: dict[str, Any]) -> bool:
    """Check whether a failed read reports a missing resource."""
    description = raw.get(FAILURE_DESCRIPTION)
    if description is None:
        return False
    return bool(NOT_FOUND_PATTERN.search(str(description)))


class DiffEngine:
    """Read current state and compare it with desired attributes."""

    def __init__(self, interpreter: Optional[ResultInterpreter] = None):
        self.interpreter = interpreter or ResultInterpreter()

    async def calculate(
        self,
        client: "ManagementClient",
        address: Address,
        recursive: bool = False
    ) -> ResourceState:
        """
        Read the resource at an address.

        Args:
            client: Connected management client
            address: Absolute address of the resource
            recursive: Also read the child resources

        Returns:
            ResourceState; ``exists`` is False when the server reports the
            resource as not found

        Raises:
            OperationFailedError: If the read fails for another reason
        """
        op = build_read_resource_operation(address, recursive=recursive)
        raw = await client.execute(op)
        result = self.interpreter.interpret(raw, op)

        if result.success:
            current = result.value if isinstance(result.value, dict) else {}
            logger.debug(f"Resource {address} exists")
            return ResourceState(address=address, exists=True, current=current)

        if is_not_found(raw):
            logger.debug(f"Resource {address} not found")
            return ResourceState(address=address, exists=False)

        raise OperationFailedError(result)


def changed_attributes(
    desired: dict[str, Any],
    current: dict[str, Any]
) -> dict[str, Any]:
    """
    Attributes whose desired value differs from the current one.

    Returns:
        Dict of attribute name to desired value, in declaration order
    """
    return {
        name: value
        for name, value in desired.items()
        if not same_value(current.get(name), value)
    }


def same_value(current: Any, desired: Any) -> bool:
    """
    Compare a server value with a desired one.

    The server reports typed values while configs often carry strings, so
    scalars are compared by their rendered form. Desired mappings only need
    to match on the keys they declare.
    """
    if current == desired:
        return True
    if current is None:
        return desired == ""
    if isinstance(desired, dict):
        if not isinstance(current, dict):
            return False
        return all(same_value(current.get(k), v) for k, v in desired.items())
    if isinstance(desired, list):
        if not isinstance(current, list) or len(current) != len(desired):
            return False
        return all(same_value(c, d) for c, d in zip(current, desired))
    if isinstance(current, (dict, list)):
        return False
    return format_value(current) == format_value(desired)


def find_child_state(
    current: dict[str, Any],
    relative: Address
) -> Optional[dict[str, Any]]:
    """
    Look up a descendant in a recursive read-resource result.

    Child resources appear as ``{type: {name: {...}}}`` inside their parent.
    Returns None when the descendant does not exist.
    """
    node: Any = current
    for resource_type, resource_name in relative:
        if not isinstance(node, dict):
            return None
        children = node.get(resource_type)
        if not isinstance(children, dict) or resource_name not in children:
            return None
        node = children[resource_name]
        if node is None:
            # Listed but not expanded
            node = {}
    return node if isinstance(node, dict) else None
