"""Builders for management addresses and operations.

Pure construction helpers, no communication with the server.
"""
from typing import Any, Iterable, Mapping, Optional

import yaml

from .errors import ConfigurationError
from .schema import (
    ADD,
    COMPOSITE,
    ENABLE,
    READ_ATTRIBUTE,
    READ_RESOURCE,
    REMOVE,
    ROLLBACK_ON_RUNTIME_FAILURE,
    STEPS,
    UNDEFINE_ATTRIBUTE,
    WRITE_ATTRIBUTE,
    Address,
    Operation,
)

# Attribute values starting with this prefix hold a structured value
STRUCTURED_VALUE_PREFIX = "!!"


def build_address(
    resource_type: str,
    resource_name: str,
    parent: Optional[Address] = None
) -> Address:
    """
    Build an address one segment below ``parent``.

    Raises:
        ConfigurationError: If the type or name is empty
    """
    if not resource_type or not str(resource_type).strip():
        raise ConfigurationError("Resource type must not be empty")
    if not resource_name or not str(resource_name).strip():
        raise ConfigurationError("Resource name must not be empty")
    return (parent or Address()).append(resource_type, resource_name)


def build_operation(
    name: str,
    address: Optional[Address] = None,
    params: Optional[Mapping[str, Any]] = None
) -> Operation:
    """Build a generic operation, on the root address unless one is given."""
    if not name:
        raise ConfigurationError("Operation name must not be empty")
    return Operation(
        name=name,
        address=address if address is not None else Address(),
        params=dict(params or {}),
    )


def build_read_attribute_operation(address: Address, attribute_name: str) -> Operation:
    return build_operation(READ_ATTRIBUTE, address, {"name": attribute_name})


def build_read_resource_operation(address: Address, recursive: bool = False) -> Operation:
    return build_operation(READ_RESOURCE, address, {"recursive": recursive})


def build_write_attribute_operation(address: Address, attribute_name: str, value: Any) -> Operation:
    return build_operation(WRITE_ATTRIBUTE, address, {"name": attribute_name, "value": value})


def build_undefine_attribute_operation(address: Address, attribute_name: str) -> Operation:
    return build_operation(UNDEFINE_ATTRIBUTE, address, {"name": attribute_name})


def build_remove_operation(address: Address, recursive: bool = False) -> Operation:
    params = {"recursive": True} if recursive else {}
    return build_operation(REMOVE, address, params)


def build_enable_operation(address: Address) -> Operation:
    return build_operation(ENABLE, address)


def build_add_operation(address: Address, attributes: Optional[Mapping[str, Any]] = None) -> Operation:
    """
    Build an add operation with the attributes as parameters.

    Keys containing commas address nested parameters::

        {"credential-reference,clear-text": "secret"}
        -> {"credential-reference": {"clear-text": "secret"}}

    String values starting with ``!!`` are parsed as structured values.
    """
    if address.is_root:
        raise ConfigurationError("You must specify the address to add the resource to")

    params: dict[str, Any] = {}
    for key, value in (attributes or {}).items():
        path = [p.strip() for p in str(key).split(",")]
        if not all(path):
            raise ConfigurationError(f"Invalid property {key!r}")

        node = params
        for part in path[:-1]:
            child = node.setdefault(part, {})
            if not isinstance(child, dict):
                raise ConfigurationError(
                    f"Property {key!r} conflicts with the value already set for {part!r}"
                )
            node = child
        node[path[-1]] = parse_attribute_value(value)

    return build_operation(ADD, address, params)


def build_composite_operation(
    steps: Iterable[Operation],
    rollback_on_runtime_failure: bool = True
) -> Operation:
    """
    Build a composite operation applied atomically by the server.

    The composite is bound to the root address; every step keeps its own
    absolute address.
    """
    step_list = list(steps)
    for index, step in enumerate(step_list):
        if not isinstance(step, Operation):
            raise ConfigurationError(f"Composite step {index} is not an operation: {step!r}")

    op = build_operation(COMPOSITE, Address(), {STEPS: step_list})
    if rollback_on_runtime_failure:
        op.headers[ROLLBACK_ON_RUNTIME_FAILURE] = True
    return op


def parse_attribute_value(value: Any) -> Any:
    """Decode ``!!`` structured values, pass everything else through."""
    if value is None:
        return ""
    if isinstance(value, str) and value.startswith(STRUCTURED_VALUE_PREFIX):
        try:
            return yaml.safe_load(value[len(STRUCTURED_VALUE_PREFIX):])
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid structured value {value!r}: {e}")
    return value
