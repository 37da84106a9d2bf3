"""Schema definitions for the Config Engine.

Defines addresses, operations, resource specs and all related dataclasses.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Iterator, Optional

from .errors import ConfigurationError

# Management model keys
OP = "operation"
OP_ADDR = "address"
OP_HEADERS = "operation-headers"
OUTCOME = "outcome"
RESULT = "result"
FAILURE_DESCRIPTION = "failure-description"
ROLLED_BACK = "rolled-back"
STEPS = "steps"
SUCCESS = "success"
ROLLBACK_ON_RUNTIME_FAILURE = "rollback-on-runtime-failure"

# Operation names
ADD = "add"
COMPOSITE = "composite"
ENABLE = "enable"
READ_ATTRIBUTE = "read-attribute"
READ_RESOURCE = "read-resource"
REMOVE = "remove"
UNDEFINE_ATTRIBUTE = "undefine-attribute"
WRITE_ATTRIBUTE = "write-attribute"


class ExecutionPhase(str, Enum):
    """When a resource is added relative to the deployment lifecycle."""
    AT_CONFIGURATION = "configuration"
    AT_EXECUTION = "execution"


class ExistingResourcePolicy(str, Enum):
    """What to do when the resource is already present on the server."""
    ADD = "add"          # Send the add anyway, the server reports duplicates
    SKIP = "skip"        # Leave the existing resource alone
    REPLACE = "replace"  # Remove it recursively, then add
    UPDATE = "update"    # Write attributes that differ


class ChangeType(str, Enum):
    """Type of change planned for a resource."""
    CREATE = "create"
    REPLACE = "replace"
    MODIFY = "modify"
    NO_CHANGE = "no_change"


class ResultShape(str, Enum):
    """Shape a successful result payload is coerced to."""
    RAW = "raw"
    STRING = "string"
    LIST = "list"


@dataclass(frozen=True)
class Address:
    """Ordered (type, name) pairs identifying a node in the resource tree.

    Segments run root to leaf; an empty address is the root resource.
    """
    segments: tuple[tuple[str, str], ...] = ()

    def __post_init__(self):
        # Accept any iterable of pairs, store as tuple of tuples
        normalized = tuple((str(t), str(n)) for t, n in self.segments)
        for resource_type, resource_name in normalized:
            if not resource_type or not resource_name:
                raise ConfigurationError(
                    f"Invalid address segment {resource_type!r}={resource_name!r}: "
                    "type and name must be non-empty"
                )
        object.__setattr__(self, "segments", normalized)

    @classmethod
    def parse(cls, value: str) -> "Address":
        """
        Parse a comma separated address such as
        ``subsystem=datasources,data-source=ExampleDS``.

        A leading ``/`` switches to CLI path form
        (``/subsystem=datasources/data-source=ExampleDS``).
        """
        value = value.strip()
        if not value or value == "/":
            return cls()

        separator = "/" if value.startswith("/") else ","
        segments = []
        for part in value.strip("/").split(separator):
            resource_type, sep, resource_name = part.strip().partition("=")
            if not sep or not resource_type or not resource_name:
                raise ConfigurationError(f"{part!r} is not a valid address segment")
            segments.append((resource_type.strip(), resource_name.strip()))
        return cls(tuple(segments))

    @classmethod
    def from_dmr(cls, value: Any) -> "Address":
        """Build from the JSON form ``[{"type": "name"}, ...]``."""
        if not value:
            return cls()
        segments = []
        for part in value:
            if isinstance(part, dict):
                segments.extend(part.items())
            elif isinstance(part, (list, tuple)) and len(part) == 2:
                segments.append((part[0], part[1]))
            else:
                raise ConfigurationError(f"Invalid address element: {part!r}")
        return cls(tuple(segments))

    def append(self, resource_type: str, resource_name: str) -> "Address":
        return Address(self.segments + ((resource_type, resource_name),))

    def __add__(self, other: "Address") -> "Address":
        return Address(self.segments + other.segments)

    def __iter__(self) -> Iterator[tuple[str, str]]:
        return iter(self.segments)

    @property
    def is_root(self) -> bool:
        return not self.segments

    @property
    def parent(self) -> "Address":
        if self.is_root:
            raise ConfigurationError("The root address has no parent")
        return Address(self.segments[:-1])

    @property
    def last(self) -> tuple[str, str]:
        if self.is_root:
            raise ConfigurationError("The root address is empty")
        return self.segments[-1]

    def to_dmr(self) -> list[dict[str, str]]:
        return [{t: n} for t, n in self.segments]

    def __str__(self) -> str:
        if self.is_root:
            return "/"
        return "".join(f"/{t}={n}" for t, n in self.segments)


@dataclass
class Operation:
    """A named action bound to an address, with parameters.

    Composite operations keep their ordered child operations in
    ``params["steps"]``; each step carries its own absolute address.
    """
    name: str
    address: Address = field(default_factory=Address)
    params: dict[str, Any] = field(default_factory=dict)
    headers: dict[str, Any] = field(default_factory=dict)

    @property
    def is_composite(self) -> bool:
        return self.name == COMPOSITE

    @property
    def steps(self) -> list["Operation"]:
        return list(self.params.get(STEPS, []))

    def to_dmr(self) -> dict[str, Any]:
        """Convert to the JSON form accepted by the management endpoint."""
        op: dict[str, Any] = {OP: self.name, OP_ADDR: self.address.to_dmr()}
        for key, value in self.params.items():
            op[key] = _to_dmr_value(value)
        if self.headers:
            op[OP_HEADERS] = _to_dmr_value(self.headers)
        return op

    @classmethod
    def from_dmr(cls, data: dict[str, Any]) -> "Operation":
        """Build from the JSON form (inverse of ``to_dmr``)."""
        if OP not in data:
            raise ConfigurationError(f"Missing '{OP}' in operation: {data!r}")
        params = {
            k: v for k, v in data.items()
            if k not in (OP, OP_ADDR, OP_HEADERS)
        }
        if data[OP] == COMPOSITE:
            params[STEPS] = [cls.from_dmr(step) for step in data.get(STEPS, [])]
        return cls(
            name=data[OP],
            address=Address.from_dmr(data.get(OP_ADDR)),
            params=params,
            headers=dict(data.get(OP_HEADERS, {})),
        )

    def __str__(self) -> str:
        if self.is_composite:
            return f"composite({len(self.steps)} steps)"
        args = ",".join(
            f"{k}={v}" for k, v in self.params.items()
        )
        return f"{self.address}:{self.name}({args})" if args else f"{self.address}:{self.name}"


def _to_dmr_value(value: Any) -> Any:
    if isinstance(value, Operation):
        return value.to_dmr()
    if isinstance(value, dict):
        return {k: _to_dmr_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_dmr_value(v) for v in value]
    return value


@dataclass
class ResourceSpec:
    """Declarative description of a management resource and its children.

    The address is relative to the parent spec (or to the goal's address).
    """
    address: Address
    attributes: dict[str, Any] = field(default_factory=dict)
    phase: ExecutionPhase = ExecutionPhase.AT_CONFIGURATION
    children: list["ResourceSpec"] = field(default_factory=list)
    if_exists: ExistingResourcePolicy = ExistingResourcePolicy.ADD
    enable: bool = False

    def descendants(self) -> Iterator["ResourceSpec"]:
        """All nested specs, depth first, in declaration order."""
        for child in self.children:
            yield child
            yield from child.descendants()


@dataclass
class Command:
    """A single CLI instruction, or an already structured operation."""
    text: Optional[str] = None
    operation: Optional[Operation] = None
    source: str = "inline"
    line: Optional[int] = None

    def describe(self) -> str:
        location = f"{self.source}:{self.line}" if self.line else self.source
        body = self.text if self.text is not None else str(self.operation)
        return f"[{location}] {body}"


# --- Execution Results ---

@dataclass
class ExecutionResult:
    """Outcome of sending one operation (or one command sequence)."""
    success: bool
    value: Any = None
    failure_description: Optional[str] = None
    failed_step: Optional[int] = None
    failed_step_id: Optional[str] = None
    rolled_back: bool = False
    operation: Optional[Operation] = None
    raw: Optional[dict[str, Any]] = None

    @classmethod
    def ok(cls, value: Any = None, **kwargs: Any) -> "ExecutionResult":
        return cls(success=True, value=value, **kwargs)

    @classmethod
    def failed(cls, description: str, **kwargs: Any) -> "ExecutionResult":
        return cls(success=False, failure_description=description, **kwargs)


# --- Current State ---

@dataclass
class ResourceState:
    """A resource as read from the server before planning."""
    address: Address
    exists: bool
    current: dict[str, Any] = field(default_factory=dict)


# --- Operation Plan ---

@dataclass
class OperationPlan:
    """Operations needed to realize one resource spec."""
    address: Address
    change_type: ChangeType
    pre_operations: list[Operation] = field(default_factory=list)
    steps: list[Operation] = field(default_factory=list)
    atomic: bool = True

    @property
    def no_change(self) -> bool:
        return not self.pre_operations and not self.steps

    @property
    def total_operations(self) -> int:
        return len(self.pre_operations) + len(self.steps)


# --- Goal Configuration ---

@dataclass
class GoalConfig:
    """Parsed configuration for one goal invocation."""
    server_id: Optional[str] = None
    address: Address = field(default_factory=Address)
    resources: list[ResourceSpec] = field(default_factory=list)
    commands: list[str] = field(default_factory=list)
    scripts: list[Path] = field(default_factory=list)
    fail_on_error: bool = True
    batch: bool = False
    profiles: list[str] = field(default_factory=list)
    properties_files: list[Path] = field(default_factory=list)
    system_properties: dict[str, str] = field(default_factory=dict)
    skip: bool = False


@dataclass
class ValidationResult:
    """Result of goal config validation."""
    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass
class ExecuteOptions:
    """Options for a goal run."""
    dry_run: bool = False
    phase: Optional[ExecutionPhase] = None
    audit_context: str = ""
    user: Optional[str] = None


@dataclass
class ExecuteResult:
    """Report of a goal run."""
    success: bool = False
    dry_run: bool = False
    goal: str = ""
    changes_made: list[str] = field(default_factory=list)
    operations_executed: list[str] = field(default_factory=list)
    error: Optional[str] = None
    error_context: Optional[str] = None
    failed_step: Optional[int] = None
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "success": self.success,
            "dry_run": self.dry_run,
            "goal": self.goal,
            "changes_made": self.changes_made,
            "operations_executed": self.operations_executed,
            "error": self.error,
            "error_context": self.error_context,
            "failed_step": self.failed_step,
            "warnings": self.warnings,
        }


# --- Audit Entry ---

@dataclass
class AuditEntry:
    """Audit log entry for a goal run."""
    timestamp: datetime
    server_id: str
    goal: str
    context: str = ""
    user: str = "system"
    success: bool = False
    changes: list[str] = field(default_factory=list)
    error: Optional[str] = None
    checksum: Optional[str] = None
