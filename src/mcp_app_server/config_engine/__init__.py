"""Config Engine - declarative management of application servers.

The Config Engine drives a server's management endpoint to a declared state:
- Resource specs are added atomically, children included
- CLI commands and scripts run strictly in order, fail-fast
- Every failure carries the server's own description

Usage:
    from mcp_app_server.config_engine import ConfigEngine

    engine = ConfigEngine(inventory)
    result = await engine.add_resources({
        "server": "local",
        "resources": [{
            "address": "subsystem=datasources,data-source=AppDS",
            "properties": {
                "jndi-name": "java:jboss/datasources/AppDS",
                "connection-url": "jdbc:h2:mem:app",
                "driver-name": "h2",
            },
        }],
    }, dry_run=True)
"""

from .engine import ConfigEngine, GOAL_ADD_RESOURCE, GOAL_EXECUTE_COMMANDS, GOALS
from .errors import (
    ConfigurationError,
    ManagementError,
    OperationFailedError,
    TransportError,
)
from .schema import (
    Address,
    Operation,
    ResourceSpec,
    Command,
    ExecutionPhase,
    ExistingResourcePolicy,
    ExecutionResult,
    ResultShape,
    ChangeType,
    OperationPlan,
    GoalConfig,
    ValidationResult,
    ExecuteOptions,
    ExecuteResult,
)
from .operations import (
    build_address,
    build_operation,
    build_add_operation,
    build_composite_operation,
    build_read_attribute_operation,
    build_read_resource_operation,
)
from .parser import ConfigParser, ParseError, compute_checksum
from .command_parser import CommandParser
from .properties import collect_properties, load_properties_file, substitute_properties
from .validator import ConfigValidator
from .interpreter import ResultInterpreter
from .diff import DiffEngine
from .planner import OperationPlanner, summarize_plans
from .reconciler import ResourceReconciler
from .executor import CommandExecutor

__all__ = [
    # Main engine
    "ConfigEngine",
    "GOAL_ADD_RESOURCE",
    "GOAL_EXECUTE_COMMANDS",
    "GOALS",
    # Errors
    "ConfigurationError",
    "ManagementError",
    "OperationFailedError",
    "TransportError",
    # Schema classes
    "Address",
    "Operation",
    "ResourceSpec",
    "Command",
    "ExecutionPhase",
    "ExistingResourcePolicy",
    "ExecutionResult",
    "ResultShape",
    "ChangeType",
    "OperationPlan",
    "GoalConfig",
    "ValidationResult",
    "ExecuteOptions",
    "ExecuteResult",
    # Builders
    "build_address",
    "build_operation",
    "build_add_operation",
    "build_composite_operation",
    "build_read_attribute_operation",
    "build_read_resource_operation",
    # Parsers
    "ConfigParser",
    "ParseError",
    "compute_checksum",
    "CommandParser",
    "collect_properties",
    "load_properties_file",
    "substitute_properties",
    # Components (for advanced use)
    "ConfigValidator",
    "ResultInterpreter",
    "DiffEngine",
    "OperationPlanner",
    "summarize_plans",
    "ResourceReconciler",
    "CommandExecutor",
]
