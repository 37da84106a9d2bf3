"""Pre-flight validation for goal configurations.

Catches malformed input before any server communication.
"""
from typing import Optional

from .command_parser import CommandParser
from .errors import ConfigurationError
from .operations import build_add_operation
from .properties import collect_properties, substitute_properties
from .schema import (
    Address,
    ExecutionPhase,
    GoalConfig,
    ResourceSpec,
    ValidationResult,
)

# Resource types that cannot be added by a goal
RESERVED_TYPES = {
    "profile": "Profiles are selected with the 'profiles' option",
    "host": "Host controllers are not managed by goals",
}

# Above this many operations in one goal a warning is issued
LARGE_GOAL_THRESHOLD = 100


class ConfigValidator:
    """Validate goal configuration for logical errors before execution."""

    def __init__(self, parser: Optional[CommandParser] = None):
        self.command_parser = parser or CommandParser()

    def validate(self, goal: GoalConfig) -> ValidationResult:
        """
        Validate a goal configuration.

        Performs pre-flight checks:
        - Every resource has an address and buildable attributes
        - No resource is declared twice
        - Commands and scripts parse
        - Option combinations make sense

        Args:
            goal: The goal configuration to validate

        Returns:
            ValidationResult with valid flag, errors, and warnings
        """
        errors: list[str] = []
        warnings: list[str] = []

        self._validate_resources(goal, errors, warnings)
        operation_count = self._validate_commands(goal, errors)
        operation_count += sum(
            1 + len(list(spec.descendants())) for spec in goal.resources
        )

        if not goal.resources and not goal.commands and not goal.scripts:
            warnings.append("Goal configuration has no resources, commands or scripts")

        if goal.batch and not goal.fail_on_error:
            warnings.append(
                "fail-on-error=false has no effect in batch mode: "
                "a failed batch is rolled back as a whole"
            )

        if operation_count > LARGE_GOAL_THRESHOLD:
            warnings.append(
                f"Large goal: {operation_count} operations. "
                "Consider splitting into smaller goals."
            )

        return ValidationResult(
            valid=len(errors) == 0,
            errors=errors,
            warnings=warnings,
        )

    def _validate_resources(
        self,
        goal: GoalConfig,
        errors: list[str],
        warnings: list[str]
    ) -> None:
        """Validate resource specs and their children."""
        seen: dict[Address, str] = {}

        for index, spec in enumerate(goal.resources):
            where = f"resources[{index}]"
            self._validate_spec(spec, goal.address, where, seen, errors, warnings)

            if spec.phase == ExecutionPhase.AT_EXECUTION and spec.children:
                warnings.append(
                    f"{where}: execution-phase resource with children is sent "
                    "step by step, not atomically"
                )

    def _validate_spec(
        self,
        spec: ResourceSpec,
        parent: Address,
        where: str,
        seen: dict[Address, str],
        errors: list[str],
        warnings: list[str],
        top_phase: Optional[ExecutionPhase] = None
    ) -> None:
        address = parent + spec.address
        if address.is_root:
            errors.append(f"{where}: you must specify the address to add the resource to")
            return

        if address in seen:
            errors.append(f"{where}: resource {address} already declared at {seen[address]}")
        else:
            seen[address] = where

        for resource_type, _ in spec.address:
            if resource_type in RESERVED_TYPES:
                errors.append(
                    f"{where}: cannot add '{resource_type}' resources: "
                    f"{RESERVED_TYPES[resource_type]}"
                )

        try:
            build_add_operation(address, spec.attributes)
        except ConfigurationError as e:
            errors.append(f"{where}: {e}")

        if top_phase is not None and spec.phase != top_phase:
            warnings.append(
                f"{where}: phase '{spec.phase.value}' ignored, children follow "
                f"their top-level resource ('{top_phase.value}')"
            )

        for index, child in enumerate(spec.children):
            self._validate_spec(
                child,
                address,
                f"{where}.resources[{index}]",
                seen,
                errors,
                warnings,
                top_phase=top_phase or spec.phase,
            )

    def _validate_commands(self, goal: GoalConfig, errors: list[str]) -> int:
        """Parse every command and script; returns the operation count."""
        count = 0

        try:
            properties = collect_properties(goal.properties_files, goal.system_properties)
        except ConfigurationError as e:
            errors.append(str(e))
            properties = dict(goal.system_properties)

        for index, text in enumerate(goal.commands):
            try:
                self.command_parser.parse(substitute_properties(text, properties))
                count += 1
            except ConfigurationError as e:
                errors.append(f"commands[{index}]: {e}")

        for script in goal.scripts:
            if not script.is_file():
                errors.append(f"Script not found: {script}")
                continue
            try:
                with open(script, encoding="utf-8") as f:
                    lines = (substitute_properties(line, properties) for line in f)
                    count += len(self.command_parser.parse_script(lines, source=str(script)))
            except (ConfigurationError, OSError, UnicodeDecodeError) as e:
                errors.append(str(e))

        return count
