"""Main Config Engine - orchestrates goal runs against a management server.

Provides a single entry point per goal:
1. Parsing the goal configuration
2. Validating it
3. Connecting one client for the run
4. Reconciling resources or executing commands
5. Reporting (and auditing) the outcome
"""
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional, Union

from .errors import ConfigurationError, OperationFailedError, TransportError
from .executor import CommandExecutor
from .interpreter import ResultInterpreter
from .operations import build_read_attribute_operation
from .parser import ConfigParser, compute_checksum
from .planner import describe_plan, summarize_plans
from .properties import collect_properties, substitute_properties
from .reconciler import ResourceReconciler
from .schema import (
    Address,
    AuditEntry,
    Command,
    ExecuteOptions,
    ExecuteResult,
    GoalConfig,
    OperationPlan,
    ResultShape,
    ValidationResult,
)
from .validator import ConfigValidator

if TYPE_CHECKING:
    from ..config.inventory import ServerInventory
    from ..management.base import ManagementClient

logger = logging.getLogger(__name__)

GOAL_ADD_RESOURCE = "add-resource"
GOAL_EXECUTE_COMMANDS = "execute-commands"
GOALS = (GOAL_ADD_RESOURCE, GOAL_EXECUTE_COMMANDS)

DOMAIN_LAUNCH_TYPE = "DOMAIN"

GoalInput = Union[dict[str, Any], GoalConfig]


class ConfigEngine:
    """
    Main Config Engine for running goals against management servers.

    Usage:
        engine = ConfigEngine(inventory)
        result = await engine.run(GOAL_ADD_RESOURCE, config_dict, dry_run=True)
    """

    def __init__(
        self,
        inventory: "ServerInventory",
        audit_log_path: Optional[str] = None
    ):
        """
        Initialize the Config Engine.

        Args:
            inventory: Server inventory creating one client per run
            audit_log_path: Path to audit log file (optional)
        """
        self.inventory = inventory
        self.audit_log_path = audit_log_path
        self.parser = ConfigParser()
        self.validator = ConfigValidator()
        self.interpreter = ResultInterpreter()
        self.reconciler = ResourceReconciler(interpreter=self.interpreter)
        self.executor = CommandExecutor(interpreter=self.interpreter)

    async def run(
        self,
        goal: str,
        config: GoalInput,
        dry_run: bool = False,
        audit_context: str = "",
        user: Optional[str] = None,
        options: Optional[ExecuteOptions] = None,
    ) -> ExecuteResult:
        """
        Run a goal.

        Never raises for server or input problems: every failure is reported
        in the returned ExecuteResult, with the server's description verbatim.

        Args:
            goal: ``add-resource`` or ``execute-commands``
            config: Goal configuration dict or parsed GoalConfig
            dry_run: If True, report what would be sent without changing anything
            audit_context: Description for audit log
            user: User identifier for audit log
            options: Full options (overrides dry_run/audit_context/user)

        Returns:
            ExecuteResult with success/failure and details
        """
        options = options or ExecuteOptions(
            dry_run=dry_run,
            audit_context=audit_context,
            user=user,
        )
        result = ExecuteResult(dry_run=options.dry_run, goal=goal)
        audit_entry = AuditEntry(
            timestamp=datetime.now(timezone.utc),
            server_id="",
            goal=goal,
            context=options.audit_context,
            user=options.user or "system",
        )

        try:
            if goal not in GOALS:
                raise ConfigurationError(
                    f"Unknown goal {goal!r}. Must be one of: {', '.join(GOALS)}"
                )

            if isinstance(config, dict):
                audit_entry.checksum = compute_checksum(config)
            goal_config = self.parse(config)
            if goal_config.skip:
                logger.info(f"Skipping {goal}: skip is set")
                audit_entry.server_id = goal_config.server_id or ""
                result.success = True
                return result

            validation = self.validate(goal_config)
            if not validation.valid:
                result.error = f"Validation failed: {'; '.join(validation.errors)}"
                result.error_context = "\n".join(validation.errors)
                return result
            result.warnings.extend(validation.warnings)

            server_id = goal_config.server_id or self.inventory.default_server_id()
            audit_entry.server_id = server_id

            logger.info(
                f"{'DRY RUN: ' if options.dry_run else ''}Running {goal} on {server_id}"
            )
            if goal == GOAL_ADD_RESOURCE:
                await self._add_resources(server_id, goal_config, options, result)
            else:
                await self._execute_commands(server_id, goal_config, options, result)

        except OperationFailedError as e:
            logger.error(f"{goal} failed: {e.description}")
            result.success = False
            result.error = e.description
            result.failed_step = e.failed_step
            if e.result.rolled_back:
                result.error_context = "All changes of the failed operation were rolled back"

        except TransportError as e:
            logger.error(f"{goal} failed: {e}")
            result.success = False
            result.error = f"Transport error: {e}"

        except (ConfigurationError, KeyError) as e:
            logger.error(f"{goal} failed: {e}")
            result.success = False
            result.error = f"Configuration error: {e}"

        except Exception as e:
            logger.exception(f"{goal} failed unexpectedly: {e}")
            result.success = False
            result.error = str(e)

        finally:
            audit_entry.success = result.success
            audit_entry.changes = result.changes_made
            audit_entry.error = result.error
            self._write_audit(audit_entry)

        return result

    async def add_resources(self, config: GoalInput, **kwargs: Any) -> ExecuteResult:
        """Run the add-resource goal."""
        return await self.run(GOAL_ADD_RESOURCE, config, **kwargs)

    async def execute_commands(self, config: GoalInput, **kwargs: Any) -> ExecuteResult:
        """Run the execute-commands goal."""
        return await self.run(GOAL_EXECUTE_COMMANDS, config, **kwargs)

    def parse(self, config: GoalInput) -> GoalConfig:
        """Parse config dict to GoalConfig (parsed configs pass through)."""
        if isinstance(config, GoalConfig):
            return config
        return self.parser.parse(config)

    def validate(self, goal_config: GoalConfig) -> ValidationResult:
        """Validate a GoalConfig (for external use)."""
        return self.validator.validate(goal_config)

    async def preview(self, config: GoalInput) -> str:
        """
        Preview what a goal would send, without applying anything.

        Resource specs with an existence policy are checked against the
        server. Returns a human-readable summary.
        """
        goal_config = self.parse(config)
        validation = self.validate(goal_config)
        if not validation.valid:
            return "Validation failed:\n" + "\n".join(validation.errors)

        sections = []
        if goal_config.resources:
            server_id = goal_config.server_id or self.inventory.default_server_id()
            async with self.inventory.get_client(server_id) as client:
                plans = await self._plan_resources(client, goal_config, ExecuteOptions(dry_run=True))
            sections.append(summarize_plans(plans))

        commands = self._prepare_commands(goal_config)
        if commands:
            lines = [f"Commands to execute ({len(commands)} total):", ""]
            lines.extend(f"  {command.describe()}" for command in commands)
            sections.append("\n".join(lines))

        summary = "\n\n".join(sections) or "Nothing to do"
        if validation.warnings:
            summary += "\n\nWarnings:\n" + "\n".join(
                f"  - {w}" for w in validation.warnings
            )
        return summary

    async def resolve_profiles(
        self,
        client: "ManagementClient",
        goal_config: GoalConfig
    ) -> list[str]:
        """
        Profiles to apply resources to.

        In domain mode resources live below ``profile=<name>``, so at least
        one profile is required. On a standalone server profiles are ignored.

        Raises:
            ConfigurationError: Domain mode without profiles
        """
        op = build_read_attribute_operation(Address(), "launch-type")
        launch_type = self.interpreter.check(
            await client.execute(op), op, ResultShape.STRING
        ).value

        if launch_type != DOMAIN_LAUNCH_TYPE:
            if goal_config.profiles:
                logger.warning(
                    f"Ignoring profiles {goal_config.profiles}: server runs as {launch_type}"
                )
            return []

        if not goal_config.profiles:
            raise ConfigurationError("Cannot add resources when no profiles were defined.")
        return list(goal_config.profiles)

    # === Goals ===

    async def _plan_resources(
        self,
        client: "ManagementClient",
        goal_config: GoalConfig,
        options: ExecuteOptions
    ) -> list[OperationPlan]:
        if not goal_config.resources:
            return []
        profiles = await self.resolve_profiles(client, goal_config)
        plans = []
        for spec in goal_config.resources:
            if options.phase is not None and spec.phase != options.phase:
                continue
            plans.extend(
                await self.reconciler.plan(spec, client, goal_config.address, profiles)
            )
        return plans

    async def _add_resources(
        self,
        server_id: str,
        goal_config: GoalConfig,
        options: ExecuteOptions,
        result: ExecuteResult
    ) -> None:
        async with self.inventory.get_client(server_id) as client:
            plans = await self._plan_resources(client, goal_config, options)

            if options.dry_run:
                result.operations_executed = [
                    f"[DRY-RUN] {op}"
                    for plan in plans
                    for op in plan.pre_operations + plan.steps
                ]
                result.changes_made = [f"[PREVIEW] {describe_plan(plan)}" for plan in plans]
                result.success = True
                return

            logger.info(f"Applying {len(plans)} resource plans")
            for plan in plans:
                await self.reconciler.apply(plan, client)
                result.operations_executed.extend(
                    str(op) for op in plan.pre_operations + plan.steps
                )
                result.changes_made.append(describe_plan(plan))

        result.success = True

    def _prepare_commands(self, goal_config: GoalConfig) -> list[Command]:
        """
        Parse inline commands, then each script, before anything is sent.

        Defined properties are substituted into every line first.
        """
        properties = collect_properties(
            goal_config.properties_files, goal_config.system_properties
        )
        commands = self.executor.prepare(
            [substitute_properties(c, properties) for c in goal_config.commands],
            batch=goal_config.batch,
        )
        for script in goal_config.scripts:
            script_commands = self.executor.read_script(script, properties)
            if goal_config.batch and script_commands:
                script_commands = [self.executor.parser.batch(script_commands, str(script))]
            commands.extend(script_commands)
        return commands

    async def _execute_commands(
        self,
        server_id: str,
        goal_config: GoalConfig,
        options: ExecuteOptions,
        result: ExecuteResult
    ) -> None:
        commands = self._prepare_commands(goal_config)

        if options.dry_run:
            result.operations_executed = [f"[DRY-RUN] {c.describe()}" for c in commands]
            result.success = True
            return

        async with self.inventory.get_client(server_id) as client:
            try:
                outcome = await self.executor.execute_commands(
                    commands, client, fail_on_error=goal_config.fail_on_error
                )
            except OperationFailedError as e:
                # Commands before the failing one were applied; report them
                if isinstance(e.result.value, list):
                    self._record_commands(commands, e.result.value, result)
                raise

        self._record_commands(commands, outcome.value, result)

        result.success = outcome.success
        if not outcome.success:
            result.error = outcome.failure_description
            result.failed_step = outcome.failed_step

    def _record_commands(
        self,
        commands: list[Command],
        results: list[Any],
        result: ExecuteResult
    ) -> None:
        for command, command_result in zip(commands, results):
            result.operations_executed.append(command.describe())
            if command_result.success:
                result.changes_made.append(f"Executed {command.describe()}")
            else:
                result.warnings.append(
                    f"Failed {command.describe()}: {command_result.failure_description}"
                )

    # === Audit ===

    def _write_audit(self, entry: AuditEntry) -> None:
        """Append an audit entry to the log file as one JSON line."""
        if not self.audit_log_path:
            return

        log_entry = {
            "timestamp": entry.timestamp.isoformat(),
            "server_id": entry.server_id,
            "goal": entry.goal,
            "context": entry.context,
            "user": entry.user,
            "success": entry.success,
            "changes": entry.changes,
            "error": entry.error,
            "checksum": entry.checksum,
        }

        try:
            log_path = Path(self.audit_log_path)
            log_path.parent.mkdir(parents=True, exist_ok=True)
            with open(log_path, "a", encoding="utf-8") as f:
                f.write(json.dumps(log_entry) + "\n")
        except OSError as e:
            logger.warning(f"Failed to write audit log: {e}")
