"""Command executor running CLI commands and scripts in order.

Every command is parsed before the first one is sent, so a malformed
command never leaves the server half-configured.
"""
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Iterable, Mapping, Optional, Union

from ..utils.logging_config import timed_section
from .command_parser import CommandParser
from .errors import ConfigurationError, OperationFailedError
from .interpreter import ResultInterpreter
from .properties import substitute_properties
from .schema import Command, ExecutionResult, Operation

if TYPE_CHECKING:
    from ..management.base import ManagementClient

logger = logging.getLogger(__name__)

CommandInput = Union[str, Operation, Command]


class CommandExecutor:
    """Execute commands on a management server, strictly in order."""

    def __init__(
        self,
        parser: Optional[CommandParser] = None,
        interpreter: Optional[ResultInterpreter] = None
    ):
        self.parser = parser or CommandParser()
        self.interpreter = interpreter or ResultInterpreter()

    def prepare(
        self,
        commands: Iterable[CommandInput],
        batch: bool = False,
        source: str = "inline"
    ) -> list[Command]:
        """
        Parse commands into Commands without sending anything.

        Raises:
            ConfigurationError: If any command is malformed
        """
        prepared = []
        for index, item in enumerate(commands, start=1):
            if isinstance(item, Command):
                if item.operation is None:
                    item = Command(
                        text=item.text,
                        operation=self.parser.parse(item.text or ""),
                        source=item.source,
                        line=item.line,
                    )
                prepared.append(item)
            elif isinstance(item, Operation):
                prepared.append(Command(operation=item, source=source, line=index))
            elif isinstance(item, str):
                prepared.append(Command(
                    text=item.strip(),
                    operation=self.parser.parse(item),
                    source=source,
                    line=index,
                ))
            else:
                raise ConfigurationError(f"Unsupported command {item!r}")

        if batch and prepared:
            return [self.parser.batch(prepared, source)]
        return prepared

    def read_script(
        self,
        path: Union[str, Path],
        properties: Optional[Mapping[str, str]] = None
    ) -> list[Command]:
        """
        Parse a script file, substituting defined properties into each line.

        Raises:
            ConfigurationError: If the file cannot be read or a line is malformed
        """
        path = Path(path)
        try:
            with open(path, encoding="utf-8") as f:
                lines = (substitute_properties(line, properties or {}) for line in f)
                return self.parser.parse_script(lines, source=str(path))
        except OSError as e:
            raise ConfigurationError(f"Cannot read script {path}: {e}")
        except UnicodeDecodeError as e:
            raise ConfigurationError(f"Script {path} is not valid UTF-8: {e}")

    async def execute_commands(
        self,
        commands: Iterable[CommandInput],
        client: "ManagementClient",
        fail_on_error: bool = True,
        batch: bool = False
    ) -> ExecutionResult:
        """
        Execute commands in order.

        Args:
            commands: Command strings, Operations or parsed Commands
            client: Connected management client
            fail_on_error: Stop and raise at the first failure (default).
                When False, failures are logged and execution continues.
            batch: Send all commands as one composite operation

        Returns:
            ExecutionResult whose value is the list of per-command results.
            ``success`` is False if any command failed (only possible with
            ``fail_on_error=False``).

        Raises:
            ConfigurationError: If a command is malformed (nothing is sent)
            OperationFailedError: If a command fails and ``fail_on_error``
            TransportError: If the server cannot be reached
        """
        prepared = self.prepare(commands, batch=batch)
        return await self._run(prepared, client, fail_on_error)

    async def execute_script(
        self,
        path: Union[str, Path],
        client: "ManagementClient",
        fail_on_error: bool = True
    ) -> ExecutionResult:
        """Execute a CLI script file, line by line in file order."""
        commands = self.read_script(path)
        logger.info(f"Executing {len(commands)} commands from {path}")
        return await self._run(commands, client, fail_on_error)

    async def _run(
        self,
        commands: list[Command],
        client: "ManagementClient",
        fail_on_error: bool
    ) -> ExecutionResult:
        results: list[ExecutionResult] = []
        first_failure: Optional[ExecutionResult] = None
        failed_index: Optional[int] = None
        server_id = getattr(client, "server_id", None)

        async with timed_section("execute_commands", server_id, count=len(commands)):
            for index, command in enumerate(commands):
                logger.info(f"Executing {command.describe()}")
                result = self.interpreter.interpret(
                    await client.execute(command.operation), command.operation
                )
                results.append(result)

                if result.success:
                    continue

                if fail_on_error:
                    raise OperationFailedError(
                        ExecutionResult.failed(
                            f"{command.describe()}: {result.failure_description}",
                            value=results,
                            failed_step=index,
                            failed_step_id=result.failed_step_id,
                            rolled_back=result.rolled_back,
                            operation=command.operation,
                            raw=result.raw,
                        )
                    )

                logger.warning(
                    f"Command failed, continuing: {command.describe()}: "
                    f"{result.failure_description}"
                )
                if first_failure is None:
                    first_failure, failed_index = result, index

        if first_failure is not None:
            return ExecutionResult.failed(
                first_failure.failure_description or "Command failed",
                value=results,
                failed_step=failed_index,
                operation=first_failure.operation,
                raw=first_failure.raw,
            )
        return ExecutionResult.ok(results)
