"""Parser for CLI-style management commands.

Translates command lines in operation syntax into Operations:

    /subsystem=logging/console-handler=CONSOLE:write-attribute(name=level,value=DEBUG)
    /system-property=foo:add(value="some value")
    :read-resource(recursive)
    /subsystem=datasources/data-source=ds:add(jndi-name=java:/ds,enabled=true){rollback-on-runtime-failure=false}

Scripts may group commands between ``batch`` and ``run-batch``; the group is
sent as one composite operation.
"""
from typing import Any, Iterable, Optional

from .errors import ConfigurationError
from .operations import build_composite_operation, build_operation
from .schema import Address, Command, Operation

COMMENT_PREFIX = "#"
BATCH_START = "batch"
BATCH_RUN = "run-batch"
BATCH_DISCARD = "discard-batch"

# Characters that end a bare value, per enclosing construct
_PARAM_TERMINATORS = ",)"
_LIST_TERMINATORS = ",]"


class _Scanner:
    """Character scanner over one command line."""

    def __init__(self, text: str):
        self.text = text
        self.pos = 0

    @property
    def done(self) -> bool:
        return self.pos >= len(self.text)

    def peek(self, ahead: int = 0) -> str:
        index = self.pos + ahead
        return self.text[index] if index < len(self.text) else ""

    def skip_spaces(self) -> None:
        while not self.done and self.text[self.pos].isspace():
            self.pos += 1

    def expect(self, char: str) -> None:
        self.skip_spaces()
        if self.peek() != char:
            found = self.peek() or "end of line"
            raise ConfigurationError(f"Expected '{char}' at position {self.pos} but found '{found}'")
        self.pos += 1

    def accept(self, token: str) -> bool:
        self.skip_spaces()
        if self.text.startswith(token, self.pos):
            self.pos += len(token)
            return True
        return False

    def read_quoted(self) -> str:
        quote = self.text[self.pos]
        self.pos += 1
        chars = []
        while not self.done:
            char = self.text[self.pos]
            if char == "\\" and self.pos + 1 < len(self.text):
                chars.append(self.text[self.pos + 1])
                self.pos += 2
                continue
            if char == quote:
                self.pos += 1
                return "".join(chars)
            chars.append(char)
            self.pos += 1
        raise ConfigurationError("Unterminated quoted value")

    def read_until(self, stops: str) -> str:
        """Read a bare token, honoring quotes, backslash escapes and ${...} expressions."""
        chars = []
        depth = 0
        while not self.done:
            char = self.text[self.pos]
            if char == "$" and self.peek(1) == "{":
                depth += 1
                chars.append("${")
                self.pos += 2
                continue
            if depth:
                # Inside an expression only braces matter
                if char == "}":
                    depth -= 1
                elif char == "{":
                    depth += 1
                chars.append(char)
                self.pos += 1
                continue
            if char in stops:
                break
            if char == "\\" and self.pos + 1 < len(self.text):
                chars.append(self.text[self.pos + 1])
                self.pos += 2
                continue
            if char in "\"'":
                chars.append(self.read_quoted())
                continue
            chars.append(char)
            self.pos += 1
        return "".join(chars)


class CommandParser:
    """Parse CLI-style commands into operations."""

    def parse(self, text: str) -> Operation:
        """
        Parse one command line into an Operation.

        Raises:
            ConfigurationError: If the command is not valid operation syntax
        """
        line = text.strip()
        if not line:
            raise ConfigurationError("Command is empty")

        try:
            return self._parse_operation(_Scanner(line))
        except ConfigurationError as e:
            raise ConfigurationError(f"Command '{line}' is invalid. {e}") from None

    def parse_commands(
        self,
        texts: Iterable[str],
        source: str = "inline"
    ) -> list[Command]:
        """Parse inline commands, one Command per entry."""
        commands = []
        for index, text in enumerate(texts, start=1):
            commands.append(Command(
                text=text.strip(),
                operation=self.parse(text),
                source=source,
                line=index,
            ))
        return commands

    def parse_script(
        self,
        lines: Iterable[str],
        source: str = "script"
    ) -> list[Command]:
        """
        Parse script lines into Commands, in file order.

        Blank lines and ``#`` comments are skipped. A ``batch`` ... ``run-batch``
        block becomes a single composite Command.
        """
        commands: list[Command] = []
        batch: Optional[list[Command]] = None
        batch_line = 0

        for number, raw_line in enumerate(lines, start=1):
            line = raw_line.strip()
            if not line or line.startswith(COMMENT_PREFIX):
                continue

            keyword = line.lower()
            if keyword == BATCH_START:
                if batch is not None:
                    raise ConfigurationError(
                        f"{source}:{number}: batch already active (started at line {batch_line})"
                    )
                batch, batch_line = [], number
                continue
            if keyword == BATCH_RUN:
                if batch is None:
                    raise ConfigurationError(f"{source}:{number}: no active batch to run")
                commands.append(self._batch_command(batch, source, batch_line))
                batch = None
                continue
            if keyword == BATCH_DISCARD:
                if batch is None:
                    raise ConfigurationError(f"{source}:{number}: no active batch to discard")
                batch = None
                continue

            try:
                operation = self.parse(line)
            except ConfigurationError as e:
                raise ConfigurationError(f"{source}:{number}: {e}") from None

            command = Command(text=line, operation=operation, source=source, line=number)
            if batch is not None:
                batch.append(command)
            else:
                commands.append(command)

        if batch is not None:
            raise ConfigurationError(
                f"{source}:{batch_line}: batch started but never run (missing '{BATCH_RUN}')"
            )
        return commands

    def batch(self, commands: list[Command], source: str = "inline") -> Command:
        """Group parsed commands into one composite Command."""
        return self._batch_command(commands, source, commands[0].line if commands else None)

    def _batch_command(
        self,
        commands: list[Command],
        source: str,
        line: Optional[int]
    ) -> Command:
        if not commands:
            raise ConfigurationError(f"{source}:{line}: batch is empty")
        operation = build_composite_operation(c.operation for c in commands)
        text = "batch: " + "; ".join(c.text or str(c.operation) for c in commands)
        return Command(text=text, operation=operation, source=source, line=line)

    # === Grammar ===

    def _parse_operation(self, scanner: _Scanner) -> Operation:
        address = self._parse_address(scanner)
        scanner.expect(":")
        scanner.skip_spaces()

        name = scanner.read_until("({ \t")
        if not name:
            raise ConfigurationError("Missing operation name")

        params: dict[str, Any] = {}
        if scanner.accept("("):
            params = self._parse_params(scanner)

        op = build_operation(name, address, params)

        if scanner.accept("{"):
            op.headers.update(self._parse_object_body(scanner, separators=",;"))

        scanner.skip_spaces()
        if not scanner.done:
            raise ConfigurationError(f"Unexpected text '{scanner.text[scanner.pos:]}'")
        return op

    def _parse_address(self, scanner: _Scanner) -> Address:
        scanner.skip_spaces()
        segments: list[tuple[str, str]] = []

        while not scanner.done and scanner.peek() != ":":
            if scanner.peek() == "/":
                scanner.pos += 1
                continue
            resource_type = scanner.read_until("=:/").strip()
            if scanner.peek() != "=":
                raise ConfigurationError(f"Invalid address segment '{resource_type}'")
            scanner.pos += 1
            resource_name = scanner.read_until(":/").strip()
            if not resource_type or not resource_name:
                raise ConfigurationError(
                    f"Invalid address segment '{resource_type}={resource_name}'"
                )
            segments.append((resource_type, resource_name))

        return Address(tuple(segments))

    def _parse_params(self, scanner: _Scanner) -> dict[str, Any]:
        params: dict[str, Any] = {}
        if scanner.accept(")"):
            return params

        while True:
            scanner.skip_spaces()
            name = scanner.read_until("=,)").strip()
            if not name:
                raise ConfigurationError("Missing parameter name")
            if scanner.accept("="):
                params[name] = self._parse_value(scanner, _PARAM_TERMINATORS)
            else:
                # A bare parameter name is a flag, e.g. :read-resource(recursive)
                params[name] = True

            if scanner.accept(","):
                continue
            scanner.expect(")")
            return params

    def _parse_value(self, scanner: _Scanner, terminators: str) -> Any:
        scanner.skip_spaces()
        char = scanner.peek()
        if char == "[":
            scanner.pos += 1
            return self._parse_list(scanner)
        if char == "{":
            scanner.pos += 1
            return self._parse_object_body(scanner, separators=",")
        if char in "\"'":
            value = scanner.read_quoted()
            scanner.skip_spaces()
            return value
        value = scanner.read_until(terminators).strip()
        return value

    def _parse_list(self, scanner: _Scanner) -> list[Any]:
        items: list[Any] = []
        if scanner.accept("]"):
            return items
        while True:
            items.append(self._parse_value(scanner, _LIST_TERMINATORS))
            if scanner.accept(","):
                continue
            scanner.expect("]")
            return items

    def _parse_object_body(self, scanner: _Scanner, separators: str) -> dict[str, Any]:
        """Parse the body of an object or header block after its opening brace.

        ``separators`` lists the characters between entries; the header block
        also accepts ``;``.
        """
        result: dict[str, Any] = {}
        if scanner.accept("}"):
            return result
        while True:
            scanner.skip_spaces()
            if scanner.peek() in "\"'":
                key = scanner.read_quoted()
            else:
                key = scanner.read_until("=" + separators + "}").strip()
            if not key:
                raise ConfigurationError("Missing key in object")
            # DMR style uses "=>" between key and value
            if scanner.accept("=>") or scanner.accept("="):
                result[key] = self._parse_value(scanner, separators + "}")
            else:
                result[key] = True

            scanner.skip_spaces()
            if scanner.peek() and scanner.peek() in separators:
                scanner.pos += 1
                continue
            scanner.expect("}")
            return result
