"""Interpretation of raw management results.

Classifies a raw result as success or failure, extracts the payload and,
for composite operations, finds the step that failed.
"""
import json
import logging
import re
from typing import Any, Optional

from .errors import OperationFailedError
from .schema import (
    FAILURE_DESCRIPTION,
    OP,
    OP_ADDR,
    OUTCOME,
    RESULT,
    ROLLED_BACK,
    SUCCESS,
    Address,
    ExecutionResult,
    Operation,
    ResultShape,
)

logger = logging.getLogger(__name__)

STEP_ID_PATTERN = re.compile(r"step-(\d+)")


def is_successful_outcome(raw: dict[str, Any]) -> bool:
    """Check the raw result for a successful outcome."""
    return raw.get(OUTCOME) == SUCCESS


def read_result_as_string(raw: dict[str, Any]) -> str:
    """Return the result payload as a string, or ``""`` if undefined."""
    value = raw.get(RESULT)
    if value is None:
        return ""
    return format_value(value)


def read_result_as_list(raw: dict[str, Any]) -> list[str]:
    """Return the result payload as a list of strings."""
    value = raw.get(RESULT)
    if value is None:
        return []
    if isinstance(value, dict):
        return [str(k) for k in value.keys()]
    if isinstance(value, (list, tuple)):
        return [format_value(v) for v in value]
    return [format_value(value)]


def format_value(value: Any) -> str:
    """Render a management value the way the CLI prints it."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return str(value)


def format_failure_description(
    raw: dict[str, Any],
    operation: Optional[Operation] = None
) -> str:
    """
    Build the failure message for a raw result.

    The server-provided description is kept verbatim inside the message.
    """
    if is_successful_outcome(raw):
        return ""

    description = raw.get(FAILURE_DESCRIPTION)
    if description is None:
        return f"An unexpected response was found. Result: {json.dumps(raw)}"

    if not isinstance(description, str):
        description = json.dumps(description)

    op_name = operation.name if operation else raw.get(OP)
    if op_name:
        if operation is not None:
            address = str(operation.address)
        else:
            address = str(Address.from_dmr(raw.get(OP_ADDR)))
        return f"Operation '{op_name}' at address '{address}' failed: {description}"
    return f"Operation failed: {description}"


def find_failed_step(raw: dict[str, Any]) -> tuple[Optional[int], Optional[str]]:
    """
    Locate the failing step of a composite result.

    Step results are keyed ``step-1``, ``step-2``... under ``result``. Steps
    that merely got rolled back report a failed outcome too, so a step
    carrying its own failure description wins.

    Returns:
        Tuple of (0-based step index, step id), or (None, None)
    """
    steps = raw.get(RESULT)
    if isinstance(steps, dict):
        candidates: list[tuple[int, str, dict]] = []
        for step_id, step_result in steps.items():
            match = STEP_ID_PATTERN.fullmatch(str(step_id))
            if not match or not isinstance(step_result, dict):
                continue
            if step_result.get(OUTCOME) != SUCCESS:
                candidates.append((int(match.group(1)), step_id, step_result))

        candidates.sort(key=lambda c: c[0])
        for number, step_id, step_result in candidates:
            if step_result.get(FAILURE_DESCRIPTION) is not None:
                return number - 1, step_id
        if candidates:
            number, step_id, _ = candidates[0]
            return number - 1, step_id

    # Fall back to the description text, e.g. {"...": {"Operation step-2": "..."}}
    description = raw.get(FAILURE_DESCRIPTION)
    if description is not None:
        text = description if isinstance(description, str) else json.dumps(description)
        match = STEP_ID_PATTERN.search(text)
        if match:
            return int(match.group(1)) - 1, match.group(0)

    return None, None


class ResultInterpreter:
    """Turn raw management results into ExecutionResults."""

    def interpret(
        self,
        raw: dict[str, Any],
        operation: Optional[Operation] = None,
        shape: Optional[ResultShape] = None
    ) -> ExecutionResult:
        """
        Classify a raw result.

        Args:
            raw: Raw result dict returned by the management client
            operation: The operation that produced the result (optional)
            shape: Coerce a successful payload to this shape (optional)

        Returns:
            ExecutionResult with success/failure and details
        """
        if is_successful_outcome(raw):
            return ExecutionResult.ok(
                self._extract(raw, shape),
                operation=operation,
                raw=raw,
            )

        failed_step = failed_step_id = None
        if operation is None or operation.is_composite:
            failed_step, failed_step_id = find_failed_step(raw)

        result = ExecutionResult.failed(
            format_failure_description(raw, operation),
            failed_step=failed_step,
            failed_step_id=failed_step_id,
            rolled_back=bool(raw.get(ROLLED_BACK, False)),
            operation=operation,
            raw=raw,
        )
        logger.debug(f"Operation failed: {result.failure_description}")
        return result

    def check(
        self,
        raw: dict[str, Any],
        operation: Optional[Operation] = None,
        shape: Optional[ResultShape] = None
    ) -> ExecutionResult:
        """
        Interpret and raise on failure.

        Raises:
            OperationFailedError: If the outcome is not success
        """
        result = self.interpret(raw, operation, shape)
        if not result.success:
            raise OperationFailedError(result)
        return result

    def _extract(self, raw: dict[str, Any], shape: Optional[ResultShape]) -> Any:
        if shape == ResultShape.STRING:
            return read_result_as_string(raw)
        if shape == ResultShape.LIST:
            return read_result_as_list(raw)
        return raw.get(RESULT)
