"""Tests for result interpretation."""
import pytest

from mcp_app_server.config_engine.errors import OperationFailedError
from mcp_app_server.config_engine.interpreter import (
    ResultInterpreter,
    find_failed_step,
    format_failure_description,
    is_successful_outcome,
    read_result_as_list,
    read_result_as_string,
)
from mcp_app_server.config_engine.operations import (
    build_add_operation,
    build_composite_operation,
    build_read_attribute_operation,
)
from mcp_app_server.config_engine.schema import Address, ResultShape


class TestHelpers:
    """Tests for result helper functions."""

    def test_is_successful_outcome(self):
        """Only outcome 'success' counts as success."""
        assert is_successful_outcome({"outcome": "success"})
        assert not is_successful_outcome({"outcome": "failed"})
        assert not is_successful_outcome({})

    def test_read_result_as_string(self):
        """Booleans render lower-case, undefined as empty."""
        assert read_result_as_string({"outcome": "success", "result": True}) == "true"
        assert read_result_as_string({"outcome": "success", "result": 42}) == "42"
        assert read_result_as_string({"outcome": "success"}) == ""

    def test_read_result_as_list(self):
        """Lists, mappings and scalars become lists of strings."""
        assert read_result_as_list({"result": ["a", "b"]}) == ["a", "b"]
        assert read_result_as_list({"result": {"x": 1, "y": 2}}) == ["x", "y"]
        assert read_result_as_list({"result": "one"}) == ["one"]
        assert read_result_as_list({}) == []

    def test_format_failure_with_operation(self):
        """Description is kept verbatim in the message."""
        op = build_add_operation(Address.parse("system-property=foo"), {"value": "x"})
        raw = {"outcome": "failed", "failure-description": "WFLYCTL0212: Duplicate resource"}
        assert format_failure_description(raw, op) == (
            "Operation 'add' at address '/system-property=foo' failed: "
            "WFLYCTL0212: Duplicate resource"
        )

    def test_format_failure_without_operation(self):
        """Without an operation the message is generic."""
        raw = {"outcome": "failed", "failure-description": "boom"}
        assert format_failure_description(raw) == "Operation failed: boom"

    def test_format_failure_unexpected_response(self):
        """A failure without description reports the raw response."""
        message = format_failure_description({"outcome": "failed"})
        assert message.startswith("An unexpected response was found.")

    def test_format_success_is_empty(self):
        """A successful outcome has no failure description."""
        assert format_failure_description({"outcome": "success"}) == ""


class TestFindFailedStep:
    """Tests for composite failure localization."""

    def test_step_with_description_wins(self):
        """Rolled-back earlier steps do not count as the failing step."""
        raw = {
            "outcome": "failed",
            "result": {
                "step-1": {"outcome": "failed", "rolled-back": True},
                "step-2": {"outcome": "failed", "failure-description": "dup", "rolled-back": True},
            },
        }
        assert find_failed_step(raw) == (1, "step-2")

    def test_numeric_ordering(self):
        """step-10 sorts after step-9."""
        raw = {
            "outcome": "failed",
            "result": {
                "step-10": {"outcome": "failed"},
                "step-9": {"outcome": "failed"},
            },
        }
        assert find_failed_step(raw) == (8, "step-9")

    def test_from_description_text(self):
        """Without step results the description names the step."""
        raw = {
            "outcome": "failed",
            "failure-description": {"WFLYCTL0062: failed": {"Operation step-3": "bad"}},
        }
        assert find_failed_step(raw) == (2, "step-3")

    def test_no_step(self):
        """No step is found in a plain failure."""
        assert find_failed_step({"outcome": "failed", "failure-description": "x"}) == (None, None)


class TestResultInterpreter:
    """Tests for ResultInterpreter."""

    def test_success_extracts_result(self):
        """A successful reply yields its result value."""
        op = build_read_attribute_operation(Address(), "launch-type")
        result = ResultInterpreter().interpret({"outcome": "success", "result": "STANDALONE"}, op)
        assert result.success
        assert result.value == "STANDALONE"
        assert result.operation is op

    def test_success_shapes(self):
        """The result is shaped as requested."""
        raw = {"outcome": "success", "result": False}
        interpreter = ResultInterpreter()
        assert interpreter.interpret(raw, shape=ResultShape.STRING).value == "false"
        assert interpreter.interpret(raw, shape=ResultShape.LIST).value == ["false"]
        assert interpreter.interpret(raw, shape=ResultShape.RAW).value is False

    def test_composite_failure(self):
        """A composite failure names the failing step and rollback."""
        composite = build_composite_operation([
            build_add_operation(Address.parse("a=1")),
            build_add_operation(Address.parse("a=1,b=2")),
        ])
        raw = {
            "outcome": "failed",
            "failure-description": {"WFLYCTL0062: failed": {"Operation step-2": "WFLYCTL0212: Duplicate"}},
            "rolled-back": True,
            "result": {
                "step-1": {"outcome": "failed", "rolled-back": True},
                "step-2": {"outcome": "failed", "failure-description": "WFLYCTL0212: Duplicate"},
            },
        }
        result = ResultInterpreter().interpret(raw, composite)

        assert not result.success
        assert result.failed_step == 1
        assert result.failed_step_id == "step-2"
        assert result.rolled_back
        assert "WFLYCTL0212: Duplicate" in result.failure_description

    def test_plain_failure_has_no_step(self):
        """Plain operations never report a failed step."""
        op = build_add_operation(Address.parse("a=1"))
        raw = {"outcome": "failed", "failure-description": "Operation step-1 would be odd here"}
        result = ResultInterpreter().interpret(raw, op)
        assert result.failed_step is None

    def test_check_raises(self):
        """check raises OperationFailedError on failure."""
        op = build_add_operation(Address.parse("a=1"))
        with pytest.raises(OperationFailedError) as exc_info:
            ResultInterpreter().check({"outcome": "failed", "failure-description": "nope"}, op)
        assert exc_info.value.description == "Operation 'add' at address '/a=1' failed: nope"
        assert exc_info.value.failed_step is None
