import logging

import pytest

from xbpredicate.context import QueryContext
from xbpredicate.errors import (
    InvalidArgumentError,
    InvalidDataError,
    NoSpaceError,
    NotSupportedError,
)
from xbpredicate.machine import DebugFlag, Machine, ParseFlag
from xbpredicate.opcode import Opcode, OpcodeKind, integer_opcode, text_opcode
from xbpredicate.stack import Stack


@pytest.fixture
def machine():
    return Machine()


def test_parse_unoptimized_operator(machine):
    opcodes = machine.parse_full("'a'='a'", ParseFlag.NONE)
    assert str(opcodes) == "'a','a',eq()"
    assert [op.kind for op in opcodes] == [
        OpcodeKind.TEXT,
        OpcodeKind.TEXT,
        OpcodeKind.FUNCTION,
    ]


def test_parse_optimizes_to_true(machine):
    assert str(machine.parse("'a'='a'")) == "True"
    assert str(machine.parse("1<2")) == "True"


def test_always_false_predicate_rejected(machine):
    with pytest.raises(InvalidDataError):
        machine.parse("'a'='b'")
    with pytest.raises(InvalidDataError):
        machine.parse("2<1")


def test_run_unoptimized(machine):
    assert machine.run(machine.parse_full("'a'='a'", ParseFlag.NONE)) is True
    assert machine.run(machine.parse_full("'a'='b'", ParseFlag.NONE)) is False
    assert machine.run(machine.parse_full("1=1", ParseFlag.NONE)) is True
    assert machine.run(machine.parse_full("'5'=5", ParseFlag.NONE)) is True


def test_empty_text_rejected(machine):
    with pytest.raises(InvalidDataError):
        machine.parse_full("", ParseFlag.NONE)


def test_nested_function_levels(machine):
    opcodes = machine.parse_full("lower-case('ABC')='abc'", ParseFlag.NONE)
    assert opcodes.peek(0).level == 1
    assert opcodes.peek(0).text == "ABC"
    assert machine.run(opcodes) is True
    assert str(machine.parse("lower-case('ABC')='abc'")) == "True"


def test_nesting_limit(machine):
    ok = "(" * 20 + "'a'='a'" + ")" * 20
    assert machine.run(machine.parse_full(ok, ParseFlag.NONE)) is True
    too_deep = "(" * 21 + "'a'='a'" + ")" * 21
    with pytest.raises(InvalidDataError):
        machine.parse_full(too_deep, ParseFlag.NONE)


def test_unmatched_bracket(machine):
    with pytest.raises(InvalidDataError):
        machine.parse_full("lower-case('a'", ParseFlag.NONE)


def test_unknown_function(machine):
    with pytest.raises(NotSupportedError):
        machine.parse_full("foo('a')", ParseFlag.NONE)


def test_unparseable_text(machine):
    with pytest.raises(NotSupportedError):
        machine.parse_full("foo='a'", ParseFlag.NONE)


def test_opcode_func(machine):
    op = machine.opcode_func("eq")
    assert op.kind == OpcodeKind.FUNCTION
    assert op.text == "eq"
    assert op.val == 2
    with pytest.raises(NotSupportedError):
        machine.opcode_func("no-such-function")


def test_custom_method_gets_exec_data(machine):
    def answer(m, stack, exec_data):
        m.stack_push_integer(stack, exec_data)

    machine.add_method("answer", 0, answer)
    opcodes = machine.parse_full("answer()=42", ParseFlag.NONE)
    assert machine.run(opcodes, 42) is True
    assert machine.run(opcodes, 7) is False


def test_custom_operator(machine):
    machine.add_operator("~=", "contains")
    opcodes = machine.parse_full("'hello'~='ell'", ParseFlag.NONE)
    assert opcodes.peek(2).text == "contains"
    assert machine.run(opcodes) is True
    with pytest.raises(ValueError):
        machine.add_operator("", "eq")


def test_text_handler_sets_level(machine):
    seen = []

    def handler(m, opcodes, text):
        seen.append(text)
        if text == "yes":
            opcodes.push(integer_opcode(1))
            return True
        return False

    machine.add_text_handler(handler)
    opcodes = machine.parse_full("yes=1", ParseFlag.NONE)
    assert "yes" in seen
    assert opcodes.peek(0).level == 0
    assert opcodes.peek(0).val == 1
    assert machine.run(opcodes) is True


def test_opcode_fixup_called(machine):
    calls = []
    machine.add_opcode_fixup("TEXT,TEXT,FUNC:eq", lambda m, ops: calls.append(len(ops)))
    machine.parse_full("'a'='b'", ParseFlag.NONE)
    assert calls == [3]


def test_opcode_fixup_error_propagates(machine):
    def fixup(m, ops):
        raise InvalidArgumentError("refused")

    machine.add_opcode_fixup("TEXT,TEXT,FUNC:eq", fixup)
    with pytest.raises(InvalidArgumentError):
        machine.parse_full("'a'='a'", ParseFlag.NONE)


def test_stack_size(machine):
    assert machine.stack_size == 10
    with pytest.raises(ValueError):
        machine.stack_size = 0
    machine.stack_size = 2
    assert len(machine.new_stack()) == 0
    with pytest.raises(NoSpaceError):
        machine.parse_full("'a'='a'", ParseFlag.NONE)


def test_bindings(machine):
    opcodes = machine.parse_full("?=?", ParseFlag.NONE)
    context = QueryContext()
    context.bind_str(0, "a")
    context.bind_str(1, "a")
    assert machine.run_with_bindings(opcodes, context.bindings) is True
    context.bind_str(1, "b")
    assert machine.run_with_bindings(opcodes, context.bindings) is False


def test_missing_binding(machine):
    opcodes = machine.parse_full("'a'=?", ParseFlag.NONE)
    with pytest.raises(InvalidDataError):
        machine.run_with_bindings(opcodes, {})


def test_optimizer_keeps_bound_values(machine):
    optimized = machine.parse("'a'=?")
    plain = machine.parse_full("'a'=?", ParseFlag.NONE)
    assert str(optimized) == str(plain)
    context = QueryContext()
    context.bind_str(0, "a")
    assert machine.run_with_bindings(optimized, context.bindings) is True


def test_method_error_is_wrapped(machine):
    opcodes = machine.parse_full("'a'=?", ParseFlag.NONE)
    with pytest.raises(InvalidDataError, match="failed to call eq"):
        machine.run(opcodes)


def test_unbound_unset_opcode(machine):
    opcodes = Stack(4)
    opcodes.push(Opcode(OpcodeKind.BOUND_UNSET))
    with pytest.raises(InvalidDataError):
        machine.run(opcodes)


def test_unknown_kind(machine):
    opcodes = Stack(4)
    opcodes.push(Opcode(OpcodeKind.UNKNOWN))
    with pytest.raises(InvalidDataError):
        machine.run(opcodes)


def test_result_must_be_single_boolean(machine):
    opcodes = Stack(4)
    opcodes.push(text_opcode("a"))
    with pytest.raises(InvalidDataError):
        machine.run(opcodes)
    opcodes.push(text_opcode("b"))
    with pytest.raises(InvalidDataError):
        machine.run(opcodes)


def test_not_enough_arguments(machine):
    opcodes = Stack(4)
    opcodes.push(machine.opcode_func("eq"))
    with pytest.raises(NotSupportedError):
        machine.run(opcodes)


def test_stack_helpers(machine):
    stack = machine.new_stack()
    machine.stack_push_text(stack, "x")
    machine.stack_push_integer(stack, 3)
    first, second = machine.stack_pop_two(stack)
    assert first.val == 3
    assert second.text == "x"
    assert len(stack) == 0
    pushed = machine.stack_push(stack, text_opcode("y"))
    assert machine.stack_pop(stack) is pushed
    with pytest.raises(InvalidDataError):
        machine.stack_pop(stack)


def test_debug_logging(machine, caplog):
    machine.set_debug_flags(DebugFlag.SHOW_STACK | DebugFlag.SHOW_OPTIMIZER)
    with caplog.at_level(logging.DEBUG, logger="xbpredicate.machine"):
        opcodes = machine.parse_full("'a'='a'", ParseFlag.NONE)
        assert machine.run(opcodes) is True
    messages = [record.getMessage() for record in caplog.records]
    assert "running: eq()" in messages
    assert machine.debug_flags & DebugFlag.SHOW_STACK