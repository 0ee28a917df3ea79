"""Built-in logical and comparison methods of the predicate machine.

Each method takes the machine, the run-time stack and the per-run data.
It pops its arguments and pushes its result. It raises an
:class:`~xbpredicate.errors.XbError` when it cannot work on the arguments
it was given.
"""

from __future__ import annotations

import logging
import operator
from collections.abc import Callable
from typing import Any

from .errors import InvalidDataError, NotSupportedError
from .opcode import UINT32_MAX, Opcode, kind_to_string
from .stack import Stack

_log = logging.getLogger(__name__)

_DEBUG_SHOW_SLOW_PATH = 1 << 3

OpcodeCheck = Callable[[Opcode], bool]


def parse_uint32(text: str) -> int:
    """Parse a plain base-10 unsigned number that fits in 32 bits.

    Leading whitespace, signs and any non-digit characters are rejected.
    """
    if text == "":
        raise InvalidDataError("Empty string is not a number")
    if not all(c in "0123456789" for c in text):
        raise InvalidDataError(f"“{text}” is not an unsigned number")
    number = int(text)
    if number > UINT32_MAX:
        raise InvalidDataError(f"Number “{text}” is out of bounds [0, {UINT32_MAX}]")
    return number


def _is_int(op: Opcode) -> bool:
    return op.cmp_val() and not op.cmp_str()


def _is_itx(op: Opcode) -> bool:
    return op.cmp_val() and op.cmp_str()


def _is_val_or_str(op: Opcode) -> bool:
    return op.cmp_str() or op.cmp_val()


def _kind_name(op: Opcode | None) -> str:
    if op is None:
        return "(null)"
    return kind_to_string(op.kind) or "(null)"


def _check_one_arg(stack: Stack, check: OpcodeCheck) -> None:
    head = stack.peek_tail()
    if head is None or not check(head):
        raise NotSupportedError(f"{_kind_name(head)} type not supported")


def _check_two_args(stack: Stack, check1: OpcodeCheck, check2: OpcodeCheck) -> None:
    head1: Opcode | None = None
    head2: Opcode | None = None
    size = len(stack)
    if size >= 2:
        head1 = stack.peek(size - 1)
        head2 = stack.peek(size - 2)
    if head1 is None or head2 is None or not check1(head1) or not check2(head2):
        raise NotSupportedError(
            f"{_kind_name(head1)}:{_kind_name(head2)} types not supported"
        )


def _strcmp0(a: str | None, b: str | None) -> int:
    """Order two optional strings, with None before any string."""
    if a is None:
        return 0 if b is None else -1
    if b is None:
        return 1
    return (a > b) - (a < b)


def _slow_path(machine: Any, what: str, op1: Opcode, op2: Opcode) -> None:
    flags = getattr(machine, "debug_flags", 0) or 0
    if int(flags) & _DEBUG_SHOW_SLOW_PATH:
        _log.debug("slow %s fallback of %s:%s", what, op1, op2)


def _compare(
    machine: Any,
    stack: Stack,
    cmp: Callable[[int, int], bool],
    itx_as_int: bool,
) -> None:
    """Pop two values and push ``cmp(first_argument, second_argument)``."""
    _check_two_args(stack, _is_val_or_str, _is_val_or_str)
    op1, op2 = stack.pop_two()

    # INTE:INTE
    if (_is_int(op1) and _is_int(op2)) or (
        itx_as_int and _is_itx(op1) and _is_itx(op2)
    ):
        stack.push_bool(cmp(op2.val, op1.val))
        return

    # TEXT:TEXT
    if op1.cmp_str() and op2.cmp_str():
        _slow_path(machine, "strcmp", op1, op2)
        stack.push_bool(cmp(_strcmp0(op2.text, op1.text), 0))
        return

    # INTE:TEXT
    if _is_int(op1) and op2.cmp_str():
        if op2.text is None:
            stack.push_bool(False)
            return
        _slow_path(machine, "atoi", op1, op2)
        stack.push_bool(cmp(parse_uint32(op2.text), op1.val))
        return

    # TEXT:INTE
    if op1.cmp_str() and _is_int(op2):
        if op1.text is None:
            stack.push_bool(False)
            return
        _slow_path(machine, "atoi", op1, op2)
        stack.push_bool(cmp(parse_uint32(op1.text), op2.val))
        return

    raise NotSupportedError(f"cannot compare {_kind_name(op1)} and {_kind_name(op2)}")


def logical_and(machine: Any, stack: Stack, exec_data: Any = None) -> None:
    """Push True if both integer arguments are non-zero."""
    _check_two_args(stack, _is_int, _is_int)
    op1, op2 = stack.pop_two()
    stack.push_bool(bool(op1.val) and bool(op2.val))


def logical_or(machine: Any, stack: Stack, exec_data: Any = None) -> None:
    """Push True if either integer argument is non-zero."""
    _check_two_args(stack, _is_int, _is_int)
    op1, op2 = stack.pop_two()
    stack.push_bool(bool(op1.val) or bool(op2.val))


def logical_not(machine: Any, stack: Stack, exec_data: Any = None) -> None:
    """Push True for unset text or a zero integer."""
    _check_one_arg(stack, _is_val_or_str)
    op = stack.pop()
    if op.cmp_str():
        stack.push_bool(op.text is None)
        return
    if _is_int(op):
        stack.push_bool(op.val == 0)
        return
    raise NotSupportedError(f"cannot invert {_kind_name(op)}")


def equal(machine: Any, stack: Stack, exec_data: Any = None) -> None:
    """Push whether the two arguments are equal."""
    _compare(machine, stack, operator.eq, itx_as_int=True)


def not_equal(machine: Any, stack: Stack, exec_data: Any = None) -> None:
    """Push whether the two arguments differ."""
    _compare(machine, stack, operator.ne, itx_as_int=True)


def less_than(machine: Any, stack: Stack, exec_data: Any = None) -> None:
    """Push whether the first argument is less than the second."""
    _compare(machine, stack, operator.lt, itx_as_int=False)


def greater_than(machine: Any, stack: Stack, exec_data: Any = None) -> None:
    """Push whether the first argument is greater than the second."""
    _compare(machine, stack, operator.gt, itx_as_int=False)


def less_equal(machine: Any, stack: Stack, exec_data: Any = None) -> None:
    """Push whether the first argument is less than or equal to the second."""
    _compare(machine, stack, operator.le, itx_as_int=False)


def greater_equal(machine: Any, stack: Stack, exec_data: Any = None) -> None:
    """Push whether the first argument is greater than or equal to the second."""
    _compare(machine, stack, operator.ge, itx_as_int=False)