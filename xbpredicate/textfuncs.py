"""Built-in text methods of the predicate machine.

Each method takes the machine, the run-time stack and the per-run data.
It pops its arguments and pushes its result. It raises an
:class:`~xbpredicate.errors.XbError` when it cannot work on the arguments
it was given.
"""

from __future__ import annotations

from typing import Any

from .compare import _check_one_arg, _check_two_args, _is_int, _kind_name, parse_uint32
from .errors import NotSupportedError
from .opcode import LEVEL_UNSET, Opcode, integer_opcode, text_opcode
from .stack import Stack


def _is_str(op: Opcode) -> bool:
    return op.cmp_str()


def _pop_text_pair(stack: Stack) -> tuple[str | None, str | None]:
    """Pop two text arguments and return them as (haystack, needle)."""
    _check_two_args(stack, _is_str, _is_str)
    op1, op2 = stack.pop_two()
    return op2.text, op1.text


def lower_case(machine: Any, stack: Stack, exec_data: Any = None) -> None:
    """Replace the text on top of the stack with its lower-case form."""
    _check_one_arg(stack, _is_str)
    op = stack.pop()
    stack.push(text_opcode(None if op.text is None else op.text.lower()))


def upper_case(machine: Any, stack: Stack, exec_data: Any = None) -> None:
    """Replace the text on top of the stack with its upper-case form."""
    _check_one_arg(stack, _is_str)
    op = stack.pop()
    stack.push(text_opcode(None if op.text is None else op.text.upper()))


def contains(machine: Any, stack: Stack, exec_data: Any = None) -> None:
    """Push whether the first argument contains the second."""
    haystack, needle = _pop_text_pair(stack)
    stack.push_bool(haystack is not None and needle is not None and needle in haystack)


def starts_with(machine: Any, stack: Stack, exec_data: Any = None) -> None:
    """Push whether the first argument starts with the second."""
    haystack, prefix = _pop_text_pair(stack)
    stack.push_bool(
        haystack is not None and prefix is not None and haystack.startswith(prefix)
    )


def ends_with(machine: Any, stack: Stack, exec_data: Any = None) -> None:
    """Push whether the first argument ends with the second."""
    haystack, suffix = _pop_text_pair(stack)
    stack.push_bool(
        haystack is not None and suffix is not None and haystack.endswith(suffix)
    )


def to_string(machine: Any, stack: Stack, exec_data: Any = None) -> None:
    """Replace the integer on top of the stack with its decimal text."""
    _check_one_arg(stack, _is_int)
    op = stack.pop()
    stack.push(text_opcode(str(op.val)))


def to_number(machine: Any, stack: Stack, exec_data: Any = None) -> None:
    """Replace the text on top of the stack with the number it holds.

    Unset text gives False.
    """
    _check_one_arg(stack, _is_str)
    op = stack.pop()
    if op.text is None:
        stack.push_bool(False)
        return
    stack.push(integer_opcode(parse_uint32(op.text)))


def string_length(machine: Any, stack: Stack, exec_data: Any = None) -> None:
    """Replace the text on top of the stack with its length in UTF-8 bytes.

    Unset text gives False.
    """
    _check_one_arg(stack, _is_str)
    op = stack.pop()
    if op.text is None:
        stack.push_bool(False)
        return
    stack.push(integer_opcode(len(op.text.encode("utf-8"))))


def is_in(machine: Any, stack: Stack, exec_data: Any = None) -> None:
    """Push whether a needle equals any text of the haystack above it.

    The haystack is the run of opcodes on top of the stack that share one
    nesting level; the opcode just below that run is the needle.
    """
    size = len(stack)
    level = LEVEL_UNSET
    nr_args = 0
    for index in range(size - 1, 0, -1):
        op = stack.peek(index)
        if level != LEVEL_UNSET:
            if op.level != level:
                break
        else:
            level = op.level
        if not op.cmp_str():
            raise NotSupportedError(f"{_kind_name(op)} type not supported")
        nr_args += 1

    needle_op = stack.peek(size - (nr_args + 1))
    if needle_op is None or not needle_op.cmp_str():
        raise NotSupportedError(f"{_kind_name(needle_op)} type not supported")

    haystack: list[str] = []
    terminated = False
    for _ in range(nr_args):
        text = stack.pop().text
        if text is None:
            terminated = True
        elif not terminated:
            haystack.append(text)

    needle = stack.pop().text
    stack.push_bool(needle is not None and needle in haystack)