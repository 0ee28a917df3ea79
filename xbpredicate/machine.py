"""The predicate machine: parses XPath-style predicates into opcodes and runs them."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, replace
from enum import IntFlag
from typing import Any

from . import compare, textfuncs
from .errors import InvalidDataError, NotSupportedError, XbError
from .opcode import (
    INDEX_UNSET,
    Opcode,
    OpcodeKind,
    bind_opcode,
    function_opcode,
    indexed_text_opcode,
    integer_opcode,
    text_opcode,
)
from .stack import Stack

_log = logging.getLogger(__name__)

STACK_LEVELS_MAX = 20
DEFAULT_STACK_SIZE = 10
_OPTIMIZE_PASSES = 10

MethodFunc = Callable[["Machine", Stack, Any], None]
TextHandlerFunc = Callable[["Machine", Stack, str], bool]
OpcodeFixupFunc = Callable[["Machine", Stack], None]

_BOUND_KINDS = frozenset(
    {OpcodeKind.BOUND_TEXT, OpcodeKind.BOUND_INDEXED_TEXT, OpcodeKind.BOUND_INTEGER}
)
_LITERAL_KINDS = frozenset(
    {OpcodeKind.TEXT, OpcodeKind.BOOLEAN, OpcodeKind.INTEGER, OpcodeKind.INDEXED_TEXT}
)


class DebugFlag(IntFlag):
    """What the machine logs at debug level."""

    NONE = 0
    SHOW_STACK = 1 << 0
    SHOW_PARSING = 1 << 1
    SHOW_OPTIMIZER = 1 << 2
    SHOW_SLOW_PATH = 1 << 3


class ParseFlag(IntFlag):
    """Flags that control parsing."""

    NONE = 0
    OPTIMIZE = 1 << 0


@dataclass
class _Method:
    index: int
    name: str
    n_opcodes: int
    callback: MethodFunc


@dataclass(frozen=True)
class _Operator:
    text: str
    name: str


_BUILTIN_METHODS: tuple[tuple[str, int, MethodFunc], ...] = (
    ("and", 2, compare.logical_and),
    ("or", 2, compare.logical_or),
    ("eq", 2, compare.equal),
    ("ne", 2, compare.not_equal),
    ("lt", 2, compare.less_than),
    ("gt", 2, compare.greater_than),
    ("le", 2, compare.less_equal),
    ("ge", 2, compare.greater_equal),
    ("not", 1, compare.logical_not),
    ("lower-case", 1, textfuncs.lower_case),
    ("upper-case", 1, textfuncs.upper_case),
    ("contains", 2, textfuncs.contains),
    ("starts-with", 2, textfuncs.starts_with),
    ("ends-with", 2, textfuncs.ends_with),
    ("string", 1, textfuncs.to_string),
    ("number", 1, textfuncs.to_number),
    ("string-length", 1, textfuncs.string_length),
    ("in", 0, textfuncs.is_in),
)

_BUILTIN_OPERATORS: tuple[tuple[str, str], ...] = (
    (" and ", "and"),
    (" or ", "or"),
    ("&&", "and"),
    ("||", "or"),
    ("!=", "ne"),
    ("<=", "le"),
    (">=", "ge"),
    ("==", "eq"),
    ("=", "eq"),
    (">", "gt"),
    ("<", "lt"),
)


def _restore(stack: Stack, snapshot: list[Opcode]) -> None:
    while len(stack):
        stack.pop()
    for op in snapshot:
        stack.push(op)


class Machine:
    """A stack machine that compiles predicates to opcodes and evaluates them."""

    def __init__(self) -> None:
        self.debug_flags = DebugFlag.NONE
        self._methods: list[_Method] = []
        self._operators: list[_Operator] = []
        self._text_handlers: list[TextHandlerFunc] = []
        self._fixups: dict[str, OpcodeFixupFunc] = {}
        self._stack_size = DEFAULT_STACK_SIZE
        for name, n_opcodes, callback in _BUILTIN_METHODS:
            self.add_method(name, n_opcodes, callback)
        for text, name in _BUILTIN_OPERATORS:
            self.add_operator(text, name)

    # configuration

    @property
    def stack_size(self) -> int:
        """Maximum stack size used for new parses and runs."""
        return self._stack_size

    @stack_size.setter
    def stack_size(self, size: int) -> None:
        size = int(size)
        if size <= 0:
            raise ValueError("stack size must be positive")
        self._stack_size = size

    def set_debug_flags(self, flags: int) -> None:
        """Choose what the machine logs."""
        self.debug_flags = DebugFlag(flags)

    def _debugging(self, flag: DebugFlag) -> bool:
        return bool(self.debug_flags & flag)

    def add_operator(self, text: str, name: str) -> None:
        """Make ``text`` an infix operator that calls the method ``name``."""
        if not text:
            raise ValueError("operator text must not be empty")
        if not name:
            raise ValueError("operator name must not be empty")
        self._operators.append(_Operator(text, name))

    def add_method(self, name: str, n_opcodes: int, callback: MethodFunc) -> None:
        """Register a method needing at least ``n_opcodes`` values on the stack.

        The callback takes the machine, the stack and the per-run data; it must
        leave the stack untouched when it raises.
        """
        if not name:
            raise ValueError("method name must not be empty")
        if not callable(callback):
            raise TypeError("method callback must be callable")
        n_opcodes = int(n_opcodes)
        if n_opcodes < 0:
            raise ValueError("n_opcodes must not be negative")
        self._methods.append(_Method(len(self._methods), name, n_opcodes, callback))

    def add_opcode_fixup(self, signature: str, callback: OpcodeFixupFunc) -> None:
        """Call ``callback`` on parsed opcodes whose signature equals ``signature``."""
        self._fixups[signature] = callback

    def add_text_handler(self, callback: TextHandlerFunc) -> None:
        """Add a handler that may push opcodes for a piece of text.

        The handler returns True when it handled the text.
        """
        self._text_handlers.append(callback)

    def opcode_func(self, name: str) -> Opcode:
        """Return a function opcode for the registered method ``name``."""
        for method in self._methods:
            if method.name == name:
                return function_opcode(name, method.index)
        raise NotSupportedError(f"built-in function not found: {name}")

    # parsing

    def _add_func(self, opcodes: Stack, name: str, level: int) -> None:
        op = self.opcode_func(name)
        op.level = level
        opcodes.push(op)

    def _add_text(self, opcodes: Stack, text: str | None, level: int) -> None:
        if text is None:
            opcodes.push(text_opcode(None))
            return
        if not text:
            return

        for handler in self._text_handlers:
            size_before = len(opcodes)
            if handler(self, opcodes, text):
                for op in list(opcodes)[size_before:]:
                    op.level = level
                return

        if len(text) >= 2 and text[0] == "'" and text[-1] == "'":
            op = text_opcode(text[1:-1])
        elif len(text) >= 3 and text.startswith("$'") and text[-1] == "'":
            op = indexed_text_opcode(text[2:-1], INDEX_UNSET)
        elif text == "?":
            op = bind_opcode()
        else:
            try:
                op = integer_opcode(compare.parse_uint32(text))
            except InvalidDataError:
                raise NotSupportedError(f"cannot parse text or number `{text}`") from None
        op.level = level
        opcodes.push(op)

    def _first_operator(self, text: str) -> tuple[int, _Operator] | None:
        return next(
            (
                (pos, op)
                for pos in range(len(text))
                for op in self._operators
                if text.startswith(op.text, pos)
            ),
            None,
        )

    def _parse_section(self, opcodes: Stack, text: str, is_method: bool, level: int) -> None:
        if not text:
            return
        found = self._first_operator(text)
        if found is not None:
            pos, operator = found
            before = text[:pos]
            after = text[pos + len(operator.text):]
            if is_method:
                self._parse_section(opcodes, after, is_method, level)
                if before:
                    self._parse_section(opcodes, before, False, level)
                name = operator.name
                tail = opcodes.peek_tail()
                # several "eq" sections at a deeper level become "in"
                if tail is not None and tail.level != level and name == "eq":
                    name = "in"
                self._add_func(opcodes, name, level)
            else:
                if before:
                    self._parse_section(opcodes, before, False, level)
                self._parse_section(opcodes, after, is_method, level)
                self._add_func(opcodes, operator.name, level)
            return

        if is_method:
            try:
                self._add_text(opcodes, text, level)
            except XbError:
                if self._debugging(DebugFlag.SHOW_PARSING):
                    _log.debug("Failed to add text %s, trying function", text)
                self._add_func(opcodes, text, level)
            return
        self._add_text(opcodes, text, level)

    def _parse_sections(self, opcodes: Stack, text: str, is_method: bool, level: int) -> None:
        if not text:
            return
        if text[0] == ",":
            text = text[1:]
        first, *rest = text.split(",")
        for segment in reversed(rest):
            if is_method:
                self._add_func(opcodes, segment, level)
                is_method = False
            else:
                self._parse_section(opcodes, segment, True, level)
        if first:
            self._parse_section(opcodes, first, is_method, level)

    def _parse_text(self, opcodes: Stack, text: str, level: int) -> int:
        """Parse up to the ``)`` closing this level; return the characters consumed."""
        if level > STACK_LEVELS_MAX:
            raise InvalidDataError(
                f"nesting deeper than {STACK_LEVELS_MAX} levels supported: {text}"
            )
        tail = 0
        pos = 0
        while pos < len(text):
            char = text[pos]
            if self._debugging(DebugFlag.SHOW_PARSING):
                _log.debug("LVL %u\t%u:\t\t%c", level, pos, char)
            if char == "(":
                consumed = self._parse_text(opcodes, text[pos + 1:], level + 1)
                self._parse_sections(opcodes, text[tail:pos], True, level)
                pos += consumed
                tail = pos + 1
            elif char == ")":
                self._parse_sections(opcodes, text[tail:pos], False, level)
                return pos + 1
            pos += 1
        if level > 0:
            raise InvalidDataError(f"brackets did not match: {text}")
        self._parse_sections(opcodes, text[tail:], False, level)
        return 0

    @staticmethod
    def _signature(opcodes: Stack) -> str:
        return ",".join(op.signature() for op in opcodes)

    def _can_fold(self, opcodes: Stack, n_args: int) -> bool:
        # arguments still produced by a function or bound later are unknown now
        args = list(opcodes)[len(opcodes) - n_args:] if n_args else []
        return not any(op.kind == OpcodeKind.FUNCTION or op.is_binding() for op in args)

    def _optimize_one(self, opcodes: Stack, op: Opcode, results: Stack) -> None:
        if op.kind != OpcodeKind.FUNCTION:
            results.push(op)
            return
        method = self._methods[op.val]
        if method.n_opcodes > len(opcodes):
            raise InvalidDataError("predicate invalid -- not enough args")
        if not self._can_fold(opcodes, method.n_opcodes):
            results.push(op)
            return

        snapshot = list(opcodes)
        try:
            method.callback(self, opcodes, None)
        except XbError as exc:
            _restore(opcodes, snapshot)
            if self._debugging(DebugFlag.SHOW_OPTIMIZER):
                _log.debug("ignoring optimized call to %s(%s): %s", method.name, opcodes, exc)
            results.push(op)
            return

        result = self.stack_pop(opcodes)
        if result.kind != OpcodeKind.BOOLEAN or result.val:
            if self._debugging(DebugFlag.SHOW_OPTIMIZER):
                _log.debug("method ran, adding result %s", result)
            results.push(replace(result, level=op.level, tokens=list(result.tokens)))
            return
        raise InvalidDataError(f"the predicate will always evalulate to FALSE: {opcodes}")

    def _optimize(self, opcodes: Stack) -> None:
        if self._debugging(DebugFlag.SHOW_OPTIMIZER):
            _log.debug("before optimizing: %s", opcodes)
        results = Stack(len(opcodes))
        while len(opcodes):
            self._optimize_one(opcodes, self.stack_pop(opcodes), results)
        while len(results):
            opcodes.push(results.pop())
        if self._debugging(DebugFlag.SHOW_OPTIMIZER):
            _log.debug("after optimizing: %s", opcodes)

    def parse_full(self, text: str, flags: int) -> Stack:
        """Parse a predicate such as ``contains(text(),'xyx')`` into opcodes."""
        if not text:
            raise InvalidDataError("string was zero size")
        opcodes = Stack(self._stack_size)
        self._parse_text(opcodes, text, 0)

        signature = self._signature(opcodes)
        if self._debugging(DebugFlag.SHOW_OPTIMIZER):
            _log.debug("opcodes_sig=%s", signature)
        fixup = self._fixups.get(signature)
        if fixup is not None:
            fixup(self, opcodes)

        if int(flags) & ParseFlag.OPTIMIZE:
            for _ in range(_OPTIMIZE_PASSES):
                old_size = len(opcodes)
                if old_size == 1:
                    break
                self._optimize(opcodes)
                if old_size == len(opcodes):
                    break
        return opcodes

    def parse(self, text: str) -> Stack:
        """Parse and optimize a predicate."""
        return self.parse_full(text, ParseFlag.OPTIMIZE)

    # running

    def _show_stack(self, stack: Stack) -> None:
        if len(stack) == 0:
            _log.debug("stack is empty")
        else:
            _log.debug("stack: %s", stack)

    def _run_func(self, stack: Stack, opcode: Opcode, exec_data: Any) -> None:
        method = self._methods[opcode.val]
        if self._debugging(DebugFlag.SHOW_STACK):
            _log.debug("running: %s", opcode)
            self._show_stack(stack)
        if method.n_opcodes > len(stack):
            raise NotSupportedError(
                f"function required {method.n_opcodes} arguments, "
                f"stack only has {len(stack)}"
            )
        try:
            method.callback(self, stack, exec_data)
        except XbError as exc:
            raise type(exc)(f"failed to call {method.name}(): {exc}") from exc

    def run_with_bindings(
        self,
        opcodes: Stack,
        bindings: Mapping[int, Opcode] | None = None,
        exec_data: Any = None,
    ) -> bool:
        """Evaluate ``opcodes``, replacing bound placeholders from ``bindings`` in order."""
        stack = self.new_stack()
        bound_index = 0
        for opcode in opcodes:
            kind = opcode.kind
            if bindings is not None and kind in _BOUND_KINDS:
                bound = bindings.get(bound_index)
                bound_index += 1
                if bound is None:
                    raise InvalidDataError(
                        f"opcode was not bound at runtime, stack:{stack}, opcodes:{opcodes}"
                    )
                self.stack_push(stack, replace(bound, tokens=list(bound.tokens)))
                continue
            if kind == OpcodeKind.BOUND_UNSET:
                raise InvalidDataError(
                    f"opcode was not bound at runtime, stack:{stack}, opcodes:{opcodes}"
                )
            if kind == OpcodeKind.FUNCTION:
                self._run_func(stack, opcode, exec_data)
                continue
            if kind in _LITERAL_KINDS or (bindings is None and kind in _BOUND_KINDS):
                self.stack_push(stack, opcode)
                continue
            raise InvalidDataError(f"opcode kind {int(kind)} not recognised")

        if len(stack) != 1:
            raise InvalidDataError(f"{len(stack)} opcodes remain on the stack ({stack})")
        result = stack.pop()
        if result.kind != OpcodeKind.BOOLEAN:
            raise InvalidDataError(f"Expected boolean, got: {result}")
        return bool(result.val)

    def run(self, opcodes: Stack, exec_data: Any = None) -> bool:
        """Evaluate ``opcodes`` without any bound values."""
        return self.run_with_bindings(opcodes, None, exec_data)

    # stack helpers

    def new_stack(self) -> Stack:
        """Return an empty stack of the machine's size."""
        return Stack(self._stack_size)

    def stack_pop(self, stack: Stack) -> Opcode:
        """Pop an opcode; raise InvalidDataError if the stack is empty."""
        if self._debugging(DebugFlag.SHOW_STACK):
            top = stack.peek_tail()
            if top is not None:
                _log.debug("popping: %s", top)
            else:
                _log.debug("not popping: stack empty")
        opcode = stack.pop()
        if self._debugging(DebugFlag.SHOW_STACK):
            self._show_stack(stack)
        return opcode

    def stack_pop_two(self, stack: Stack) -> tuple[Opcode, Opcode]:
        """Pop two opcodes, top first."""
        if self._debugging(DebugFlag.SHOW_STACK):
            if len(stack) >= 2:
                _log.debug("popping1: %s", stack.peek(len(stack) - 1))
                _log.debug("popping2: %s", stack.peek(len(stack) - 2))
            else:
                _log.debug("not popping: stack empty")
        pair = stack.pop_two()
        if self._debugging(DebugFlag.SHOW_STACK):
            self._show_stack(stack)
        return pair

    def stack_push(self, stack: Stack, opcode: Opcode) -> Opcode:
        """Push an opcode; raise NoSpaceError if the stack is full."""
        if self._debugging(DebugFlag.SHOW_STACK):
            _log.debug("pushing generic opcode")
        return stack.push(opcode)

    def stack_push_text(self, stack: Stack, text: str | None) -> Opcode:
        """Push a text literal."""
        if self._debugging(DebugFlag.SHOW_STACK):
            _log.debug("pushing: %s", text)
        opcode = stack.push(text_opcode(text))
        if self._debugging(DebugFlag.SHOW_STACK):
            self._show_stack(stack)
        return opcode

    def stack_push_integer(self, stack: Stack, value: int) -> Opcode:
        """Push an unsigned 32-bit integer literal."""
        if self._debugging(DebugFlag.SHOW_STACK):
            _log.debug("pushing: %u", value)
        opcode = stack.push(integer_opcode(value))
        if self._debugging(DebugFlag.SHOW_STACK):
            self._show_stack(stack)
        return opcode