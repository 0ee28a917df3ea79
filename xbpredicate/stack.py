"""A bounded stack of opcodes used both for compiled predicates and at run time."""

from __future__ import annotations

from collections.abc import Iterator

from .errors import InvalidDataError, NoSpaceError
from .opcode import Opcode, bool_opcode


class Stack:
    """A last-in first-out stack of :class:`Opcode` with a fixed maximum size."""

    def __init__(self, max_size: int) -> None:
        max_size = int(max_size)
        if max_size < 0:
            raise ValueError(f"stack size {max_size} is negative")
        self.max_size = max_size
        self._items: list[Opcode] = []

    def push(self, opcode: Opcode) -> Opcode:
        """Push ``opcode`` and return it; raise NoSpaceError if the stack is full."""
        if len(self._items) >= self.max_size:
            raise NoSpaceError(f"stack is already at maximum size of {self.max_size}")
        self._items.append(opcode)
        return opcode

    def push_bool(self, value: bool) -> Opcode:
        """Push a boolean literal."""
        return self.push(bool_opcode(value))

    def pop(self) -> Opcode:
        """Remove and return the top opcode; raise InvalidDataError if empty."""
        if not self._items:
            raise InvalidDataError("stack is empty")
        return self._items.pop()

    def pop_two(self) -> tuple[Opcode, Opcode]:
        """Remove the top two opcodes and return them, top first.

        The stack is left untouched if it holds fewer than two opcodes.
        """
        if len(self._items) < 2:
            raise InvalidDataError("stack is empty")
        first = self._items.pop()
        second = self._items.pop()
        return first, second

    def peek(self, index: int) -> Opcode | None:
        """Return the opcode at ``index`` counted from the bottom, or None."""
        if not 0 <= index < len(self._items):
            return None
        return self._items[index]

    def peek_tail(self) -> Opcode | None:
        """Return the top opcode without removing it, or None if empty."""
        return self._items[-1] if self._items else None

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[Opcode]:
        return iter(self._items)

    def __str__(self) -> str:
        return ",".join(str(op) for op in self._items)