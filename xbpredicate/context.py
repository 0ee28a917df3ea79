"""The context a query runs in: result limit, flags and bound values."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import IntFlag

from .opcode import Opcode, OpcodeKind, UINT32_MAX


class QueryFlag(IntFlag):
    """Flags that change how a query is built and run."""

    NONE = 0
    OPTIMIZE = 1 << 0
    USE_INDEXES = 1 << 1
    REVERSE = 1 << 2
    FORCE_NODE_CACHE = 1 << 3


def _check_index(index: int) -> int:
    index = int(index)
    if index < 0:
        raise ValueError(f"binding index {index} is negative")
    return index


@dataclass
class QueryContext:
    """Result limit (0 for all), flags and values bound to ``?`` placeholders."""

    limit: int = 0
    flags: QueryFlag = QueryFlag.NONE
    bindings: dict[int, Opcode] = field(default_factory=dict)

    def copy(self) -> QueryContext:
        """Return an independent copy, keeping the bindings numbered from 0 without gaps."""
        bindings: dict[int, Opcode] = {}
        index = 0
        while index in self.bindings:
            op = self.bindings[index]
            bindings[index] = replace(op, tokens=list(op.tokens))
            index += 1
        return QueryContext(self.limit, self.flags, bindings)

    def clear(self) -> None:
        """Drop all bound values."""
        self.bindings.clear()

    def bind_str(self, index: int, text: str | None) -> None:
        """Bind a text value to placeholder ``index``."""
        self.bindings[_check_index(index)] = Opcode(OpcodeKind.BOUND_TEXT, text)

    def bind_val(self, index: int, value: int) -> None:
        """Bind an unsigned 32-bit integer to placeholder ``index``."""
        value = int(value)
        if not 0 <= value <= UINT32_MAX:
            raise ValueError(f"value {value} does not fit in 32 unsigned bits")
        self.bindings[_check_index(index)] = Opcode(OpcodeKind.BOUND_INTEGER, None, value)