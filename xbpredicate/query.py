"""Queries: an XPath split into sections, each with compiled predicates."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum

from .context import QueryFlag
from .errors import InvalidArgumentError, NotFoundError, NotSupportedError
from .machine import Machine, ParseFlag
from .opcode import INDEX_UNSET, Opcode, OpcodeKind
from .stack import Stack

_PARENT_NAMES = ("parent::*", "..")
_WILDCARD_NAMES = ("child::*", "*")
_ESCAPABLE = ("/", "t", "n")


class SectionKind(Enum):
    """What a query section selects."""

    ELEMENT = "element"
    WILDCARD = "wildcard"
    PARENT = "parent"


@dataclass
class QuerySection:
    """One ``/``-separated part of an XPath and its predicates."""

    kind: SectionKind = SectionKind.ELEMENT
    element: str | None = None
    element_idx: int = INDEX_UNSET
    predicates: list[Stack] = field(default_factory=list)

    def __str__(self) -> str:
        if self.kind is SectionKind.PARENT:
            out = ".."
        elif self.kind is SectionKind.WILDCARD:
            out = "*"
        else:
            out = self.element or ""
        if self.predicates:
            out += "[" + "".join(str(stack) for stack in self.predicates) + "]"
        return out


class Query:
    """A parsed XPath query.

    ``string_index`` maps strings to their index in a string table; it is used
    for element names and for ``$'...'`` indexed text.
    """

    def __init__(
        self,
        machine: Machine,
        xpath: str,
        flags: int = QueryFlag.OPTIMIZE | QueryFlag.USE_INDEXES,
        string_index: Mapping[str, int] | None = None,
    ) -> None:
        self.machine = machine
        self.xpath = xpath
        self.flags = QueryFlag(flags)
        self.limit = 0
        self.sections: list[QuerySection] = []
        self._string_index: Mapping[str, int] = string_index or {}
        self._parse(xpath)
        if not self.sections:
            raise NotSupportedError(f"No query sections for '{xpath}'")

    # parsing

    def _lookup(self, text: str | None) -> int:
        if text is None:
            return INDEX_UNSET
        return self._string_index.get(text, INDEX_UNSET)

    def _repair_indexed(self, op: Opcode) -> None:
        if op.val != INDEX_UNSET:
            return
        val = self._lookup(op.text)
        if val == INDEX_UNSET:
            raise InvalidArgumentError(f"indexed string '{op.text}' was unfound")
        op.val = val

    def _parse_predicate(self, section: QuerySection, text: str) -> None:
        parse_flags = ParseFlag.NONE
        if self.flags & QueryFlag.OPTIMIZE:
            parse_flags |= ParseFlag.OPTIMIZE
        opcodes = self.machine.parse_full(text, parse_flags)

        use_indexes = bool(self.flags & QueryFlag.USE_INDEXES)
        for op in opcodes:
            if op.kind != OpcodeKind.INDEXED_TEXT:
                continue
            if use_indexes:
                self._repair_indexed(op)
            else:
                op.kind = OpcodeKind.TEXT
        section.predicates.append(opcodes)

    def _parse_section(self, xpath: str) -> QuerySection:
        section = QuerySection()
        if xpath in _PARENT_NAMES:
            section.kind = SectionKind.PARENT
            return section

        start = 0
        for pos, char in enumerate(xpath):
            if start == 0 and char == "[":
                if section.element is None:
                    section.element = xpath[:pos]
                start = pos
            elif start > 0 and char == "]":
                self._parse_predicate(section, xpath[start + 1:pos])
                start = 0

        if start != 0:
            raise InvalidArgumentError(
                f"predicate {xpath[start:]} was unfinished, missing ']'"
            )

        if section.element is None:
            section.element = xpath
        if section.element in _WILDCARD_NAMES:
            section.kind = SectionKind.WILDCARD
            return section

        # an element missing from the string table simply matches nothing
        section.element_idx = self._lookup(section.element)
        return section

    def _parse(self, xpath: str) -> None:
        acc: list[str] = []
        pos = 0
        while pos < len(xpath):
            char = xpath[pos]
            if char == "\\" and xpath[pos + 1:pos + 2] in _ESCAPABLE and pos + 1 < len(xpath):
                acc.append(xpath[pos + 1])
                pos += 2
                continue
            if char == "/":
                if not acc:
                    raise NotFoundError("xpath section empty")
                self.sections.append(self._parse_section("".join(acc)))
                acc.clear()
            else:
                acc.append(char)
            pos += 1
        self.sections.append(self._parse_section("".join(acc)))

    # bindings

    def _bound_opcodes(self) -> Iterator[Opcode]:
        for section in self.sections:
            for stack in section.predicates:
                yield from (op for op in stack if op.is_binding())

    def _bound_opcode(self, index: int) -> Opcode:
        for count, op in enumerate(self._bound_opcodes()):
            if count == index:
                return op
        raise InvalidArgumentError(f"no bound opcode with index {index}")

    def bind_str(self, index: int, text: str | None) -> None:
        """Assign text to the ``index``-th ``?`` placeholder."""
        self._bound_opcode(index).bind_str(text)

    def bind_val(self, index: int, value: int) -> None:
        """Assign an unsigned 32-bit integer to the ``index``-th ``?`` placeholder."""
        self._bound_opcode(index).bind_val(value)

    def __str__(self) -> str:
        return "/".join(str(section) for section in self.sections)