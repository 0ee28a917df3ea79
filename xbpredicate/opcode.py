"""Opcodes: the values and functions that make up a compiled predicate."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum, IntFlag

UINT32_MAX = 0xFFFFFFFF
LEVEL_UNSET = 0xFF
INDEX_UNSET = UINT32_MAX
TOKEN_MAX = 32


class OpcodeFlag(IntFlag):
    """Bits that make up an opcode kind."""

    UNKNOWN = 0
    INTEGER = 1 << 0
    TEXT = 1 << 1
    FUNCTION = 1 << 2
    BOUND = 1 << 3
    BOOLEAN = 1 << 4
    TOKENIZED = 1 << 5


class OpcodeKind(IntEnum):
    """The kinds of opcode, built from :class:`OpcodeFlag` bits."""

    UNKNOWN = 0
    INTEGER = OpcodeFlag.INTEGER
    TEXT = OpcodeFlag.TEXT
    FUNCTION = OpcodeFlag.FUNCTION | OpcodeFlag.INTEGER
    BOUND_UNSET = OpcodeFlag.BOUND
    BOUND_INTEGER = OpcodeFlag.BOUND | OpcodeFlag.INTEGER
    BOUND_TEXT = OpcodeFlag.BOUND | OpcodeFlag.TEXT
    INDEXED_TEXT = OpcodeFlag.INTEGER | OpcodeFlag.TEXT
    BOOLEAN = OpcodeFlag.INTEGER | OpcodeFlag.BOOLEAN
    BOUND_INDEXED_TEXT = OpcodeFlag.BOUND | OpcodeFlag.INTEGER | OpcodeFlag.TEXT


_SPECIAL_NAMES = {
    OpcodeKind.INTEGER: "INTE",
    OpcodeKind.BOUND_UNSET: "BIND",
    OpcodeKind.BOUND_TEXT: "?TXT",
    OpcodeKind.BOUND_INDEXED_TEXT: "?ITX",
    OpcodeKind.BOUND_INTEGER: "?INT",
    OpcodeKind.INDEXED_TEXT: "TEXI",
    OpcodeKind.BOOLEAN: "BOOL",
}

_FROM_NAMES = {
    "FUNC": OpcodeKind.FUNCTION,
    "TEXT": OpcodeKind.TEXT,
    "INTE": OpcodeKind.INTEGER,
    "BIND": OpcodeKind.BOUND_INTEGER,
    "?TXT": OpcodeKind.BOUND_TEXT,
    "?ITX": OpcodeKind.BOUND_INDEXED_TEXT,
    "?INT": OpcodeKind.BOUND_INTEGER,
    "TEXI": OpcodeKind.INDEXED_TEXT,
    "BOOL": OpcodeKind.BOOLEAN,
}


def kind_to_string(kind: int) -> str | None:
    """Return the four-letter name of an opcode kind, or None if it has none."""
    kind = int(kind)
    for special, name in _SPECIAL_NAMES.items():
        if kind == special:
            return name
    if kind & OpcodeFlag.FUNCTION:
        return "FUNC"
    if kind & OpcodeFlag.TEXT:
        return "TEXT"
    return None


def kind_from_string(text: str | None) -> OpcodeKind:
    """Return the opcode kind for a four-letter name, or UNKNOWN."""
    return _FROM_NAMES.get(text, OpcodeKind.UNKNOWN)


def _check_uint32(value: int) -> int:
    value = int(value)
    if not 0 <= value <= UINT32_MAX:
        raise ValueError(f"value {value} does not fit in 32 unsigned bits")
    return value


@dataclass
class Opcode:
    """A single opcode: a literal, a bound value or a function reference."""

    bits: int
    text: str | None = None
    val: int = 0
    level: int = LEVEL_UNSET
    tokens: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.bits = int(self.bits)

    @property
    def kind(self) -> OpcodeKind | int:
        """The opcode kind without the tokenized flag."""
        bits = self.bits & ~OpcodeFlag.TOKENIZED
        try:
            return OpcodeKind(bits)
        except ValueError:
            return bits

    @kind.setter
    def kind(self, kind: int) -> None:
        self.bits = int(kind)

    def has_flag(self, flag: int) -> bool:
        """Return True if any bit of ``flag`` is set."""
        return (self.bits & int(flag)) > 0

    def add_flag(self, flag: int) -> None:
        """Set the bits of ``flag``."""
        self.bits |= int(flag)

    def _cmp_int(self) -> bool:
        mask = OpcodeFlag.INTEGER | OpcodeFlag.TEXT
        return (self.bits & mask) == OpcodeFlag.INTEGER

    def _cmp_itx(self) -> bool:
        mask = OpcodeFlag.INTEGER | OpcodeFlag.TEXT
        return (self.bits & mask) == mask

    def cmp_val(self) -> bool:
        """Return True if the opcode can be compared by its integer value."""
        return self._cmp_int() or self._cmp_itx()

    def cmp_str(self) -> bool:
        """Return True if the opcode can be compared by its text."""
        return self.has_flag(OpcodeFlag.TEXT)

    def is_binding(self) -> bool:
        """Return True if the opcode is a bound value."""
        return self.has_flag(OpcodeFlag.BOUND)

    def signature(self) -> str:
        """Return the signature used to look up fixups, e.g. ``FUNC:eq``."""
        sig = kind_to_string(self.bits) or ""
        if self.bits == OpcodeKind.FUNCTION:
            sig += ":" + (self.text if self.text is not None else "???")
        return sig

    def append_token(self, token: str) -> bool:
        """Add a search token; return False once the token list is full."""
        if not token:
            raise ValueError("token must be a non-empty string")
        if len(self.tokens) >= TOKEN_MAX:
            return False
        self.tokens.append(token)
        self.bits |= OpcodeFlag.TOKENIZED
        return True

    def bind_str(self, text: str | None) -> None:
        """Turn the opcode into a bound text value."""
        self.bits = int(OpcodeKind.BOUND_TEXT)
        self.text = text

    def bind_val(self, value: int) -> None:
        """Turn the opcode into a bound integer value."""
        self.bits = int(OpcodeKind.BOUND_INTEGER)
        self.text = None
        self.val = _check_uint32(value)

    def _display_text(self) -> str:
        return "(null)" if self.text is None else self.text

    def _describe(self) -> str:
        bits = self.bits
        if bits == OpcodeKind.INDEXED_TEXT:
            out = f"$'{self._display_text()}'"
        elif bits == OpcodeKind.INTEGER:
            out = f"{self.val}"
        elif bits in (OpcodeKind.BOUND_TEXT, OpcodeKind.BOUND_INDEXED_TEXT):
            out = f"?'{self._display_text()}'"
        elif bits == OpcodeKind.BOUND_INTEGER:
            out = f"?{self.val}"
        elif bits == OpcodeKind.BOOLEAN:
            return "True" if self.val else "False"
        elif bits & OpcodeFlag.FUNCTION:
            out = f"{self._display_text()}()"
        elif bits & OpcodeFlag.TEXT:
            out = f"'{self._display_text()}'"
        else:
            out = f"kind:0x{bits:x}"
        if self.level > 0:
            out += f"^{self.level}"
        return out

    def __str__(self) -> str:
        out = self._describe()
        if self.bits & OpcodeFlag.TOKENIZED:
            out += "[" + ",".join(self.tokens) + "]"
        return out


def text_opcode(text: str | None) -> Opcode:
    """Create a text literal."""
    return Opcode(OpcodeKind.TEXT, text)


def integer_opcode(value: int) -> Opcode:
    """Create an unsigned 32-bit integer literal."""
    return Opcode(OpcodeKind.INTEGER, None, _check_uint32(value))


def bool_opcode(value: bool) -> Opcode:
    """Create a boolean literal."""
    return Opcode(OpcodeKind.BOOLEAN, None, 1 if value else 0)


def bind_opcode() -> Opcode:
    """Create a placeholder to be bound to a value at run time."""
    return Opcode(OpcodeKind.BOUND_INTEGER, None, 0)


def function_opcode(name: str, index: int) -> Opcode:
    """Create a reference to the registered function ``name`` at ``index``."""
    return Opcode(OpcodeKind.FUNCTION, name, index)


def indexed_text_opcode(text: str | None, index: int) -> Opcode:
    """Create a text literal that also carries a string-table index."""
    return Opcode(OpcodeKind.INDEXED_TEXT, text, _check_uint32(index))