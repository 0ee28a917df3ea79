"""Exceptions raised while parsing and running predicates."""


class XbError(Exception):
    """Base class for every error raised by this package."""


class NotSupportedError(XbError):
    """An operation, function or type combination is not supported."""


class InvalidDataError(XbError):
    """The input or the opcode stack holds invalid data."""


class NoSpaceError(XbError):
    """A stack has reached its maximum size."""


class NotFoundError(XbError):
    """Something that was looked up does not exist."""


class InvalidArgumentError(XbError):
    """An argument passed by the caller is invalid."""