"""Custom exception hierarchy for localstate."""

from __future__ import annotations


class LocalError(Exception):
    """Base exception for all localstate errors."""


class LocalConfigError(LocalError):
    """Invalid or missing configuration."""


class LocalValidationError(LocalError, ValueError):
    """Malformed key or path argument (e.g. absolute where relative is required)."""


class LocalIOError(LocalError):
    """Filesystem failure while creating a directory or reading/writing/removing a file."""

    def __init__(self, message: str, *, path: str = "") -> None:
        self.path = path
        super().__init__(message)


class LocalCodecError(LocalError):
    """Value could not be converted to or from its on-disk text form."""


class LocalEncodeError(LocalCodecError):
    """Value has a type the codec cannot represent."""


class LocalDecodeError(LocalCodecError):
    """Persisted payload is corrupt or malformed.

    Never treated as an absent value: a corrupt file must be repaired or
    removed by the caller.
    """


class LocalProgrammingError(LocalError, RuntimeError):
    """An internal invariant was violated.

    This is unreachable under correct use and is always surfaced loudly.
    """
