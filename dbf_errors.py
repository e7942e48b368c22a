"""
Exception types raised by the DBF modules.
"""

from typing import Optional


class DBFError(Exception):
    """Base class for all DBF errors."""


class ValidationError(DBFError, ValueError):
    """A field descriptor or a field value fails a declared constraint."""

    def __init__(self, message: str, field_name: Optional[str] = None):
        self.message = message
        self.field_name = field_name
        if field_name:
            message = f"{field_name}: {message}"
        super().__init__(message)


class UnsupportedVersionError(DBFError):
    """The version byte is not one of the supported dialects."""

    def __init__(self, message: str, version: int):
        self.version = version
        super().__init__(message)


class UnsupportedOperationError(DBFError):
    """The requested operation is not supported for this table."""


class MemoFileMissingError(DBFError):
    """A memo field was decoded but the memo file does not exist."""

    def __init__(self, message: str, memo_path: Optional[str] = None):
        self.memo_path = memo_path
        super().__init__(message)


class MalformedHeaderError(DBFError):
    """Header or field descriptor bytes are inconsistent."""


__all__ = [
    'DBFError', 'ValidationError', 'UnsupportedVersionError',
    'UnsupportedOperationError', 'MemoFileMissingError', 'MalformedHeaderError',
]
