"""Exception hierarchy for rowkit."""

from __future__ import annotations

from typing import Any


class RowkitError(Exception):
    """Base exception for all rowkit errors."""

    pass


class NotFoundError(RowkitError, LookupError):
    """Raised when a single-row fetch matched no row."""

    pass


class ValidationError(RowkitError, ValueError):
    """Raised for malformed selectors, options or bind destinations."""

    pass


class BindError(ValidationError):
    """Raised when a result cell cannot be decoded into its field."""

    def __init__(self, column: str, message: str) -> None:
        super().__init__(f"column {column!r}: {message}")
        self.column = column


class UnsupportedError(RowkitError, NotImplementedError):
    """Raised when a dialect or operation is not implemented."""

    pass


class DDLParseError(RowkitError, ValueError):
    """Raised when a CREATE TABLE statement cannot be tokenized."""

    pass


class ExecutionError(RowkitError):
    """Raised when the driver fails to execute a statement.

    The failing SQL text and its parameters are kept for diagnosis.
    """

    def __init__(self, message: str, sql: str, params: tuple[Any, ...] | list[Any] = ()) -> None:
        super().__init__(f"{message}\nsql: {sql}")
        self.sql = sql
        self.params = tuple(params)


class RegistryError(RowkitError):
    """Raised when a dialect is registered twice."""

    pass
