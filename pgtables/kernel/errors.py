"""
Exception hierarchy for the table layer.

Validation errors are raised before a statement is built, so they never
leave partial writes behind. Engine errors wrap the SQLAlchemy exception
that caused them (available as ``__cause__``).

Messages name tables and columns only. Row values, plaintext passwords and
password hashes never appear in an error.
"""

from __future__ import annotations

from typing import Iterable, Optional, Sequence


class TableError(Exception):
    """Base class for all table layer errors."""


class NotImplementedTableError(TableError, NotImplementedError):
    """Raised when a schema hook (create, alter, create_table) was not overridden."""

    def __init__(self, table_name: str, hook: str, statement: str):
        self.table_name = table_name
        self.hook = hook
        super().__init__(
            f"{hook}() of table {table_name!r} must be overridden; "
            f"this is where your {statement} statement goes"
        )


class TableValidationError(TableError):
    """Base class for input rejected before reaching the engine."""


class DisallowedColumnError(TableValidationError):
    """Raised when a write payload names a column outside the allow-list."""

    def __init__(self, table_name: str, column: str, allowed: Iterable[str]):
        self.table_name = table_name
        self.column = column
        self.allowed = tuple(allowed)
        super().__init__(
            f"column {column!r} is not writable on {table_name!r}; "
            f"allowed columns: {', '.join(self.allowed) or '(none)'}"
        )


class EmptyPayloadError(TableValidationError):
    """Raised when an insert or update names no columns at all."""

    def __init__(self, table_name: str, operation: str):
        self.table_name = table_name
        self.operation = operation
        super().__init__(f"{operation} on {table_name!r} needs at least one column")


class UnauthorizedColumnAccessError(TableValidationError):
    """Raised when a read asks for columns outside the allow-list."""

    def __init__(self, table_name: str, columns: Sequence[str], allowed: Iterable[str]):
        self.table_name = table_name
        self.columns = tuple(columns)
        self.allowed = tuple(allowed)
        super().__init__(
            f"read access to {', '.join(map(repr, self.columns))} on {table_name!r} "
            f"is not authorized; readable columns: {', '.join(self.allowed) or '(none)'}"
        )


class WeakSecretError(TableValidationError):
    """Raised when a password does not meet the password policy."""

    def __init__(self, min_length: int):
        self.min_length = min_length
        super().__init__(f"Password must be at least {min_length} characters long")


class ImmutabilityViolationError(TableError):
    """Raised when application code tries to update or delete ledger rows."""

    def __init__(self, table_name: str, operation: str):
        self.table_name = table_name
        self.operation = operation
        super().__init__(
            f"ledger {table_name!r} is append-only; {operation} is not permitted"
        )


class EngineError(TableError):
    """Base class for failures reported by the database engine boundary."""

    def __init__(self, table_name: str, message: str, sqlstate: Optional[str] = None):
        self.table_name = table_name
        self.sqlstate = sqlstate
        super().__init__(f"{table_name!r}: {message}")


class ConnectionCancelledError(EngineError):
    """The statement was cancelled, timed out, or lost its connection."""


class EngineRejectionError(EngineError):
    """The engine executed the statement and refused it (constraint, trigger, privilege)."""


__all__ = [
    "TableError",
    "NotImplementedTableError",
    "TableValidationError",
    "DisallowedColumnError",
    "EmptyPayloadError",
    "UnauthorizedColumnAccessError",
    "WeakSecretError",
    "ImmutabilityViolationError",
    "EngineError",
    "ConnectionCancelledError",
    "EngineRejectionError",
]
