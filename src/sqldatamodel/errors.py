"""Exception and warning types for sqldatamodel.

Every exception derives from DataModelError and from the builtin that best
describes it, so callers may catch either. Non-fatal conditions are warning
categories: they are issued through ``warnings.warn`` and logged, and never
interrupt control flow.
"""

from __future__ import annotations

from typing import Any, Iterable


class DataModelError(Exception):
    """Base class for all sqldatamodel errors."""


# ---- Declaration errors (fatal at setup time) ----


class DeclarationError(DataModelError, ValueError):
    """Invalid schema declaration."""


class DuplicateSourceError(DeclarationError):
    """A table or view name is already registered."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Source '{name}' is already declared")
        self.name = name


class DuplicateHandlerError(DeclarationError):
    """A column handler would silently replace another one."""

    def __init__(self, source: str, column: str, handler_name: str) -> None:
        super().__init__(
            f"Handler '{handler_name}' for column '{column}' in '{source}' "
            f"is already defined (pass replace=True to override)"
        )
        self.source = source
        self.column = column
        self.handler_name = handler_name


class DuplicateRoleError(DeclarationError):
    """A role or navigation name is already defined on a source."""

    def __init__(self, source: str, role: str) -> None:
        super().__init__(f"Role '{role}' is already defined in '{source}'")
        self.source = source
        self.role = role


class MultiplicityError(DeclarationError):
    """Malformed or incompatible multiplicity."""


class JoinColumnMismatchError(DeclarationError):
    """Both sides of an association must name the same number of columns."""


class CompositionError(DeclarationError):
    """Invalid composition ownership."""


class UnknownColumnTypeError(DeclarationError):
    """No column type is registered under that name."""


class UnknownSourceError(DeclarationError, KeyError):
    """No table or view is registered under that name."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Source '{name}' not found")
        self.name = name

    def __str__(self) -> str:
        return str(self.args[0])


class ConfigError(DataModelError, ValueError):
    """Invalid schema configuration."""


# ---- Statement errors ----


class InvalidStateError(DataModelError, RuntimeError):
    """Operation invoked in the wrong statement lifecycle state."""

    def __init__(self, operation: str, status: Any) -> None:
        super().__init__(f"Can't {operation} when in status {status}")
        self.operation = operation
        self.status = status


class StatementOptionError(DataModelError, ValueError):
    """Unknown or incompatible statement option."""


# ---- Binding errors (raised before any driver call) ----


class BindingError(DataModelError, ValueError):
    """Values cannot be bound to a statement."""


class UnboundPlaceholderError(BindingError):
    """Named placeholders are still unbound at execute time."""

    def __init__(self, names: Iterable[str], sql: str | None = None) -> None:
        self.names = sorted(names)
        self.sql = sql
        message = "Unbound placeholders (probably a missing foreign key): " + ", ".join(self.names)
        if sql:
            message += f" in SQL: {sql}"
        super().__init__(message)


class KeyMismatchError(BindingError):
    """Primary key values do not match the primary key columns."""


class MissingForeignKeyError(BindingError):
    """A record lacks the columns needed to follow a role."""


class AmbiguousKeyError(BindingError):
    """No single generated key can identify the inserted row."""


# ---- Join errors ----


class JoinError(DataModelError, ValueError):
    """A role chain cannot be turned into a join plan."""


class UnknownRoleError(JoinError, KeyError):
    """No visited source declares that role."""

    def __init__(self, role: str, sources: Iterable[str]) -> None:
        self.role = role
        self.sources = list(sources)
        super().__init__(f"Role '{role}' not found in {', '.join(self.sources)}")

    def __str__(self) -> str:
        return str(self.args[0])


class AmbiguousJoinError(JoinError):
    """The same table is referenced twice in a join chain without an alias."""


# ---- Data errors ----


class DataError(DataModelError, ValueError):
    """Record data cannot be stored."""


class NestedDataError(DataError):
    """A record contains a nested structure that is not a known component."""


# ---- Transactions ----


class TransactionError(DataModelError):
    """A transaction body raised; the transaction was rolled back.

    ``error`` is the exception raised by the body, ``rollback_error`` the
    exception raised by the rollback, if any.
    """

    def __init__(self, error: BaseException, rollback_error: BaseException | None = None) -> None:
        self.error = error
        self.rollback_error = rollback_error
        rollback_status = "OK" if rollback_error is None else f"FAILED {rollback_error}"
        super().__init__(f"Failed transaction: {error} (rollback: {rollback_status})")


# ---- Warnings ----


class DataModelWarning(UserWarning):
    """Base class for non-fatal sqldatamodel conditions."""


class TooManyRowsError(DataModelWarning):
    """More rows matched than the multiplicity or primary key allows."""


class NestedReferenceWarning(DataModelWarning):
    """Nested references were stripped from data passed to update()."""
