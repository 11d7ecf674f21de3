"""SQL Data Model - Declarative tables, associations and statements over DB-API connections."""

from sqldatamodel.config import SQL_DIALECTS, SchemaConfig, SqlDialect
from sqldatamodel.driver import CursorHandle, DbApiDriver
from sqldatamodel.errors import (
    AmbiguousJoinError,
    AmbiguousKeyError,
    BindingError,
    CompositionError,
    ConfigError,
    DataError,
    DataModelError,
    DataModelWarning,
    DeclarationError,
    DuplicateHandlerError,
    DuplicateRoleError,
    DuplicateSourceError,
    InvalidStateError,
    JoinColumnMismatchError,
    JoinError,
    KeyMismatchError,
    MissingForeignKeyError,
    MultiplicityError,
    NestedDataError,
    NestedReferenceWarning,
    StatementOptionError,
    TooManyRowsError,
    TransactionError,
    UnboundPlaceholderError,
    UnknownColumnTypeError,
    UnknownRoleError,
    UnknownSourceError,
)
from sqldatamodel.iterator import RowIterator
from sqldatamodel.join_resolver import FORCE_INNER, FORCE_LEFT, JoinKind, JoinPlan, JoinStep
from sqldatamodel.logging import configure_logging
from sqldatamodel.record import Record
from sqldatamodel.schema import Schema
from sqldatamodel.source import Source, Table, View
from sqldatamodel.sql_abstract import RawSql, SqlBuilder
from sqldatamodel.statement import Statement, Status
from sqldatamodel.types import ColumnType, Multiplicity

__all__ = [
    # Main API
    "Schema",
    "Source",
    "Table",
    "View",
    "Record",
    "Statement",
    "Status",
    "RowIterator",
    # Joins
    "FORCE_INNER",
    "FORCE_LEFT",
    "JoinKind",
    "JoinPlan",
    "JoinStep",
    # Metadata
    "ColumnType",
    "Multiplicity",
    # Collaborators
    "SqlBuilder",
    "RawSql",
    "DbApiDriver",
    "CursorHandle",
    # Configuration
    "SchemaConfig",
    "SqlDialect",
    "SQL_DIALECTS",
    "configure_logging",
    # Errors
    "DataModelError",
    "DeclarationError",
    "DuplicateSourceError",
    "DuplicateHandlerError",
    "DuplicateRoleError",
    "MultiplicityError",
    "JoinColumnMismatchError",
    "CompositionError",
    "UnknownColumnTypeError",
    "UnknownSourceError",
    "ConfigError",
    "InvalidStateError",
    "StatementOptionError",
    "BindingError",
    "UnboundPlaceholderError",
    "KeyMismatchError",
    "MissingForeignKeyError",
    "AmbiguousKeyError",
    "JoinError",
    "UnknownRoleError",
    "AmbiguousJoinError",
    "DataError",
    "NestedDataError",
    "TransactionError",
    "DataModelWarning",
    "TooManyRowsError",
    "NestedReferenceWarning",
]

__version__ = "0.1.0"
