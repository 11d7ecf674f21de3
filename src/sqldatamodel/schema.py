"""Schema: the declarations, configuration and connection of one database."""

from __future__ import annotations

from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, Callable, Iterator

from sqldatamodel.config import SchemaConfig
from sqldatamodel.driver import DbApiDriver
from sqldatamodel.errors import ConfigError, TransactionError
from sqldatamodel.join_resolver import JoinResolver
from sqldatamodel.logging import get_logger
from sqldatamodel.registry import MetadataRegistry
from sqldatamodel.sql_abstract import SqlBuilder

if TYPE_CHECKING:
    from sqldatamodel.association import JoinEdge
    from sqldatamodel.driver import CursorHandle
    from sqldatamodel.record import Record
    from sqldatamodel.source import Source, Table, View
    from sqldatamodel.statement import Statement
    from sqldatamodel.types import ColumnType

logger = get_logger(__name__)


class Schema:
    """Declared sources and associations, bound to a database connection.

    Example::

        schema = Schema(sqlite3.connect(":memory:", isolation_level=None))
        schema.declare_table("Employee", "T_Employee", "emp_id")
        schema.declare_table("Activity", "T_Activity", "act_id")
        schema.declare_composition(
            ("Employee", "employee", "1", "emp_id"),
            ("Activity", "activities", "*", "emp_id"),
        )
        employee = schema.table("Employee").fetch(123)
        activities = employee.follow("activities")

    Sources keep only a weak reference to their schema: callers must keep
    the Schema referenced for as long as they use its tables and views.
    """

    def __init__(
        self,
        connection: Any = None,
        *,
        config: SchemaConfig | None = None,
        builder: SqlBuilder | None = None,
        driver: DbApiDriver | None = None,
        **options: Any,
    ) -> None:
        """Initialize the schema.

        Args:
            connection: A DB-API connection, wrapped in a DbApiDriver. May be
                omitted when ``driver`` is given or when the schema is only
                used for declarations.
            config: Schema settings. Mutually exclusive with ``options``.
            builder: SQL builder; a default SqlBuilder is used otherwise.
            driver: Driver to use instead of wrapping ``connection``.
            **options: SchemaConfig fields, e.g. ``dialect="MsAccess"``.

        Raises:
            ConfigError: If both ``config`` and options are given, or an
                option is invalid.
        """
        if config is not None and options:
            raise ConfigError("Pass either a SchemaConfig or configuration options, not both")
        self.config = config or SchemaConfig.from_options(**options)
        self.builder = builder or SqlBuilder()
        if driver is None and connection is not None:
            driver = DbApiDriver(connection)
        self._driver = driver
        self.registry = MetadataRegistry(self)
        self.join_resolver = JoinResolver(self)
        self.last_handle: CursorHandle | None = None

    # ---- connection ----

    @property
    def driver(self) -> DbApiDriver:
        if self._driver is None:
            raise ConfigError("This schema has no database connection")
        return self._driver

    @driver.setter
    def driver(self, driver: DbApiDriver) -> None:
        self._driver = driver

    def do(self, sql: str, binds: list[Any] | None = None) -> CursorHandle:
        """Run one SQL statement and return its handle."""
        handle = self.driver.do(sql, binds or [])
        if self.config.keep_last_handle:
            self.last_handle = handle
        return handle

    # ---- declarations ----

    def declare_table(self, name: str, db_name: str | None = None, *primary_key: str, **options: Any) -> Table:
        return self.registry.declare_table(name, db_name, *primary_key, **options)

    def declare_view(self, name: str, columns: Any, from_clause: str, where: Any = None, parent_sources: Any = (), **options: Any) -> View:
        return self.registry.declare_view(name, columns, from_clause, where, parent_sources, **options)

    def declare_association(self, side_a: Any, side_b: Any) -> list[JoinEdge]:
        return self.registry.declare_association(side_a, side_b)

    def declare_composition(self, side_a: Any, side_b: Any) -> list[JoinEdge]:
        return self.registry.declare_composition(side_a, side_b)

    def register_column_handler(self, source: Any, column: str, handler_name: str, body: Callable[[Any], Any], replace: bool = False) -> None:
        self.registry.register_column_handler(source, column, handler_name, body, replace=replace)

    def define_column_type(self, type_name: str, handlers: Any = None, **more_handlers: Any) -> ColumnType:
        return self.registry.define_column_type(type_name, handlers, **more_handlers)

    def apply_column_type(self, source: Any, type_name: str, *columns: str, replace: bool = False) -> None:
        self.registry.apply_column_type(source, type_name, *columns, replace=replace)

    def define_navigation(self, source: Any, name: str, *roles: str) -> None:
        self.registry.define_navigation(source, name, *roles)

    # ---- lookups ----

    def source(self, name: str | Source) -> Source:
        return self.registry.source(name)

    def table(self, name: str | Source) -> Table:
        return self.registry.table(name)

    def tables(self) -> list[Table]:
        return self.registry.tables()

    def views(self) -> list[View]:
        return self.registry.views()

    def column_type(self, type_name: str) -> ColumnType:
        return self.registry.column_type(type_name)

    def lookup_join(self, source: str | Source, role: str) -> JoinEdge | None:
        return self.registry.lookup_join(source, role)

    # ---- navigation ----

    def follow_role(self, record: Record, role: str, **options: Any) -> Any:
        """Follow ``role`` from ``record`` with the resolver registered for it.

        Args:
            record: The record to start from.
            role: A role of the record's source or of one of its parents.
            **options: Select options passed to the resolver, e.g. ``where``
                or ``result_as``.
        """
        resolver = self.registry.role_resolver(record.source, role)
        return resolver(record, **options)

    def insert_into(self, record: Record, role: str, *records: Any) -> list[Any]:
        """Insert records on the many side of ``role``, linked to ``record``."""
        return self.registry.insert_resolver(record.source, role)(record, *records)

    def view_from_roles(self, start: str | Source, *tokens: Any) -> View:
        """Return the (cached) view joining ``start`` along a chain of roles.

        Tokens are role names, path strings (``"activities <=> employee"``)
        or the FORCE_INNER / FORCE_LEFT markers. Every token is read as a
        path, so the words ``inner`` and ``left`` (in any case) are join
        markers and cannot name a role.
        """
        return self.join_resolver.view_from_roles(self.source(start), *tokens)

    def join(self, start: str | Source, *tokens: Any) -> Statement:
        """Return a statement on the view joining ``start`` along a chain of roles."""
        return self.view_from_roles(start, *tokens).statement()

    # ---- transactions ----

    def do_transaction(self, body: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Run ``body`` inside a transaction and return its result.

        If the connection is already in a transaction, ``body`` runs inline
        and errors propagate unchanged. Otherwise the transaction is
        committed when ``body`` returns and rolled back when it raises.

        Raises:
            TransactionError: If ``body`` or the commit raised. The original
                exception is chained, and a failed rollback is reported in
                ``rollback_error``.
        """
        with self.transaction():
            return body(*args, **kwargs)

    @contextmanager
    def transaction(self) -> Iterator[Schema]:
        """Context manager form of do_transaction."""
        driver = self.driver
        if driver.in_transaction:
            yield self
            return

        driver.begin_transaction()
        logger.debug("transaction_begin")
        try:
            yield self
            driver.commit()
        except Exception as e:
            raise self._rollback(e) from e
        logger.debug("transaction_commit")

    def _rollback(self, error: Exception) -> TransactionError:
        rollback_error = None
        try:
            self.driver.rollback()
        except Exception as e:
            rollback_error = e
        logger.debug(
            "transaction_rollback",
            error=str(error),
            rollback_failed=rollback_error is not None,
        )
        return TransactionError(error, rollback_error)
