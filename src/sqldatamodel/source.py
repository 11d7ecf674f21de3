"""Row sources: physical tables and derived views."""

from __future__ import annotations

import weakref
from typing import TYPE_CHECKING, Any, Iterable, Mapping

from sqldatamodel import lifecycle
from sqldatamodel.errors import DataModelError, DeclarationError
from sqldatamodel.statement import Statement

if TYPE_CHECKING:
    from sqldatamodel.config import AutoColumnHandler
    from sqldatamodel.record import Record
    from sqldatamodel.schema import Schema
    from sqldatamodel.types import ColumnHandler, Multiplicity

# Marker for "not given", distinct from an explicit None
UNSET: Any = object()


class Source:
    """A named origin of rows.

    Sources are created by the schema's registry and keep a non-owning
    reference back to their schema. Column handlers and roles live in the
    registry; the accessors here only forward to it.
    """

    kind = "source"

    def __init__(
        self,
        schema: Schema,
        name: str,
        *,
        primary_key: Iterable[str] = (),
        default_columns: str | list[str] = "*",
        where: Any = None,
        select_implicitly_for: Any = UNSET,
    ) -> None:
        self._schema_ref = weakref.ref(schema)
        self.name = name
        self._primary_key = tuple(primary_key)
        self.default_columns = default_columns
        self.where = where
        self._select_implicitly_for = select_implicitly_for

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"

    @property
    def schema(self) -> Schema:
        schema = self._schema_ref()
        if schema is None:
            raise DataModelError(f"Schema of source '{self.name}' no longer exists")
        return schema

    @property
    def primary_key(self) -> tuple[str, ...]:
        return self._primary_key

    @property
    def parents(self) -> tuple[Source, ...]:
        return ()

    @property
    def db_from(self) -> str:
        raise NotImplementedError

    @property
    def select_implicitly_for(self) -> str | None:
        if self._select_implicitly_for is UNSET:
            return self.schema.config.select_implicitly_for
        return self._select_implicitly_for

    def column_handlers(self) -> dict[str, dict[str, ColumnHandler]]:
        """Return the handlers of every column, keyed by column then handler name."""
        return self.schema.registry.column_handlers(self)

    def roles(self) -> list[str]:
        """Return the names of roles that can be followed from this source."""
        return self.schema.registry.roles(self)

    # ---- queries ----

    def statement(self, **options: Any) -> Statement:
        """Create a statement on this source, refined with ``options``."""
        return Statement(self, **options)

    def select(self, **options: Any) -> Any:
        """Create a statement and return its result.

        The result shape is chosen with the ``result_as`` option
        (rows by default).
        """
        return self.statement().select(**options)

    def fetch(self, *key: Any, **options: Any) -> Record | None:
        """Fetch one record by primary key, or None if no row matches."""
        return self.statement().fetch(*key, **options)

    def join(self, *roles: Any) -> Statement:
        """Return a statement on the view joining this source along ``roles``."""
        return self.schema.view_from_roles(self, *roles).statement()


class Table(Source):
    """A source bound to one physical table."""

    kind = "table"

    def __init__(
        self,
        schema: Schema,
        name: str,
        db_name: str,
        primary_key: Iterable[str],
        *,
        default_columns: str | list[str] = "*",
        where: Any = None,
        select_implicitly_for: Any = UNSET,
        auto_insert_columns: Mapping[str, AutoColumnHandler] | None = None,
        auto_update_columns: Mapping[str, AutoColumnHandler] | None = None,
        no_update_columns: Iterable[str] | None = None,
    ) -> None:
        super().__init__(
            schema,
            name,
            primary_key=primary_key,
            default_columns=default_columns,
            where=where,
            select_implicitly_for=select_implicitly_for,
        )
        if not self._primary_key:
            raise DeclarationError(f"Table '{name}' needs a primary key")
        self.db_name = db_name
        self._auto_insert_columns = dict(auto_insert_columns or {})
        self._auto_update_columns = dict(auto_update_columns or {})
        self._no_update_columns = set(no_update_columns or ())

        # Composition bookkeeping, maintained by the registry
        self.components: list[str] = []
        self.component_of: dict[str, Multiplicity] = {}
        self.auto_expand_roles: tuple[str, ...] = ()

        self._fetch_cache: dict[Any, Record | None] = {}

    @property
    def db_from(self) -> str:
        return self.db_name

    @property
    def auto_insert_columns(self) -> dict[str, AutoColumnHandler]:
        """Schema-wide auto-insert columns merged with this table's own."""
        return {**self.schema.config.auto_insert_columns, **self._auto_insert_columns}

    @property
    def auto_update_columns(self) -> dict[str, AutoColumnHandler]:
        return {**self.schema.config.auto_update_columns, **self._auto_update_columns}

    @property
    def no_update_columns(self) -> set[str]:
        return self.schema.config.no_update_columns | self._no_update_columns

    def define_auto_expand(self, *component_roles: str) -> None:
        """Declare which component roles Record.auto_expand follows.

        Raises:
            DeclarationError: If a role is not a composition of this table.
        """
        for role in component_roles:
            if role not in self.components:
                raise DeclarationError(
                    f"Cannot auto_expand '{self.name}' on '{role}': not a composition"
                )
        self.auto_expand_roles = tuple(component_roles)

    # ---- queries ----

    def fetch_cached(self, *key: Any, **options: Any) -> Record | None:
        """Like fetch, memoized per connection and arguments.

        Meant for small read-mostly lookup tables; the cache lives as long
        as the table declaration.
        """
        connection = getattr(self.schema.driver, "connection", self.schema.driver)
        cache_key = (id(connection), _freeze(key), _freeze(options))
        if cache_key not in self._fetch_cache:
            self._fetch_cache[cache_key] = self.fetch(*key, **options)
        return self._fetch_cache[cache_key]

    # ---- data modification ----

    def insert(self, *records: Any) -> list[Any]:
        """Insert records and return their primary keys, in input order.

        Records are mappings; nested lists under composition roles are
        inserted as components. A header row followed by value rows is
        accepted as well: ``insert(["a", "b"], [1, 2], [3, 4])``.
        """
        return lifecycle.insert_records(self, *records)

    def update(self, *args: Any, **kwargs: Any) -> int:
        """Update one row by key, or many rows with ``set=`` and ``where=``.

        ``update(key, ..., {col: value})`` updates exactly the given columns
        of the row with that primary key. Returns the number of affected rows.
        """
        return lifecycle.update_records(self, *args, **kwargs)

    def delete(self, *args: Any, **kwargs: Any) -> int:
        """Delete one row by key or record, or many rows with ``where=``."""
        return lifecycle.delete_records(self, *args, **kwargs)


class View(Source):
    """A derived source over one or more parent sources.

    Column handlers are looked up in the view first, then in each parent in
    order; the first match wins. Roles are searched the same way.
    """

    kind = "view"

    def __init__(
        self,
        schema: Schema,
        name: str,
        columns: str | list[str],
        from_clause: str,
        where: Any = None,
        parents: Iterable[Source] = (),
        *,
        primary_key: Iterable[str] = (),
        select_implicitly_for: Any = UNSET,
    ) -> None:
        super().__init__(
            schema,
            name,
            primary_key=primary_key,
            default_columns=columns,
            where=where,
            select_implicitly_for=select_implicitly_for,
        )
        if not from_clause:
            raise DeclarationError(f"View '{name}' needs a FROM clause")
        self.from_clause = from_clause
        self._parents = tuple(parents)

    @property
    def parents(self) -> tuple[Source, ...]:
        return self._parents

    @property
    def db_from(self) -> str:
        return self.from_clause


def _freeze(value: Any) -> Any:
    if isinstance(value, Mapping):
        return tuple(sorted(((key, _freeze(val)) for key, val in value.items()), key=lambda kv: kv[0]))
    if isinstance(value, (list, tuple, set)):
        return tuple(_freeze(item) for item in value)
    try:
        hash(value)
    except TypeError:
        return repr(value)
    return value
