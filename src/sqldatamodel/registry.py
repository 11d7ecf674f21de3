"""Metadata registry: sources, column handlers, column types and the join graph."""

from __future__ import annotations

import weakref
from typing import TYPE_CHECKING, Any, Callable, Iterable, Mapping

from sqldatamodel.association import (
    AssociationEnd,
    AssociationResolver,
    InsertIntoResolver,
    JoinEdge,
    PathResolver,
    join_columns,
)
from sqldatamodel.errors import (
    CompositionError,
    DeclarationError,
    DuplicateHandlerError,
    DuplicateRoleError,
    DuplicateSourceError,
    UnknownColumnTypeError,
    UnknownRoleError,
    UnknownSourceError,
)
from sqldatamodel.parsing.path_parser import format_path, parse_path
from sqldatamodel.source import UNSET, Source, Table, View
from sqldatamodel.types import ColumnHandler, ColumnType

if TYPE_CHECKING:
    from sqldatamodel.schema import Schema

RoleResolver = Callable[..., Any]


class MetadataRegistry:
    """Holds the declarations of one schema.

    Every declaration is validated completely before anything is stored, so
    a failing declaration leaves the registry unchanged.
    """

    def __init__(self, schema: Schema) -> None:
        self._schema_ref = weakref.ref(schema)
        self._sources: dict[str, Source] = {}
        self._column_types: dict[str, ColumnType] = {}
        # source name -> column -> handler name -> body
        self._handlers: dict[str, dict[str, dict[str, ColumnHandler]]] = {}
        # (source name, role) -> edge / resolver
        self._edges: dict[tuple[str, str], JoinEdge] = {}
        self._resolvers: dict[tuple[str, str], RoleResolver] = {}
        self._inserters: dict[tuple[str, str], InsertIntoResolver] = {}

    @property
    def schema(self) -> Schema:
        schema = self._schema_ref()
        if schema is None:
            raise DeclarationError("The schema of this registry no longer exists")
        return schema

    # ---- sources ----

    def declare_table(
        self,
        name: str,
        db_name: str | None = None,
        *primary_key: str,
        column_types: Mapping[str, Iterable[str]] | None = None,
        column_handlers: Mapping[str, Mapping[str, ColumnHandler]] | None = None,
        auto_insert_columns: Mapping[str, Callable[..., Any]] | None = None,
        auto_update_columns: Mapping[str, Callable[..., Any]] | None = None,
        no_update_columns: Iterable[str] | None = None,
        default_columns: str | list[str] = "*",
        where: Any = None,
        select_implicitly_for: Any = UNSET,
    ) -> Table:
        """Register a table.

        Args:
            name: Name of the source in the schema.
            db_name: Physical table name (defaults to ``name``).
            *primary_key: Primary key columns; a single list is accepted too.
            column_types: Column types to apply, as ``{type_name: [columns]}``.
            column_handlers: Handlers as ``{column: {handler_name: body}}``.
            auto_insert_columns: ``{column: fn(record, table)}`` computed on insert.
            auto_update_columns: ``{column: fn(record, table)}`` computed on
                insert and update.
            no_update_columns: Columns removed from inserted and updated data.
            default_columns: Columns selected when a statement names none.
            where: Condition added to every select on the table.
            select_implicitly_for: Overrides the schema's ``FOR`` clause.

        Returns:
            The new Table. It refers to this schema weakly, so the Schema must
            stay referenced while the table is used.

        Raises:
            DuplicateSourceError: If the name is taken.
            UnknownColumnTypeError: If a column type is not defined.
            DeclarationError: If the primary key is empty or a handler is not callable.
        """
        self._check_new_source(name)
        if len(primary_key) == 1 and isinstance(primary_key[0], (list, tuple)):
            primary_key = tuple(primary_key[0])
        if not primary_key:
            raise DeclarationError(f"Table '{name}' needs a primary key")

        handlers = self._collect_handlers(name, column_types, column_handlers)
        for column, column_handlers_ in handlers.items():
            for handler_name, body in column_handlers_.items():
                self._check_handler_body(name, column, handler_name, body)

        table = Table(
            self.schema,
            name,
            db_name or name,
            primary_key,
            default_columns=default_columns,
            where=where,
            select_implicitly_for=select_implicitly_for,
            auto_insert_columns=auto_insert_columns,
            auto_update_columns=auto_update_columns,
            no_update_columns=no_update_columns,
        )
        self._sources[name] = table
        self._handlers[name] = handlers
        return table

    def declare_view(
        self,
        name: str,
        columns: str | list[str],
        from_clause: str,
        where: Any = None,
        parent_sources: Iterable[str | Source] = (),
        *,
        primary_key: Iterable[str] = (),
        column_handlers: Mapping[str, Mapping[str, ColumnHandler]] | None = None,
    ) -> View:
        """Register a view over parent sources.

        The view inherits column handlers and roles from its parents, looked
        up in the order given. Like tables, the view refers to its schema
        weakly; keep the Schema referenced while the view is used.
        """
        self._check_new_source(name)
        parents = tuple(self.source(parent) for parent in parent_sources)
        handlers = self._collect_handlers(name, None, column_handlers)
        for column, column_handlers_ in handlers.items():
            for handler_name, body in column_handlers_.items():
                self._check_handler_body(name, column, handler_name, body)

        view = View(
            self.schema,
            name,
            columns,
            from_clause,
            where,
            parents,
            primary_key=primary_key,
        )
        self._sources[name] = view
        self._handlers[name] = handlers
        return view

    def make_view(self, name: str, from_clause: str, where: Any, parents: Iterable[Source]) -> View:
        """Build a view that is not registered under a name (used for join views)."""
        return View(self.schema, name, "*", from_clause, where, tuple(parents))

    def _check_new_source(self, name: str) -> None:
        if not name:
            raise DeclarationError("A source needs a name")
        if name in self._sources:
            raise DuplicateSourceError(name)

    def _collect_handlers(
        self,
        source_name: str,
        column_types: Mapping[str, Iterable[str]] | None,
        column_handlers: Mapping[str, Mapping[str, ColumnHandler]] | None,
    ) -> dict[str, dict[str, ColumnHandler]]:
        """Merge declared column types and handlers, rejecting conflicting bodies."""
        handlers: dict[str, dict[str, ColumnHandler]] = {}

        def add(column: str, named: Mapping[str, ColumnHandler]) -> None:
            slot = handlers.setdefault(column, {})
            for handler_name, body in named.items():
                existing = slot.get(handler_name)
                if existing is not None and existing is not body:
                    raise DuplicateHandlerError(source_name, column, handler_name)
                slot[handler_name] = body

        for type_name, columns in (column_types or {}).items():
            column_type = self.column_type(type_name)
            for column in [columns] if isinstance(columns, str) else columns:
                add(column, column_type.handlers)
        for column, named in (column_handlers or {}).items():
            add(column, named)
        return handlers

    def source(self, name: str | Source) -> Source:
        """Return the source registered under ``name``.

        Raises:
            UnknownSourceError: If there is none.
        """
        if isinstance(name, Source):
            return name
        try:
            return self._sources[name]
        except KeyError:
            raise UnknownSourceError(name) from None

    def table(self, name: str | Source) -> Table:
        source = self.source(name)
        if not isinstance(source, Table):
            raise DeclarationError(f"'{source.name}' is not a table")
        return source

    def tables(self) -> list[Table]:
        return [source for source in self._sources.values() if isinstance(source, Table)]

    def views(self) -> list[View]:
        return [source for source in self._sources.values() if isinstance(source, View)]

    # ---- column handlers and types ----

    def register_column_handler(
        self,
        source: str | Source,
        column: str,
        handler_name: str,
        body: ColumnHandler,
        replace: bool = False,
    ) -> None:
        """Register a handler for one column of a source.

        Registering the same body twice is a no-op.

        Raises:
            DuplicateHandlerError: If another body is registered and
                ``replace`` is false.
        """
        source = self.source(source)
        self._check_handler_body(source.name, column, handler_name, body)
        self._check_handler_conflict(source.name, column, handler_name, body, replace)
        self._handlers[source.name].setdefault(column, {})[handler_name] = body

    def _check_handler_body(self, source: str, column: str, handler_name: str, body: Any) -> None:
        if not handler_name:
            raise DeclarationError(f"Handler for column '{column}' in '{source}' needs a name")
        if not callable(body):
            raise DeclarationError(
                f"Handler '{handler_name}' for column '{column}' in '{source}' is not callable"
            )

    def _check_handler_conflict(
        self, source: str, column: str, handler_name: str, body: ColumnHandler, replace: bool
    ) -> None:
        existing = self._handlers[source].get(column, {}).get(handler_name)
        if existing is not None and existing is not body and not replace:
            raise DuplicateHandlerError(source, column, handler_name)

    def define_column_type(
        self,
        type_name: str,
        handlers: Mapping[str, ColumnHandler] | None = None,
        **more_handlers: ColumnHandler,
    ) -> ColumnType:
        """Define a named bundle of handlers, e.g. ``from_store`` / ``to_store`` pairs.

        Raises:
            DeclarationError: If the type exists or a body is not callable.
        """
        if type_name in self._column_types:
            raise DeclarationError(f"Column type '{type_name}' is already defined")
        column_type = ColumnType(type_name, {**(handlers or {}), **more_handlers})
        self._column_types[type_name] = column_type
        return column_type

    def column_type(self, type_name: str) -> ColumnType:
        try:
            return self._column_types[type_name]
        except KeyError:
            raise UnknownColumnTypeError(f"Unknown column type: {type_name}") from None

    def apply_column_type(
        self, source: str | Source, type_name: str, *columns: str, replace: bool = False
    ) -> None:
        """Register every handler of a column type on each of ``columns``."""
        source = self.source(source)
        column_type = self.column_type(type_name)
        for column in columns:
            for handler_name, body in column_type.handlers.items():
                self._check_handler_conflict(source.name, column, handler_name, body, replace)
        for column in columns:
            self._handlers[source.name].setdefault(column, {}).update(column_type.handlers)

    def column_handlers(self, source: str | Source) -> dict[str, dict[str, ColumnHandler]]:
        """Return the effective handlers of a source.

        A view's own handlers come first, then those of its parents in
        order; for each (column, handler name) the first match wins.
        """
        source = self.source(source)
        merged: dict[str, dict[str, ColumnHandler]] = {}
        for current in self._lineage(source):
            for column, handlers in self._handlers.get(current.name, {}).items():
                slot = merged.setdefault(column, {})
                for handler_name, body in handlers.items():
                    slot.setdefault(handler_name, body)
        return merged

    def _lineage(self, source: Source) -> list[Source]:
        """The source followed by its parents, depth first, without repeats."""
        seen: list[Source] = []
        pending = [source]
        while pending:
            current = pending.pop(0)
            if any(current is other for other in seen):
                continue
            seen.append(current)
            pending[0:0] = list(current.parents)
        return seen

    # ---- associations ----

    def declare_association(self, side_a: Any, side_b: Any) -> list[JoinEdge]:
        """Declare an association between two tables.

        Each side is ``(source, role, multiplicity, *columns)``. One directed
        edge is installed per side whose role is not ``"none"``: the role of
        side A is followed from side B and leads to side A. Omitted columns
        default to the primary key of the "one" side. When both sides are
        "many", the columns of each side name two roles, and the role is a
        navigation through the linking table.

        Returns:
            The installed join edges (empty for many-to-many).
        """
        end_a, end_b = AssociationEnd.parse(side_a), AssociationEnd.parse(side_b)
        edges, navigations = self._plan_association(end_a, end_b)
        self._install(edges, navigations)
        return edges

    def declare_composition(self, side_a: Any, side_b: Any) -> list[JoinEdge]:
        """Declare an association where side A owns the records of side B.

        Compositions drive cascaded inserts and deletes.

        Raises:
            CompositionError: If side A is not "one", side B is not "many",
                or side B is already mandatorily owned by another table.
        """
        end_a, end_b = AssociationEnd.parse(side_a), AssociationEnd.parse(side_b)
        if end_a.multiplicity.max != 1:
            raise CompositionError(
                f"Max multiplicity of first class in a composition must be 1, got {end_a.multiplicity}"
            )
        if not end_b.multiplicity.is_many:
            raise CompositionError(
                f"Max multiplicity of second class in a composition must be > 1, got {end_b.multiplicity}"
            )
        if not end_b.has_role:
            raise CompositionError(f"Composition {end_a.source}/{end_b.source} needs a component role")
        component = self.table(end_b.source)
        composite = self.table(end_a.source)
        for owner, multiplicity in component.component_of.items():
            if multiplicity.min != 0:
                raise CompositionError(
                    f"{component.name} can't be a component of {composite.name} "
                    f"(already component of {owner})"
                )

        edges, navigations = self._plan_association(end_a, end_b, composite_role=end_b.role)
        self._install(edges, navigations)
        component.component_of[composite.name] = end_a.multiplicity
        composite.components.append(end_b.role)
        return edges

    def _plan_association(
        self,
        end_a: AssociationEnd,
        end_b: AssociationEnd,
        composite_role: str | None = None,
    ) -> tuple[list[JoinEdge], list[tuple[Source, str, str, str]]]:
        table_a, table_b = self.table(end_a.source), self.table(end_b.source)
        edges: list[JoinEdge] = []
        navigations: list[tuple[Source, str, str, str]] = []

        if end_a.multiplicity.is_many and end_b.multiplicity.is_many:
            for end, owner in ((end_a, table_b), (end_b, table_a)):
                if not end.has_role:
                    continue
                if len(end.columns) != 2:
                    raise DeclarationError(
                        f"Many-to-many role '{end.role}' must name 2 roles, got {end.columns!r}"
                    )
                navigations.append((owner, end.role, end.columns[0], end.columns[1]))
        else:
            cols_a, cols_b = join_columns(end_a, end_b, table_a.primary_key, table_b.primary_key)
            if end_a.has_role:
                edges.append(
                    JoinEdge(
                        source=table_b.name,
                        role=end_a.role,
                        target=table_a.name,
                        multiplicity=end_a.multiplicity,
                        column_map=tuple(zip(cols_b, cols_a)),
                    )
                )
            if end_b.has_role:
                edges.append(
                    JoinEdge(
                        source=table_a.name,
                        role=end_b.role,
                        target=table_b.name,
                        multiplicity=end_b.multiplicity,
                        column_map=tuple(zip(cols_a, cols_b)),
                        is_composition=end_b.role == composite_role,
                    )
                )

        planned = [(edge.source, edge.role) for edge in edges]
        planned += [(owner.name, role) for owner, role, _, _ in navigations]
        for key in planned:
            if key in self._resolvers or planned.count(key) > 1:
                raise DuplicateRoleError(*key)
        return edges, navigations

    def _install(self, edges: list[JoinEdge], navigations: list[tuple[Source, str, str, str]]) -> None:
        for edge in edges:
            key = (edge.source, edge.role)
            self._edges[key] = edge
            self._resolvers[key] = AssociationResolver(edge)
            if edge.multiplicity.is_many:
                self._inserters[key] = InsertIntoResolver(edge)
        for owner, role, first_role, path in navigations:
            self._resolvers[(owner.name, role)] = PathResolver(first_role, path)

    def define_navigation(self, source: str | Source, name: str, *roles: str) -> None:
        """Define a named resolver following a chain of roles.

        ``roles`` are role names, join markers, or path strings such as
        ``"activities <=> employee"``; at least two roles are needed.

        Raises:
            DuplicateRoleError: If the name is already a role of the source.
            DeclarationError: If the path is too short or starts with a marker.
        """
        source = self.source(source)
        steps = parse_path(" ".join(str(role) for role in roles))
        if len(steps) < 2:
            raise DeclarationError(f"Navigation '{name}' needs at least two roles")
        first = steps[0]
        if first.forced or first.alias:
            raise DeclarationError(
                f"Navigation '{name}': the first role cannot carry a join marker or alias"
            )
        if (source.name, name) in self._resolvers:
            raise DuplicateRoleError(source.name, name)
        self._resolvers[(source.name, name)] = PathResolver(first.role, format_path(steps[1:]))

    # ---- lookups ----

    def lookup_join(self, source: str | Source, role: str) -> JoinEdge | None:
        """Return the edge for ``role`` on a source or its parents, or None."""
        for current in self._lineage(self.source(source)):
            edge = self._edges.get((current.name, role))
            if edge is not None:
                return edge
        return None

    def role_resolver(self, source: str | Source, role: str) -> RoleResolver:
        """Return the resolver for ``role`` on a source or its parents.

        Raises:
            UnknownRoleError: If no source in the lineage has the role.
        """
        lineage = self._lineage(self.source(source))
        for current in lineage:
            resolver = self._resolvers.get((current.name, role))
            if resolver is not None:
                return resolver
        raise UnknownRoleError(role, [current.name for current in lineage])

    def insert_resolver(self, source: str | Source, role: str) -> InsertIntoResolver:
        """Return the insert-into resolver of a to-many role.

        Raises:
            UnknownRoleError: If the role is unknown or not a to-many role.
        """
        lineage = self._lineage(self.source(source))
        for current in lineage:
            inserter = self._inserters.get((current.name, role))
            if inserter is not None:
                return inserter
        raise UnknownRoleError(role, [current.name for current in lineage])

    def roles(self, source: str | Source) -> list[str]:
        names: list[str] = []
        for current in self._lineage(self.source(source)):
            for owner, role in self._resolvers:
                if owner == current.name and role not in names:
                    names.append(role)
        return names
