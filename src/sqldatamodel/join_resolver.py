"""Turns a chain of role names into a join plan and a FROM clause."""

from __future__ import annotations

import weakref
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Iterable

from sqldatamodel.errors import AmbiguousJoinError, JoinError, UnknownRoleError
from sqldatamodel.logging import get_logger
from sqldatamodel.parsing.path_parser import PathStep, format_path, parse_path
from sqldatamodel.source import Source, Table

if TYPE_CHECKING:
    from sqldatamodel.config import SqlDialect
    from sqldatamodel.schema import Schema
    from sqldatamodel.source import View

logger = get_logger(__name__)


class JoinKind(str, Enum):
    INNER = "inner"
    LEFT = "left"


# Markers that force the kind of the next join in a role chain
FORCE_INNER = JoinKind.INNER
FORCE_LEFT = JoinKind.LEFT


@dataclass(frozen=True)
class JoinStep:
    """One joined table: where it comes from and how it is joined."""

    source: Table
    alias: str | None
    role: str
    predicate: str
    kind: JoinKind

    @property
    def reference(self) -> str:
        """Name under which the table's columns are qualified."""
        return self.alias or self.source.db_name

    def table_sql(self, dialect: SqlDialect) -> str:
        if self.alias:
            return dialect.table_alias % (self.source.db_name, self.alias)
        return self.source.db_name


@dataclass(frozen=True)
class JoinPlan:
    """An ordered join plan starting from one table."""

    start: Table
    steps: tuple[JoinStep, ...]
    parents: tuple[Source, ...]

    def from_clause(self, dialect: SqlDialect) -> tuple[str, str | None]:
        """Render the plan with a dialect's join templates.

        Joins are emitted in chain order. With a dialect that has no inner
        join syntax, leading inner joins become a comma separated FROM list
        and their conditions are returned as a WHERE condition.

        Returns:
            A tuple of (FROM clause, WHERE condition or None).

        Raises:
            JoinError: If the dialect cannot express an inner join placed
                after a left join.
        """
        start_sql = self.start.db_name
        steps = list(self.steps)
        where = None

        if dialect.inner_join is None:
            leading = []
            while steps and steps[0].kind is JoinKind.INNER:
                leading.append(steps.pop(0))
            if any(step.kind is JoinKind.INNER for step in steps):
                raise JoinError(
                    "This SQL dialect cannot express an inner join after a left join"
                )
            if leading:
                start_sql = ", ".join([start_sql] + [step.table_sql(dialect) for step in leading])
                where = " AND ".join(step.predicate for step in leading)

        if not steps:
            return start_sql, where
        return _join_sql(start_sql, steps, dialect), where


def _template(step: JoinStep, dialect: SqlDialect) -> str:
    if step.kind is JoinKind.INNER:
        assert dialect.inner_join is not None
        return dialect.inner_join
    return dialect.left_join


def _join_sql(leftmost: str, steps: list[JoinStep], dialect: SqlDialect) -> str:
    if dialect.join_associativity == "right":
        # a JOIN (b JOIN (c) ON ...) ON ...
        pending = steps[-1]
        sql = pending.table_sql(dialect)
        for step in reversed(steps[:-1]):
            sql = _template(pending, dialect) % (step.table_sql(dialect), sql, pending.predicate)
            pending = step
        return _template(pending, dialect) % (leftmost, sql, pending.predicate)

    sql = leftmost
    for step in steps:
        sql = _template(step, dialect) % (sql, step.table_sql(dialect), step.predicate)
    return sql


def normalize_roles(tokens: Iterable[Any]) -> list[PathStep]:
    """Parse role tokens (names, path strings and JoinKind markers) into steps."""
    parts = []
    for token in tokens:
        if isinstance(token, JoinKind):
            parts.append("<=>" if token is JoinKind.INNER else "=>")
        else:
            parts.append(str(token))
    return parse_path(" ".join(parts))


class JoinResolver:
    """Resolves role chains against a schema's join graph."""

    def __init__(self, schema: Schema) -> None:
        self._schema_ref = weakref.ref(schema)
        self._views: dict[str, View] = {}

    @property
    def schema(self) -> Schema:
        schema = self._schema_ref()
        if schema is None:
            raise JoinError("The schema of this resolver no longer exists")
        return schema

    def resolve(self, start: Source, tokens: Iterable[Any]) -> JoinPlan:
        """Walk the join graph from ``start`` along ``tokens``.

        Each role is searched on the tables visited so far, most recent
        first. A role with a zero minimum multiplicity is a left join,
        otherwise an inner join; once a left join is emitted, later joins
        stay left. A forced marker overrides this for the next role only.

        Raises:
            UnknownRoleError: If no visited table has a role.
            AmbiguousJoinError: If a table is referenced twice without alias.
        """
        if not isinstance(start, Table):
            raise JoinError(f"Joins must start from a table, not '{start.name}'")
        registry = self.schema.registry

        visited: list[tuple[Table, str]] = [(start, start.db_name)]
        references = {start.db_name}
        steps: list[JoinStep] = []
        left_emitted = False

        for path_step in normalize_roles(tokens):
            edge = None
            for table, reference in reversed(visited):
                edge = registry.lookup_join(table, path_step.role)
                if edge is not None:
                    break
            if edge is None:
                raise UnknownRoleError(path_step.role, [table.name for table, _ in reversed(visited)])

            if path_step.forced is not None:
                kind = JoinKind(path_step.forced)
            elif left_emitted or edge.multiplicity.is_optional:
                kind = JoinKind.LEFT
            else:
                kind = JoinKind.INNER
            left_emitted = left_emitted or kind is JoinKind.LEFT

            target = registry.table(edge.target)
            target_reference = path_step.alias or target.db_name
            if target_reference in references:
                raise AmbiguousJoinError(
                    f"Table '{target_reference}' appears twice in the join chain; "
                    f"give role '{path_step.role}' an alias with '{path_step.role}|alias'"
                )
            references.add(target_reference)

            predicate = " AND ".join(
                f"{reference}.{left} = {target_reference}.{right}" for left, right in edge.column_map
            )
            steps.append(
                JoinStep(
                    source=target,
                    alias=path_step.alias,
                    role=path_step.role,
                    predicate=predicate,
                    kind=kind,
                )
            )
            visited.append((target, target_reference))

        parents: list[Source] = [start]
        for step in steps:
            if step.source not in parents:
                parents.append(step.source)
        return JoinPlan(start=start, steps=tuple(steps), parents=tuple(parents))

    def view_from_roles(self, start: Source, *tokens: Any) -> View:
        """Return the view joining ``start`` along ``tokens``.

        Views are cached per start table and normalized role path.
        """
        key = f"{start.name}: {format_path(normalize_roles(tokens))}"
        view = self._views.get(key)
        if view is not None:
            return view

        plan = self.resolve(start, tokens)
        from_clause, where = plan.from_clause(self.schema.config.dialect)
        view = self.schema.registry.make_view(f"AutoView({key})", from_clause, where, plan.parents)
        self._views[key] = view
        logger.debug("auto_view_created", view=view.name, from_clause=from_clause)
        return view
