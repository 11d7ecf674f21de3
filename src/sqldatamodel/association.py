"""Association ends, join edges, and the resolvers installed for each role."""

from __future__ import annotations

import warnings
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Mapping, Sequence

from sqldatamodel.errors import (
    DataError,
    DeclarationError,
    JoinColumnMismatchError,
    MissingForeignKeyError,
    TooManyRowsError,
    UnknownRoleError,
)
from sqldatamodel.lifecycle import insert_records
from sqldatamodel.logging import get_logger
from sqldatamodel.sql_abstract import SqlBuilder
from sqldatamodel.types import Multiplicity

if TYPE_CHECKING:
    from sqldatamodel.record import Record

logger = get_logger(__name__)

# Role names meaning "no role on this side"
NO_ROLE = frozenset({"", "0", "none", '""', "''"})


@dataclass(frozen=True)
class AssociationEnd:
    """One side of an association declaration."""

    source: str
    role: str
    multiplicity: Multiplicity
    columns: tuple[str, ...] = ()

    @classmethod
    def parse(cls, spec: Any) -> AssociationEnd:
        """Build an end from ``(source, role, multiplicity, *columns)``.

        A mapping with the same keys or an AssociationEnd is accepted too.
        Sources may be given by name or as Source objects.

        Raises:
            DeclarationError: If the description is incomplete.
        """
        if isinstance(spec, AssociationEnd):
            return spec
        if isinstance(spec, Mapping):
            try:
                source, role, multiplicity = spec["source"], spec["role"], spec["multiplicity"]
            except KeyError as e:
                raise DeclarationError(f"Association end is missing {e}") from None
            columns = spec.get("columns", ())
        else:
            if isinstance(spec, str) or len(spec) < 3:
                raise DeclarationError(
                    f"Association end must be (source, role, multiplicity, *columns), got {spec!r}"
                )
            source, role, multiplicity, *columns = spec
        if isinstance(columns, str):
            columns = (columns,)
        return cls(
            source=getattr(source, "name", source),
            role=role or "",
            multiplicity=Multiplicity.parse(multiplicity),
            columns=tuple(columns),
        )

    @property
    def has_role(self) -> bool:
        return self.role not in NO_ROLE


@dataclass(frozen=True)
class JoinEdge:
    """A directed, named relationship from one source to another.

    ``column_map`` pairs each column of the owning source with the column of
    the target it must equal. ``multiplicity`` is the number of target rows
    one owning row relates to.
    """

    source: str
    role: str
    target: str
    multiplicity: Multiplicity
    column_map: tuple[tuple[str, str], ...]
    is_composition: bool = False

    @property
    def source_columns(self) -> tuple[str, ...]:
        return tuple(left for left, _ in self.column_map)

    @property
    def target_columns(self) -> tuple[str, ...]:
        return tuple(right for _, right in self.column_map)

    def criteria(self, record: Record, qualifier: str | None = None) -> dict[str, Any]:
        """Return the where criteria selecting the targets of ``record``.

        Raises:
            MissingForeignKeyError: If the record lacks a join column.
        """
        criteria: dict[str, Any] = {}
        for left, right in self.column_map:
            if left not in record:
                raise MissingForeignKeyError(
                    f"Cannot follow role '{self.role}' of '{self.source}': "
                    f"foreign key '{left}' is absent"
                )
            criteria[f"{qualifier}.{right}" if qualifier else right] = record[left]
        return criteria


class AssociationResolver:
    """Follows one join edge from a record."""

    def __init__(self, edge: JoinEdge) -> None:
        self.edge = edge

    def __call__(self, record: Record, **options: Any) -> Any:
        role = self.edge.role
        # value cached by Record.expand
        if not options and record.get(role):
            return record[role]

        schema = record.source.schema
        target = schema.registry.table(self.edge.target)
        where = SqlBuilder.merge_conditions(self.edge.criteria(record), options.pop("where", None))
        if "result_as" in options:
            return target.select(where=where, **options)

        rows = target.select(where=where, **options)
        if self.edge.multiplicity.is_many:
            return rows
        if len(rows) > 1:
            logger.warning(
                "too_many_rows",
                source=target.name,
                role=role,
                multiplicity=str(self.edge.multiplicity),
                count=len(rows),
            )
            warnings.warn(
                f"Too many results for multiplicity {self.edge.multiplicity} "
                f"of role '{role}' in '{self.edge.source}'",
                TooManyRowsError,
                stacklevel=3,
            )
        return rows[0] if rows else None


class InsertIntoResolver:
    """Inserts records on the many side of an edge, linked to a parent record."""

    def __init__(self, edge: JoinEdge) -> None:
        self.edge = edge

    def __call__(self, record: Record, *records: Mapping[str, Any]) -> list[Any]:
        link = self.edge.criteria(record)
        prepared = []
        for data in records:
            if any(data.get(column) for column in link):
                raise DataError(
                    f"Records inserted into '{self.edge.role}' must not contain "
                    f"values in {', '.join(link)}"
                )
            prepared.append({**data, **link})
        target = record.source.schema.registry.table(self.edge.target)
        return insert_records(target, *prepared)


class PathResolver:
    """Follows a chain of roles through an automatically built join view.

    The first role is looked up on the record's source; the remaining path
    is resolved from the first role's target. Many-to-many associations are
    implemented with this resolver.
    """

    def __init__(self, first_role: str, path: str) -> None:
        self.first_role = first_role
        self.path = path

    def __call__(self, record: Record, **options: Any) -> Any:
        schema = record.source.schema
        edge = schema.registry.lookup_join(record.source, self.first_role)
        if edge is None:
            raise UnknownRoleError(self.first_role, [record.source.name])
        first_table = schema.registry.table(edge.target)
        view = schema.view_from_roles(first_table, self.path)
        criteria = edge.criteria(record, qualifier=first_table.db_name)
        where = SqlBuilder.merge_conditions(criteria, options.pop("where", None))
        return view.select(where=where, **options)


def join_columns(
    end_a: AssociationEnd,
    end_b: AssociationEnd,
    primary_key_a: Sequence[str],
    primary_key_b: Sequence[str],
) -> tuple[tuple[str, ...], tuple[str, ...]]:
    """Complete the join columns of a one-to-many or one-to-one association.

    Omitted columns default to the primary key of the "one" side, and the
    other side defaults to the same column names.

    Raises:
        DeclarationError: If a one-to-one association omits columns.
        JoinColumnMismatchError: If both sides name different numbers of columns.
    """
    cols_a, cols_b = end_a.columns, end_b.columns
    if end_a.multiplicity.is_many:
        cols_b = cols_b or tuple(primary_key_b)
        cols_a = cols_a or cols_b
    elif end_b.multiplicity.is_many:
        cols_a = cols_a or tuple(primary_key_a)
        cols_b = cols_b or cols_a
    elif not (cols_a and cols_b):
        raise DeclarationError(
            f"Association {end_a.source}/{end_b.source}: columns must be explicit "
            f"with multiplicities {end_a.multiplicity} / {end_b.multiplicity}"
        )
    if len(cols_a) != len(cols_b):
        raise JoinColumnMismatchError(
            f"Association {end_a.source}/{end_b.source}: numbers of columns do not match"
        )
    return cols_a, cols_b
