"""Records: rows tagged with the source they belong to."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqldatamodel.types import FROM_STORE, TO_STORE, VALIDATE

if TYPE_CHECKING:
    from sqldatamodel.source import Source


class Record(dict):
    """A row of data, keyed by column name.

    Records behave as plain dicts. Columns are read with ``record["col"]``
    or ``record.get("col")``; the methods below add navigation along the
    roles of the record's source and persistence.
    """

    def __init__(self, source: Source, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.source = source

    def __repr__(self) -> str:
        return f"{self.source.name}({dict.__repr__(self)})"

    def copy(self) -> Record:
        return Record(self.source, self)

    def primary_key(self) -> tuple[Any, ...]:
        """Return the values of the source's primary key columns."""
        return tuple(self.get(column) for column in self.source.primary_key)

    # ---- navigation ----

    def follow(self, role: str, **options: Any) -> Any:
        """Follow a role and return the related record(s).

        Roles with a maximum multiplicity of one return a Record or None,
        other roles return a list. Without options, a value previously
        stored by expand() is returned instead of querying again.
        """
        return self.source.schema.follow_role(self, role, **options)

    def expand(self, role: str, **options: Any) -> Any:
        """Follow a role and store the result under the role name."""
        self[role] = self.follow(role, **options)
        return self[role]

    def auto_expand(self, recurse: bool = False) -> None:
        """Expand the component roles declared with Table.define_auto_expand."""
        for role in getattr(self.source, "auto_expand_roles", ()):
            result = self.expand(role)
            if result and recurse:
                children = result if isinstance(result, list) else [result]
                for child in children:
                    child.auto_expand(recurse=True)

    def insert_into(self, role: str, *records: Any) -> list[Any]:
        """Insert records on the many side of ``role``, linked to this record."""
        return self.source.schema.insert_into(self, role, *records)

    # ---- persistence ----

    def update_row(self) -> int:
        """Write every column held by this record to its row.

        The record is invalidated afterwards: only its primary key columns
        are kept, so stale values cannot be written back by mistake.
        """
        from sqldatamodel.lifecycle import update_record

        return update_record(self)

    def delete(self) -> int:
        """Delete the row, after deleting the components held in memory."""
        from sqldatamodel.lifecycle import delete_record

        return delete_record(self)

    # ---- column handlers ----

    def apply_column_handler(self, handler_name: str) -> dict[str, Any]:
        """Run a named handler on every column of the record that has one.

        ``from_store`` and ``to_store`` results replace the column values;
        for other handlers the record is left unchanged.

        Returns:
            The handler result per column.
        """
        results: dict[str, Any] = {}
        for column, handlers in self.source.column_handlers().items():
            handler = handlers.get(handler_name)
            if handler is None or column not in self:
                continue
            results[column] = handler(self[column])
            if handler_name in (FROM_STORE, TO_STORE):
                self[column] = results[column]
        return results

    def has_invalid_columns(self) -> list[str] | None:
        """Return the columns whose ``validate`` handler fails, or None."""
        results = self.apply_column_handler(VALIDATE)
        invalid = [column for column, valid in results.items() if valid is not None and not valid]
        return invalid or None

