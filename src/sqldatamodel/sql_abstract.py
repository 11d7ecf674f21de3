"""SQL text generation from Python data structures.

Where clauses are written as nested structures, in the style of Perl's
SQL::Abstract:

- a mapping is an AND of its entries: ``{"a": 1, "b": None}``
  gives ``a = ? AND b IS NULL``
- a list or tuple is an OR of its elements
- ``-and``, ``-or``, ``-not`` and ``-nest`` keys group sub-conditions
- a column mapped to a mapping applies operators:
  ``{"age": {">": 18, "<=": 65}}``
- a column mapped to a list is an IN test (an empty list matches nothing)
- ``RawSql`` inserts literal SQL with its own bind values
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from sqldatamodel.errors import StatementOptionError

# Bound as LIMIT when only an OFFSET is requested
MAX_LIMIT = 2**63 - 1

_COMPARISON_OPS = {
    "=": "=",
    "==": "=",
    "!=": "!=",
    "<>": "<>",
    "<": "<",
    ">": ">",
    "<=": "<=",
    ">=": ">=",
    "like": "LIKE",
    "not like": "NOT LIKE",
    "ilike": "ILIKE",
    "not ilike": "NOT ILIKE",
}


class RawSql:
    """Literal SQL text, with bind values for the ``?`` it contains."""

    def __init__(self, sql: str, *binds: Any) -> None:
        self.sql = sql
        self.binds = list(binds)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RawSql):
            return NotImplemented
        return self.sql == other.sql and self.binds == other.binds

    def __hash__(self) -> int:
        return hash(self.sql)

    def __repr__(self) -> str:
        return f"RawSql({self.sql!r}, binds={self.binds!r})"


@dataclass
class _Fragment:
    sql: str
    binds: list[Any]
    compound: bool = False


_EMPTY = _Fragment("", [])


def _join(parts: Sequence[_Fragment], op: str) -> _Fragment:
    parts = [part for part in parts if part.sql]
    if not parts:
        return _EMPTY
    if len(parts) == 1:
        return parts[0]
    sql = f" {op} ".join(f"({part.sql})" if part.compound else part.sql for part in parts)
    binds = [value for part in parts for value in part.binds]
    return _Fragment(sql, binds, compound=True)


def _as_list(value: str | Sequence[str] | None) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return list(value)


class SqlBuilder:
    """Builds SQL statements and their positional bind values."""

    # ---- where clauses ----

    def where(self, where: Any) -> tuple[str, list[Any]]:
        """Compile a where structure.

        Returns:
            A tuple of (condition SQL without the WHERE keyword, bind values).
            The SQL is empty when there is no condition.
        """
        fragment = self._condition(where)
        return fragment.sql, list(fragment.binds)

    @staticmethod
    def merge_conditions(*conditions: Any) -> Any:
        """Combine where structures with AND, ignoring empty ones."""
        present = [cond for cond in conditions if cond]
        if not present:
            return None
        if len(present) == 1:
            return present[0]
        return {"-and": present}

    def _condition(self, cond: Any) -> _Fragment:
        if cond is None:
            return _EMPTY
        if isinstance(cond, RawSql):
            return _Fragment(cond.sql, list(cond.binds), compound=True)
        if isinstance(cond, str):
            return _Fragment(cond, [], compound=True)
        if isinstance(cond, Mapping):
            return self._mapping(cond)
        if isinstance(cond, (list, tuple)):
            return _join([self._condition(item) for item in cond], "OR")
        raise StatementOptionError(f"Unsupported where condition: {cond!r}")

    def _mapping(self, cond: Mapping[str, Any]) -> _Fragment:
        parts = []
        for key, value in cond.items():
            if key.startswith("-"):
                parts.append(self._logical(key[1:].lower(), value))
            else:
                parts.append(self._column(key, value))
        return _join(parts, "AND")

    def _logical(self, op: str, value: Any) -> _Fragment:
        if op in ("and", "or"):
            if isinstance(value, Mapping):
                items = [{key: val} for key, val in value.items()]
            else:
                items = list(value)
            return _join([self._condition(item) for item in items], op.upper())
        if op == "not":
            inner = self._condition(value)
            if not inner.sql:
                return _EMPTY
            return _Fragment(f"NOT ({inner.sql})", inner.binds)
        if op == "nest":
            inner = self._condition(value)
            if not inner.sql:
                return _EMPTY
            return _Fragment(f"({inner.sql})", inner.binds)
        raise StatementOptionError(f"Unknown logical operator in where clause: -{op}")

    def _column(self, column: str, value: Any) -> _Fragment:
        if value is None:
            return _Fragment(f"{column} IS NULL", [])
        if isinstance(value, RawSql):
            return _Fragment(f"{column} = {value.sql}", list(value.binds))
        if isinstance(value, (list, tuple)):
            return self._in(column, "IN", value)
        if isinstance(value, Mapping):
            return _join([self._operator(column, op, val) for op, val in value.items()], "AND")
        return _Fragment(f"{column} = ?", [value])

    def _in(self, column: str, op: str, value: Any) -> _Fragment:
        if isinstance(value, RawSql):
            return _Fragment(f"{column} {op} {value.sql}", list(value.binds))
        values = list(value)
        if not values:
            return _Fragment("0=1" if op == "IN" else "1=1", [])
        marks = ", ".join("?" for _ in values)
        return _Fragment(f"{column} {op} ({marks})", values)

    def _operator(self, column: str, op: str, value: Any) -> _Fragment:
        op = " ".join(op.lstrip("-").lower().split())
        if op in ("in", "not in"):
            return self._in(column, op.upper(), value)
        if op in ("between", "not between"):
            if isinstance(value, RawSql):
                return _Fragment(f"{column} {op.upper()} {value.sql}", list(value.binds))
            low, high = value
            return _Fragment(f"{column} {op.upper()} ? AND ?", [low, high])
        if op in ("is", "is not"):
            if value is None:
                return _Fragment(f"{column} {op.upper()} NULL", [])
            return _Fragment(f"{column} {op.upper()} ?", [value])
        if op not in _COMPARISON_OPS:
            raise StatementOptionError(f"Unknown operator '{op}' for column '{column}'")

        sql_op = _COMPARISON_OPS[op]
        if value is None:
            if sql_op == "=":
                return _Fragment(f"{column} IS NULL", [])
            if sql_op in ("!=", "<>"):
                return _Fragment(f"{column} IS NOT NULL", [])
        if isinstance(value, RawSql):
            return _Fragment(f"{column} {sql_op} {value.sql}", list(value.binds))
        if isinstance(value, (list, tuple)):
            return _join([_Fragment(f"{column} {sql_op} ?", [item]) for item in value], "OR")
        return _Fragment(f"{column} {sql_op} ?", [value])

    # ---- clauses ----

    def order_by(self, order_by: Any) -> str:
        """Compile an ORDER BY list (without the keywords).

        Items may be ``"col"``, ``"+col"`` (ascending), ``"-col"``
        (descending) or mappings ``{"-desc": "col"}``.
        """
        items: list[str] = []
        for item in ([order_by] if isinstance(order_by, (str, Mapping)) else order_by or []):
            if isinstance(item, Mapping):
                for direction, columns in item.items():
                    direction = direction.lstrip("-").upper()
                    if direction not in ("ASC", "DESC"):
                        raise StatementOptionError(f"Invalid order direction: {direction}")
                    items.extend(f"{column} {direction}" for column in _as_list(columns))
            elif item.startswith("+"):
                items.append(f"{item[1:]} ASC")
            elif item.startswith("-"):
                items.append(f"{item[1:]} DESC")
            else:
                items.append(item)
        return ", ".join(items)

    # ---- statements ----

    def build_select(
        self,
        from_: str | Sequence[str],
        columns: str | Sequence[str] = "*",
        where: Any = None,
        order_by: Any = None,
        group_by: str | Sequence[str] | None = None,
        having: Any = None,
        limit: Any = None,
        offset: Any = None,
        distinct: bool = False,
        select_for: str | None = None,
    ) -> tuple[str, list[Any]]:
        """Build a SELECT statement.

        ``limit`` and ``offset`` are passed as bind values, so they may be
        named placeholders as well as integers.

        Returns:
            A tuple of (SQL text, positional bind values).
        """
        column_list = ", ".join(_as_list(columns)) or "*"
        from_sql = from_ if isinstance(from_, str) else ", ".join(from_)
        sql = f"SELECT {'DISTINCT ' if distinct else ''}{column_list} FROM {from_sql}"
        binds: list[Any] = []

        where_sql, where_binds = self.where(where)
        if where_sql:
            sql += f" WHERE {where_sql}"
            binds += where_binds
        group_list = _as_list(group_by)
        if group_list:
            sql += f" GROUP BY {', '.join(group_list)}"
        having_sql, having_binds = self.where(having)
        if having_sql:
            sql += f" HAVING {having_sql}"
            binds += having_binds
        order_sql = self.order_by(order_by)
        if order_sql:
            sql += f" ORDER BY {order_sql}"
        if limit is not None or offset is not None:
            sql += " LIMIT ?"
            binds.append(MAX_LIMIT if limit is None else limit)
            if offset is not None:
                sql += " OFFSET ?"
                binds.append(offset)
        if select_for:
            sql += f" FOR {select_for}"
        return sql, binds

    def build_insert(self, table: str, values: Mapping[str, Any]) -> tuple[str, list[Any]]:
        """Build an INSERT statement for one row."""
        if not values:
            return f"INSERT INTO {table} DEFAULT VALUES", []
        columns = ", ".join(values)
        marks: list[str] = []
        binds: list[Any] = []
        for value in values.values():
            if isinstance(value, RawSql):
                marks.append(value.sql)
                binds += value.binds
            else:
                marks.append("?")
                binds.append(value)
        return f"INSERT INTO {table} ({columns}) VALUES ({', '.join(marks)})", binds

    def build_update(
        self, table: str, values: Mapping[str, Any], where: Any = None
    ) -> tuple[str, list[Any]]:
        """Build an UPDATE statement setting exactly the given columns."""
        if not values:
            raise StatementOptionError(f"UPDATE of '{table}' needs at least one column")
        assignments: list[str] = []
        binds: list[Any] = []
        for column, value in values.items():
            if isinstance(value, RawSql):
                assignments.append(f"{column} = {value.sql}")
                binds += value.binds
            else:
                assignments.append(f"{column} = ?")
                binds.append(value)
        sql = f"UPDATE {table} SET {', '.join(assignments)}"
        where_sql, where_binds = self.where(where)
        if where_sql:
            sql += f" WHERE {where_sql}"
            binds += where_binds
        return sql, binds

    def build_delete(self, table: str, where: Any = None) -> tuple[str, list[Any]]:
        """Build a DELETE statement."""
        sql = f"DELETE FROM {table}"
        where_sql, binds = self.where(where)
        if where_sql:
            sql += f" WHERE {where_sql}"
        return sql, binds
