"""Insert, update and delete of table rows, with cascades through compositions."""

from __future__ import annotations

import warnings
from typing import TYPE_CHECKING, Any, Mapping, Sequence

from sqldatamodel.errors import (
    AmbiguousKeyError,
    DataError,
    DataModelError,
    KeyMismatchError,
    NestedDataError,
    NestedReferenceWarning,
    StatementOptionError,
)
from sqldatamodel.logging import get_logger
from sqldatamodel.record import Record
from sqldatamodel.sql_abstract import RawSql
from sqldatamodel.types import TO_STORE

if TYPE_CHECKING:
    from sqldatamodel.source import Table

logger = get_logger(__name__)


def _is_nested(value: Any) -> bool:
    return isinstance(value, (Mapping, list, tuple)) and not isinstance(value, RawSql)


def _expand_header_rows(records: Sequence[Any]) -> list[Mapping[str, Any]]:
    """Turn ``[header], [values], ...`` into mappings; mappings pass through."""
    if records and isinstance(records[0], (list, tuple)):
        header, *rows = records
        if not rows:
            raise DataError("insert: a header row must be followed by value rows")
        result = []
        for row in rows:
            if len(row) != len(header):
                raise DataError(f"insert: row {row!r} does not match header {header!r}")
            result.append(dict(zip(header, row)))
        return result
    for record in records:
        if not isinstance(record, Mapping):
            raise DataError(f"insert: expected a mapping, got {record!r}")
    return list(records)


def _key_values(table: Table, key: Sequence[Any]) -> dict[str, Any]:
    primary_key = table.primary_key
    if len(key) != len(primary_key):
        raise KeyMismatchError(
            f"{table.name}: primary key should have {len(primary_key)} values, got {len(key)}"
        )
    return dict(zip(primary_key, key))


def _key_criteria(table: Table, data: Mapping[str, Any], operation: str) -> dict[str, Any]:
    where = {}
    for column in table.primary_key:
        if data.get(column) is None:
            raise KeyMismatchError(f"{operation} {table.name}: no value for primary key column '{column}'")
        where[column] = data[column]
    return where


# ---- insert ----


def insert_records(table: Table, *records: Any) -> list[Any]:
    """Insert records into a table and return their primary keys.

    Each record is copied before it is modified. Its ``to_store`` handlers
    run first, then the no-update columns are removed and the auto-insert
    and auto-update columns are computed. Values under component roles are
    inserted after the parent row, linked to the parent's key.

    Args:
        table: The table to insert into.
        *records: Mappings, or a header row followed by value rows.

    Returns:
        One key per record, in input order: the value of a single-column
        primary key, or a tuple for a composite key.

    Raises:
        NestedDataError: If a record nests data under a name that is not a
            component role.
        AmbiguousKeyError: If a composite primary key is not supplied.
    """
    schema = table.schema
    keys = []
    for data in _expand_header_rows(records):
        record = Record(table, data)
        record.apply_column_handler(TO_STORE)
        for column in table.no_update_columns:
            record.pop(column, None)
        for column, compute in table.auto_insert_columns.items():
            record[column] = compute(record, table)
        for column, compute in table.auto_update_columns.items():
            record[column] = compute(record, table)

        subtrees: dict[str, list[Mapping[str, Any]]] = {}
        for name, value in list(record.items()):
            if not _is_nested(value):
                continue
            if name not in table.components:
                raise NestedDataError(f"insert into {table.name}: unexpected nested data in '{name}'")
            subtrees[name] = [value] if isinstance(value, Mapping) else list(value)
            del record[name]

        primary_key = table.primary_key
        key_supplied = all(record.get(column) is not None for column in primary_key)
        if not key_supplied and len(primary_key) > 1:
            raise AmbiguousKeyError(
                f"insert into {table.name}: the key ({', '.join(primary_key)}) must be supplied"
            )

        sql, binds = schema.builder.build_insert(table.db_name, record)
        handle = schema.do(sql, binds)
        logger.debug("insert", table=table.name, sql=sql, binds=binds)

        if not key_supplied:
            record[primary_key[0]] = schema.driver.last_generated_key(table.db_name, primary_key[0], handle)

        for role, items in subtrees.items():
            schema.registry.insert_resolver(table, role)(record, *items)

        key = record.primary_key()
        keys.append(key[0] if len(key) == 1 else key)
    return keys


# ---- update ----


def update_records(table: Table, *args: Any, set: Mapping[str, Any] | None = None, where: Any = None) -> int:
    """Update rows of a table.

    ``update_records(table, key..., {col: value})`` updates the row with
    that primary key; the key may also be embedded in the mapping. Only
    the given columns are written, after the no-update columns are removed,
    the auto-update columns computed and the ``to_store`` handlers applied.
    Nested values are removed with a NestedReferenceWarning.

    ``update_records(table, set={...}, where={...})`` updates every matching
    row, without handlers.

    Returns:
        The number of affected rows.

    Raises:
        KeyMismatchError: If the key has the wrong number of values or is missing.
        DataError: If no column is left to update.
    """
    schema = table.schema
    if set is not None or where is not None:
        if args:
            raise StatementOptionError("update: use either positional arguments or set/where")
        if not set:
            raise DataError(f"update of {table.name}: nothing to set")
        sql, binds = schema.builder.build_update(table.db_name, set, where)
        return _run(table, "update", sql, binds)

    if not args or not isinstance(args[-1], Mapping):
        raise DataError(f"update of {table.name}: the last argument must be a mapping of column values")
    *key, values = args
    record = Record(table, values)
    if key:
        record.update(_key_values(table, key))

    for column in table.no_update_columns:
        record.pop(column, None)
    for column, compute in table.auto_update_columns.items():
        record[column] = compute(record, table)
    record.apply_column_handler(TO_STORE)

    nested = [name for name, value in record.items() if _is_nested(value)]
    if nested:
        for name in nested:
            del record[name]
        logger.warning("nested_data_stripped", table=table.name, columns=nested)
        warnings.warn(
            f"update of {table.name}: nested references in {', '.join(nested)} were ignored",
            NestedReferenceWarning,
            stacklevel=3,
        )

    criteria = _key_criteria(table, record, "update")
    for column in criteria:
        del record[column]
    if not record:
        raise DataError(f"update of {table.name}: no column to update")

    sql, binds = schema.builder.build_update(table.db_name, record, criteria)
    return _run(table, "update", sql, binds)


def update_record(record: Record) -> int:
    """Write every column of ``record`` to its row, then keep only its key."""
    table = _record_table(record)
    count = update_records(table, dict(record))
    key = {column: record[column] for column in table.primary_key if column in record}
    record.clear()
    dict.update(record, key)
    return count


# ---- delete ----


def delete_records(table: Table, *args: Any, where: Any = None) -> int:
    """Delete rows of a table.

    ``delete_records(table, key...)`` or ``delete_records(table, record)``
    deletes one row. With a record, the component records it holds under
    composition roles are deleted first, recursively; components that are
    not loaded in memory are not looked up.

    ``delete_records(table, where={...})`` deletes every matching row.

    Returns:
        The number of rows deleted from ``table`` itself.
    """
    schema = table.schema
    if where is not None:
        if args:
            raise StatementOptionError("delete: use either positional arguments or where")
        sql, binds = schema.builder.build_delete(table.db_name, where)
        return _run(table, "delete", sql, binds)

    if len(args) == 1 and isinstance(args[0], Mapping):
        data = args[0]
        for role in table.components:
            children = data.get(role)
            if not children:
                continue
            edge = schema.registry.lookup_join(table, role)
            assert edge is not None
            component = schema.registry.table(edge.target)
            for child in [children] if isinstance(children, Mapping) else children:
                delete_records(component, child)
    else:
        data = _key_values(table, args)

    criteria = _key_criteria(table, data, "delete")
    sql, binds = schema.builder.build_delete(table.db_name, criteria)
    return _run(table, "delete", sql, binds)


def delete_record(record: Record) -> int:
    return delete_records(_record_table(record), record)


def _record_table(record: Record) -> Table:
    from sqldatamodel.source import Table

    if not isinstance(record.source, Table):
        raise DataModelError(f"Records of '{record.source.name}' cannot be written: not a table")
    return record.source


def _run(table: Table, operation: str, sql: str, binds: list[Any]) -> int:
    schema = table.schema
    handle = schema.do(sql, binds)
    logger.debug(operation, table=table.name, sql=sql, binds=binds)
    return schema.driver.affected_rows(handle)
