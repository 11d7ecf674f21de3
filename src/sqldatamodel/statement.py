"""Statements: the compile / prepare / execute / fetch lifecycle of one query.

A statement starts in status NEW, where options may be refined. compile()
turns the options into SQL, prepare() hands the SQL to the driver, and
execute() binds the placeholder values and runs it. Rows are then read
with next(), all() or by iterating. execute() may be called again with
new bindings; this rewinds the cursor without going back to an earlier
status.

Bind values that are strings starting with the schema's placeholder
prefix (``"?:"`` by default) are named placeholders::

    stmt = Statement(employee, where={"d_birth": {"<": "?:date"}})
    stmt.bind(date="1750-01-01")
    rows = stmt.all()
"""

from __future__ import annotations

import copy
import warnings
from enum import IntEnum
from typing import TYPE_CHECKING, Any, Callable, Iterator, Mapping

from sqldatamodel.errors import (
    BindingError,
    InvalidStateError,
    KeyMismatchError,
    StatementOptionError,
    TooManyRowsError,
    UnboundPlaceholderError,
)
from sqldatamodel.iterator import RowIterator
from sqldatamodel.logging import get_logger
from sqldatamodel.parsing.sql_lexer import count_query
from sqldatamodel.record import Record
from sqldatamodel.sql_abstract import MAX_LIMIT, RawSql
from sqldatamodel.types import FROM_STORE

if TYPE_CHECKING:
    from sqldatamodel.driver import CursorHandle
    from sqldatamodel.schema import Schema
    from sqldatamodel.source import Source

logger = get_logger(__name__)


class Status(IntEnum):
    NEW = 1
    COMPILED = 2
    PREPARED = 3
    EXECUTED = 4


OPTIONS = frozenset(
    {
        "columns",
        "distinct",
        "where",
        "order_by",
        "group_by",
        "having",
        "limit",
        "offset",
        "page_size",
        "page_index",
        "select_for",
        "result_as",
        "post_sql",
        "pre_exec",
        "post_exec",
        "post_materialize",
        "column_types",
        "fetch",
    }
)

# Accepted spellings of each result shape
RESULT_SHAPES = {
    "rows": "rows",
    "arrayref": "rows",
    "first_row": "first_row",
    "firstrow": "first_row",
    "sql": "sql",
    "subquery": "subquery",
    "cursor": "cursor",
    "sth": "cursor",
    "keyed_map": "keyed_map",
    "hashref": "keyed_map",
    "flat_values": "flat_values",
    "flat": "flat_values",
    "reusable_row": "reusable_row",
    "fast_statement": "reusable_row",
    "statement": "statement",
    "iterator": "iterator",
}

_CALLBACKS = ("pre_exec", "post_exec", "post_materialize")

# Internal placeholder names used for pagination
LIMIT_PLACEHOLDER = "__limit__"
OFFSET_PLACEHOLDER = "__offset__"


class _Unbound:
    def __repr__(self) -> str:
        return "<unbound>"


UNBOUND: Any = _Unbound()


class Statement:
    """One query against a source, from option refinement to row fetching."""

    def __init__(self, source: Source, schema: Schema | None = None, **options: Any) -> None:
        self.source = source
        self.schema = schema or source.schema
        self.status = Status.NEW
        self._args: dict[str, Any] = {}
        self._pre_bound: dict[str, Any] = {}
        self._sql: str | None = None
        self._binds: list[Any] = []
        self._raw_binds: list[Any] = []
        self._param_indices: dict[str, list[int]] = {}
        self._handle: CursorHandle | None = None
        self._materializer: Callable[[Mapping[str, Any], Record | None], Record] | None = None
        self._reuse_row: Record | None = None
        self._row_count: int | None = None
        self._page_index: int | None = None
        self._offset = 0
        self._executed_offset: int | None = None
        self.row_num = 0
        if options:
            self.refine(**options)

    def __repr__(self) -> str:
        return f"<Statement {self.source.name} status={self.status.name}>"

    @property
    def prefix(self) -> str:
        return self.schema.config.placeholder_prefix

    # ---- building ----

    def refine(self, **options: Any) -> Statement:
        """Add options to the statement.

        ``where`` conditions from several calls are combined with AND; other
        options replace earlier values.

        Raises:
            InvalidStateError: If the statement is already compiled.
            StatementOptionError: If an option is unknown.
        """
        if self.status != Status.NEW:
            raise InvalidStateError("refine", self.status.name)

        for name, value in options.items():
            if name not in OPTIONS:
                raise StatementOptionError(f"Invalid statement option: {name}")
            if name == "where":
                self._args["where"] = self.schema.builder.merge_conditions(self._args.get("where"), value)
            elif name == "fetch":
                self._refine_fetch(value)
            else:
                self._args[name] = value
        return self

    def _refine_fetch(self, key: Any) -> None:
        key_values = tuple(key) if isinstance(key, (list, tuple)) else (key,)
        key_columns = self.source.primary_key
        if not key_columns:
            raise KeyMismatchError(f"fetch: no primary key in source {self.source.name}")
        if len(key_columns) != len(key_values):
            raise KeyMismatchError(
                f"fetch from {self.source.name}: primary key should have "
                f"{len(key_columns)} values, got {len(key_values)}"
            )
        if any(value is None for value in key_values):
            raise KeyMismatchError(f"fetch from {self.source.name}: undefined value in primary key")
        criteria = dict(zip(key_columns, key_values))
        self._args["where"] = self.schema.builder.merge_conditions(self._args.get("where"), criteria)
        self._args["result_as"] = "first_row"

    def compile(self, **options: Any) -> Statement:
        """Generate the SQL and bind list, and catalog the named placeholders.

        Raises:
            InvalidStateError: If the statement is already compiled.
        """
        if self.status >= Status.COMPILED:
            raise InvalidStateError("compile", self.status.name)
        if options:
            self.refine(**options)

        args = self._args
        source = self.source
        builder = self.schema.builder
        dialect = self.schema.config.dialect

        where = builder.merge_conditions(args.get("where"), source.where)
        columns, aliases = self._column_list(args.get("columns") or source.default_columns, dialect)

        limit = offset = None
        window = self._pagination()
        if window is not None:
            self._pre_bound[LIMIT_PLACEHOLDER], self._pre_bound[OFFSET_PLACEHOLDER] = window
            limit = self.prefix + LIMIT_PLACEHOLDER
            offset = self.prefix + OFFSET_PLACEHOLDER

        if self._result_shape()[0] == "subquery":
            select_for = None
        elif "select_for" in args:
            select_for = args["select_for"]
        else:
            select_for = source.select_implicitly_for

        sql, binds = builder.build_select(
            source.db_from,
            columns=columns,
            where=where,
            order_by=args.get("order_by"),
            group_by=args.get("group_by"),
            having=args.get("having"),
            limit=limit,
            offset=offset,
            distinct=bool(args.get("distinct")),
            select_for=select_for,
        )
        post_sql = args.get("post_sql")
        if post_sql:
            sql, binds = post_sql(sql, list(binds))

        self._sql = sql
        self._raw_binds = list(binds)
        self._binds = list(binds)
        self._param_indices = {}
        for index, value in enumerate(self._binds):
            if isinstance(value, str) and value.startswith(self.prefix):
                name = value[len(self.prefix) :]
                self._param_indices.setdefault(name, []).append(index)
                self._binds[index] = UNBOUND

        self.status = Status.COMPILED
        self._apply_bindings(self._pre_bound)
        self._materializer = self._build_materializer(aliases)
        return self

    def _column_list(self, columns: Any, dialect: Any) -> tuple[list[str], dict[str, str]]:
        if isinstance(columns, str):
            items = [item.strip() for item in columns.split(",")] if "|" in columns else [columns]
        else:
            items = list(columns)
        rendered: list[str] = []
        aliases: dict[str, str] = {}
        for item in items:
            if "|" in item:
                column, alias = (part.strip() for part in item.split("|", 1))
                rendered.append(dialect.column_alias % (column, alias))
                aliases[alias] = column
            else:
                rendered.append(item)
        return rendered, aliases

    def _pagination(self) -> tuple[int, int] | None:
        """Return the (limit, offset) window of the statement, or None."""
        page_size = self._args.get("page_size")
        if page_size:
            if self._page_index is None:
                self._page_index = self._args.get("page_index") or 1
            self._offset = (self._page_index - 1) * page_size
            return page_size, self._offset
        limit, offset = self._args.get("limit"), self._args.get("offset")
        if limit is None and offset is None:
            return None
        if self._page_index is None:
            self._offset = offset or 0
        return (MAX_LIMIT if limit is None else limit), self._offset

    def _build_materializer(self, aliases: Mapping[str, str]) -> Callable[..., Record]:
        handlers = self.source.column_handlers()
        for alias, column in aliases.items():
            bare = column.rsplit(".", 1)[-1]
            if bare in handlers:
                handlers[alias] = handlers[bare]
        for type_name, columns in (self._args.get("column_types") or {}).items():
            column_type = self.schema.registry.column_type(type_name)
            for column in [columns] if isinstance(columns, str) else columns:
                handlers[column] = dict(column_type.handlers)

        from_store = {column: named[FROM_STORE] for column, named in handlers.items() if FROM_STORE in named}
        post_materialize = self._args.get("post_materialize")
        source = self.source

        def materialize(row: Mapping[str, Any], into: Record | None = None) -> Record:
            if into is None:
                record = Record(source, row)
            else:
                record = into
                record.clear()
                dict.update(record, row)
            for column, handler in from_store.items():
                if column in record:
                    record[column] = handler(record[column])
            if post_materialize:
                post_materialize(record)
            return record

        return materialize

    def prepare(self, **options: Any) -> Statement:
        """Compile if needed, then hand the SQL to the driver."""
        if options or self.status < Status.COMPILED:
            self.compile(**options)
        if self.status != Status.COMPILED:
            raise InvalidStateError("prepare", self.status.name)

        assert self._sql is not None
        self._handle = self.schema.driver.prepare(self._sql)
        if self.schema.config.keep_last_handle:
            self.schema.last_handle = self._handle
        logger.debug("statement_prepared", source=self.source.name, sql=self._sql, binds=self._binds)
        self.status = Status.PREPARED
        return self

    # ---- binding and execution ----

    def bind(self, *args: Any, **kwargs: Any) -> Statement:
        """Bind values to named placeholders.

        Accepts ``bind(name, value)``, mappings (a Record binds all its
        columns) and keyword arguments. Before compilation the values are
        kept and applied at compile time; afterwards they replace the bound
        values directly, and names without a placeholder are ignored.
        """
        values: dict[str, Any] = {}
        if len(args) == 2 and isinstance(args[0], str):
            values[args[0]] = args[1]
        else:
            for arg in args:
                if not isinstance(arg, Mapping):
                    raise BindingError(f"Unexpected argument to bind(): {arg!r}")
                values.update(arg)
        values.update(kwargs)

        if self.status == Status.NEW:
            self._pre_bound.update(values)
        else:
            self._apply_bindings(values)
        return self

    def _apply_bindings(self, values: Mapping[str, Any]) -> None:
        for name, value in values.items():
            for index in self._param_indices.get(name, ()):
                self._binds[index] = value

    def _unbound_names(self) -> list[str]:
        return [name for name, indices in self._param_indices.items() if self._binds[indices[0]] is UNBOUND]

    def execute(self, *args: Any, **kwargs: Any) -> Statement:
        """Bind the given values and run the statement.

        A statement that is not prepared yet is compiled and prepared first.

        Raises:
            UnboundPlaceholderError: If a named placeholder has no value;
                the driver is not called in that case.
        """
        if self.status < Status.PREPARED:
            self.prepare()
        if args or kwargs:
            self.bind(*args, **kwargs)

        self._reuse_row = None
        self._row_count = None
        self.row_num = self._offset
        self._executed_offset = self._offset

        assert self._handle is not None
        pre_exec = self._args.get("pre_exec")
        if pre_exec:
            pre_exec(self._handle)

        unbound = self._unbound_names()
        if unbound:
            raise UnboundPlaceholderError(unbound, self._sql)

        self.schema.driver.execute(self._handle, self._binds)
        logger.debug("statement_executed", source=self.source.name, sql=self._sql, binds=self._binds)

        post_exec = self._args.get("post_exec")
        if post_exec:
            post_exec(self._handle)

        self.status = Status.EXECUTED
        return self

    # ---- results ----

    def _result_shape(self) -> tuple[str, tuple[str, ...]]:
        result_as = self._args.get("result_as") or "rows"
        if isinstance(result_as, (list, tuple)):
            name, key_columns = result_as[0], tuple(result_as[1:])
        else:
            name, key_columns = result_as, ()
        try:
            return RESULT_SHAPES[name.lower()], key_columns
        except KeyError:
            raise StatementOptionError(f"Unknown result_as value: {name}") from None

    def select(self, **options: Any) -> Any:
        """Run the statement and return the result in the requested shape.

        Shapes (``result_as``): ``rows`` (default), ``first_row``, ``sql``,
        ``subquery``, ``cursor``, ``keyed_map`` (optionally with key columns,
        ``("keyed_map", "col1", "col2")``), ``flat_values``,
        ``reusable_row``, ``statement`` and ``iterator``.

        Raises:
            StatementOptionError: If the shape is unknown or incompatible
                with the callbacks given.
        """
        if options:
            self.refine(**options)

        shape, key_columns = self._result_shape()
        callbacks = [name for name in _CALLBACKS if name in self._args]

        if shape == "statement":
            self._args.pop("result_as", None)
            return self

        if self.status < Status.COMPILED:
            self.compile()

        if shape in ("sql", "subquery"):
            if callbacks:
                raise StatementOptionError(f"{', '.join(callbacks)} incompatible with result_as={shape!r}")
            sql, binds = self.sql()
            if shape == "sql":
                return sql, binds
            return RawSql(f"({sql})", *binds)

        if shape == "cursor" and "post_materialize" in self._args:
            raise StatementOptionError("post_materialize incompatible with result_as='cursor'")

        self.execute()

        if shape == "cursor":
            return self._handle
        if shape == "rows":
            return self.all()
        if shape == "first_row":
            return self.next()
        if shape == "keyed_map":
            return self._keyed_map(key_columns)
        if shape == "reusable_row":
            self.reuse_row()
            return self
        if shape == "flat_values":
            self.reuse_row()
            assert self._handle is not None
            names = self._handle.column_names
            values: list[Any] = []
            row = self.next()
            while row is not None:
                values.extend(row.get(name) for name in names)
                row = self.next()
            return values
        return RowIterator(self)

    def _keyed_map(self, key_columns: tuple[str, ...]) -> dict[Any, Any]:
        key_columns = key_columns or self.source.primary_key
        if not key_columns:
            raise StatementOptionError(
                f"result_as='keyed_map' impossible: no primary key in {self.source.name}"
            )
        result: dict[Any, Any] = {}
        for row in self:
            keys = ["" if row.get(column) is None else row.get(column) for column in key_columns]
            node = result
            for key in keys[:-1]:
                node = node.setdefault(key, {})
            node[keys[-1]] = row
        return result

    def fetch(self, *key: Any, **options: Any) -> Record | None:
        """Return the record with the given primary key, or None.

        If more than one row matches, a TooManyRowsError warning is issued
        and the first row is returned.
        """
        record = self.select(fetch=key, **options)
        if record is not None and self._handle is not None:
            if self.schema.driver.fetch_row(self._handle) is not None:
                logger.warning("too_many_rows", source=self.source.name, key=key)
                warnings.warn(
                    f"fetch from {self.source.name}: too many results for key {key!r}",
                    TooManyRowsError,
                    stacklevel=2,
                )
        return record

    def next(self, n_rows: int | None = None) -> Any:
        """Return the next row (None at the end), or a list of up to ``n_rows`` rows."""
        if self.status < Status.EXECUTED:
            self.execute()
        assert self._handle is not None and self._materializer is not None
        driver = self.schema.driver

        if n_rows is None:
            row = driver.fetch_row(self._handle)
            if row is None:
                return None
            self.row_num += 1
            return self._materializer(row, self._reuse_row)

        if n_rows <= 0:
            raise StatementOptionError(f"next(): invalid number of rows {n_rows}")
        if self._reuse_row is not None:
            raise StatementOptionError("Reusable row, cannot retrieve several rows at once")
        rows = [self._materializer(row) for row in driver.fetch_many(self._handle, n_rows)]
        self.row_num += len(rows)
        return rows

    def all(self) -> list[Record]:
        """Return all remaining rows."""
        if self.status < Status.EXECUTED:
            self.execute()
        if self._reuse_row is not None:
            raise StatementOptionError("Reusable row, cannot retrieve several rows at once")
        assert self._handle is not None and self._materializer is not None
        rows = [self._materializer(row) for row in self.schema.driver.fetch_all(self._handle)]
        self.row_num += len(rows)
        return rows

    def __iter__(self) -> Iterator[Record]:
        row = self.next()
        while row is not None:
            yield row
            row = self.next()

    def reuse_row(self) -> Record:
        """Fetch every following row into one shared Record.

        Raises:
            InvalidStateError: If the statement is not executed.
        """
        if self.status != Status.EXECUTED:
            raise InvalidStateError("reuse_row", self.status.name)
        self._reuse_row = Record(self.source)
        return self._reuse_row

    def sql(self) -> tuple[str, list[Any]]:
        """Return the SQL text and its bind values.

        Unbound named placeholders appear as their placeholder strings.
        """
        if self.status < Status.COMPILED or self._sql is None:
            raise InvalidStateError("sql", self.status.name)
        binds = [raw if value is UNBOUND else value for value, raw in zip(self._binds, self._raw_binds)]
        return self._sql, binds

    def clone(self) -> Statement:
        """Return an independent copy of a statement that is not prepared yet."""
        if self.status >= Status.PREPARED:
            raise InvalidStateError("clone", self.status.name)
        clone = copy.copy(self)
        clone._args = copy.deepcopy(self._args)
        clone._pre_bound = dict(self._pre_bound)
        clone._binds = list(self._binds)
        clone._raw_binds = list(self._raw_binds)
        clone._param_indices = {name: list(indices) for name, indices in self._param_indices.items()}
        return clone

    # ---- counting and pagination ----

    def row_count(self) -> int:
        """Return the number of rows the statement selects, ignoring pagination."""
        if self._row_count is None:
            if self.status < Status.COMPILED:
                self.compile()
            assert self._sql is not None
            sql, binds = count_query(self._sql, self._binds)
            if any(value is UNBOUND for value in binds):
                raise UnboundPlaceholderError(self._unbound_names(), sql)
            driver = self.schema.driver
            handle = driver.do(sql, binds)
            logger.debug("row_count_query", source=self.source.name, sql=sql, binds=binds)
            row = driver.fetch_row(handle)
            driver.close(handle)
            self._row_count = next(iter(row.values())) if row else 0
        return self._row_count

    @property
    def page_size(self) -> int | None:
        return self._args.get("page_size") or self._args.get("limit")

    @property
    def page_index(self) -> int:
        if self._page_index is not None:
            return self._page_index
        return self._args.get("page_index") or 1

    @property
    def offset(self) -> int:
        return self._offset

    def page_count(self) -> int:
        row_count = self.row_count()
        if not row_count:
            return 0
        page_size = self.page_size or row_count
        return (row_count - 1) // page_size + 1

    def goto_page(self, page_index: int) -> Statement:
        """Position the statement on a page; negative indexes count from the end.

        The statement is only re-executed if its cursor is not already at
        the page's first row.
        """
        page_size = self.page_size
        if not page_size:
            raise StatementOptionError("goto_page() needs a page_size or limit")
        if page_index < 0:
            page_index += self.page_count() + 1
        if page_index < 1:
            raise StatementOptionError(f"Illegal page index: {page_index}")

        self._page_index = page_index
        self._offset = (page_index - 1) * page_size
        if self.status == Status.NEW:
            return self
        self.bind(OFFSET_PLACEHOLDER, self._offset)
        if self._executed_offset != self._offset or self.row_num != self._offset:
            self.execute()
        return self

    def shift_pages(self, delta: int) -> Statement:
        page_index = self.page_index + delta
        if page_index < 1:
            raise StatementOptionError(f"Illegal page index: {page_index}")
        return self.goto_page(page_index)

    def next_page(self) -> Statement:
        return self.shift_pages(1)

    def page_boundaries(self) -> tuple[int, int]:
        """Return the 1-based numbers of the first and last rows of the current page."""
        first = self._offset + 1
        page_size = self.page_size or self.row_count()
        last = min(self.row_count(), first + page_size - 1)
        return first, last

    def page_rows(self) -> list[Record]:
        """Return the rows of the current page."""
        page_size = self.page_size
        if not page_size:
            return self.all()
        return self.next(page_size)
