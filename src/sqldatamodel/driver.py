"""Database driver adapter over a DB-API 2.0 connection."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Sequence


@dataclass
class CursorHandle:
    """A prepared statement: its SQL text and the cursor that runs it."""

    sql: str
    cursor: Any
    executed: bool = False
    binds: list[Any] = field(default_factory=list)

    @property
    def column_names(self) -> list[str]:
        description = self.cursor.description or ()
        return [column[0] for column in description]


class DbApiDriver:
    """Runs statements on a DB-API 2.0 connection.

    The connection must raise on errors; driver exceptions are never caught
    here. Rows are returned as dicts keyed by the cursor's column names.
    """

    def __init__(self, connection: Any, begin_sql: str | None = "BEGIN") -> None:
        """Initialize the driver.

        Args:
            connection: An open DB-API connection. For sqlite3 it should be
                opened with ``isolation_level=None`` so transactions are
                only started by begin_transaction.
            begin_sql: Statement that starts a transaction, or None for
                drivers that begin transactions implicitly.
        """
        self.connection = connection
        self.begin_sql = begin_sql
        self._in_transaction = False
        self._last_handle: CursorHandle | None = None

    # ---- statements ----

    def prepare(self, sql: str) -> CursorHandle:
        """Return a handle for running ``sql``."""
        return CursorHandle(sql=sql, cursor=self.connection.cursor())

    def execute(self, handle: CursorHandle, binds: Sequence[Any] = ()) -> CursorHandle:
        """Execute a prepared handle with positional bind values."""
        handle.binds = list(binds)
        handle.cursor.execute(handle.sql, handle.binds)
        handle.executed = True
        self._last_handle = handle
        return handle

    def do(self, sql: str, binds: Sequence[Any] = ()) -> CursorHandle:
        """Prepare and execute in one call."""
        return self.execute(self.prepare(sql), binds)

    def fetch_row(self, handle: CursorHandle) -> dict[str, Any] | None:
        """Fetch the next row, or None when the cursor is exhausted."""
        row = handle.cursor.fetchone()
        if row is None:
            return None
        return dict(zip(handle.column_names, row))

    def fetch_many(self, handle: CursorHandle, size: int) -> list[dict[str, Any]]:
        """Fetch up to ``size`` rows."""
        names = handle.column_names
        return [dict(zip(names, row)) for row in handle.cursor.fetchmany(size)]

    def fetch_all(self, handle: CursorHandle) -> list[dict[str, Any]]:
        """Fetch all remaining rows."""
        names = handle.column_names
        return [dict(zip(names, row)) for row in handle.cursor.fetchall()]

    def affected_rows(self, handle: CursorHandle) -> int:
        return handle.cursor.rowcount

    def last_generated_key(self, table: str, column: str, handle: CursorHandle | None = None) -> Any:
        """Return the key generated by the last INSERT.

        DB-API exposes this as ``cursor.lastrowid``, which does not depend
        on the table or column.
        """
        handle = handle or self._last_handle
        if handle is None:
            return None
        return getattr(handle.cursor, "lastrowid", None)

    def close(self, handle: CursorHandle) -> None:
        handle.cursor.close()

    # ---- transactions ----

    @property
    def in_transaction(self) -> bool:
        state = getattr(self.connection, "in_transaction", None)
        if state is None:
            return self._in_transaction
        return bool(state)

    def begin_transaction(self) -> None:
        if self.begin_sql:
            self.connection.cursor().execute(self.begin_sql)
        self._in_transaction = True

    def commit(self) -> None:
        self.connection.commit()
        self._in_transaction = False

    def rollback(self) -> None:
        self.connection.rollback()
        self._in_transaction = False
