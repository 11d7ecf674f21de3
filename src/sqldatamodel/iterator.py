"""Row iterator returned by ``select(result_as="iterator")``."""

from __future__ import annotations

from typing import TYPE_CHECKING, Iterator

if TYPE_CHECKING:
    from sqldatamodel.record import Record
    from sqldatamodel.statement import Statement


class RowIterator:
    """Iterates over the rows of an executed statement."""

    def __init__(self, statement: Statement) -> None:
        self.statement = statement

    def __iter__(self) -> Iterator[Record]:
        return self

    def __next__(self) -> Record:
        row = self.statement.next()
        if row is None:
            raise StopIteration
        return row

    def next(self) -> Record | None:
        """Return the next row, or None when the rows are exhausted."""
        return self.statement.next()
