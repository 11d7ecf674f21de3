"""Multiplicities and column types for the metadata model."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Callable

from sqldatamodel.errors import DeclarationError, MultiplicityError

# Handler names invoked automatically
FROM_STORE = "from_store"
TO_STORE = "to_store"
VALIDATE = "validate"

# Upper bound used for "*" / "n" multiplicities
MANY = 2**31 - 1

ColumnHandler = Callable[[Any], Any]

_MULTIPLICITY_RE = re.compile(r"^\s*(?:(\d+)\s*\.\.\s*)?(\d+|\*|n)\s*$")


@dataclass(frozen=True)
class Multiplicity:
    """Minimum and maximum occurrence count on one side of an association."""

    min: int
    max: int

    def __post_init__(self) -> None:
        if self.min < 0 or self.max < 1 or self.min > self.max:
            raise MultiplicityError(f"Illegal multiplicity: {self.min}..{self.max}")

    @classmethod
    def parse(cls, spec: str | int | tuple[int, int] | Multiplicity) -> Multiplicity:
        """Parse a UML multiplicity.

        Accepted forms are ``"1"``, ``"0..1"``, ``"*"``, ``"n"``, ``"1..*"``,
        ``"2..5"``, a plain int, or a ``(min, max)`` tuple.

        Raises:
            MultiplicityError: If the multiplicity is malformed.
        """
        if isinstance(spec, Multiplicity):
            return spec
        if isinstance(spec, bool):
            raise MultiplicityError(f"Illegal multiplicity: {spec!r}")
        if isinstance(spec, int):
            return cls(spec, spec)
        if isinstance(spec, tuple) and len(spec) == 2:
            return cls(int(spec[0]), int(spec[1]))
        if not isinstance(spec, str):
            raise MultiplicityError(f"Illegal multiplicity: {spec!r}")

        match = _MULTIPLICITY_RE.match(spec)
        if match is None:
            raise MultiplicityError(f"Illegal multiplicity: {spec!r}")
        lower, upper = match.groups()
        maximum = MANY if upper in ("*", "n") else int(upper)
        if lower is not None:
            minimum = int(lower)
        elif upper in ("*", "n"):
            minimum = 0
        else:
            minimum = maximum
        return cls(minimum, maximum)

    @property
    def is_many(self) -> bool:
        return self.max > 1

    @property
    def is_optional(self) -> bool:
        return self.min == 0

    def __str__(self) -> str:
        upper = "*" if self.max == MANY else str(self.max)
        if self.min == self.max:
            return upper
        return f"{self.min}..{upper}"


@dataclass
class ColumnType:
    """A named, reusable bundle of column handlers."""

    name: str
    handlers: dict[str, ColumnHandler] = field(default_factory=dict)

    def __post_init__(self) -> None:
        for handler_name, body in self.handlers.items():
            if not callable(body):
                raise DeclarationError(
                    f"Handler body for '{handler_name}' in column type '{self.name}' is not callable"
                )
