"""Schema configuration: SQL dialects and schema-wide options."""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from typing import Any, Callable, Mapping

from sqldatamodel.errors import ConfigError

AutoColumnHandler = Callable[[Any, Any], Any]


@dataclass(frozen=True)
class SqlDialect:
    """Join syntax templates for one database flavour.

    Each join template receives (left operand, right operand, join condition).
    An ``inner_join`` of None means inner joins are written as a comma
    separated FROM list, with their conditions moved into the WHERE clause.
    """

    inner_join: str | None = "%s INNER JOIN %s ON %s"
    left_join: str = "%s LEFT OUTER JOIN %s ON %s"
    join_associativity: str = "left"
    column_alias: str = "%s AS %s"
    table_alias: str = "%s AS %s"

    def __post_init__(self) -> None:
        if self.join_associativity not in ("left", "right"):
            raise ConfigError(
                f"join_associativity must be 'left' or 'right', got {self.join_associativity!r}"
            )
        if not self.left_join:
            raise ConfigError("left_join template is required")


SQL_DIALECTS: dict[str, SqlDialect] = {
    "Default": SqlDialect(),
    "MsAccess": SqlDialect(
        inner_join="%s INNER JOIN (%s) ON %s",
        left_join="%s LEFT OUTER JOIN (%s) ON %s",
        join_associativity="right",
    ),
    "BasisODBC": SqlDialect(inner_join=None),
    "BasisJDBC": SqlDialect(column_alias="%s %s"),
}


def get_dialect(dialect: str | SqlDialect | Mapping[str, Any] | None) -> SqlDialect:
    """Resolve a dialect given by name, as a mapping of fields, or as an instance."""
    if dialect is None:
        return SQL_DIALECTS["Default"]
    if isinstance(dialect, SqlDialect):
        return dialect
    if isinstance(dialect, str):
        try:
            return SQL_DIALECTS[dialect]
        except KeyError:
            raise ConfigError(f"Invalid SQL dialect: {dialect}") from None
    valid = {f.name for f in fields(SqlDialect)}
    bad = sorted(set(dialect) - valid)
    if bad:
        raise ConfigError(f"Invalid dialect setting: {', '.join(bad)}")
    return replace(SQL_DIALECTS["Default"], **dict(dialect))


@dataclass
class SchemaConfig:
    """Schema-wide settings shared by every source and statement of a schema."""

    dialect: SqlDialect = field(default_factory=SqlDialect)
    placeholder_prefix: str = "?:"
    select_implicitly_for: str | None = None
    keep_last_handle: bool = False
    auto_insert_columns: dict[str, AutoColumnHandler] = field(default_factory=dict)
    auto_update_columns: dict[str, AutoColumnHandler] = field(default_factory=dict)
    no_update_columns: set[str] = field(default_factory=set)

    def __post_init__(self) -> None:
        if not self.placeholder_prefix:
            raise ConfigError("placeholder_prefix must not be empty")
        self.dialect = get_dialect(self.dialect)
        self.no_update_columns = set(self.no_update_columns)

    @classmethod
    def from_options(cls, **options: Any) -> SchemaConfig:
        """Build a config from keyword options, rejecting unknown names.

        Args:
            **options: Any SchemaConfig field. ``dialect`` may be a dialect
                name, a mapping of SqlDialect fields, or a SqlDialect.

        Returns:
            A new SchemaConfig.

        Raises:
            ConfigError: If an option name or value is invalid.
        """
        valid = {f.name for f in fields(cls)}
        bad = sorted(set(options) - valid)
        if bad:
            raise ConfigError(f"Invalid schema option: {', '.join(bad)}")
        return cls(**options)
