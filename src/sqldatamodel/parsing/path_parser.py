"""Parser for role path strings.

A path is a sequence of role references, each optionally preceded by a join
marker and optionally followed by a table alias::

    activities <=> employee|emp => department

``<=>`` (or ``INNER``) forces an inner join for the next role only, ``=>``
(or ``LEFT``) forces a left outer join. The words are matched in any case
and are reserved: a role named ``inner`` or ``left`` cannot appear in a path.
"""

from dataclasses import dataclass
from typing import Any

import ply.yacc as yacc

from sqldatamodel.parsing.path_lexer import PathLexer


@dataclass(frozen=True)
class PathStep:
    """One role reference in a path."""

    role: str
    alias: str | None = None
    forced: str | None = None  # "inner", "left" or None


class PathParser:
    """Parser for role paths."""

    tokens = PathLexer.tokens

    def __init__(self) -> None:
        self.lexer = PathLexer()
        self.lexer.build()
        self.parser: yacc.LRParser = None  # type: ignore

    def p_path_single(self, p: yacc.YaccProduction) -> None:
        """path : step"""
        p[0] = [p[1]]

    def p_path_multi(self, p: yacc.YaccProduction) -> None:
        """path : path step"""
        p[0] = p[1] + [p[2]]

    def p_step_plain(self, p: yacc.YaccProduction) -> None:
        """step : role_ref"""
        role, alias = p[1]
        p[0] = PathStep(role=role, alias=alias)

    def p_step_forced(self, p: yacc.YaccProduction) -> None:
        """step : INNER role_ref
                | LEFT role_ref"""
        role, alias = p[2]
        forced = "inner" if p.slice[1].type == "INNER" else "left"
        p[0] = PathStep(role=role, alias=alias, forced=forced)

    def p_role_ref(self, p: yacc.YaccProduction) -> None:
        """role_ref : IDENT"""
        p[0] = (p[1], None)

    def p_role_ref_alias(self, p: yacc.YaccProduction) -> None:
        """role_ref : IDENT PIPE IDENT"""
        p[0] = (p[1], p[3])

    def p_error(self, p: yacc.YaccProduction) -> None:
        if p:
            raise SyntaxError(f"Syntax error in role path at '{p.value}' (position {p.lexpos})")
        else:
            raise SyntaxError("Syntax error in role path: a join marker must be followed by a role")

    def build(self, **kwargs: Any) -> None:
        """Build the parser."""
        self.parser = yacc.yacc(module=self, start="path", **kwargs)

    def parse(self, data: str) -> list[PathStep]:
        """Parse a role path string."""
        if not data.strip():
            return []
        if self.parser is None:
            self.build(debug=False, write_tables=False, errorlog=yacc.NullLogger())

        return self.parser.parse(data, lexer=self.lexer.lexer)


def format_path(steps: list[PathStep]) -> str:
    """Render steps back to their canonical path string."""
    parts = []
    for step in steps:
        ref = step.role if step.alias is None else f"{step.role}|{step.alias}"
        if step.forced == "inner":
            ref = "<=> " + ref
        elif step.forced == "left":
            ref = "=> " + ref
        parts.append(ref)
    return " ".join(parts)


_parser: PathParser | None = None


def parse_path(data: str) -> list[PathStep]:
    """Parse a role path with a shared parser instance."""
    global _parser
    if _parser is None:
        _parser = PathParser()
    return _parser.parse(data)
