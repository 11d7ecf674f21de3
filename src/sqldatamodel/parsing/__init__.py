"""Parsing module for role paths and SQL rewriting."""

from sqldatamodel.parsing.path_parser import PathParser, PathStep, format_path, parse_path
from sqldatamodel.parsing.sql_lexer import SqlLexer, count_query

__all__ = [
    "PathParser",
    "PathStep",
    "SqlLexer",
    "count_query",
    "format_path",
    "parse_path",
]
