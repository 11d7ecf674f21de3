"""Lexer over generated SQL text, used to rewrite selects into count queries."""

from typing import Any, Sequence

import ply.lex as lex

# Clauses that do not affect the number of rows and are cut from count queries
_TRAILING_CLAUSES = frozenset({"ORDER", "LIMIT", "OFFSET", "FOR"})


class SqlLexer:
    """Lexer for tokenizing SQL statements."""

    tokens = [
        "STRING",
        "QUOTED_NAME",
        "PLACEHOLDER",
        "LPAREN",
        "RPAREN",
        "COMMA",
        "NUMBER",
        "WORD",
        "OPERATOR",
    ]

    t_PLACEHOLDER = r"\?"
    t_LPAREN = r"\("
    t_RPAREN = r"\)"
    t_COMMA = r","
    t_OPERATOR = r"[-+*/%<>=!|&^~;:.]+"

    t_ignore = " \t\r\n"

    def __init__(self) -> None:
        self.lexer: lex.LexToken = None  # type: ignore

    def t_STRING(self, t: lex.LexToken) -> lex.LexToken:
        r"'([^']|'')*'"
        return t

    def t_QUOTED_NAME(self, t: lex.LexToken) -> lex.LexToken:
        r'"([^"]|"")*"|\[[^\]]*\]|`[^`]*`'
        return t

    def t_NUMBER(self, t: lex.LexToken) -> lex.LexToken:
        r"\d+(\.\d+)?"
        return t

    def t_WORD(self, t: lex.LexToken) -> lex.LexToken:
        r"[a-zA-Z_][a-zA-Z0-9_$]*(\.([a-zA-Z_][a-zA-Z0-9_$]*|\*))*"
        return t

    def t_error(self, t: lex.LexToken) -> None:
        raise SyntaxError(f"Illegal character '{t.value[0]}' in SQL at position {t.lexpos}")

    def build(self, **kwargs) -> None:  # type: ignore
        """Build the lexer."""
        self.lexer = lex.lex(module=self, **kwargs)

    def input(self, data: str) -> None:
        """Set the input string to tokenize."""
        self.lexer.input(data)

    def token(self) -> lex.LexToken | None:
        """Return the next token."""
        return self.lexer.token()

    def tokenize(self, data: str) -> list[lex.LexToken]:
        """Tokenize the input and return all tokens."""
        self.input(data)
        tokens = []
        while True:
            tok = self.token()
            if tok is None:
                break
            tokens.append(tok)
        return tokens


def count_query(sql: str, binds: Sequence[Any]) -> tuple[str, list[Any]]:
    """Rewrite a SELECT into a query returning its number of rows.

    Top-level ORDER BY, LIMIT, OFFSET and FOR clauses are cut together with
    their bind values. A query using DISTINCT or GROUP BY is wrapped in a
    subquery, since its row count differs from the count of the FROM clause.

    Args:
        sql: The SELECT statement.
        binds: Positional bind values for the statement.

    Returns:
        A tuple of (count SQL, bind values for it).

    Raises:
        ValueError: If the statement has no top-level FROM clause.
    """
    lexer = SqlLexer()
    lexer.build()
    tokens = lexer.tokenize(sql)

    depth = 0
    from_pos: int | None = None
    cut_pos = len(sql)
    grouped = False
    placeholders_before_from = 0
    placeholders_before_cut = 0

    for tok in tokens:
        if tok.type == "LPAREN":
            depth += 1
        elif tok.type == "RPAREN":
            depth -= 1
        elif tok.type == "PLACEHOLDER":
            if from_pos is None:
                placeholders_before_from += 1
            placeholders_before_cut += 1
        elif tok.type == "WORD" and depth == 0:
            word = tok.value.upper()
            if from_pos is None:
                if word == "FROM":
                    from_pos = tok.lexpos
                elif word == "DISTINCT":
                    grouped = True
            elif word == "GROUP":
                grouped = True
            elif word in _TRAILING_CLAUSES:
                cut_pos = tok.lexpos
                break

    if from_pos is None:
        raise ValueError(f"Cannot count rows of a query without FROM clause: {sql}")

    if grouped:
        inner = sql[:cut_pos].strip()
        return f"SELECT COUNT(*) FROM ({inner}) count_rows", list(binds[:placeholders_before_cut])

    count_sql = "SELECT COUNT(*) " + sql[from_pos:cut_pos].strip()
    return count_sql, list(binds[placeholders_before_from:placeholders_before_cut])
