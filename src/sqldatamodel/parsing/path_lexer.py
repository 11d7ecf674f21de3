"""Lexer for role path strings such as ``"activities <=> employee|emp"``."""

import ply.lex as lex


class PathLexer:
    """Lexer for tokenizing role paths."""

    # Join markers may also be written as words (case-insensitive), so no
    # role in a path can be named "inner" or "left"
    reserved = {
        "inner": "INNER",
        "left": "LEFT",
    }

    tokens = [
        "IDENT",
        "PIPE",
    ] + list(reserved.values())

    t_PIPE = r"\|"

    # Role names may be separated by whitespace or commas
    t_ignore = " \t\n,"

    def __init__(self) -> None:
        self.lexer: lex.LexToken = None  # type: ignore

    # Function rules match in definition order, so "<=>" is tried before "=>"
    def t_INNER(self, t: lex.LexToken) -> lex.LexToken:
        r"<=>"
        return t

    def t_LEFT(self, t: lex.LexToken) -> lex.LexToken:
        r"=>"
        return t

    def t_IDENT(self, t: lex.LexToken) -> lex.LexToken:
        r"[a-zA-Z_][a-zA-Z0-9_]*"
        t.type = self.reserved.get(t.value.lower(), "IDENT")
        return t

    def t_error(self, t: lex.LexToken) -> None:
        raise SyntaxError(f"Illegal character '{t.value[0]}' in role path at position {t.lexpos}")

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
