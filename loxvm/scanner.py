"""Lexical analysis: turns source text into a stream of tokens."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import Iterator


class TokenType(Enum):
    """Kinds of token the scanner produces."""

    # Single-character tokens.
    LEFT_PAREN = auto()
    RIGHT_PAREN = auto()
    LEFT_BRACE = auto()
    RIGHT_BRACE = auto()
    COMMA = auto()
    DOT = auto()
    MINUS = auto()
    PLUS = auto()
    SEMICOLON = auto()
    SLASH = auto()
    STAR = auto()

    # One or two character tokens.
    BANG = auto()
    BANG_EQUAL = auto()
    EQUAL = auto()
    EQUAL_EQUAL = auto()
    GREATER = auto()
    GREATER_EQUAL = auto()
    LESS = auto()
    LESS_EQUAL = auto()

    # Literals.
    IDENTIFIER = auto()
    STRING = auto()
    NUMBER = auto()

    # Keywords.
    AND = auto()
    CLASS = auto()
    ELSE = auto()
    FALSE = auto()
    FOR = auto()
    FUN = auto()
    IF = auto()
    NIL = auto()
    OR = auto()
    PRINT = auto()
    RETURN = auto()
    SUPER = auto()
    THIS = auto()
    TRUE = auto()
    VAR = auto()
    WHILE = auto()

    Q_MARK = auto()
    COLON = auto()
    FIX = auto()
    MATCH = auto()
    IS = auto()
    BREAK = auto()
    CONTINUE = auto()

    ERROR = auto()
    EOF = auto()


@dataclass(frozen=True)
class Token:
    """A lexeme with its kind and source line.

    For error tokens the lexeme holds the error message instead.
    """

    type: TokenType
    lexeme: str
    line: int


_KEYWORDS = {
    "and": TokenType.AND,
    "break": TokenType.BREAK,
    "class": TokenType.CLASS,
    "continue": TokenType.CONTINUE,
    "else": TokenType.ELSE,
    "false": TokenType.FALSE,
    "fix": TokenType.FIX,
    "for": TokenType.FOR,
    "fun": TokenType.FUN,
    "match": TokenType.MATCH,
    "nil": TokenType.NIL,
    "or": TokenType.OR,
    "print": TokenType.PRINT,
    "return": TokenType.RETURN,
    "super": TokenType.SUPER,
    "this": TokenType.THIS,
    "true": TokenType.TRUE,
    "var": TokenType.VAR,
    "while": TokenType.WHILE,
}

_SINGLE = {
    "(": TokenType.LEFT_PAREN,
    ")": TokenType.RIGHT_PAREN,
    "{": TokenType.LEFT_BRACE,
    "}": TokenType.RIGHT_BRACE,
    ";": TokenType.SEMICOLON,
    ",": TokenType.COMMA,
    ".": TokenType.DOT,
    "-": TokenType.MINUS,
    "+": TokenType.PLUS,
    "/": TokenType.SLASH,
    "*": TokenType.STAR,
    "?": TokenType.Q_MARK,
    ":": TokenType.COLON,
}

# Operators that may be followed by '=' to form a two-character token.
_WITH_EQUAL = {
    "!": (TokenType.BANG_EQUAL, TokenType.BANG),
    "=": (TokenType.EQUAL_EQUAL, TokenType.EQUAL),
    "<": (TokenType.LESS_EQUAL, TokenType.LESS),
    ">": (TokenType.GREATER_EQUAL, TokenType.GREATER),
}

_NUL = "\0"


def _is_alpha(c: str) -> bool:
    return ("a" <= c <= "z") or ("A" <= c <= "Z") or c == "_"


def _is_digit(c: str) -> bool:
    return "0" <= c <= "9"


def _identifier_type(text: str) -> TokenType:
    # Any identifier starting with "if" or "is" is taken as that keyword.
    if len(text) > 1 and text[0] == "i":
        if text[1] == "f":
            return TokenType.IF
        if text[1] == "s":
            return TokenType.IS
    return _KEYWORDS.get(text, TokenType.IDENTIFIER)


class Scanner:
    """Produces tokens on demand from a source string."""

    def __init__(self, source: str) -> None:
        self.source = source
        self.line = 1
        self._start = 0
        self._current = 0

    def _at_end(self) -> bool:
        return self._current >= len(self.source)

    def _advance(self) -> str:
        c = self.source[self._current]
        self._current += 1
        return c

    def _peek(self) -> str:
        return _NUL if self._at_end() else self.source[self._current]

    def _peek_next(self) -> str:
        following = self._current + 1
        return self.source[following] if following < len(self.source) else _NUL

    def _match(self, expected: str) -> bool:
        if self._at_end() or self.source[self._current] != expected:
            return False
        self._current += 1
        return True

    def _make_token(self, kind: TokenType) -> Token:
        return Token(kind, self.source[self._start:self._current], self.line)

    def _error_token(self, message: str) -> Token:
        return Token(TokenType.ERROR, message, self.line)

    def _skip_whitespace(self) -> None:
        while True:
            c = self._peek()
            if c in " \r\t" and c != _NUL:
                self._advance()
            elif c == "\n":
                self.line += 1
                self._advance()
            elif c == "/" and self._peek_next() == "/":
                while self._peek() != "\n" and not self._at_end():
                    self._advance()
            else:
                return

    def _identifier(self) -> Token:
        while _is_alpha(self._peek()) or _is_digit(self._peek()):
            self._advance()
        text = self.source[self._start:self._current]
        return self._make_token(_identifier_type(text))

    def _number(self) -> Token:
        while _is_digit(self._peek()):
            self._advance()
        if self._peek() == "." and _is_digit(self._peek_next()):
            self._advance()
            while _is_digit(self._peek()):
                self._advance()
        return self._make_token(TokenType.NUMBER)

    def _string(self) -> Token:
        while self._peek() != '"' and not self._at_end():
            if self._peek() == "\n":
                self.line += 1
            self._advance()
        if self._at_end():
            return self._error_token("Unterminated string.")
        self._advance()
        return self._make_token(TokenType.STRING)

    def scan_token(self) -> Token:
        """Return the next token; EOF is returned again once input is spent."""
        self._skip_whitespace()
        self._start = self._current

        if self._at_end():
            return self._make_token(TokenType.EOF)

        c = self._advance()
        if _is_alpha(c):
            return self._identifier()
        if _is_digit(c):
            return self._number()
        if c in _SINGLE:
            return self._make_token(_SINGLE[c])
        if c in _WITH_EQUAL:
            double, single = _WITH_EQUAL[c]
            return self._make_token(double if self._match("=") else single)
        if c == '"':
            return self._string()
        return self._error_token("Unexpected character.")

    def __iter__(self) -> Iterator[Token]:
        while True:
            token = self.scan_token()
            yield token
            if token.type is TokenType.EOF:
                return


def scan_tokens(source: str) -> Iterator[Token]:
    """Yield every token of the source, ending with a single EOF token."""
    yield from Scanner(source)