from __future__ import annotations
from dataclasses import dataclass
from typing import Iterator, List, Optional


class VibeError(Exception):
    """Base class for interpreter errors."""


class VibeParseError(VibeError):
    """Raised when strict parsing fails."""


@dataclass(frozen=True)
class Token:
    type: str
    value: str
    line: int
    column: int


KEYWORDS = {
    "if": "IF",
    "else": "ELSE",
    "repeat": "REPEAT",
    "ask": "ASK",
    "before": "BEFORE",
    "after": "AFTER",
    "shell": "SHELL",
    "True": "BOOLEAN",
    "False": "BOOLEAN",
}

SYMBOLS = {
    "{": "LBRACE",
    "}": "RBRACE",
    "[": "LBRACKET",
    "]": "RBRACKET",
    ",": "COMMA",
    ".": "DOT",
}

# first char -> (single type, second char, double type)
OPERATORS = {
    "=": ("EQUALS", "=", "EQ"),
    "<": ("LT", "=", "LTE"),
    ">": ("GT", "=", "GTE"),
    "+": ("PLUS", "+", "PLUSPLUS"),
    "-": ("MINUS", "-", "MINUSMINUS"),
    "!": ("ILLEGAL", "=", "NEQ"),
}

DIGITS = frozenset("0123456789")


class Lexer:
    def __init__(self, text: str, filename: str = "<string>", *, strict: bool = False) -> None:
        self.text = text
        self.filename = filename
        self.strict = strict
        self.index = 0
        self.line = 1
        self.column = 1

    def __iter__(self) -> Iterator[Token]:
        while True:
            token = self.next_token()
            yield token
            if token.type == "EOF":
                return

    def tokenize(self) -> List[Token]:
        return list(self)

    def next_token(self) -> Token:
        self._skip_insignificant()
        line, col = self.line, self.column
        if self._eof:
            return Token("EOF", "", line, col)

        ch = self._peek()
        if ch == "\n":
            self._advance()
            return Token("NEWLINE", "\n", line, col)
        if ch in SYMBOLS:
            self._advance()
            return Token(SYMBOLS[ch], ch, line, col)
        if ch in OPERATORS:
            single, second, double = OPERATORS[ch]
            self._advance()
            if self._peek_char() == second:
                self._advance()
                return Token(double, ch + second, line, col)
            return Token(single, ch, line, col)
        if ch == '"':
            return self._consume_string()
        if self._is_identifier_start(ch):
            return self._consume_identifier()
        if ch in DIGITS:
            return self._consume_number()
        self._advance()
        return Token("ILLEGAL", ch, line, col)

    def _skip_insignificant(self) -> None:
        # Newlines are statement separators, so only spaces, tabs, CRs and comments go.
        while not self._eof:
            ch = self._peek()
            if ch in " \t\r":
                self._advance()
                continue
            if ch == "#":
                self._consume_comment()
                continue
            break

    def _consume_comment(self) -> None:
        text = self.text
        n = len(text)
        _advance = self._advance
        while self.index < n and text[self.index] != "\n":
            _advance()

    def _consume_string(self) -> Token:
        line, col = self.line, self.column
        self._advance()  # consume opening quote
        chars: List[str] = []
        while not self._eof:
            ch = self._peek()
            if ch == '"':
                self._advance()
                return Token("STRING", "".join(chars), line, col)
            chars.append(ch)
            self._advance()
        if self.strict:
            raise VibeParseError(
                f"Unterminated string literal at {self.filename}:{line}:{col}"
            )
        return Token("STRING", "".join(chars), line, col)

    def _consume_number(self) -> Token:
        line, col = self.line, self.column
        whole = self._consume_digits()
        # A '.' is only a radix point when a digit follows; "1." lexes as NUMBER DOT.
        if not self._eof and self._peek() == "." and self._peek_next() in DIGITS:
            self._advance()
            frac = self._consume_digits()
            return Token("NUMBER", f"{whole}.{frac}", line, col)
        return Token("NUMBER", whole, line, col)

    def _consume_digits(self) -> str:
        digits: List[str] = []
        text = self.text
        n = len(text)
        _advance = self._advance
        while self.index < n and text[self.index] in DIGITS:
            digits.append(text[self.index])
            _advance()
        return "".join(digits)

    def _consume_identifier(self) -> Token:
        line, col = self.line, self.column
        chars: List[str] = []
        text = self.text
        n = len(text)
        _advance = self._advance
        while self.index < n and self._is_identifier_part(text[self.index]):
            chars.append(text[self.index])
            _advance()
        value = "".join(chars)
        return Token(KEYWORDS.get(value, "IDENT"), value, line, col)

    def _is_identifier_start(self, ch: str) -> bool:
        return ch.isalpha() or ch == "_"

    def _is_identifier_part(self, ch: str) -> bool:
        # Hyphens are allowed so barewords like web-fullstack stay one token.
        return ch.isalpha() or ch in DIGITS or ch in "_-"

    @property
    def _eof(self) -> bool:
        return self.index >= len(self.text)

    def _peek(self) -> str:
        return self.text[self.index]

    def _peek_char(self) -> Optional[str]:
        if self.index >= len(self.text):
            return None
        return self.text[self.index]

    def _peek_next(self) -> str:
        nxt = self.index + 1
        if nxt >= len(self.text):
            return ""
        return self.text[nxt]

    def _advance(self) -> None:
        if self.text[self.index] == "\n":
            self.line += 1
            self.column = 1
        else:
            self.column += 1
        self.index += 1
