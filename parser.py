from __future__ import annotations
from dataclasses import dataclass, field
from typing import List, Optional

from lexer import Lexer, Token, VibeParseError


@dataclass
class SourceLocation:
    file: str
    line: int
    column: int
    statement: str


@dataclass
class Node:
    location: Optional[SourceLocation] = field(default=None, compare=False, repr=False, kw_only=True)


class Statement(Node):
    pass


class Expression(Node):
    pass


@dataclass
class Program(Node):
    statements: List[Statement]


@dataclass
class StringLiteral(Expression):
    value: str


@dataclass
class NumberLiteral(Expression):
    value: float


@dataclass
class BooleanLiteral(Expression):
    value: bool


@dataclass
class Identifier(Expression):
    name: str


@dataclass
class ListLiteral(Expression):
    elements: List[Expression]


@dataclass
class Condition(Node):
    left: Expression
    operator: str
    right: Expression


@dataclass
class Assignment(Statement):
    name: str
    value: Expression


@dataclass
class AskStatement(Statement):
    instruction: str


@dataclass
class IfStatement(Statement):
    condition: Condition
    consequence: List[Statement]
    alternative: Optional[List[Statement]] = None


@dataclass
class RepeatStatement(Statement):
    count: int
    body: List[Statement]


@dataclass
class BeforeBlock(Statement):
    statements: List[Statement]


@dataclass
class AfterBlock(Statement):
    statements: List[Statement]


@dataclass
class ShellCommand(Statement):
    command: str


@dataclass
class MCPCall(Statement):
    service: str
    method: str
    arg: Optional[str] = None


@dataclass
class IncrementDecrement(Statement):
    name: str
    operator: str


COMPARISON_OPERATORS = {
    "EQ": "==",
    "NEQ": "!=",
    "LT": "<",
    "GT": ">",
    "LTE": "<=",
    "GTE": ">=",
}

# Keyword tokens that read as plain words when they show up in value position.
BAREWORD_TOKENS = {"IF", "ELSE", "REPEAT", "ASK", "BEFORE", "AFTER", "SHELL"}


class Parser:
    """Recursive-descent parser over a lazily lexed token stream.

    The parser keeps exactly two tokens (current and peek) and never
    backtracks. By default it is lenient: stray tokens are skipped, a block
    without ``{`` is dropped or left empty, and an unknown comparison
    operator reads as ``==``. With ``strict=True`` each of those defaults
    raises :class:`VibeParseError` instead.
    """

    def __init__(
        self,
        lexer: Lexer,
        filename: str = "<string>",
        source_lines: Optional[List[str]] = None,
        *,
        strict: bool = False,
    ) -> None:
        self.lexer = lexer
        self.filename = filename
        self.source_lines = source_lines or []
        self.strict = strict
        self.current: Token = lexer.next_token()
        self.peek: Token = lexer.next_token()

    def parse(self) -> Program:
        start = self.current
        statements: List[Statement] = []
        while self.current.type != "EOF":
            self._skip_newlines()
            if self.current.type == "EOF":
                break
            statement = self._parse_statement()
            if statement is not None:
                statements.append(statement)
            self._skip_newlines()
        return Program(statements=statements, location=self._location_from_token(start))

    def _parse_statement(self) -> Optional[Statement]:
        token = self.current
        if token.type == "ASK":
            return self._parse_ask()
        if token.type == "IF":
            return self._parse_if()
        if token.type == "REPEAT":
            return self._parse_repeat()
        if token.type == "BEFORE":
            return BeforeBlock(statements=self._parse_hook_block(), location=self._location_from_token(token))
        if token.type == "AFTER":
            return AfterBlock(statements=self._parse_hook_block(), location=self._location_from_token(token))
        if token.type == "SHELL":
            if self.peek.type == "DOT":
                return self._parse_mcp_call()
            return self._parse_shell()
        if token.type == "IDENT":
            nxt = self.peek.type
            if nxt == "EQUALS":
                return self._parse_assignment()
            if nxt == "DOT":
                return self._parse_mcp_call()
            if nxt in ("PLUSPLUS", "MINUSMINUS"):
                return self._parse_increment_decrement()
            return self._parse_assignment()
        if self.strict:
            raise self._error(f"Unexpected token {token.type} {token.value!r}", token)
        self._advance()
        return None

    def _parse_assignment(self) -> Assignment:
        ident = self.current
        self._advance()
        if self.current.type == "EQUALS":
            self._advance()
        elif self.strict:
            raise self._error(f"Expected '=' after '{ident.value}'", self.current)
        value = self._parse_value()
        return Assignment(name=ident.value, value=value, location=self._location_from_token(ident))

    def _parse_value(self) -> Expression:
        token = self.current
        location = self._location_from_token(token)
        if token.type == "STRING":
            self._advance()
            return StringLiteral(value=token.value, location=location)
        if token.type == "NUMBER":
            self._advance()
            return NumberLiteral(value=float(token.value), location=location)
        if token.type == "BOOLEAN":
            self._advance()
            return BooleanLiteral(value=token.value == "True", location=location)
        if token.type == "LBRACKET":
            return self._parse_list()
        if token.type == "IDENT":
            self._advance()
            return Identifier(name=token.value, location=location)
        if token.type in BAREWORD_TOKENS:
            self._advance()
            return StringLiteral(value=token.value, location=location)
        if self.strict:
            raise self._error(f"Expected a value but found {token.type}", token)
        # Nothing usable here: yield an empty string and leave the token alone.
        return StringLiteral(value="", location=location)

    def _parse_list(self) -> ListLiteral:
        lbracket = self.current
        self._advance()
        elements: List[Expression] = []
        while self.current.type not in ("RBRACKET", "EOF"):
            self._skip_newlines()
            if self.current.type in ("RBRACKET", "EOF"):
                break
            before = self.current
            element = self._parse_value()
            if self.current is before:
                # The token cannot start a value; the list ends here.
                break
            elements.append(element)
            if self.current.type == "COMMA":
                self._advance()
            self._skip_newlines()
        if self.current.type == "RBRACKET":
            self._advance()
        elif self.strict:
            raise self._error("Unterminated list literal", lbracket)
        return ListLiteral(elements=elements, location=self._location_from_token(lbracket))

    def _parse_ask(self) -> AskStatement:
        keyword = self.current
        self._advance()
        return AskStatement(instruction=self._expect_string("ask"), location=self._location_from_token(keyword))

    def _parse_shell(self) -> ShellCommand:
        keyword = self.current
        self._advance()
        return ShellCommand(command=self._expect_string("shell"), location=self._location_from_token(keyword))

    def _expect_string(self, keyword: str) -> str:
        token = self.current
        if token.type != "STRING":
            if self.strict:
                raise self._error(f"Expected a string after '{keyword}'", token)
            return ""
        self._advance()
        return token.value

    def _parse_if(self) -> Optional[IfStatement]:
        keyword = self.current
        self._advance()
        condition = self._parse_condition()
        consequence = self._parse_block("if")
        if consequence is None:
            return None
        alternative: Optional[List[Statement]] = None
        self._skip_newlines()
        if self.current.type == "ELSE":
            self._advance()
            alternative = self._parse_block("else")
        return IfStatement(
            condition=condition,
            consequence=consequence,
            alternative=alternative,
            location=self._location_from_token(keyword),
        )

    def _parse_condition(self) -> Condition:
        start = self.current
        left = self._parse_value()
        op_token = self.current
        operator = COMPARISON_OPERATORS.get(op_token.type)
        if operator is None:
            if self.strict:
                raise self._error(f"Expected comparison operator but found {op_token.type}", op_token)
            operator = "=="
        # The operator slot is consumed even when it held something else.
        self._advance()
        right = self._parse_value()
        return Condition(left=left, operator=operator, right=right, location=self._location_from_token(start))

    def _parse_repeat(self) -> Optional[RepeatStatement]:
        keyword = self.current
        self._advance()
        count = 1
        if self.current.type == "NUMBER":
            literal = self.current.value
            # Only whole numbers are counts; "2.5" counts as zero.
            count = int(literal) if literal.isdigit() else 0
            self._advance()
        body = self._parse_block("repeat")
        if body is None:
            return None
        return RepeatStatement(count=count, body=body, location=self._location_from_token(keyword))

    def _parse_hook_block(self) -> List[Statement]:
        keyword = self.current
        self._advance()
        statements = self._parse_block(keyword.value)
        return statements if statements is not None else []

    def _parse_block(self, owner: str) -> Optional[List[Statement]]:
        self._skip_newlines()
        if self.current.type != "LBRACE":
            if self.strict:
                raise self._error(f"Expected '{{' to start {owner} block but found {self.current.type}", self.current)
            return None
        lbrace = self.current
        self._advance()
        statements: List[Statement] = []
        while self.current.type not in ("RBRACE", "EOF"):
            self._skip_newlines()
            if self.current.type in ("RBRACE", "EOF"):
                break
            statement = self._parse_statement()
            if statement is not None:
                statements.append(statement)
        if self.current.type == "RBRACE":
            self._advance()
        elif self.strict:
            raise self._error(f"Unterminated {owner} block", lbrace)
        return statements

    def _parse_mcp_call(self) -> MCPCall:
        service = self.current
        self._advance()  # service
        self._advance()  # '.'
        method = self.current
        if self.strict and method.type != "IDENT":
            raise self._error(f"Expected method name after '{service.value}.'", method)
        self._advance()
        arg: Optional[str] = None
        if self.current.type == "STRING":
            arg = self.current.value
            self._advance()
        return MCPCall(service=service.value, method=method.value, arg=arg, location=self._location_from_token(service))

    def _parse_increment_decrement(self) -> IncrementDecrement:
        ident = self.current
        self._advance()
        operator = self.current.value
        self._advance()
        return IncrementDecrement(name=ident.value, operator=operator, location=self._location_from_token(ident))

    def _advance(self) -> None:
        self.current = self.peek
        self.peek = self.lexer.next_token()

    def _skip_newlines(self) -> None:
        while self.current.type == "NEWLINE":
            self._advance()

    def _error(self, message: str, token: Token) -> VibeParseError:
        return VibeParseError(f"{message} at {self.filename}:{token.line}:{token.column}")

    def _location_from_token(self, token: Token) -> SourceLocation:
        line_index = token.line - 1
        statement = ""
        if 0 <= line_index < len(self.source_lines):
            statement = self.source_lines[line_index].strip()
        return SourceLocation(file=self.filename, line=token.line, column=token.column, statement=statement)


def parse_source(text: str, filename: str = "<string>", *, strict: bool = False) -> Program:
    lexer = Lexer(text, filename, strict=strict)
    return Parser(lexer, filename, text.splitlines(), strict=strict).parse()
