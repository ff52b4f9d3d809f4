"""Render a parsed program back to ``.vibe`` source text.

The output is normalized (two-space indentation, one statement per line,
numbers in plain decimal form) and parses back to a structurally identical
tree.
"""

from __future__ import annotations
import math
from decimal import Decimal
from typing import List, Optional

from lexer import KEYWORDS, Lexer
from parser import (
    AfterBlock,
    AskStatement,
    Assignment,
    BeforeBlock,
    BooleanLiteral,
    Condition,
    Expression,
    Identifier,
    IfStatement,
    IncrementDecrement,
    ListLiteral,
    MCPCall,
    Node,
    NumberLiteral,
    Program,
    RepeatStatement,
    ShellCommand,
    Statement,
    StringLiteral,
)

INDENT = "  "

METHOD_TOKENS = frozenset(["IDENT"]) | frozenset(KEYWORDS.values())

# Enough nines to overflow a double, so the literal reads back as infinity.
OVERFLOW_LITERAL = "9" * 400


def format_program(program: Program) -> str:
    lines: List[str] = []
    for statement in program.statements:
        lines.extend(_statement_lines(statement, 0))
    return "\n".join(lines) + ("\n" if lines else "")


def format_node(node: Node) -> str:
    if isinstance(node, Program):
        return format_program(node)
    if isinstance(node, Condition):
        return format_condition(node)
    if isinstance(node, Expression):
        return format_value(node)
    if isinstance(node, Statement):
        return "\n".join(_statement_lines(node, 0))
    raise TypeError(f"Cannot format {node.__class__.__name__}")


def format_number(value: float) -> str:
    # Plain decimal, never exponent notation: "1e+06" would not lex back as one number.
    if math.isinf(value) and value > 0:
        return OVERFLOW_LITERAL
    if not math.isfinite(value):
        raise TypeError(f"Cannot format number {value!r}")
    if value == int(value):
        return str(int(value))
    text = format(Decimal(repr(value)), "f")
    return text.rstrip("0").rstrip(".") if "." in text else text


def format_value(node: Expression) -> str:
    if isinstance(node, StringLiteral):
        return f'"{node.value}"'
    if isinstance(node, NumberLiteral):
        return format_number(node.value)
    if isinstance(node, BooleanLiteral):
        return "True" if node.value else "False"
    if isinstance(node, Identifier):
        return node.name
    if isinstance(node, ListLiteral):
        return "[" + ", ".join(format_value(e) for e in node.elements) + "]"
    raise TypeError(f"Cannot format value {node.__class__.__name__}")


def format_condition(condition: Condition) -> str:
    return f"{format_value(condition.left)} {condition.operator} {format_value(condition.right)}"


def _block_lines(header: str, body: List[Statement], depth: int) -> List[str]:
    pad = INDENT * depth
    lines = [f"{pad}{header} {{"]
    for statement in body:
        lines.extend(_statement_lines(statement, depth + 1))
    lines.append(f"{pad}}}")
    return lines


def _statement_lines(statement: Statement, depth: int) -> List[str]:
    pad = INDENT * depth
    if isinstance(statement, Assignment):
        return [f"{pad}{statement.name} = {format_value(statement.value)}"]
    if isinstance(statement, AskStatement):
        return [f'{pad}ask "{statement.instruction}"']
    if isinstance(statement, ShellCommand):
        return [f'{pad}shell "{statement.command}"']
    if isinstance(statement, MCPCall):
        return [pad + _format_mcp(statement.service, statement.method, statement.arg)]
    if isinstance(statement, IncrementDecrement):
        # A space keeps "--" from being read as part of the name.
        return [f"{pad}{statement.name} {statement.operator}"]
    if isinstance(statement, IfStatement):
        lines = _block_lines(f"if {format_condition(statement.condition)}", statement.consequence, depth)
        if statement.alternative is not None:
            # Join "} else {" on one line, the way scripts are usually written.
            else_lines = _block_lines("else", statement.alternative, depth)
            lines[-1] = f"{pad}}} else {{"
            lines.extend(else_lines[1:])
        return lines
    if isinstance(statement, RepeatStatement):
        return _block_lines(f"repeat {statement.count}", statement.body, depth)
    if isinstance(statement, BeforeBlock):
        return _block_lines("before", statement.statements, depth)
    if isinstance(statement, AfterBlock):
        return _block_lines("after", statement.statements, depth)
    raise TypeError(f"Cannot format statement {statement.__class__.__name__}")


def _is_bare_method(method: str) -> bool:
    tokens = Lexer(method).tokenize()
    return len(tokens) == 2 and tokens[0].type in METHOD_TOKENS and tokens[0].value == method


def _format_mcp(service: str, method: str, arg: Optional[str]) -> str:
    if not _is_bare_method(method):
        # Anything that would not lex back as one word is written as a string.
        method = f'"{method}"'
    if arg is None:
        return f"{service}.{method}"
    return f'{service}.{method} "{arg}"'
