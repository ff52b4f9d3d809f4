from __future__ import annotations
import json
import logging
import math
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Tuple

from jinja2 import Environment as TemplateEnvironment, StrictUndefined

from lexer import VibeError
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
    NumberLiteral,
    Program,
    RepeatStatement,
    ShellCommand,
    SourceLocation,
    Statement,
    StringLiteral,
    parse_source,
)
from services import (
    AssistantConfig,
    AssistantError,
    McpContext,
    RuntimeServices,
    ServiceError,
    ShellCommandError,
    build_default_services,
)

logger = logging.getLogger(__name__)


TYPE_STR = "STR"
TYPE_NUM = "NUM"
TYPE_BOOL = "BOOL"
TYPE_LIST = "LIST"


@dataclass(frozen=True)
class Value:
    type: str
    value: Any


def format_number(value: float) -> str:
    """Shortest ``%g`` rendering: exponent form below 1e-4 and from 1e6 up."""
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    sign = "-" if math.copysign(1.0, value) < 0 else ""
    if value == 0:
        return sign + "0"
    shortest = Decimal(repr(abs(value)))
    exponent = shortest.adjusted()
    if exponent < -4 or exponent >= 6:
        digits = "".join(str(d) for d in shortest.as_tuple().digits).rstrip("0") or "0"
        mantissa = digits[0] + ("." + digits[1:] if len(digits) > 1 else "")
        return f"{sign}{mantissa}e{'+' if exponent >= 0 else '-'}{abs(exponent):02d}"
    return sign + format(shortest.normalize(), "f")


def to_text(value: Value) -> str:
    """Default text rendering, used by ``==``/``!=`` and prompt building."""
    if value.type == TYPE_STR:
        return value.value
    if value.type == TYPE_NUM:
        return format_number(value.value)
    if value.type == TYPE_BOOL:
        return "true" if value.value else "false"
    if value.type == TYPE_LIST:
        return "[" + " ".join(to_text(item) for item in value.value) + "]"
    raise VibeRuntimeError(f"Unknown value type {value.type}")


def to_number(value: Value) -> float:
    """Numeric coercion for ordering comparisons; anything unparsable is 0."""
    if value.type == TYPE_NUM:
        return value.value
    if value.type == TYPE_BOOL:
        return 1.0 if value.value else 0.0
    if value.type == TYPE_STR:
        text = value.value
        if text != text.strip() or "_" in text:
            return 0.0
        try:
            return float(text)
        except ValueError:
            return 0.0
    return 0.0


def format_prompt_value(value: Value) -> str:
    if value.type == TYPE_LIST:
        return ", ".join(to_text(item) for item in value.value)
    return to_text(value)


class VibeRuntimeError(VibeError):
    """Raised for fatal run faults."""

    def __init__(
        self,
        message: str,
        *,
        location: Optional[SourceLocation] = None,
        rule: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.location = location
        self.rule = rule
        self.step_index: Optional[int] = None


@dataclass
class Environment:
    values: Dict[str, Value] = field(default_factory=dict)

    def set(self, name: str, value: Value) -> None:
        self.values[name] = value

    def get(self, name: str) -> Optional[Value]:
        return self.values.get(name)

    def has(self, name: str) -> bool:
        return name in self.values

    def clear(self) -> None:
        self.values.clear()

    def snapshot(self) -> Dict[str, str]:
        def _render(val: Value) -> str:
            rendered = to_text(val)
            if len(rendered) > 80:
                rendered = rendered[:77] + "..."
            return f"{val.type}:{rendered}"

        return {k: _render(v) for k, v in self.values.items()}


@dataclass
class StateEntry:
    step_index: int
    state_id: str
    phase: str
    rule: str
    source_location: Optional[SourceLocation]
    statement: Optional[str]
    env_snapshot: Optional[Dict[str, str]]


class StateLogger:
    """Records every executed statement so failures can point at the last step."""

    def __init__(self) -> None:
        self.entries: List[StateEntry] = []
        self.next_state_index = 0

    def record(
        self,
        *,
        phase: str,
        rule: str,
        location: Optional[SourceLocation],
        env_snapshot: Optional[Dict[str, str]] = None,
    ) -> StateEntry:
        step_index = self.next_state_index
        entry = StateEntry(
            step_index=step_index,
            state_id=f"s_{step_index:06d}",
            phase=phase,
            rule=rule,
            source_location=location,
            statement=location.statement if location else None,
            env_snapshot=env_snapshot,
        )
        self.entries.append(entry)
        self.next_state_index += 1
        return entry

    def rules(self) -> List[str]:
        return [entry.rule for entry in self.entries]


# Label and variable name, in the order they appear in the prompt.
PROMPT_FIELDS: Tuple[Tuple[str, str], ...] = (
    ("Project Name", "project"),
    ("Target Platform", "victim"),
    ("Frontend", "frontend"),
    ("Backend", "backend"),
    ("Database", "db"),
    ("AI Features", "ai"),
    ("Tools", "tools"),
)

PROMPT_TEMPLATE = """You are building a project with the following specifications:

{% for label, text in fields %}{{ label }}: {{ text }}
{% endfor %}{% if task is not none %}
Main Task: {{ task }}
{% endif %}
Current Step: {{ instruction }}

Please implement this step. Create all necessary files and code."""

_templates = TemplateEnvironment(
    autoescape=False,
    undefined=StrictUndefined,
    keep_trailing_newline=True,
)
_prompt_template = _templates.from_string(PROMPT_TEMPLATE)


def build_prompt(instruction: str, env: Environment) -> str:
    fields: List[Tuple[str, str]] = []
    for label, name in PROMPT_FIELDS:
        value = env.get(name)
        if value is None:
            continue
        # Only the list-valued fields are joined with commas.
        text = format_prompt_value(value) if name in ("ai", "tools") else to_text(value)
        fields.append((label, text))
    task = env.get("task")
    return _prompt_template.render(
        fields=fields,
        task=to_text(task) if task is not None else None,
        instruction=instruction,
    )


def _truncate(text: str, max_len: int) -> str:
    if len(text) <= max_len:
        return text
    return text[: max_len - 3] + "..."


class Interpreter:
    def __init__(
        self,
        *,
        source: str = "",
        filename: str = "<string>",
        verbose: bool = True,
        dry_run: bool = False,
        strict: bool = False,
        services: Optional[RuntimeServices] = None,
        assistant_config: Optional[AssistantConfig] = None,
        output_sink: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.source = source
        self.filename = filename
        self.verbose = verbose
        self.dry_run = dry_run
        self.strict = strict
        self.services = services or build_default_services()
        self.assistant_config = assistant_config or AssistantConfig()
        self.output_sink = output_sink or (lambda text: print(text))

        self.env = Environment()
        self.before_hooks: List[Statement] = []
        self.after_hooks: List[Statement] = []
        self.logger = StateLogger()
        self.io_log: List[Dict[str, Any]] = []
        self.phase = "<main>"

    def parse(self) -> Program:
        return parse_source(self.source, self.filename, strict=self.strict)

    def run(self) -> None:
        self.execute(self.parse())

    def execute(self, program: Program) -> None:
        """Bind and register, then run before hooks, the main pass and after hooks.

        The environment survives between calls so a REPL can feed one
        program at a time; hook lists belong to a single call.
        """
        self.before_hooks = []
        self.after_hooks = []
        self._emit_event("program_start", self, program)
        try:
            self.collect(program)
            self._banner()
            self._run_hooks(self.before_hooks, "before")
            self.phase = "<main>"
            self._log("═══ Executing Build Steps ═══")
            self._execute_block(program.statements)
            self._run_hooks(self.after_hooks, "after")
        except VibeRuntimeError as error:
            self._emit_event("on_error", self, error)
            if error.step_index is None and self.logger.entries:
                error.step_index = self.logger.entries[-1].step_index
            raise
        except Exception as exc:
            self._emit_event("on_error", self, exc)
            loc = self.logger.entries[-1].source_location if self.logger.entries else None
            wrapped = VibeRuntimeError(f"Internal interpreter error: {exc}", location=loc, rule="internal")
            if self.logger.entries:
                wrapped.step_index = self.logger.entries[-1].step_index
            raise wrapped from exc
        self._log("")
        self._log("═══ Build Complete ═══")
        self._emit_event("program_end", self)

    def collect(self, program: Program) -> None:
        """First pass: fix every top-level binding and hook before any side effect."""
        for statement in program.statements:
            if isinstance(statement, Assignment):
                self.env.set(statement.name, self.evaluate(statement.value))
            elif isinstance(statement, BeforeBlock):
                self.before_hooks.extend(statement.statements)
            elif isinstance(statement, AfterBlock):
                self.after_hooks.extend(statement.statements)

    def report(self, text: str) -> None:
        self._log(text)

    def _banner(self) -> None:
        self._log("Vibe DSL interpreter")
        for label, name in (("Project", "project"), ("Target", "victim")):
            value = self.env.get(name)
            if value is not None:
                self._log(f"{label}: {to_text(value)}")
        self._log("")

    def _run_hooks(self, hooks: List[Statement], phase: str) -> None:
        if not hooks:
            return
        self.phase = f"<{phase}>"
        self._log(f"═══ Running {'Pre' if phase == 'before' else 'Post'}-Hooks ═══")
        for hook in hooks:
            try:
                self._execute_hook(hook)
            except VibeRuntimeError as err:
                raise VibeRuntimeError(
                    f"{phase} hook failed: {err.message}",
                    location=err.location,
                    rule=phase,
                ) from err
        self._log("")

    def _execute_hook(self, hook: Statement) -> None:
        # Hooks only run side effects; anything else in a hook block is ignored.
        if isinstance(hook, ShellCommand):
            self._log_step(hook)
            self._execute_shell(hook)
        elif isinstance(hook, MCPCall):
            self._log_step(hook)
            self._execute_mcp(hook)

    def _execute_block(self, statements: List[Statement]) -> None:
        emit_event = self._emit_event
        execute_stmt = self._execute_statement
        for statement in statements:
            emit_event("before_statement", self, statement)
            execute_stmt(statement)
            emit_event("after_statement", self, statement)

    def _execute_statement(self, statement: Statement) -> None:
        self._log_step(statement)
        if isinstance(statement, (Assignment, BeforeBlock, AfterBlock)):
            # Resolved during collection.
            return
        if isinstance(statement, AskStatement):
            self._execute_ask(statement)
            return
        if isinstance(statement, IfStatement):
            self._execute_if(statement)
            return
        if isinstance(statement, RepeatStatement):
            self._execute_repeat(statement)
            return
        if isinstance(statement, ShellCommand):
            self._execute_shell(statement)
            return
        if isinstance(statement, MCPCall):
            self._execute_mcp(statement)
            return
        if isinstance(statement, IncrementDecrement):
            self._execute_increment_decrement(statement)
            return
        raise VibeRuntimeError("Unsupported statement", location=statement.location)

    def _execute_if(self, statement: IfStatement) -> None:
        if self.evaluate_condition(statement.condition):
            self._execute_block(statement.consequence)
        elif statement.alternative is not None:
            self._execute_block(statement.alternative)

    def _execute_repeat(self, statement: RepeatStatement) -> None:
        for iteration in range(statement.count):
            self._log(f"  [Repeat {iteration + 1}/{statement.count}]")
            self._execute_block(statement.body)

    def _execute_increment_decrement(self, statement: IncrementDecrement) -> None:
        current = self.env.get(statement.name)
        if current is None or current.type != TYPE_NUM:
            return
        delta = 1.0 if statement.operator == "++" else -1.0
        self.env.set(statement.name, Value(TYPE_NUM, current.value + delta))

    def _execute_ask(self, statement: AskStatement) -> None:
        self._log("")
        self._log(f"┌─ ASK: {_truncate(statement.instruction, 53)}")
        prompt = build_prompt(statement.instruction, self.env)
        self.io_log.append({"event": "ask", "instruction": statement.instruction, "prompt": prompt, "dry_run": self.dry_run})
        if self.dry_run:
            self._log("  [DRY RUN] Would send to assistant:")
            self._log(f"  Prompt: {_truncate(prompt, 60)}")
            return
        self._log("  → Calling assistant...")
        try:
            self.services.assistant.run(prompt, self.assistant_config, self.output_sink)
        except AssistantError as exc:
            logger.warning("assistant invocation failed: %s", exc)
            self._log("  ⚠ Assistant not available or failed")
            self._log(f"  → Prompt would be: {_truncate(prompt, 100)}")
            return
        self._log("  ✓ Step completed")

    def _execute_shell(self, statement: ShellCommand) -> None:
        self._log(f"  → Shell: {statement.command}")
        self.io_log.append({"event": "shell", "command": statement.command, "dry_run": self.dry_run})
        if self.dry_run:
            self._log(f"  [DRY RUN] Would execute: {statement.command}")
            return
        try:
            self.services.shell.run(statement.command, self.output_sink)
        except ShellCommandError as exc:
            raise VibeRuntimeError(
                f"shell command failed: {exc}",
                location=statement.location,
                rule="shell",
            ) from exc
        self._log("  ✓ Shell command completed")

    def _execute_mcp(self, call: MCPCall) -> None:
        name = f"{call.service}.{call.method}"
        self._log(f"  → MCP: {name}")
        self.io_log.append(
            {"event": "mcp", "service": call.service, "method": call.method, "arg": call.arg, "dry_run": self.dry_run}
        )
        if self.dry_run:
            self._log(f"  [DRY RUN] Would call MCP: {name}({call.arg or ''})")
            return
        handler = self.services.mcp.lookup(call.service, call.method)
        if handler is not None:
            ctx = McpContext(interpreter=self, location=call.location, services=self.services)
            try:
                handler(ctx, call.arg)
            except ServiceError as exc:
                raise VibeRuntimeError(str(exc), location=call.location, rule=name) from exc
        self._log("  ✓ MCP call completed")

    def evaluate(self, expression: Expression) -> Value:
        if isinstance(expression, StringLiteral):
            return Value(TYPE_STR, expression.value)
        if isinstance(expression, NumberLiteral):
            return Value(TYPE_NUM, float(expression.value))
        if isinstance(expression, BooleanLiteral):
            return Value(TYPE_BOOL, bool(expression.value))
        if isinstance(expression, Identifier):
            # Unbound names read as their own text.
            bound = self.env.get(expression.name)
            return bound if bound is not None else Value(TYPE_STR, expression.name)
        if isinstance(expression, ListLiteral):
            return Value(TYPE_LIST, tuple(self.evaluate(e) for e in expression.elements))
        raise VibeRuntimeError(
            f"Unsupported value {expression.__class__.__name__}",
            location=expression.location,
        )

    def evaluate_condition(self, condition: Condition) -> bool:
        left = self.evaluate(condition.left)
        right = self.evaluate(condition.right)
        op = condition.operator
        if op == "==":
            return to_text(left) == to_text(right)
        if op == "!=":
            return to_text(left) != to_text(right)
        if op == "<":
            return to_number(left) < to_number(right)
        if op == ">":
            return to_number(left) > to_number(right)
        if op == "<=":
            return to_number(left) <= to_number(right)
        if op == ">=":
            return to_number(left) >= to_number(right)
        return False

    def _log(self, text: str) -> None:
        if self.verbose:
            self.output_sink(text)

    def _emit_event(self, event: str, *args: Any, **kwargs: Any) -> None:
        self.services.events.emit(event, *args, **kwargs)

    def _log_step(self, statement: Statement) -> None:
        self.logger.record(
            phase=self.phase,
            rule=statement.__class__.__name__,
            location=statement.location,
            env_snapshot=self.env.snapshot() if self.verbose else None,
        )


class TracebackFormatter:
    def __init__(self, interpreter: Interpreter) -> None:
        self.interpreter = interpreter

    def _last_entry(self, error: VibeRuntimeError) -> Optional[StateEntry]:
        entries = self.interpreter.logger.entries
        if error.step_index is not None and 0 <= error.step_index < len(entries):
            return entries[error.step_index]
        return entries[-1] if entries else None

    def format_text(self, error: VibeRuntimeError, verbose: bool) -> str:
        lines = ["Traceback (most recent call last):"]
        entry = self._last_entry(error)
        location = error.location or (entry.source_location if entry else None)
        phase = entry.phase if entry else self.interpreter.phase
        if location:
            lines.append(f"  File \"{location.file}\", line {location.line}, in {phase}")
            if location.statement:
                lines.append(f"    {location.statement}")
        else:
            lines.append(f"  <unknown location> in {phase}")
        if entry:
            lines.append(f"    State log index: {entry.step_index}  State id: {entry.state_id}")
            if verbose and entry.env_snapshot:
                snapshot = ", ".join(f"{k}={v}" for k, v in entry.env_snapshot.items())
                lines.append(f"    Env snapshot: {snapshot}")
        rule = error.rule or "runtime"
        lines.append(f"{error.__class__.__name__}: {error.message} (rule: {rule})")
        return "\n".join(lines)

    def to_json(self, error: VibeRuntimeError) -> str:
        entry = self._last_entry(error)
        location = error.location or (entry.source_location if entry else None)
        frame: Dict[str, Any] = {"phase": entry.phase if entry else self.interpreter.phase}
        if location:
            frame["source_location"] = {
                "file": location.file,
                "line": location.line,
                "column": location.column,
                "statement": location.statement,
            }
        if entry:
            frame["state_id"] = entry.state_id
            frame["step_index"] = entry.step_index
            frame["rule"] = entry.rule
            if entry.env_snapshot is not None:
                frame["env_snapshot"] = entry.env_snapshot
        data = {
            "error": {
                "type": error.__class__.__name__,
                "message": error.message,
                "rule": error.rule,
                "failing_step_index": error.step_index,
            },
            "traceback": [frame],
        }
        return json.dumps(data, indent=2)
