"""Vibe DSL entry point and REPL wiring."""

from __future__ import annotations
import argparse
import logging
import sys
from typing import Callable, List, Optional

from config import ConfigError, Settings, apply_cli_overrides, load_settings
from interpreter import Interpreter, TracebackFormatter, VibeRuntimeError, to_text
from lexer import Lexer, VibeParseError
from parser import parse_source
from services import (
    AssistantConfig,
    ClaudeRunner,
    ExtensionError,
    RuntimeServices,
    build_default_services,
    load_runtime_services,
)
from unparse import format_program

__version__ = "1.0.0"

VERSION_TEXT = "Vibe DSL Interpreter v1.0\nBuilt for Claude Code CLI integration"

EPILOG = """\
Examples:
  vibe project.vibe                    # Execute fast (no permission prompts)
  vibe project.vibe --dry-run          # Preview without executing
  vibe project.vibe --model haiku      # Use faster Haiku model
  vibe project.vibe --interactive      # Enable permission prompts
  vibe project.vibe --format           # Print the normalized script

DSL Syntax:
  # Comments start with #

  # Assignments
  project = "MyProject"
  frontend = react
  tools = ["tailwind", "jwt", "vite"]
  test = True
  count = 5

  # Ask the assistant to do something
  ask "scaffold the project structure"

  # Conditional execution
  if test == True {
    ask "generate unit tests"
  }

  # Repeat blocks
  repeat 3 {
    ask "refactor and improve code quality"
  }

  # Pre/post hooks
  before {
    shell "npm install"
  }
  after {
    shell "npm test"
  }

  # MCP tool calls
  fs.mkdir "src/components"
  shell.run "npm install express"
  browser.search "latest React best practices"
"""

REPL_HELP = "Commands: exit, help, vars, clear"


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vibe",
        description=(
            "A standalone interpreter for the .vibe DSL that instructs the "
            "Claude Code CLI to build software projects programmatically."
        ),
        epilog=EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("program", nargs="?", help="Path to a .vibe script")
    parser.add_argument("--dry-run", action="store_true", help="Print what would be executed without actually running")
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument("--verbose", action="store_true", help="Enable verbose output (default)")
    verbosity.add_argument("--quiet", action="store_true", help="Disable verbose output")
    parser.add_argument("--interactive", action="store_true", help="Enable permission prompts (default: auto-approve)")
    parser.add_argument("--model", metavar="NAME", help='Use a specific model (e.g. "haiku")')
    parser.add_argument("--claude", metavar="PATH", help='Path to the Claude Code CLI executable (default: "claude")')
    parser.add_argument("--config", metavar="PATH", help="YAML settings file")
    parser.add_argument("--strict", action="store_true", help="Reject malformed scripts instead of skipping tokens")
    parser.add_argument("--ext", action="append", default=[], metavar="PATH", help="Load a Python extension (repeatable)")
    parser.add_argument("--traceback-json", action="store_true", help="Also emit JSON traceback")
    parser.add_argument("--format", action="store_true", help="Print the normalized script instead of running it")
    parser.add_argument("-i", "--repl", action="store_true", help="Start the interactive REPL")
    parser.add_argument("-v", "--version", action="store_true", help="Show version information")
    return parser


def configure_logging(quiet: bool) -> None:
    logging.basicConfig(
        level=logging.ERROR if quiet else logging.WARNING,
        format="%(levelname)s: %(message)s",
        stream=sys.stderr,
    )


def build_services(settings: Settings) -> RuntimeServices:
    services = build_default_services(assistant=ClaudeRunner(settings.claude))
    return load_runtime_services(settings.extensions, services=services)


def make_interpreter(
    settings: Settings,
    services: RuntimeServices,
    *,
    source: str = "",
    filename: str = "<string>",
    output_sink: Optional[Callable[[str], None]] = None,
) -> Interpreter:
    return Interpreter(
        source=source,
        filename=filename,
        verbose=settings.verbose,
        dry_run=settings.dry_run,
        strict=settings.strict,
        services=services,
        assistant_config=AssistantConfig(skip_permissions=settings.skip_permissions, model=settings.model),
        output_sink=output_sink,
    )


def _brace_depth(line: str) -> int:
    # Braces inside string literals do not open or close blocks.
    types = [tok.type for tok in Lexer(line).tokenize()]
    return types.count("LBRACE") - types.count("RBRACE")


def run_repl(
    settings: Settings,
    services: RuntimeServices,
    *,
    input_fn: Callable[[str], str] = input,
) -> int:
    print("Vibe DSL REPL v1.0")
    print("Type 'exit' to quit, 'help' for commands")
    print()

    interpreter = make_interpreter(settings, services, filename="<repl>")
    buffer: List[str] = []
    depth = 0

    while True:
        try:
            line = input_fn("... " if buffer else "vibe> ")
        except EOFError:
            print()
            break

        stripped = line.strip()
        if not buffer:
            if stripped in ("exit", "quit"):
                print("Goodbye!")
                return 0
            if stripped == "help":
                print(REPL_HELP)
                continue
            if stripped == "vars":
                for name, value in interpreter.env.values.items():
                    print(f"  {name} = {to_text(value)}")
                continue
            if stripped == "clear":
                interpreter.env.clear()
                print("Variables cleared")
                continue

        # Lines that open a block are buffered until every brace is closed.
        depth += _brace_depth(line)
        buffer.append(line)
        if depth > 0:
            continue
        source_text = "\n".join(buffer)
        buffer.clear()
        depth = 0

        try:
            program = parse_source(source_text, "<repl>", strict=settings.strict)
            interpreter.source = source_text
            interpreter.execute(program)
        except VibeParseError as error:
            print(f"ParseError: {error}", file=sys.stderr)
        except VibeRuntimeError as error:
            formatter = TracebackFormatter(interpreter)
            print(formatter.format_text(error, verbose=interpreter.verbose), file=sys.stderr)
    return 0


def run_cli(argv: Optional[List[str]] = None) -> int:
    arg_parser = build_arg_parser()
    args = arg_parser.parse_args(argv)

    if args.version:
        print(VERSION_TEXT)
        return 0

    settings = Settings()
    try:
        if args.config:
            settings = load_settings(args.config, settings)
        settings = apply_cli_overrides(settings, args)
    except ConfigError as error:
        print(f"ConfigError: {error}", file=sys.stderr)
        return 1
    configure_logging(args.quiet)

    try:
        services = build_services(settings)
    except ExtensionError as error:
        print(f"ExtensionError: {error}", file=sys.stderr)
        return 1

    if args.repl:
        return run_repl(settings, services)

    if args.program is None:
        print("Error: No .vibe file specified", file=sys.stderr)
        arg_parser.print_usage(sys.stderr)
        return 1

    filename = args.program
    try:
        with open(filename, "r", encoding="utf-8") as handle:
            source_text = handle.read()
    except (OSError, UnicodeDecodeError) as exc:
        print(f"Error reading file: {exc}", file=sys.stderr)
        return 1

    interpreter = make_interpreter(settings, services, source=source_text, filename=filename)
    try:
        if args.format:
            print(format_program(interpreter.parse()), end="")
            return 0
        interpreter.run()
    except VibeParseError as error:
        print(f"ParseError: {error}", file=sys.stderr)
        return 1
    except VibeRuntimeError as error:
        formatter = TracebackFormatter(interpreter)
        print(formatter.format_text(error, verbose=settings.verbose), file=sys.stderr)
        if args.traceback_json:
            print(formatter.to_json(error), file=sys.stderr)
        return 1
    return 0


def main() -> None:
    raise SystemExit(run_cli())


if __name__ == "__main__":
    main()
