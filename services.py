from __future__ import annotations

import hashlib
import importlib.util
import os
import subprocess
import sys
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, Tuple

from lexer import VibeError


EXTENSION_API_VERSION = 1

OutputSink = Callable[[str], None]


class ServiceError(VibeError):
    """Raised by a service when a side effect fails."""


class ShellCommandError(ServiceError):
    def __init__(self, message: str, *, returncode: Optional[int] = None) -> None:
        super().__init__(message)
        self.returncode = returncode


class AssistantError(ServiceError):
    pass


class ExtensionError(ServiceError):
    pass


@dataclass(frozen=True)
class ExtensionMetadata:
    name: str
    version: str = "0.0.0"
    requires_api: int = EXTENSION_API_VERSION


@dataclass(frozen=True)
class AssistantConfig:
    skip_permissions: bool = True
    model: Optional[str] = None


# ---- Capabilities ----


class AssistantRunner(Protocol):
    def run(self, prompt: str, config: AssistantConfig, sink: OutputSink) -> None: ...


class ShellRunner(Protocol):
    def run(self, command: str, sink: OutputSink) -> None: ...


def _stream(argv: Any, *, shell: bool, sink: OutputSink) -> int:
    # Merge stderr into stdout so the sink sees output in the order it was produced.
    with subprocess.Popen(
        argv,
        shell=shell,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
    ) as proc:
        assert proc.stdout is not None
        # Commands may print any bytes; undecodable ones become U+FFFD.
        for raw in proc.stdout:
            sink(raw.decode("utf-8", errors="replace").rstrip("\r\n"))
        return proc.wait()


class SubprocessShell:
    """Runs commands through the system shell, streaming output line by line."""

    def run(self, command: str, sink: OutputSink) -> None:
        try:
            code = _stream(command, shell=True, sink=sink)
        except (OSError, ValueError) as exc:
            raise ShellCommandError(str(exc)) from exc
        if code != 0:
            raise ShellCommandError(f"exit status {code}", returncode=code)


class ClaudeRunner:
    """Invokes the command-line assistant non-interactively."""

    def __init__(self, executable: str = "claude") -> None:
        self.executable = executable

    def build_argv(self, prompt: str, config: AssistantConfig) -> List[str]:
        argv = [self.executable, "--print"]
        if config.skip_permissions:
            argv.append("--dangerously-skip-permissions")
        if config.model:
            argv.extend(["--model", config.model])
        argv.extend(["-p", prompt])
        return argv

    def run(self, prompt: str, config: AssistantConfig, sink: OutputSink) -> None:
        argv = self.build_argv(prompt, config)
        try:
            code = _stream(argv, shell=False, sink=sink)
        except (OSError, ValueError, subprocess.SubprocessError) as exc:
            raise AssistantError(f"{self.executable}: {exc}") from exc
        if code != 0:
            raise AssistantError(f"{self.executable} exited with status {code}")


# ---- MCP services ----


@dataclass(frozen=True)
class McpContext:
    interpreter: Any
    location: Any  # SourceLocation | None
    services: "RuntimeServices"

    def report(self, text: str) -> None:
        self.interpreter.report(text)

    def output(self, text: str) -> None:
        # Command output is shown even when progress reporting is off.
        self.interpreter.output_sink(text)


McpHandler = Callable[[McpContext, Optional[str]], None]


@dataclass
class McpRegistry:
    # (service, method) -> (handler, ext_name); method "*" matches any method
    _handlers: Dict[Tuple[str, str], Tuple[McpHandler, str]] = field(default_factory=dict)

    def register(self, service: str, method: str, handler: McpHandler, *, ext_name: str) -> None:
        if not service or not method:
            raise ExtensionError("MCP service and method must be non-empty")
        key = (service, method)
        if key in self._handlers:
            owner = self._handlers[key][1]
            raise ExtensionError(f"MCP call '{service}.{method}' is already registered by {owner}")
        self._handlers[key] = (handler, ext_name)

    def lookup(self, service: str, method: str) -> Optional[McpHandler]:
        entry = self._handlers.get((service, method)) or self._handlers.get((service, "*"))
        return entry[0] if entry else None

    def has(self, service: str, method: str) -> bool:
        return self.lookup(service, method) is not None

    def names(self) -> List[str]:
        return sorted(f"{s}.{m}" for s, m in self._handlers)


# ---- Events ----


@dataclass
class EventRegistry:
    # event -> list[(priority, handler, ext_name)]
    _events: Dict[str, List[Tuple[int, Callable[..., None], str]]] = field(default_factory=dict)

    def on_event(self, event: str, handler: Callable[..., None], *, priority: int, ext_name: str) -> None:
        self._events.setdefault(event, []).append((priority, handler, ext_name))
        self._events[event].sort(key=lambda t: t[0], reverse=True)

    def emit(self, event: str, *args: Any, **kwargs: Any) -> None:
        for _priority, handler, _ext in self._events.get(event, []):
            handler(*args, **kwargs)


@dataclass
class RuntimeServices:
    metadata: List[ExtensionMetadata] = field(default_factory=list)
    events: EventRegistry = field(default_factory=EventRegistry)
    mcp: McpRegistry = field(default_factory=McpRegistry)
    shell: ShellRunner = field(default_factory=SubprocessShell)
    assistant: AssistantRunner = field(default_factory=ClaudeRunner)


class ExtensionAPI:
    def __init__(self, *, services: RuntimeServices, ext_name: str) -> None:
        self._services = services
        self._ext_name = ext_name

    @property
    def services(self) -> RuntimeServices:
        return self._services

    # ---- metadata ----
    def metadata(self, *, name: str, version: str = "0.0.0", requires_api: int = EXTENSION_API_VERSION) -> None:
        self._services.metadata.append(ExtensionMetadata(name=name, version=version, requires_api=requires_api))

    # ---- mcp ----
    def register_mcp(self, service: str, method: str, handler: McpHandler) -> None:
        self._services.mcp.register(service, method, handler, ext_name=self._ext_name)

    def mcp(self, service: str, method: str = "*"):
        def deco(fn: McpHandler) -> McpHandler:
            self.register_mcp(service, method, fn)
            return fn

        return deco

    # ---- events ----
    def on_event(self, event: str, handler: Optional[Callable[..., None]] = None, *, priority: int = 0):
        if handler is None:
            def deco(fn: Callable[..., None]) -> Callable[..., None]:
                self._services.events.on_event(event, fn, priority=priority, ext_name=self._ext_name)
                return fn
            return deco
        self._services.events.on_event(event, handler, priority=priority, ext_name=self._ext_name)
        return handler


def _unique_module_name(path: str) -> str:
    base = os.path.basename(path)
    digest = hashlib.sha256(os.path.abspath(path).encode("utf-8")).hexdigest()[:12]
    safe = "".join(ch if ch.isalnum() else "_" for ch in base)
    return f"vibe_ext_{safe}_{digest}"


def load_extension_module(path: str) -> Any:
    if not os.path.exists(path):
        raise ExtensionError(f"Extension not found: {path}")
    mod_name = _unique_module_name(path)
    spec = importlib.util.spec_from_file_location(mod_name, path)
    if spec is None or spec.loader is None:
        raise ExtensionError(f"Failed to load extension module: {path}")
    module = importlib.util.module_from_spec(spec)

    # Let extensions import siblings by temporarily prepending their directory.
    ext_dir = os.path.dirname(os.path.abspath(path))
    sys.path.insert(0, ext_dir)
    try:
        spec.loader.exec_module(module)  # type: ignore[union-attr]
    finally:
        if sys.path and sys.path[0] == ext_dir:
            sys.path.pop(0)
    return module


def build_default_services(
    *,
    shell: Optional[ShellRunner] = None,
    assistant: Optional[AssistantRunner] = None,
) -> RuntimeServices:
    from mcp_services import register_builtin_services

    services = RuntimeServices()
    if shell is not None:
        services.shell = shell
    if assistant is not None:
        services.assistant = assistant
    register_builtin_services(ExtensionAPI(services=services, ext_name="builtin"))
    return services


def load_runtime_services(paths: Sequence[str], *, services: Optional[RuntimeServices] = None) -> RuntimeServices:
    services = services or build_default_services()
    for path in (os.path.abspath(p) for p in paths):
        module = load_extension_module(path)
        api_version = getattr(module, "VIBE_EXTENSION_API_VERSION", EXTENSION_API_VERSION)
        if api_version != EXTENSION_API_VERSION:
            raise ExtensionError(
                f"Extension {path} requires API {api_version}, host supports {EXTENSION_API_VERSION}"
            )
        register = getattr(module, "vibe_register", None)
        if register is None or not callable(register):
            raise ExtensionError(f"Extension {path} must define callable vibe_register(ext)")
        ext_name = getattr(module, "VIBE_EXTENSION_NAME", os.path.splitext(os.path.basename(path))[0])
        ext = ExtensionAPI(services=services, ext_name=str(ext_name))
        register(ext)
    return services
