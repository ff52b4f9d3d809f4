import textwrap

import pytest

from services import (
    AssistantConfig,
    AssistantError,
    ClaudeRunner,
    ExtensionAPI,
    ExtensionError,
    McpRegistry,
    ShellCommandError,
    SubprocessShell,
    build_default_services,
    load_runtime_services,
)


def test_claude_argv_defaults():
    argv = ClaudeRunner().build_argv("do it", AssistantConfig())
    assert argv == ["claude", "--print", "--dangerously-skip-permissions", "-p", "do it"]


def test_claude_argv_interactive_with_model():
    argv = ClaudeRunner("/opt/claude").build_argv("do it", AssistantConfig(skip_permissions=False, model="haiku"))
    assert argv == ["/opt/claude", "--print", "--model", "haiku", "-p", "do it"]


def test_claude_missing_executable(tmp_path):
    runner = ClaudeRunner(str(tmp_path / "no-such-claude"))
    with pytest.raises(AssistantError):
        runner.run("x", AssistantConfig(), lambda line: None)


def test_subprocess_shell_streams_lines():
    lines = []
    SubprocessShell().run("echo one; echo two 1>&2", lines.append)
    assert lines == ["one", "two"]


def test_subprocess_shell_reports_exit_status():
    with pytest.raises(ShellCommandError) as excinfo:
        SubprocessShell().run("exit 3", lambda line: None)
    assert str(excinfo.value) == "exit status 3"
    assert excinfo.value.returncode == 3


def test_registry_wildcard_and_exact_lookup():
    registry = McpRegistry()
    exact = lambda ctx, arg: None
    anything = lambda ctx, arg: None
    registry.register("fs", "write", exact, ext_name="a")
    registry.register("fs", "*", anything, ext_name="a")
    assert registry.lookup("fs", "write") is exact
    assert registry.lookup("fs", "chmod") is anything
    assert registry.lookup("git", "push") is None
    assert registry.names() == ["fs.*", "fs.write"]


def test_registry_rejects_duplicates():
    registry = McpRegistry()
    registry.register("fs", "write", lambda ctx, arg: None, ext_name="first")
    with pytest.raises(ExtensionError, match="already registered by first"):
        registry.register("fs", "write", lambda ctx, arg: None, ext_name="second")


def test_builtin_services_registered():
    services = build_default_services()
    for name in ("shell.run", "fs.write", "fs.mkdir", "fs.read", "browser.*"):
        assert name in services.mcp.names()
    assert [meta.name for meta in services.metadata] == ["builtin"]


def test_extension_api_decorator():
    services = build_default_services()
    ext = ExtensionAPI(services=services, ext_name="deco")

    @ext.mcp("git")
    def handler(ctx, arg):
        return None

    assert services.mcp.lookup("git", "commit") is handler


def _write_extension(path, body):
    path.write_text(textwrap.dedent(body))
    return str(path)


def test_plugin_mcp_service_is_dispatched(tmp_path, run_vibe, services, output):
    plugin = _write_extension(
        tmp_path / "notify.py",
        """
        VIBE_EXTENSION_NAME = "notify"

        def vibe_register(ext):
            ext.metadata(name="notify", version="0.1.0")

            @ext.mcp("notify", "send")
            def send(ctx, arg):
                ctx.report("notified: " + (arg or ""))
        """,
    )
    load_runtime_services([plugin], services=services)
    run_vibe('notify.send "build finished"')
    assert "notified: build finished" in output
    assert "notify" in [meta.name for meta in services.metadata]


def test_plugin_event_handler(tmp_path, run_vibe, services, output):
    plugin = _write_extension(
        tmp_path / "counter.py",
        """
        seen = []

        def vibe_register(ext):
            ext.on_event("after_statement", lambda interp, stmt: seen.append(type(stmt).__name__))
            ext.register_mcp("counter", "count", lambda ctx, arg: ctx.report(str(len(seen))))
        """,
    )
    load_runtime_services([plugin], services=services)
    run_vibe('ask "a"\nask "b"\ncounter.count')
    assert "2" in output


def test_plugin_without_register_function(tmp_path):
    plugin = _write_extension(tmp_path / "empty.py", "X = 1\n")
    with pytest.raises(ExtensionError, match="must define callable vibe_register"):
        load_runtime_services([plugin])


def test_plugin_api_version_mismatch(tmp_path):
    plugin = _write_extension(
        tmp_path / "future.py",
        """
        VIBE_EXTENSION_API_VERSION = 99

        def vibe_register(ext):
            pass
        """,
    )
    with pytest.raises(ExtensionError, match="requires API 99"):
        load_runtime_services([plugin])


def test_missing_plugin(tmp_path):
    with pytest.raises(ExtensionError, match="Extension not found"):
        load_runtime_services([str(tmp_path / "nope.py")])


def _fake_claude(tmp_path, body):
    path = tmp_path / "claude"
    path.write_text("#!/bin/sh\n" + body)
    path.chmod(0o755)
    return str(path)


def test_subprocess_shell_replaces_undecodable_bytes():
    lines = []
    SubprocessShell().run("printf '\\377\\n'; echo after", lines.append)
    assert lines == ["�", "after"]


def test_claude_output_with_undecodable_bytes(tmp_path):
    lines = []
    ClaudeRunner(_fake_claude(tmp_path, "printf 'caf\\351\\n'\n")).run("x", AssistantConfig(), lines.append)
    assert lines == ["caf�"]


def test_claude_spawn_value_error_is_assistant_error():
    with pytest.raises(AssistantError):
        ClaudeRunner().run("nul\0byte", AssistantConfig(), lambda line: None)
