import json

from config import Settings
from services import build_default_services
from vibe import run_cli, run_repl


def _script(tmp_path, text, name="build.vibe"):
    path = tmp_path / name
    path.write_text(text)
    return str(path)


def test_version(capsys):
    assert run_cli(["--version"]) == 0
    assert "Vibe DSL Interpreter v1.0" in capsys.readouterr().out


def test_missing_filename(capsys):
    assert run_cli([]) == 1
    assert "Error: No .vibe file specified" in capsys.readouterr().err


def test_unreadable_file(tmp_path, capsys):
    assert run_cli([str(tmp_path / "absent.vibe")]) == 1
    assert "Error reading file" in capsys.readouterr().err


def test_dry_run(tmp_path, capsys):
    path = _script(tmp_path, 'project = "Demo"\nbefore {\n  shell "touch made"\n}\nask "scaffold"\n')
    assert run_cli([path, "--dry-run"]) == 0
    out = capsys.readouterr().out
    assert "Project: Demo" in out
    assert "[DRY RUN] Would execute: touch made" in out
    assert "[DRY RUN] Would send to assistant:" in out
    assert not (tmp_path / "made").exists()


def test_quiet_dry_run_prints_nothing(tmp_path, capsys):
    path = _script(tmp_path, 'ask "scaffold"\n')
    assert run_cli([path, "--dry-run", "--quiet"]) == 0
    assert capsys.readouterr().out == ""


def test_missing_assistant_is_not_fatal(tmp_path, capsys):
    path = _script(tmp_path, 'ask "scaffold"\n')
    assert run_cli([path, "--claude", str(tmp_path / "no-claude")]) == 0
    assert "Assistant not available or failed" in capsys.readouterr().out


def test_real_shell_commands(tmp_path, monkeypatch, capsys):
    monkeypatch.chdir(tmp_path)
    path = _script(tmp_path, 'shell "echo hello > greeting.txt"\nfs.mkdir "out/dir"\n')
    assert run_cli([path]) == 0
    assert (tmp_path / "greeting.txt").read_text() == "hello\n"
    assert (tmp_path / "out" / "dir").is_dir()


def test_execution_error_exit_code(tmp_path, capsys):
    path = _script(tmp_path, 'x = 1\nshell "exit 3"\n')
    assert run_cli([path, "--traceback-json"]) == 1
    err = capsys.readouterr().err
    assert "VibeRuntimeError: shell command failed: exit status 3" in err
    payload = json.loads(err[err.index("{"):])
    assert payload["error"]["rule"] == "shell"


def test_strict_parse_error(tmp_path, capsys):
    path = _script(tmp_path, 'ask 5\n')
    assert run_cli([path, "--strict"]) == 1
    assert "ParseError: Expected a string after 'ask'" in capsys.readouterr().err
    assert run_cli([path, "--dry-run"]) == 0


def test_format(tmp_path, capsys):
    path = _script(tmp_path, 'x=1\nrepeat 2{ask "a"}\n')
    assert run_cli([path, "--format"]) == 0
    assert capsys.readouterr().out == 'x = 1\nrepeat 2 {\n  ask "a"\n}\n'


def test_config_file(tmp_path, capsys):
    config = tmp_path / "vibe.yaml"
    config.write_text("dry_run: true\n")
    path = _script(tmp_path, 'shell "touch made"\n')
    assert run_cli([path, "--config", str(config)]) == 0
    assert not (tmp_path / "made").exists()


def test_bad_config_file(tmp_path, capsys):
    config = tmp_path / "vibe.yaml"
    config.write_text("- not a mapping\n")
    path = _script(tmp_path, 'ask "x"\n')
    assert run_cli([path, "--config", str(config)]) == 1
    assert "ConfigError" in capsys.readouterr().err


def test_bad_extension(tmp_path, capsys):
    path = _script(tmp_path, 'ask "x"\n')
    assert run_cli([path, "--ext", str(tmp_path / "missing.py")]) == 1
    assert "ExtensionError: Extension not found" in capsys.readouterr().err


def test_repl_commands(capsys):
    lines = iter(["x = 5", "vars", "clear", "vars", "help", "quit"])
    services = build_default_services()
    assert run_repl(Settings(verbose=False), services, input_fn=lambda prompt: next(lines)) == 0
    out = capsys.readouterr().out
    assert "  x = 5" in out
    assert "Variables cleared" in out
    assert "Commands: exit, help, vars, clear" in out
    assert out.rstrip().endswith("Goodbye!")
    assert out.count("  x = 5") == 1


def test_repl_buffers_blocks(capsys):
    lines = iter(["n = 0", "repeat 3 {", "  n ++", "}", "vars"])

    def _input(prompt):
        try:
            return next(lines)
        except StopIteration:
            raise EOFError

    run_repl(Settings(verbose=False), build_default_services(), input_fn=_input)
    assert "  n = 3" in capsys.readouterr().out


def test_repl_reports_errors_and_keeps_going(capsys):
    lines = iter(['shell "exit 2"', "y = 1", "vars", "exit"])
    run_repl(Settings(verbose=False), build_default_services(), input_fn=lambda prompt: next(lines))
    captured = capsys.readouterr()
    assert "shell command failed: exit status 2" in captured.err
    assert "  y = 1" in captured.out


def test_short_version_flag(capsys):
    assert run_cli(["-v"]) == 0
    assert "Vibe DSL Interpreter v1.0" in capsys.readouterr().out


def test_script_that_is_not_utf8(tmp_path, capsys):
    path = tmp_path / "latin1.vibe"
    path.write_bytes(b'# caf\xe9\nask "x"\n')
    assert run_cli([str(path), "--dry-run"]) == 1
    assert "Error reading file" in capsys.readouterr().err


def test_repl_ignores_braces_inside_strings(capsys):
    from conftest import FakeAssistant

    assistant = FakeAssistant()
    lines = iter(['ask "use { here"', "exit"])
    services = build_default_services(assistant=assistant)
    assert run_repl(Settings(verbose=False), services, input_fn=lambda prompt: next(lines)) == 0
    assert len(assistant.prompts) == 1
    assert capsys.readouterr().out.rstrip().endswith("Goodbye!")
