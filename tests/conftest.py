from typing import Callable, List

import pytest

from interpreter import Interpreter
from services import AssistantError, RuntimeServices, ShellCommandError, build_default_services


class FakeShell:
    def __init__(self, failing=()):
        self.commands: List[str] = []
        self.failing = set(failing)

    def run(self, command, sink):
        self.commands.append(command)
        if command in self.failing:
            raise ShellCommandError("exit status 1", returncode=1)
        sink(f"ran {command}")


class FakeAssistant:
    def __init__(self, fail=False):
        self.prompts: List[str] = []
        self.configs = []
        self.fail = fail

    def run(self, prompt, config, sink):
        self.prompts.append(prompt)
        self.configs.append(config)
        if self.fail:
            raise AssistantError("claude: executable not found")
        sink("assistant done")


@pytest.fixture
def shell() -> FakeShell:
    return FakeShell()


@pytest.fixture
def assistant() -> FakeAssistant:
    return FakeAssistant()


@pytest.fixture
def services(shell, assistant) -> RuntimeServices:
    return build_default_services(shell=shell, assistant=assistant)


@pytest.fixture
def output() -> List[str]:
    return []


@pytest.fixture
def make_interpreter(services, output) -> Callable[..., Interpreter]:
    def _make(source: str = "", **kwargs) -> Interpreter:
        kwargs.setdefault("services", services)
        kwargs.setdefault("output_sink", output.append)
        return Interpreter(source=source, filename="test.vibe", **kwargs)

    return _make


@pytest.fixture
def run_vibe(make_interpreter) -> Callable[..., Interpreter]:
    def _run(source: str, **kwargs) -> Interpreter:
        interpreter = make_interpreter(source, **kwargs)
        interpreter.run()
        return interpreter

    return _run
