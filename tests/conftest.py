"""pytest configuration and shared fixtures for batchdbg tests."""

from __future__ import annotations

import os
import shutil
import sys
from typing import Callable, Iterable, Union

from hypothesis import HealthCheck, Verbosity, settings
import pytest

from batchdbg.core.config import RuntimeConfig, get_runtime_config
from batchdbg.core.errors import CommandTimeout
from batchdbg.shell.exchange import CommandResult

# Configure hypothesis settings globally
settings.register_profile(
    "default",
    max_examples=50,
    deadline=None,
    suppress_health_check=[HealthCheck.too_slow],
    verbosity=Verbosity.normal,
)

settings.register_profile(
    "ci",
    max_examples=200,
    deadline=None,
    suppress_health_check=[HealthCheck.too_slow],
    verbosity=Verbosity.verbose,
)

settings.load_profile(os.environ.get("HYPOTHESIS_PROFILE", "default"))

requires_sh = pytest.mark.skipif(
    sys.platform == "win32" or shutil.which("sh") is None,
    reason="needs a POSIX /bin/sh",
)

Outcome = Union[int, CommandResult, BaseException]


class FakeRunner:
    """In-memory stand-in for a shell session.

    Every command succeeds with exit code 0 and echoes its own text unless a
    response is registered for it. A response may be an exit code, a full
    CommandResult, an exception to raise, or a list consumed one per call.
    """

    def __init__(self, responses: dict[str, Outcome | list[Outcome]] | None = None) -> None:
        self.responses: dict[str, Outcome | list[Outcome]] = dict(responses or {})
        self.resume_outcomes: list[Outcome] = []
        self.commands: list[str] = []
        self.resumes = 0
        self.started = False
        self.cancelled = False
        self.closed = False
        self.start_error: BaseException | None = None

    def start(self, timeout: float | None = None) -> None:
        if self.start_error is not None:
            raise self.start_error
        self.started = True

    def execute(self, command: str, timeout: float | None = None) -> CommandResult:
        if self.closed:
            raise AssertionError("execute() called on a closed runner")
        self.commands.append(command)
        outcome = self.responses.get(command)
        if isinstance(outcome, list):
            outcome = outcome.pop(0) if outcome else None
        return self._resolve(command, outcome)

    def resume(self, timeout: float | None = None) -> CommandResult:
        self.resumes += 1
        outcome = self.resume_outcomes.pop(0) if self.resume_outcomes else None
        if outcome is None:
            raise CommandTimeout("<resume>", timeout or 0.0)
        return self._resolve("<resume>", outcome)

    def cancel(self) -> None:
        self.cancelled = True
        self.close()

    def close(self) -> None:
        self.closed = True

    @staticmethod
    def _resolve(command: str, outcome: Outcome | None) -> CommandResult:
        if outcome is None:
            return CommandResult(output_lines=(command,), exit_code=0)
        if isinstance(outcome, BaseException):
            raise outcome
        if isinstance(outcome, int):
            return CommandResult(output_lines=(), exit_code=outcome)
        return outcome


@pytest.fixture(autouse=True)
def _fresh_runtime_config() -> Iterable[None]:
    get_runtime_config.cache_clear()
    yield
    get_runtime_config.cache_clear()


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def runtime_config() -> RuntimeConfig:
    return RuntimeConfig(
        command_timeout=5.0,
        startup_timeout=5.0,
        stop_on_entry=True,
        max_call_depth=32,
    )


@pytest.fixture
def runner_factory(fake_runner: FakeRunner) -> Callable[[RuntimeConfig], FakeRunner]:
    return lambda _config: fake_runner


def dedent_script(text: str) -> str:
    """Strip the common indentation of a triple-quoted script."""
    lines = text.strip("\n").splitlines()
    indent = min((len(line) - len(line.lstrip()) for line in lines if line.strip()), default=0)
    return "\n".join(line[indent:] for line in lines) + "\n"


NESTED_CALLS_SCRIPT = dedent_script(
    """
    @echo off
    echo Starting main
    call :level1
    echo Finished all nested calls
    exit /b 0

    :level1
    echo In level1
    call :level2
    echo Back in level1
    exit /b 0

    :level2
    echo In level2
    call :level3
    echo Back in level2
    exit /b 0

    :level3
    echo In level3
    exit /b 0
    """
)
