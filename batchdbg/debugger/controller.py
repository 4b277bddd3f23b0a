from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Callable, Protocol

from batchdbg.core.config import RuntimeConfig, get_runtime_config
from batchdbg.core.errors import ControllerStateError, ShellError
from batchdbg.core.logging import get_logger, log_event
from batchdbg.debugger.breakpoints import Breakpoint, BreakpointSet
from batchdbg.debugger.snapshot import DebugSnapshot, build_snapshot
from batchdbg.interpreter.machine import CommandRunner, Interpreter, OutputHandler, PauseCheck
from batchdbg.interpreter.state import (
    FATAL_SESSION_ERRORS,
    ExecutionState,
    Status,
    SuspendReason,
)
from batchdbg.script.model import ScriptModel, SourceLine, load, load_path
from batchdbg.shell.exchange import CommandResult
from batchdbg.shell.session import ShellSession

logger = get_logger(__name__)


class ManagedRunner(CommandRunner, Protocol):
    def start(self, timeout: float | None = None) -> None: ...

    def close(self) -> None: ...


SessionFactory = Callable[[RuntimeConfig], ManagedRunner]


class DebugController:
    """
    One debugging session: a loaded script, its interpreter and the shell
    session that runs its commands. Requests are served one at a time.
    """

    def __init__(
        self,
        config: RuntimeConfig | None = None,
        *,
        session_factory: SessionFactory | None = None,
        output_handler: OutputHandler | None = None,
    ) -> None:
        self.config = config or get_runtime_config()
        self.breakpoints = BreakpointSet()
        self.model: ScriptModel | None = None
        self.session: ManagedRunner | None = None
        self.interpreter: Interpreter | None = None

        self._session_factory: SessionFactory = session_factory or ShellSession.from_config
        self.output_handler = output_handler
        self._request_lock = threading.Lock()
        self._pause_requested = threading.Event()

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def load(self, path: Path | str) -> ScriptModel:
        return self._install(load_path(path))

    def load_text(self, text: str, name: str = "<script>") -> ScriptModel:
        return self._install(load(text, name=name))

    def _install(self, model: ScriptModel) -> ScriptModel:
        if self.session is not None:
            raise ControllerStateError("Stop the running session before loading another script")
        self.model = model
        self.interpreter = None
        self.breakpoints.clear()
        return model

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> DebugSnapshot:
        model = self._require_model()
        if self.session is not None:
            raise ControllerStateError("Debug session already started")

        session = self._session_factory(self.config)
        try:
            session.start(timeout=self.config.startup_timeout)
        except ShellError:
            session.close()
            raise

        self.session = session
        self._pause_requested.clear()
        self.interpreter = Interpreter(
            model,
            session,
            max_call_depth=self.config.max_call_depth,
            command_timeout=self.config.command_timeout,
            timeout_retries=self.config.timeout_retries,
            breakpoint_check=self.breakpoints.should_stop,
            output_handler=self._handle_output,
        )
        self.interpreter.start()
        log_event(logger, "debug_session_started", script=model.name, lines=len(model))

        if self.config.stop_on_entry:
            self.interpreter.suspend(SuspendReason.STEP)
            return self.snapshot()
        return self.continue_run()

    def stop(self) -> DebugSnapshot | None:
        """Tear the shell session down, whatever state the interpreter is in."""
        self._pause_requested.set()
        session = self.session
        self.session = None
        if session is not None:
            session.close()
            log_event(logger, "debug_session_stopped")
        if self.model is None:
            return None
        return self.snapshot()

    def __enter__(self) -> "DebugController":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()

    # ------------------------------------------------------------------
    # Execution requests
    # ------------------------------------------------------------------

    def step_line(self) -> DebugSnapshot:
        interpreter = self._require_interpreter()
        return self._drive(lambda _should_pause: interpreter.step())

    def step_over(self) -> DebugSnapshot:
        return self._drive(self._require_interpreter().step_over)

    def step_out(self) -> DebugSnapshot:
        return self._drive(self._require_interpreter().step_out)

    def continue_run(self) -> DebugSnapshot:
        return self._drive(self._require_interpreter().run)

    def pause(self) -> None:
        """Ask a running continue/step request to suspend before its next line."""
        self._pause_requested.set()

    def _drive(self, action: Callable[[PauseCheck], ExecutionState]) -> DebugSnapshot:
        interpreter = self._require_interpreter()
        with self._request_lock:
            if interpreter.is_terminal:
                return self.snapshot()
            if self.session is None:
                raise ControllerStateError("Debug session has been stopped")

            try:
                state = action(self._pause_requested.is_set)
            finally:
                # A pause that arrived before this request is honoured by it.
                self._pause_requested.clear()
            if state.status is Status.RUNNING:
                interpreter.suspend(SuspendReason.STEP)
            self._after_request(interpreter.state)
            return self.snapshot()

    def _after_request(self, state: ExecutionState) -> None:
        failure = state.failure
        if state.status is Status.FAILED and failure is not None:
            log_event(logger, "debug_session_failed", failure=failure.describe())
            if failure.kind in FATAL_SESSION_ERRORS:
                self._teardown_session()
        elif state.status is Status.HALTED:
            log_event(logger, "debug_session_halted", exit_code=state.exit_code)

    def _teardown_session(self) -> None:
        session = self.session
        self.session = None
        if session is not None:
            session.close()

    # ------------------------------------------------------------------
    # Breakpoints
    # ------------------------------------------------------------------

    def set_breakpoint(self, line: int) -> Breakpoint:
        model = self._require_model()
        if not 0 <= line < len(model):
            raise ValueError(f"Line {line} is outside the script (0..{len(model) - 1})")
        return self.breakpoints.add(line)

    def clear_breakpoint(self, line: int) -> bool:
        return self.breakpoints.remove(line)

    def enable_breakpoint(self, line: int, enabled: bool = True) -> bool:
        return self.breakpoints.set_enabled(line, enabled)

    def list_breakpoints(self) -> list[Breakpoint]:
        return self.breakpoints.list_all()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def snapshot(self) -> DebugSnapshot:
        model = self._require_model()
        interpreter = self.interpreter
        if interpreter is None:
            return build_snapshot(model, ExecutionState(pc=0, status=Status.READY), ())
        return build_snapshot(
            model,
            interpreter.state,
            interpreter.call_stack,
            interpreter.variables,
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _handle_output(self, source: SourceLine, result: CommandResult) -> None:
        log_event(
            logger,
            "command_output",
            level=logging.DEBUG,
            line=source.index,
            exit_code=result.exit_code,
            lines=len(result.output_lines),
        )
        if self.output_handler is not None:
            self.output_handler(source, result)

    def _require_model(self) -> ScriptModel:
        if self.model is None:
            raise ControllerStateError("No script loaded")
        return self.model

    def _require_interpreter(self) -> Interpreter:
        if self.interpreter is None:
            raise ControllerStateError("Debug session not started")
        return self.interpreter
