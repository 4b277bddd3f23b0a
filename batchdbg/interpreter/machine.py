from __future__ import annotations

import logging
from dataclasses import replace
from typing import Callable, Protocol

from batchdbg.core.errors import (
    CommandTimeout,
    ProcessTerminated,
    ProtocolViolation,
    SessionUnavailable,
    UnknownLabelError,
)
from batchdbg.core.logging import get_logger, log_event
from batchdbg.interpreter.state import (
    CallFrame,
    CallStack,
    ErrorKind,
    ExecutionState,
    Failure,
    Status,
    SuspendReason,
)
from batchdbg.interpreter.variables import VariableScopes
from batchdbg.script.directives import (
    Call,
    Comment,
    Exit,
    ExitB,
    Goto,
    Label,
    Pause,
    PlainCommand,
)
from batchdbg.script.model import ScriptModel, SourceLine
from batchdbg.shell.exchange import CommandResult

logger = get_logger(__name__)


class CommandRunner(Protocol):
    def execute(self, command: str, timeout: float | None = None) -> CommandResult: ...

    def resume(self, timeout: float | None = None) -> CommandResult: ...

    def cancel(self) -> None: ...


BreakpointCheck = Callable[[int], bool]
OutputHandler = Callable[[SourceLine, CommandResult], None]
PauseCheck = Callable[[], bool]


class Interpreter:
    """
    Control-flow state machine over a loaded script.

    Labels, GOTO, CALL and EXIT /B are resolved in memory; every other line is
    dispatched to the command runner. A chained part runs only when its
    operator accepts the current errorlevel. Only the methods of this class
    mutate the program counter, the call stack and the errorlevel.
    """

    def __init__(
        self,
        model: ScriptModel,
        runner: CommandRunner,
        *,
        max_call_depth: int = 256,
        command_timeout: float | None = 30.0,
        timeout_retries: int = 0,
        breakpoint_check: BreakpointCheck | None = None,
        output_handler: OutputHandler | None = None,
    ) -> None:
        self.model = model
        self.runner = runner
        self.command_timeout = command_timeout
        self.timeout_retries = timeout_retries
        self._breakpoint_check = breakpoint_check or (lambda _line: False)
        self._output_handler = output_handler

        self._stack = CallStack(max_depth=max_call_depth)
        self._variables = VariableScopes()
        self._state = ExecutionState(pc=0, status=Status.READY)
        self._resume_line: int | None = None

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> ExecutionState:
        return self._state

    @property
    def call_stack(self) -> tuple[CallFrame, ...]:
        return self._stack.frames()

    @property
    def variables(self) -> dict[str, str]:
        """Tracked SET assignments visible from the current frame."""
        return self._variables.visible()

    @property
    def depth(self) -> int:
        return len(self._stack)

    @property
    def is_terminal(self) -> bool:
        return self._state.is_terminal

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> ExecutionState:
        if self._state.status is not Status.READY:
            raise RuntimeError("Interpreter can only be started from READY")
        self._transition(Status.RUNNING)
        return self._state

    def suspend(self, reason: SuspendReason) -> ExecutionState:
        if self.is_terminal:
            return self._state
        self._resume_line = self._state.pc
        self._transition(Status.SUSPENDED, suspend_reason=reason)
        return self._state

    def resume(self) -> ExecutionState:
        if self._state.status is Status.SUSPENDED:
            self._transition(Status.RUNNING)
        return self._state

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def step(self) -> ExecutionState:
        """Execute exactly the directive at the program counter."""
        if self.is_terminal:
            return self._state
        if self._state.status is Status.READY:
            self.start()
        elif self._state.status is Status.SUSPENDED:
            self.resume()

        pc = self._state.pc
        if pc >= len(self.model):
            self._return(code=0, line=pc)
            return self._state

        resuming = self._resume_line == pc
        self._resume_line = None
        if not resuming and self._breakpoint_check(pc):
            log_event(logger, "breakpoint_hit", line=pc)
            return self.suspend(SuspendReason.BREAKPOINT)

        source = self.model.line(pc)
        if source.chain is not None and not source.chain.allows(self._state.error_level):
            log_event(
                logger,
                "command_skipped",
                level=logging.DEBUG,
                line=pc,
                chain=source.chain.value,
                error_level=self._state.error_level,
            )
            self._jump(pc + 1)
            return self._state

        self._execute(source)
        return self._state

    def step_over(self, should_pause: PauseCheck | None = None) -> ExecutionState:
        """Step, then keep stepping until the call depth is back at or above the start."""
        depth = self.depth
        return self._run_until(lambda: self.depth <= depth, should_pause)

    def step_out(self, should_pause: PauseCheck | None = None) -> ExecutionState:
        """Run until the current frame has returned to its caller."""
        depth = self.depth
        return self._run_until(lambda: self.depth < depth, should_pause)

    def run(self, should_pause: PauseCheck | None = None) -> ExecutionState:
        return self._run_until(lambda: False, should_pause)

    def _run_until(
        self,
        done: Callable[[], bool],
        should_pause: PauseCheck | None,
    ) -> ExecutionState:
        while True:
            state = self.step()
            if state.status is not Status.RUNNING or done():
                return self._state
            if should_pause is not None and should_pause():
                return self.suspend(SuspendReason.PAUSE)

    # ------------------------------------------------------------------
    # Directives
    # ------------------------------------------------------------------

    def _execute(self, source: SourceLine) -> None:
        pc = source.index
        match source.directive:
            case Comment() | Label():
                self._jump(pc + 1)

            case Goto(target=target) as goto:
                if goto.is_eof:
                    self._return(code=0, line=pc)
                    return
                destination = self._resolve(target, pc)
                if destination is not None:
                    self._jump(destination)

            case Call() as call if call.is_eof:
                # A subroutine that starts at end of file returns at once.
                log_event(logger, "call_eof", level=logging.DEBUG, line=pc)
                self._state = replace(self._state, pc=pc + 1, error_level=0)

            case Call(target=target, args=args):
                destination = self._resolve(target, pc)
                if destination is None:
                    return
                if self._stack.is_full:
                    self._fail(
                        ErrorKind.STACK_OVERFLOW,
                        pc,
                        target=target,
                        detail=f"call depth limit {self._stack.max_depth} reached",
                    )
                    return
                self._stack.push(
                    CallFrame(return_line=pc + 1, call_line=pc, target=target, args=args)
                )
                self._variables.enter_frame()
                log_event(
                    logger,
                    "call",
                    level=logging.DEBUG,
                    line=pc,
                    target=target,
                    depth=self.depth,
                )
                self._jump(destination)

            case ExitB(code=code):
                self._return(code=code, line=pc)

            case Exit(code=code):
                self._stack.clear()
                self._variables.clear_frames()
                self._halt(self._state.error_level if code is None else code)

            case Pause():
                self._jump(pc + 1)
                self.suspend(SuspendReason.SCRIPT_PAUSE)

            case PlainCommand(text=text):
                self._variables.observe(text)
                self._dispatch(source, text)

    def _resolve(self, target: str, pc: int) -> int | None:
        try:
            return self.model.resolve_label(target, line=pc)
        except UnknownLabelError as exc:
            self._fail(ErrorKind.UNKNOWN_LABEL, pc, target=exc.name, detail=exc.message)
            return None

    def _return(self, *, code: int | None, line: int) -> None:
        """
        Leave the innermost context. Unwinds exactly one frame; at top level
        the script halts.
        """
        level = self._state.error_level if code is None else code
        frame = self._stack.pop()
        if frame is None:
            self._halt(level)
            return
        self._variables.leave_frame()

        log_event(
            logger,
            "return",
            level=logging.DEBUG,
            line=line,
            target=frame.target,
            resume=frame.return_line,
            error_level=level,
            depth=self.depth,
        )
        self._state = replace(self._state, pc=frame.return_line, error_level=level)

    def _dispatch(self, source: SourceLine, text: str) -> None:
        pc = source.index
        try:
            result = self._run_command(text.strip())
        except CommandTimeout as exc:
            self._fail(ErrorKind.TIMEOUT, pc, detail=str(exc))
            return
        except ProtocolViolation as exc:
            self._fail(ErrorKind.PROTOCOL_VIOLATION, pc, detail=str(exc))
            return
        except (ProcessTerminated, SessionUnavailable) as exc:
            self._fail(ErrorKind.PROCESS_TERMINATED, pc, detail=str(exc))
            return

        if self._output_handler is not None:
            self._output_handler(source, result)
        self._state = replace(self._state, pc=pc + 1, error_level=result.exit_code)

    def _run_command(self, text: str) -> CommandResult:
        try:
            return self.runner.execute(text, timeout=self.command_timeout)
        except CommandTimeout as timeout:
            for attempt in range(1, self.timeout_retries + 1):
                log_event(logger, "command_timeout_retry", command=text, attempt=attempt)
                try:
                    return self.runner.resume(timeout=self.command_timeout)
                except CommandTimeout:
                    continue
            self.runner.cancel()
            raise timeout

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def _jump(self, pc: int) -> None:
        self._state = replace(self._state, pc=pc)

    def _halt(self, exit_code: int) -> None:
        self._state = replace(self._state, error_level=exit_code)
        self._transition(Status.HALTED, exit_code=exit_code)

    def _fail(
        self,
        kind: ErrorKind,
        line: int,
        *,
        target: str | None = None,
        detail: str | None = None,
    ) -> None:
        failure = Failure(kind=kind, line=line, target=target, detail=detail)
        self._transition(Status.FAILED, failure=failure)

    def _transition(
        self,
        status: Status,
        *,
        suspend_reason: SuspendReason | None = None,
        exit_code: int | None = None,
        failure: Failure | None = None,
    ) -> None:
        log_event(
            logger,
            "interpreter_state",
            previous=self._state.status.name,
            current=status.name,
            pc=self._state.pc,
            reason=None if suspend_reason is None else suspend_reason.value,
            failure=None if failure is None else failure.describe(),
        )
        self._state = replace(
            self._state,
            status=status,
            suspend_reason=suspend_reason,
            exit_code=exit_code if exit_code is not None else self._state.exit_code,
            failure=failure,
        )
