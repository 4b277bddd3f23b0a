from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import Iterator


class Status(Enum):
    READY = auto()      # loaded, nothing executed
    RUNNING = auto()
    SUSPENDED = auto()  # see SuspendReason
    HALTED = auto()     # normal termination, exit_code set
    FAILED = auto()     # see Failure


class SuspendReason(Enum):
    BREAKPOINT = "breakpoint"
    STEP = "step"
    PAUSE = "pause"
    SCRIPT_PAUSE = "script_pause"


class ErrorKind(Enum):
    UNKNOWN_LABEL = "unknown_label"
    STACK_OVERFLOW = "stack_overflow"
    TIMEOUT = "timeout"
    PROCESS_TERMINATED = "process_terminated"
    PROTOCOL_VIOLATION = "protocol_violation"


# Failures after which the shell session must not be reused.
FATAL_SESSION_ERRORS = frozenset(
    {
        ErrorKind.TIMEOUT,
        ErrorKind.PROCESS_TERMINATED,
        ErrorKind.PROTOCOL_VIOLATION,
    }
)

TERMINAL_STATUSES = frozenset({Status.HALTED, Status.FAILED})


@dataclass(frozen=True, slots=True)
class Failure:
    kind: ErrorKind
    line: int
    target: str | None = None
    detail: str | None = None

    def describe(self) -> str:
        text = f"{self.kind.value} at line {self.line}"
        if self.target is not None:
            text = f"{text} (:{self.target})"
        if self.detail:
            text = f"{text}: {self.detail}"
        return text


@dataclass(frozen=True, slots=True)
class CallFrame:
    return_line: int
    call_line: int
    target: str
    args: tuple[str, ...] = ()


class CallStack:
    """Call frames, innermost last, bounded by ``max_depth``."""

    def __init__(self, max_depth: int = 256) -> None:
        self.max_depth = max_depth
        self._frames: list[CallFrame] = []

    @property
    def is_full(self) -> bool:
        return len(self._frames) >= self.max_depth

    def push(self, frame: CallFrame) -> None:
        if self.is_full:
            raise OverflowError(f"Call depth limit {self.max_depth} reached")
        self._frames.append(frame)

    def pop(self) -> CallFrame | None:
        """Remove the innermost frame; None means top level was reached."""
        if not self._frames:
            return None
        return self._frames.pop()

    def clear(self) -> None:
        self._frames.clear()

    def frames(self) -> tuple[CallFrame, ...]:
        return tuple(self._frames)

    def __len__(self) -> int:
        return len(self._frames)

    def __iter__(self) -> Iterator[CallFrame]:
        return iter(tuple(self._frames))


@dataclass(frozen=True, slots=True)
class ExecutionState:
    pc: int
    status: Status
    error_level: int = 0
    suspend_reason: SuspendReason | None = None
    exit_code: int | None = None
    failure: Failure | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
