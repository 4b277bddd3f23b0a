from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Sequence

from batchdbg.interpreter.state import (
    CallFrame,
    ExecutionState,
    Failure,
    Status,
    SuspendReason,
)
from batchdbg.script.model import ScriptModel


@dataclass(frozen=True, slots=True)
class FrameView:
    """Display-only view of one call frame."""

    depth: int
    label: str | None
    target: str
    return_line: int
    return_physical_line: int | None
    call_line: int

    def describe(self) -> str:
        where = f":{self.label}" if self.label else "<main>"
        physical = "EOF" if self.return_physical_line is None else str(self.return_physical_line)
        return f"#{self.depth} :{self.target} -> {where} line {physical}"


@dataclass(frozen=True, slots=True)
class DebugSnapshot:
    pc: int
    physical_line: int | None
    text: str | None
    call_stack: tuple[FrameView, ...]
    error_level: int
    status: Status
    suspend_reason: SuspendReason | None = None
    exit_code: int | None = None
    failure: Failure | None = None
    variables: tuple[tuple[str, str], ...] = ()

    @property
    def is_terminal(self) -> bool:
        return self.status in {Status.HALTED, Status.FAILED}


def build_frame_views(model: ScriptModel, frames: Sequence[CallFrame]) -> tuple[FrameView, ...]:
    """Innermost frame first."""
    views: list[FrameView] = []
    for depth, frame in reversed(list(enumerate(frames))):
        physical = None
        if frame.return_line < len(model):
            physical = model.line(frame.return_line).display_line
        views.append(
            FrameView(
                depth=depth,
                label=model.enclosing_label(frame.return_line) if len(model) else None,
                target=frame.target,
                return_line=frame.return_line,
                return_physical_line=physical,
                call_line=frame.call_line,
            )
        )
    return tuple(views)


def build_snapshot(
    model: ScriptModel,
    state: ExecutionState,
    frames: Sequence[CallFrame],
    variables: Mapping[str, str] | None = None,
) -> DebugSnapshot:
    physical_line = None
    text = None
    if 0 <= state.pc < len(model):
        source = model.line(state.pc)
        physical_line = source.display_line
        text = source.text

    return DebugSnapshot(
        pc=state.pc,
        physical_line=physical_line,
        text=text,
        call_stack=build_frame_views(model, frames),
        error_level=state.error_level,
        status=state.status,
        suspend_reason=state.suspend_reason,
        exit_code=state.exit_code,
        failure=state.failure,
        variables=tuple(sorted((variables or {}).items())),
    )
