from __future__ import annotations

from dataclasses import dataclass


@dataclass
class BatchDebugError(Exception):
    code: str
    message: str
    detail: str | None = None
    line: int | None = None

    def __str__(self) -> str:
        text = self.message
        if self.detail:
            text = f"{text} ({self.detail})"
        if self.line is not None:
            text = f"{text} at line {self.line}"
        return text


class ParseError(BatchDebugError):
    """Script text could not be turned into a line table."""

    def __init__(self, message: str, *, line: int | None = None, detail: str | None = None) -> None:
        super().__init__(code="parse_error", message=message, detail=detail, line=line)


class UnknownLabelError(BatchDebugError):
    def __init__(self, name: str, *, line: int | None = None) -> None:
        super().__init__(
            code="unknown_label",
            message=f"Label not found: :{name}",
            line=line,
        )
        self.name = name


class ControllerStateError(BatchDebugError):
    """A debugger request arrived in a state that cannot serve it."""

    def __init__(self, message: str) -> None:
        super().__init__(code="controller_state", message=message)


# ----------------------------------------------------------------------
# Shell session failures
# ----------------------------------------------------------------------


class ShellError(BatchDebugError):
    """Base class for shell session failures."""


class CommandTimeout(ShellError):
    """Sentinel not observed within the wait window. Recoverable."""

    def __init__(self, command: str, timeout: float) -> None:
        super().__init__(
            code="timeout",
            message=f"Command did not finish within {timeout:g}s",
            detail=command,
        )
        self.command = command
        self.timeout = timeout


class ProcessTerminated(ShellError):
    def __init__(self, detail: str | None = None, *, exit_code: int | None = None) -> None:
        super().__init__(
            code="process_terminated",
            message="Shell process exited unexpectedly",
            detail=detail,
        )
        self.exit_code = exit_code


class ProtocolViolation(ShellError):
    def __init__(self, detail: str) -> None:
        super().__init__(
            code="protocol_violation",
            message="Shell output stream desynchronized",
            detail=detail,
        )


class SessionUnavailable(ShellError):
    def __init__(self, detail: str) -> None:
        super().__init__(
            code="session_unavailable",
            message="Shell session cannot accept commands",
            detail=detail,
        )


def format_error(error: BaseException) -> str:
    if isinstance(error, BatchDebugError):
        prefix = f"[{error.code}] " if error.code else ""
        return f"{prefix}{error}"
    return f"{error}"


def wrap_error(
    error: BaseException,
    *,
    code: str,
    message: str,
) -> BatchDebugError:
    if isinstance(error, BatchDebugError):
        return error
    return BatchDebugError(code=code, message=message, detail=str(error))
