from .dialects import CMD, SH, ShellDialect, resolve_dialect
from .exchange import CommandResult, SentinelExchange, new_sentinel
from .managed_process import ManagedProcess
from .session import ShellSession
from .state import SessionState
from .transcript import Direction, Transcript, TranscriptEvent

__all__ = [
    "CMD",
    "SH",
    "CommandResult",
    "Direction",
    "ManagedProcess",
    "SentinelExchange",
    "SessionState",
    "ShellDialect",
    "ShellSession",
    "Transcript",
    "TranscriptEvent",
    "new_sentinel",
    "resolve_dialect",
]
