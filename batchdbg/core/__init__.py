from .config import RuntimeConfig, get_runtime_config
from .errors import (
    BatchDebugError,
    CommandTimeout,
    ControllerStateError,
    ParseError,
    ProcessTerminated,
    ProtocolViolation,
    SessionUnavailable,
    ShellError,
    UnknownLabelError,
    format_error,
    wrap_error,
)

__all__ = [
    "BatchDebugError",
    "CommandTimeout",
    "ControllerStateError",
    "ParseError",
    "ProcessTerminated",
    "ProtocolViolation",
    "RuntimeConfig",
    "SessionUnavailable",
    "ShellError",
    "UnknownLabelError",
    "format_error",
    "get_runtime_config",
    "wrap_error",
]
