from .machine import CommandRunner, Interpreter
from .state import (
    CallFrame,
    CallStack,
    ErrorKind,
    ExecutionState,
    Failure,
    Status,
    SuspendReason,
)
from .variables import VariableScopes, parse_assignment

__all__ = [
    "CallFrame",
    "CallStack",
    "CommandRunner",
    "ErrorKind",
    "ExecutionState",
    "Failure",
    "Interpreter",
    "Status",
    "SuspendReason",
    "VariableScopes",
    "parse_assignment",
]
