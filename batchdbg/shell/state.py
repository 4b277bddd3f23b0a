from __future__ import annotations

from enum import Enum, auto


class SessionState(Enum):
    CREATED = auto()       # before the shell is spawned
    READY = auto()         # synchronised, no command in flight
    BUSY = auto()          # command sent, sentinel not yet seen
    TIMED_OUT = auto()     # wait expired, command still pending
    TERMINATED = auto()    # shell exited underneath us
    ERR_PROTOCOL = auto()  # stream desynchronised, process killed
    CLOSED = auto()        # torn down by the owner


TERMINAL_STATES = frozenset(
    {
        SessionState.TERMINATED,
        SessionState.ERR_PROTOCOL,
        SessionState.CLOSED,
    }
)
