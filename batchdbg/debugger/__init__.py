from .breakpoints import Breakpoint, BreakpointSet
from .controller import DebugController, SessionFactory
from .snapshot import DebugSnapshot, FrameView, build_snapshot

__all__ = [
    "Breakpoint",
    "BreakpointSet",
    "DebugController",
    "DebugSnapshot",
    "FrameView",
    "SessionFactory",
    "build_snapshot",
]
