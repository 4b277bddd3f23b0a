from __future__ import annotations

from dataclasses import dataclass, replace
from threading import Lock


@dataclass
class Breakpoint:
    line: int
    enabled: bool = True
    hits: int = 0


class BreakpointSet:
    """Breakpoints keyed by logical line; safe to edit while a run is in progress."""

    def __init__(self) -> None:
        self._points: dict[int, Breakpoint] = {}
        self._lock = Lock()

    def add(self, line: int) -> Breakpoint:
        with self._lock:
            point = self._points.get(line)
            if point is None:
                point = Breakpoint(line=line)
                self._points[line] = point
            else:
                point.enabled = True
            return replace(point)

    def remove(self, line: int) -> bool:
        with self._lock:
            return self._points.pop(line, None) is not None

    def set_enabled(self, line: int, enabled: bool) -> bool:
        with self._lock:
            point = self._points.get(line)
            if point is None:
                return False
            point.enabled = enabled
            return True

    def should_stop(self, line: int) -> bool:
        with self._lock:
            point = self._points.get(line)
            if point is None or not point.enabled:
                return False
            point.hits += 1
            return True

    def clear(self) -> None:
        with self._lock:
            self._points.clear()

    def list_all(self) -> list[Breakpoint]:
        with self._lock:
            return [replace(point) for _, point in sorted(self._points.items())]

    def __contains__(self, line: object) -> bool:
        with self._lock:
            return line in self._points

    def __len__(self) -> int:
        with self._lock:
            return len(self._points)
