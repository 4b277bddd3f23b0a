from __future__ import annotations

import re

from batchdbg.script.directives import strip_echo_prefix

_SET_RE = re.compile(r"^set\s+(?P<rest>.*)$", re.IGNORECASE)
_SWITCH_RE = re.compile(r"^/[ap]", re.IGNORECASE)
_SETLOCAL_RE = re.compile(r"^setlocal\b", re.IGNORECASE)
_ENDLOCAL_RE = re.compile(r"^endlocal\b", re.IGNORECASE)
_KEY_OPERATORS = frozenset("+-*/")


def parse_assignment(text: str) -> tuple[str, str] | None:
    """
    Name and value of a plain ``SET NAME=VALUE`` line.

    ``SET /A`` and ``SET /P`` are ignored because their result is only known
    to the shell. Keys holding arithmetic operators are ignored as well.
    """
    match = _SET_RE.match(strip_echo_prefix(text))
    if match is None:
        return None
    rest = match.group("rest").strip()
    if _SWITCH_RE.match(rest):
        return None
    if len(rest) >= 2 and rest.startswith('"') and rest.endswith('"'):
        rest = rest[1:-1]

    key, separator, value = rest.partition("=")
    key = key.strip()
    if not separator or not key or _KEY_OPERATORS & set(key):
        return None
    return key, value.strip()


class VariableScopes:
    """
    Variables assigned by the script as seen from the interpreter.

    Assignments land in the innermost call frame once that frame has run
    SETLOCAL, and in the global table otherwise. ENDLOCAL drops the frame's
    locals, and so does returning from the frame.
    """

    def __init__(self) -> None:
        self.globals: dict[str, str] = {}
        # One entry per call frame; None until the frame runs SETLOCAL.
        self._frames: list[dict[str, str] | None] = []

    def enter_frame(self) -> None:
        self._frames.append(None)

    def leave_frame(self) -> None:
        if self._frames:
            self._frames.pop()

    def clear_frames(self) -> None:
        self._frames.clear()

    def observe(self, text: str) -> None:
        """Update scopes for one command about to be dispatched."""
        body = strip_echo_prefix(text)
        if _SETLOCAL_RE.match(body):
            if self._frames and self._frames[-1] is None:
                self._frames[-1] = {}
            return
        if _ENDLOCAL_RE.match(body):
            if self._frames:
                self._frames[-1] = None
            return

        assignment = parse_assignment(body)
        if assignment is None:
            return
        key, value = assignment
        scope = self._frames[-1] if self._frames else None
        if scope is None:
            scope = self.globals
        scope[key] = value

    def frame_locals(self, depth: int) -> dict[str, str]:
        if 0 <= depth < len(self._frames):
            return dict(self._frames[depth] or {})
        return {}

    def visible(self) -> dict[str, str]:
        merged = dict(self.globals)
        if self._frames and self._frames[-1] is not None:
            merged.update(self._frames[-1])
        return merged
