from __future__ import annotations

import re
import shlex
from dataclasses import dataclass
from enum import Enum
from typing import Union

EOF_TARGET = "eof"

_WHITESPACE_RE = re.compile(r"\s+")
_REM_RE = re.compile(r"^rem(?:[\s.:]|$)", re.IGNORECASE)
_GOTO_RE = re.compile(r"^goto(?:[\s:]+|$)(?P<rest>.*)$", re.IGNORECASE)
_CALL_LABEL_RE = re.compile(r"^call\s+:(?P<rest>.*)$", re.IGNORECASE)
_EXIT_RE = re.compile(r"^exit(?:\s+(?P<rest>.*))?$", re.IGNORECASE)
_PAUSE_RE = re.compile(r"^pause(?:\s*>\s*nul)?\s*$", re.IGNORECASE)
_ERRORLEVEL_REF_RE = re.compile(r"^(?:%errorlevel%|!errorlevel!)$", re.IGNORECASE)
# IF and FOR own everything after their condition, "&" included.
_CONDITIONAL_RE = re.compile(r"^(?:if|for)\s", re.IGNORECASE)
_BLOCK_START_RE = re.compile(r"^(?:(?:if|for)\s|\()", re.IGNORECASE)


class Chain(Enum):
    """Operator joining a command to the one before it on the same line."""

    ALWAYS = "&"
    ON_SUCCESS = "&&"
    ON_FAILURE = "||"

    def allows(self, error_level: int) -> bool:
        if self is Chain.ON_SUCCESS:
            return error_level == 0
        if self is Chain.ON_FAILURE:
            return error_level != 0
        return True


@dataclass(frozen=True, slots=True)
class Comment:
    pass


@dataclass(frozen=True, slots=True)
class Label:
    name: str


@dataclass(frozen=True, slots=True)
class Goto:
    target: str

    @property
    def is_eof(self) -> bool:
        return self.target == EOF_TARGET


@dataclass(frozen=True, slots=True)
class Call:
    target: str
    args: tuple[str, ...] = ()

    @property
    def is_eof(self) -> bool:
        return self.target == EOF_TARGET


@dataclass(frozen=True, slots=True)
class ExitB:
    code: int | None = None


@dataclass(frozen=True, slots=True)
class Exit:
    code: int | None = None


@dataclass(frozen=True, slots=True)
class Pause:
    pass


@dataclass(frozen=True, slots=True)
class PlainCommand:
    text: str


Directive = Union[Comment, Label, Goto, Call, ExitB, Exit, Pause, PlainCommand]


class MissingTarget(ValueError):
    """GOTO or CALL without a label operand."""


def normalize_label(name: str) -> str:
    """
    Canonical label key: trimmed, internal whitespace collapsed, case-folded.
    """
    return _WHITESPACE_RE.sub(" ", name.strip()).casefold()


def label_token(text: str) -> str:
    """
    Normalised first word of a label definition or jump operand.

    Leading colons are dropped and anything after the first whitespace is
    ignored, so ``:end   rem finish`` defines ``end``.
    """
    words = text.lstrip(":").split(None, 1)
    return normalize_label(words[0]) if words else ""


def strip_echo_prefix(text: str) -> str:
    stripped = text.strip()
    if stripped.startswith("@"):
        return stripped[1:].lstrip()
    return stripped


def classify(text: str) -> Directive:
    """
    Map one logical line onto its directive.

    Raises MissingTarget for a GOTO/CALL that names no label.
    """
    stripped = text.strip()
    if not stripped:
        return Comment()

    if stripped.startswith("::"):
        return Comment()

    if stripped.startswith(":"):
        return Label(name=label_token(stripped))

    body = strip_echo_prefix(stripped)
    if not body or _REM_RE.match(body):
        return Comment()

    match = _GOTO_RE.match(body)
    if match:
        target = label_token(match.group("rest"))
        if not target:
            raise MissingTarget("GOTO requires a label")
        return Goto(target=target)

    match = _CALL_LABEL_RE.match(body)
    if match:
        return _classify_call(match.group("rest"))

    match = _EXIT_RE.match(body)
    if match:
        return _classify_exit(match.group("rest") or "")

    if _PAUSE_RE.match(body):
        return Pause()

    return PlainCommand(text=stripped)


def _classify_call(rest: str) -> Call:
    try:
        tokens = shlex.split(rest, posix=False)
    except ValueError:
        tokens = rest.split()

    if not tokens:
        raise MissingTarget("CALL : requires a label")

    target = normalize_label(tokens[0])
    if not target:
        raise MissingTarget("CALL : requires a label")
    return Call(target=target, args=tuple(tokens[1:]))


def _classify_exit(rest: str) -> ExitB | Exit:
    tokens = rest.split()
    if tokens and tokens[0].upper() == "/B":
        return ExitB(code=parse_exit_code(tokens[1] if len(tokens) > 1 else None))
    return Exit(code=parse_exit_code(tokens[0] if tokens else None))


def parse_exit_code(token: str | None) -> int | None:
    """
    None keeps the current errorlevel; unparseable operands become 0 like cmd.
    """
    if token is None or _ERRORLEVEL_REF_RE.match(token):
        return None
    try:
        return int(token)
    except ValueError:
        return 0


# ----------------------------------------------------------------------
# Composite commands and parenthesised blocks
# ----------------------------------------------------------------------


def split_composite(text: str) -> list[tuple[Chain | None, str]]:
    """
    Split a line on ``&``, ``&&`` and ``||``.

    Operators inside double quotes, inside parentheses or after a caret are
    literal, and ``>&``/``<&`` stay redirections. Each part carries the
    operator that joins it to the previous part; the first carries None.
    Comments, labels and IF/FOR lines are returned whole.
    """
    stripped = text.strip()
    body = strip_echo_prefix(stripped)
    if (
        stripped.startswith(":")
        or not body
        or _REM_RE.match(body)
        or _CONDITIONAL_RE.match(body)
    ):
        return [(None, text)]

    parts: list[tuple[Chain | None, str]] = []
    current: list[str] = []
    joined_by: Chain | None = None
    in_quotes = False
    escaped = False
    depth = 0
    position = 0
    while position < len(text):
        char = text[position]
        if escaped:
            escaped = False
        elif char == "^":
            escaped = True
        elif char == '"':
            in_quotes = not in_quotes
        elif not in_quotes:
            if char == "(":
                depth += 1
            elif char == ")" and depth:
                depth -= 1
            elif depth == 0 and char in "&|":
                operator = _operator_at(text, position, current)
                if operator is not None:
                    parts.append((joined_by, "".join(current).strip()))
                    joined_by = operator
                    current = []
                    position += len(operator.value)
                    continue
        current.append(char)
        position += 1
    parts.append((joined_by, "".join(current).strip()))

    kept = [(chain, part) for chain, part in parts if part]
    if len(kept) == 1:
        return [(None, text)]
    return kept


def _operator_at(text: str, position: int, current: list[str]) -> Chain | None:
    pair = text[position : position + 2]
    if pair == "&&":
        return Chain.ON_SUCCESS
    if pair == "||":
        return Chain.ON_FAILURE
    if text[position] == "&" and not (current and current[-1] in "<>"):
        return Chain.ALWAYS
    return None


def paren_balance(text: str) -> int:
    """Opening minus closing parentheses outside quotes and caret escapes."""
    balance = 0
    in_quotes = False
    escaped = False
    for char in text:
        if escaped:
            escaped = False
        elif char == "^":
            escaped = True
        elif char == '"':
            in_quotes = not in_quotes
        elif not in_quotes:
            if char == "(":
                balance += 1
            elif char == ")":
                balance -= 1
    return balance


def opens_block(text: str) -> bool:
    """True for an IF, FOR or bare ``(`` line that leaves a group open."""
    body = strip_echo_prefix(text)
    return bool(_BLOCK_START_RE.match(body)) and paren_balance(body) > 0
