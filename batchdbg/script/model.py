from __future__ import annotations

import locale
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, Sequence

import chardet

from batchdbg.core.errors import ParseError, UnknownLabelError
from batchdbg.core.logging import get_logger, log_event
from batchdbg.script.directives import (
    EOF_TARGET,
    Chain,
    Directive,
    Label,
    MissingTarget,
    PlainCommand,
    classify,
    label_token,
    opens_block,
    paren_balance,
    split_composite,
)

logger = get_logger(__name__)

_LINE_BREAK_RE = re.compile(r"\r\n|\r|\n")
_TRAILING_CARETS_RE = re.compile(r"(\^+)$")

# Detection below this confidence is ignored.
_DETECTION_CONFIDENCE = 0.7


@dataclass(frozen=True, slots=True)
class SourceLine:
    index: int
    text: str
    directive: Directive
    physical_start: int
    physical_end: int
    chain: Chain | None = None

    @property
    def display_line(self) -> int:
        """1-based physical line number where this logical line begins."""
        return self.physical_start + 1


@dataclass(frozen=True)
class LabelTable:
    entries: dict[str, int] = field(default_factory=dict)
    duplicates: tuple[tuple[str, int], ...] = ()

    def lookup(self, name: str) -> int | None:
        return self.entries.get(label_token(name))

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.lookup(name) is not None

    def __len__(self) -> int:
        return len(self.entries)


@dataclass(frozen=True)
class ScriptModel:
    """Immutable line table and label index for one loaded script."""

    name: str
    lines: tuple[SourceLine, ...]
    labels: LabelTable
    physical_count: int

    def __len__(self) -> int:
        return len(self.lines)

    def __iter__(self) -> Iterator[SourceLine]:
        return iter(self.lines)

    def line(self, index: int) -> SourceLine:
        return self.lines[index]

    def resolve_label(self, name: str, *, line: int | None = None) -> int:
        target = self.labels.lookup(name)
        if target is None:
            raise UnknownLabelError(label_token(name), line=line)
        return target

    def enclosing_label(self, index: int) -> str | None:
        """Name of the nearest label defined at or before ``index``."""
        upper = min(index, len(self.lines) - 1)
        for position in range(upper, -1, -1):
            directive = self.lines[position].directive
            if isinstance(directive, Label) and directive.name:
                return directive.name
        return None

    def index_for_physical(self, physical_line: int) -> int:
        """
        Map a 1-based physical line number onto the first logical line
        covering it.
        """
        if physical_line < 1 or physical_line > self.physical_count:
            raise IndexError(f"Line {physical_line} is outside the script")
        zero_based = physical_line - 1
        for source in self.lines:
            if source.physical_start <= zero_based <= source.physical_end:
                return source.index
        raise IndexError(f"Line {physical_line} is outside the script")


def split_physical_lines(text: str) -> list[str]:
    if not text:
        return []
    parts = _LINE_BREAK_RE.split(text)
    # A terminating newline does not open another line.
    if parts and parts[-1] == "":
        parts.pop()
    return parts


def join_continuations(physical: Sequence[str]) -> list[tuple[str, int, int]]:
    """
    Join caret-continued physical lines.

    Returns ``(text, physical_start, physical_end)`` tuples, 0-based and
    inclusive. A line continues when it ends with an odd run of carets.
    """
    joined: list[tuple[str, int, int]] = []
    position = 0
    while position < len(physical):
        start = position
        pieces: list[str] = []
        while True:
            raw = physical[position]
            trimmed = raw.rstrip(" \t")
            carets = _TRAILING_CARETS_RE.search(trimmed)
            continues = carets is not None and len(carets.group(1)) % 2 == 1
            pieces.append(trimmed[:-1] if continues else raw)
            if continues and position + 1 < len(physical):
                position += 1
                continue
            break
        joined.append((" ".join(pieces), start, position))
        position += 1
    return joined


def collect_blocks(
    joined: Sequence[tuple[str, int, int]],
) -> list[tuple[str, int, int, bool]]:
    """
    Merge each parenthesised IF/FOR/``(`` group into one entry.

    Returns ``(text, physical_start, physical_end, is_block)``. A block
    keeps its lines joined by newlines and spans every physical line up to
    the one that closes the group; an unclosed group runs to the end.
    """
    grouped: list[tuple[str, int, int, bool]] = []
    position = 0
    while position < len(joined):
        text, start, end = joined[position]
        position += 1
        if not opens_block(text):
            grouped.append((text, start, end, False))
            continue

        texts = [text]
        balance = paren_balance(text)
        while balance > 0 and position < len(joined):
            text, _, end = joined[position]
            texts.append(text)
            balance += paren_balance(text)
            position += 1
        grouped.append(("\n".join(texts), start, end, True))
    return grouped


def load(text: str, *, name: str = "<script>") -> ScriptModel:
    if "\x00" in text:
        line = text[: text.index("\x00")].count("\n") + 1
        raise ParseError("Script contains NUL characters", line=line)

    physical = split_physical_lines(text)
    lines: list[SourceLine] = []
    entries: dict[str, int] = {}
    duplicates: list[tuple[str, int]] = []
    blocks = 0

    for logical_text, start, end, is_block in collect_blocks(join_continuations(physical)):
        if is_block:
            blocks += 1
            parts: list[tuple[Chain | None, str]] = [(None, logical_text)]
        else:
            parts = split_composite(logical_text)

        for chain, part_text in parts:
            index = len(lines)
            directive: Directive
            if is_block:
                directive = PlainCommand(text=part_text.strip())
            else:
                try:
                    directive = classify(part_text)
                except MissingTarget as exc:
                    raise ParseError(str(exc), line=start + 1, detail=part_text.strip()) from exc

            if isinstance(directive, Label) and directive.name and directive.name != EOF_TARGET:
                if directive.name in entries:
                    duplicates.append((directive.name, index))
                else:
                    entries[directive.name] = index

            lines.append(
                SourceLine(
                    index=index,
                    text=part_text,
                    directive=directive,
                    physical_start=start,
                    physical_end=end,
                    chain=chain,
                )
            )

    model = ScriptModel(
        name=name,
        lines=tuple(lines),
        labels=LabelTable(entries=entries, duplicates=tuple(duplicates)),
        physical_count=len(physical),
    )
    log_event(
        logger,
        "script_loaded",
        name=name,
        lines=len(model),
        labels=len(entries),
        blocks=blocks,
        duplicate_labels=[label for label, _ in duplicates],
    )
    return model


def read_script_text(path: Path) -> str:
    """
    Decode a script file.

    chardet's guess is tried first when it is confident, then UTF-8, the
    Windows ANSI code page and the locale encoding. The OEM code page
    cp437 maps every byte and is the final fallback.
    """
    data = path.read_bytes()
    candidates = ["utf-8-sig", "cp1252", locale.getpreferredencoding(False)]

    detected = chardet.detect(data)
    encoding = detected.get("encoding")
    confidence = detected.get("confidence") or 0.0
    if encoding and confidence > _DETECTION_CONFIDENCE:
        log_event(
            logger,
            "script_encoding_detected",
            level=logging.DEBUG,
            encoding=encoding,
            confidence=round(confidence, 2),
        )
        candidates.insert(0, encoding)

    for candidate in candidates:
        try:
            return data.decode(candidate)
        except (UnicodeDecodeError, LookupError):
            continue
    return data.decode("cp437")


def load_path(path: Path | str) -> ScriptModel:
    script_path = Path(path).expanduser()
    try:
        text = read_script_text(script_path)
    except OSError as exc:
        raise ParseError("Unable to read script", detail=str(exc)) from exc
    return load(text, name=str(script_path))
