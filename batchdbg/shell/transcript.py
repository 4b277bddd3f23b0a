from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Iterator, Optional


class Direction(Enum):
    SEND = "send"
    RECV = "recv"
    INTERNAL = "internal"


@dataclass(frozen=True)
class TranscriptEvent:
    timestamp: float
    direction: Direction
    raw: str
    exchange_id: Optional[int] = None


class Transcript:
    """Bounded record of everything written to and read from the shell."""

    def __init__(self, limit: int = 2000) -> None:
        self._events: deque[TranscriptEvent] = deque(maxlen=limit or None)

    def append(self, event: TranscriptEvent) -> None:
        self._events.append(event)

    def __iter__(self) -> Iterator[TranscriptEvent]:
        return iter(list(self._events))

    def __len__(self) -> int:
        return len(self._events)
