from __future__ import annotations

import secrets
from dataclasses import dataclass, field

from batchdbg.core.errors import ProtocolViolation


def new_sentinel(exchange_id: int) -> str:
    """
    Marker for one dispatch. The counter keeps it unique for the session and
    the random token keeps ordinary output from matching it.
    """
    return f"__BATCHDBG_{exchange_id}_{secrets.token_hex(16)}__"


@dataclass(frozen=True)
class CommandResult:
    output_lines: tuple[str, ...]
    exit_code: int
    exchange_id: int = 0
    duration: float = 0.0

    @property
    def output(self) -> str:
        return "\n".join(self.output_lines)


@dataclass
class SentinelExchange:
    """Protocol state for the single command currently in flight."""

    exchange_id: int
    command: str
    sentinel: str
    output_lines: list[str] = field(default_factory=list)
    exit_code: int | None = None
    awaiting_code: bool = False

    @property
    def complete(self) -> bool:
        return self.exit_code is not None

    def feed(self, line: str) -> bool:
        """
        Consume one decoded output line. Returns True once the exit code that
        follows the sentinel has been read.
        """
        if self.complete:
            raise ProtocolViolation(f"Output after exchange #{self.exchange_id} completed")

        if self.awaiting_code:
            self.exit_code = self._parse_code(line)
            return True

        position = line.find(self.sentinel)
        if position < 0:
            self.output_lines.append(line)
            return False

        # Output without a trailing newline shares the sentinel's line.
        before = line[:position]
        if before:
            self.output_lines.append(before)

        rest = line[position + len(self.sentinel):]
        if not rest.strip():
            self.awaiting_code = True
            return False

        self.exit_code = self._parse_code(rest)
        return True

    def result(self, *, duration: float = 0.0) -> CommandResult:
        if self.exit_code is None:
            raise ProtocolViolation(f"Exchange #{self.exchange_id} has no exit code yet")
        return CommandResult(
            output_lines=tuple(self.output_lines),
            exit_code=self.exit_code,
            exchange_id=self.exchange_id,
            duration=duration,
        )

    def _parse_code(self, text: str) -> int:
        tokens = text.split()
        if not tokens:
            raise ProtocolViolation(
                f"Missing exit code after sentinel for {self.command!r}"
            )
        try:
            return int(tokens[0])
        except ValueError:
            raise ProtocolViolation(
                f"Unparseable exit code {tokens[0]!r} after sentinel for {self.command!r}"
            ) from None
