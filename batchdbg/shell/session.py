from __future__ import annotations

import itertools
import locale
import logging
import queue
import threading
import time
from typing import IO, NoReturn, Optional

from batchdbg.core.config import RuntimeConfig
from batchdbg.core.errors import (
    CommandTimeout,
    ProcessTerminated,
    ProtocolViolation,
    SessionUnavailable,
)
from batchdbg.core.logging import get_logger, log_event
from batchdbg.shell.dialects import ShellDialect, resolve_dialect
from batchdbg.shell.exchange import CommandResult, SentinelExchange, new_sentinel
from batchdbg.shell.managed_process import ManagedProcess
from batchdbg.shell.state import TERMINAL_STATES, SessionState
from batchdbg.shell.transcript import Direction, Transcript, TranscriptEvent

logger = get_logger(__name__)

# Queue marker for end of the shell's output stream.
_EOF: Optional[str] = None


def _strip_line_ending(raw: bytes) -> bytes:
    if raw.endswith(b"\n"):
        raw = raw[:-1]
    if raw.endswith(b"\r"):
        raw = raw[:-1]
    return raw


def _read_loop(stream: IO[bytes], sink: "queue.Queue[Optional[str]]", encoding: str) -> None:
    try:
        for raw in iter(stream.readline, b""):
            sink.put(_strip_line_ending(raw).decode(encoding, errors="replace"))
    except (OSError, ValueError):
        # Stream closed during teardown; the EOF marker below reports it.
        pass
    finally:
        sink.put(_EOF)


class ShellSession:
    """
    One persistent shell process driven through a sentinel request/response
    protocol. At most one command is in flight; concurrent callers queue on
    the session lock.
    """

    def __init__(
        self,
        dialect: ShellDialect,
        *,
        encoding: str | None = None,
        transcript_limit: int = 2000,
    ) -> None:
        self.dialect = dialect
        self.encoding = encoding or locale.getpreferredencoding(False)
        self.state: SessionState = SessionState.CREATED
        self.process = ManagedProcess(argv=dialect.argv)
        self.transcript = Transcript(limit=transcript_limit)

        self._lines: "queue.Queue[Optional[str]]" = queue.Queue()
        self._reader: threading.Thread | None = None
        self._lock = threading.Lock()
        self._counter = itertools.count(1)
        self._pending: SentinelExchange | None = None

        self._record_system(f"Session created for {' '.join(dialect.argv)}")

    @classmethod
    def from_config(cls, config: RuntimeConfig) -> "ShellSession":
        return cls(
            resolve_dialect(config),
            encoding=config.encoding,
            transcript_limit=config.transcript_limit,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self, timeout: float | None = 10.0) -> None:
        if self.state is not SessionState.CREATED:
            raise SessionUnavailable("Session can only be started once")

        try:
            self.process.start()
        except OSError as exc:
            self._record_system(f"Launch failed: {exc}")
            self._transition(SessionState.TERMINATED)
            raise ProcessTerminated(f"Unable to launch {self.dialect.argv[0]}: {exc}") from exc

        stdout = self.process.stdout
        assert stdout is not None
        self._reader = threading.Thread(
            target=_read_loop,
            args=(stdout, self._lines, self.encoding),
            name=f"batchdbg-shell-{self.process.pid}",
            daemon=True,
        )
        self._reader.start()
        self._transition(SessionState.READY)
        log_event(logger, "shell_started", pid=self.process.pid, dialect=self.dialect.name)

        # Flush the banner and prove the protocol works before any user command.
        try:
            self.execute("", timeout=timeout)
        except CommandTimeout:
            self.close()
            raise

    def close(self) -> None:
        if self.state is SessionState.CLOSED:
            return

        self._record_system("Shutdown initiated")
        self._pending = None
        self._transition(SessionState.CLOSED)
        self.process.terminate()
        if self._reader is not None:
            self._reader.join(timeout=1.0)
        log_event(logger, "shell_closed", pid=self.process.pid, exit_code=self.process.exit_code)

    def cancel(self) -> None:
        """
        Abandon the command in flight. cmd offers no reliable way to interrupt
        a piped child, so the session is marked unreliable and torn down.
        """
        pending = self._pending
        if pending is not None:
            self._record_system(f"Cancelled #{pending.exchange_id}; session unreliable", pending)
        self.close()

    def __enter__(self) -> "ShellSession":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def is_alive(self) -> bool:
        return self.state not in TERMINAL_STATES and self.process.poll_exit() is None

    @property
    def pending(self) -> SentinelExchange | None:
        return self._pending

    # ------------------------------------------------------------------
    # Protocol IO
    # ------------------------------------------------------------------

    def execute(self, command: str, timeout: float | None = None) -> CommandResult:
        with self._lock:
            self._ensure_ready()
            exchange_id = next(self._counter)
            exchange = SentinelExchange(
                exchange_id=exchange_id,
                command=command.rstrip("\r\n"),
                sentinel=new_sentinel(exchange_id),
            )
            self._pending = exchange
            self._transition(SessionState.BUSY)
            self._send(exchange)
            return self._await(exchange, timeout)

    def resume(self, timeout: float | None = None) -> CommandResult:
        """Keep waiting for a command that previously timed out."""
        with self._lock:
            exchange = self._pending
            if self.state is not SessionState.TIMED_OUT or exchange is None:
                raise SessionUnavailable("No timed-out command is pending")
            self._record_system(f"Resuming wait for #{exchange.exchange_id}", exchange)
            self._transition(SessionState.BUSY)
            return self._await(exchange, timeout)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _ensure_ready(self) -> None:
        if self.state is SessionState.READY:
            return
        if self.state is SessionState.TIMED_OUT:
            raise SessionUnavailable("A timed-out command is still pending; resume or cancel it")
        if self.state is SessionState.CREATED:
            raise SessionUnavailable("Session has not been started")
        raise SessionUnavailable(f"Session is {self.state.name}")

    def _send(self, exchange: SentinelExchange) -> None:
        stdin = self.process.stdin
        payload = self.dialect.frame(exchange.command, exchange.sentinel)
        try:
            if stdin is None:
                raise BrokenPipeError("stdin unavailable")
            stdin.write(payload.encode(self.encoding, errors="replace"))
            stdin.flush()
        except (OSError, ValueError) as exc:
            self._record_system(f"Pipe send failed: {exc}", exchange)
            self._handle_exit(exchange)
        self._record(Direction.SEND, exchange.command, exchange)

    def _await(self, exchange: SentinelExchange, timeout: float | None) -> CommandResult:
        started = time.monotonic()
        deadline = None if timeout is None else started + timeout

        while True:
            remaining = None if deadline is None else deadline - time.monotonic()
            if remaining is not None and remaining <= 0:
                self._record_system(f"Timed out after {timeout:g}s", exchange)
                self._transition(SessionState.TIMED_OUT)
                raise CommandTimeout(exchange.command, timeout or 0.0)

            try:
                line = self._lines.get(timeout=remaining)
            except queue.Empty:
                continue

            if line is _EOF:
                self._handle_exit(exchange)

            assert line is not None
            self._record(Direction.RECV, line, exchange)
            try:
                done = exchange.feed(line)
            except ProtocolViolation as exc:
                self._protocol_violation(str(exc.detail), exchange)
                raise

            if done:
                result = exchange.result(duration=time.monotonic() - started)
                self._pending = None
                self._transition(SessionState.READY)
                log_event(
                    logger,
                    "shell_command_completed",
                    level=logging.DEBUG,
                    exchange=exchange.exchange_id,
                    exit_code=result.exit_code,
                    lines=len(result.output_lines),
                )
                return result

    def _handle_exit(self, exchange: SentinelExchange) -> NoReturn:
        self.process.kill()
        exit_code = self.process.exit_code
        self._pending = None
        if self.state is SessionState.CLOSED:
            raise ProcessTerminated("Session was closed while a command was pending")

        self._record_system(f"Process exited before sentinel (code {exit_code})", exchange)
        self._transition(SessionState.TERMINATED)
        raise ProcessTerminated(
            f"Shell exited while running {exchange.command!r}",
            exit_code=exit_code,
        )

    def _protocol_violation(self, reason: str, exchange: SentinelExchange) -> None:
        self._record_system(f"Protocol violation: {reason}", exchange)
        self._pending = None
        self._transition(SessionState.ERR_PROTOCOL)
        self.process.kill()

    # ------------------------------------------------------------------
    # State + transcript
    # ------------------------------------------------------------------

    def _transition(self, new_state: SessionState) -> None:
        if new_state is self.state:
            return
        self._record_system(f"State {self.state.name} -> {new_state.name}")
        log_event(logger, "shell_state", previous=self.state.name, current=new_state.name)
        self.state = new_state

    def _record(self, direction: Direction, raw: str, exchange: SentinelExchange | None) -> None:
        self.transcript.append(
            TranscriptEvent(
                timestamp=time.time(),
                direction=direction,
                raw=raw,
                exchange_id=None if exchange is None else exchange.exchange_id,
            )
        )

    def _record_system(self, note: str, exchange: SentinelExchange | None = None) -> None:
        self._record(Direction.INTERNAL, note, exchange)
