from __future__ import annotations

import subprocess
from dataclasses import dataclass, field
from typing import IO, Optional, Sequence

import psutil


@dataclass
class ManagedProcess:
    argv: Sequence[str]

    process: Optional[subprocess.Popen[bytes]] = field(init=False, default=None)
    exit_code: Optional[int] = field(init=False, default=None)

    @property
    def pid(self) -> Optional[int]:
        return None if self.process is None else self.process.pid

    @property
    def stdin(self) -> Optional[IO[bytes]]:
        return None if self.process is None else self.process.stdin

    @property
    def stdout(self) -> Optional[IO[bytes]]:
        return None if self.process is None else self.process.stdout

    def start(self) -> None:
        """
        Spawn the shell with stdin/stdout piped and stderr merged into stdout.
        """
        if self.process is not None:
            raise RuntimeError("Process already started")

        self.process = subprocess.Popen(
            list(self.argv),
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
        )

    def terminate(self) -> None:
        """
        Attempt graceful termination of the shell and everything it spawned.
        """
        if self.process is None:
            return

        children = self._children()
        for child in children:
            try:
                child.terminate()
            except psutil.Error:
                continue

        if self.process.poll() is None:
            self.process.terminate()
        if not self._wait_for_exit(timeout=1.0):
            # Shell refused to exit, escalate to a kill.
            self.kill()
            return
        psutil.wait_procs(children, timeout=1.0)
        self._cleanup_streams()

    def kill(self) -> None:
        """
        Forcefully kill the shell and its descendants.
        """
        if self.process is None:
            return

        for child in self._children():
            try:
                child.kill()
            except psutil.Error:
                continue

        if self.process.poll() is None:
            self.process.kill()
        self._wait_for_exit(timeout=1.0)
        self._cleanup_streams()

    def poll_exit(self) -> Optional[int]:
        """
        Return the shell's exit code if it has finished.
        """
        if self.process is None:
            return None

        self.exit_code = self.process.poll()
        return self.exit_code

    def _children(self) -> list[psutil.Process]:
        if self.process is None:
            return []
        try:
            return psutil.Process(self.process.pid).children(recursive=True)
        except psutil.Error:
            return []

    def _wait_for_exit(self, *, timeout: Optional[float]) -> bool:
        """
        Wait for the shell to exit. Returns True if it exited.
        """
        if self.process is None:
            return True

        try:
            self.exit_code = self.process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            return False
        return True

    def _cleanup_streams(self) -> None:
        if self.process is None:
            return
        for stream in (self.process.stdin, self.process.stdout):
            if stream is None:
                continue
            try:
                stream.close()
            except OSError:
                continue
