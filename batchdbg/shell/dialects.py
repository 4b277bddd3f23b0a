from __future__ import annotations

import shutil
import sys
from dataclasses import dataclass

from batchdbg.core.config import RuntimeConfig


@dataclass(frozen=True)
class ShellDialect:
    """How to launch a shell and how to ask it for its last exit code."""

    name: str
    argv: tuple[str, ...]
    newline: str
    marker_template: str

    def frame(self, command: str, sentinel: str) -> str:
        """
        Render the bytes sent for one dispatch: the command line, then the
        synthetic line that echoes the sentinel and the exit code. A
        multi-line block is sent with the dialect's line endings.
        """
        marker = self.marker_template.format(sentinel=sentinel)
        body = self.newline.join(command.splitlines())
        return f"{body}{self.newline}{marker}{self.newline}"

    def with_executable(self, executable: str) -> "ShellDialect":
        return ShellDialect(
            name=self.name,
            argv=(executable, *self.argv[1:]),
            newline=self.newline,
            marker_template=self.marker_template,
        )


# The leading "@" keeps the marker line silent even after "echo on".
CMD = ShellDialect(
    name="cmd",
    argv=("cmd.exe", "/Q", "/D", "/K", "PROMPT $G"),
    newline="\r\n",
    marker_template="@echo {sentinel} %ERRORLEVEL%",
)

SH = ShellDialect(
    name="sh",
    argv=("/bin/sh",),
    newline="\n",
    marker_template='echo "{sentinel} $?"',
)

DIALECTS = {dialect.name: dialect for dialect in (CMD, SH)}


def resolve_dialect(config: RuntimeConfig) -> ShellDialect:
    name = config.shell
    if name == "auto":
        name = "cmd" if sys.platform == "win32" else "sh"

    dialect = DIALECTS[name]
    if config.shell_executable:
        return dialect.with_executable(config.shell_executable)

    located = shutil.which(dialect.argv[0])
    if located:
        return dialect.with_executable(located)
    return dialect
