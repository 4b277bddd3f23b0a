from __future__ import annotations

from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.text import Text

from batchdbg.core.errors import BatchDebugError, format_error
from batchdbg.debugger.controller import DebugController
from batchdbg.debugger.snapshot import DebugSnapshot
from batchdbg.interpreter.state import Status
from batchdbg.script.model import SourceLine
from batchdbg.shell.exchange import CommandResult

HELP_TEXT = """\
[bold]s[/bold], step        execute the current line
[bold]n[/bold], next        step over CALLs
[bold]o[/bold], out         run until the current subroutine returns
[bold]c[/bold], continue    run to the next breakpoint
[bold]b[/bold] LINE         set a breakpoint (physical line number)
[bold]d[/bold] LINE         delete a breakpoint
[bold]bl[/bold]             list breakpoints
[bold]stack[/bold]          show the call stack
[bold]vars[/bold]           show variables set by the script
[bold]where[/bold]          show the current line
[bold]q[/bold], quit        stop debugging"""


class DebugConsole:
    """Line-oriented front end for one DebugController."""

    prompt = "(batchdbg) "

    def __init__(
        self,
        controller: DebugController,
        console: Console | None = None,
        *,
        context_lines: int = 2,
    ) -> None:
        self.controller = controller
        self.console = console or Console(highlight=False)
        self.context_lines = context_lines
        self._finished = False
        if controller.output_handler is None:
            controller.output_handler = self.print_output

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def print_output(self, source: SourceLine, result: CommandResult) -> None:
        for line in result.output_lines:
            self.console.print(Text(line))

    def render_location(self, snapshot: DebugSnapshot) -> None:
        model = self.controller.model
        if model is None:
            return

        if snapshot.physical_line is None:
            self.console.print("[dim]<end of file>[/dim]")
            return

        breakpoint_lines = {point.line for point in self.controller.list_breakpoints()}
        first = max(0, snapshot.pc - self.context_lines)
        last = min(len(model), snapshot.pc + self.context_lines + 1)
        for index in range(first, last):
            source = model.line(index)
            marker = "->" if index == snapshot.pc else "  "
            dot = "●" if index in breakpoint_lines else " "
            style = "bold yellow" if index == snapshot.pc else ""
            row = Text(f"{dot}{marker} {source.display_line:>4}  ", style=style)
            if source.chain is not None:
                row.append(f"{source.chain.value} ", style="dim")
            row.append(source.text, style=style)
            self.console.print(row)

    def render_stack(self, snapshot: DebugSnapshot) -> None:
        if not snapshot.call_stack:
            self.console.print("[dim]Call stack: <empty - top level>[/dim]")
            return

        table = Table(title=f"Call stack ({len(snapshot.call_stack)} frames)")
        table.add_column("#", justify="right")
        table.add_column("called")
        table.add_column("returns into")
        table.add_column("line", justify="right")
        for frame in snapshot.call_stack:
            table.add_row(
                str(frame.depth),
                f":{frame.target}",
                f":{frame.label}" if frame.label else "<main>",
                "EOF" if frame.return_physical_line is None else str(frame.return_physical_line),
            )
        self.console.print(table)

    def render_variables(self, snapshot: DebugSnapshot) -> None:
        if not snapshot.variables:
            self.console.print("[dim]No tracked variables[/dim]")
            return

        table = Table(title=f"Variables ({len(snapshot.variables)})")
        table.add_column("name")
        table.add_column("value")
        for name, value in snapshot.variables:
            table.add_row(Text(name), Text(value))
        self.console.print(table)

    def render_status(self, snapshot: DebugSnapshot) -> None:
        if snapshot.status is Status.HALTED:
            self.console.print(
                f"[green]Script finished[/green] with exit code {snapshot.exit_code}"
            )
        elif snapshot.status is Status.FAILED and snapshot.failure is not None:
            failure = snapshot.failure
            self.console.print(f"[red]Execution failed:[/red] {escape(failure.describe())}")
        elif snapshot.status is Status.SUSPENDED:
            reason = snapshot.suspend_reason.value if snapshot.suspend_reason else "suspended"
            self.console.print(
                f"[cyan]Stopped ({reason})[/cyan] errorlevel={snapshot.error_level}"
            )
            self.render_location(snapshot)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def handle(self, command_line: str) -> bool:
        """Run one console command. Returns False when the console should exit."""
        parts = command_line.strip().split()
        command = parts[0].lower() if parts else "s"
        argument = parts[1] if len(parts) > 1 else None

        try:
            match command:
                case "s" | "step":
                    self._show(self.controller.step_line())
                case "n" | "next":
                    self._show(self.controller.step_over())
                case "o" | "out":
                    self._show(self.controller.step_out())
                case "c" | "continue":
                    self._show(self.controller.continue_run())
                case "b" | "break":
                    self._set_breakpoint(argument)
                case "d" | "delete":
                    self._clear_breakpoint(argument)
                case "bl":
                    self._list_breakpoints()
                case "stack" | "bt":
                    self.render_stack(self.controller.snapshot())
                case "vars" | "v":
                    self.render_variables(self.controller.snapshot())
                case "where" | "w":
                    self.render_location(self.controller.snapshot())
                case "h" | "help" | "?":
                    self.console.print(HELP_TEXT)
                case "q" | "quit" | "exit":
                    return False
                case _:
                    self.console.print(f"[red]Unknown command:[/red] {escape(command)}")
        except BatchDebugError as exc:
            self.console.print(f"[red]{escape(format_error(exc))}[/red]")
        except ValueError as exc:
            self.console.print(f"[red]{escape(str(exc))}[/red]")

        return not self._finished

    def run(self) -> int:
        snapshot = self.controller.start()
        self._show(snapshot)
        while not self._finished:
            try:
                command_line = self.console.input(self.prompt)
            except EOFError:
                break
            if not self.handle(command_line):
                break

        final = self.controller.stop() or self.controller.snapshot()
        if final.status is Status.HALTED and final.exit_code is not None:
            return final.exit_code
        return 1 if final.status is Status.FAILED else 0

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _show(self, snapshot: DebugSnapshot) -> None:
        self.render_status(snapshot)
        if snapshot.is_terminal:
            self._finished = True

    def _physical_to_index(self, argument: str | None) -> int:
        model = self.controller.model
        if model is None or argument is None:
            raise ValueError("A line number is required")
        try:
            physical = int(argument)
        except ValueError:
            raise ValueError(f"Not a line number: {argument}") from None
        try:
            return model.index_for_physical(physical)
        except IndexError as exc:
            raise ValueError(str(exc)) from None

    def _set_breakpoint(self, argument: str | None) -> None:
        index = self._physical_to_index(argument)
        self.controller.set_breakpoint(index)
        self.console.print(f"Breakpoint set at line {argument}")

    def _clear_breakpoint(self, argument: str | None) -> None:
        index = self._physical_to_index(argument)
        if self.controller.clear_breakpoint(index):
            self.console.print(f"Breakpoint removed from line {argument}")
        else:
            self.console.print(f"No breakpoint at line {argument}")

    def _list_breakpoints(self) -> None:
        model = self.controller.model
        points = self.controller.list_breakpoints()
        if model is None or not points:
            self.console.print("[dim]No breakpoints[/dim]")
            return
        for point in points:
            state = "enabled" if point.enabled else "disabled"
            line = model.line(point.line).display_line
            self.console.print(f"line {line}: {state}, {point.hits} hit(s)")
