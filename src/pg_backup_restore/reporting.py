"""Operator-facing output for long-running operations.

Orchestrators never print directly; they send messages and progress lines
to a ``Reporter``.  The CLI uses ``ConsoleReporter``; tests record lines.
"""

from typing import Protocol

from rich.console import Console
from rich.live import Live
from rich.text import Text


class Reporter(Protocol):
    """Sink for operator-facing output."""

    def message(self, text: str) -> None:
        """Persistent line (headers, metadata, results)."""
        ...

    def progress(self, text: str) -> None:
        """Transient status line, replaced by the next one."""
        ...

    def done(self) -> None:
        """End the current transient status line."""
        ...


class ConsoleReporter:
    """``Reporter`` that renders to a ``rich`` console.

    Progress lines are redrawn in place with ``rich.live.Live`` when the
    console is a terminal, and printed one per line otherwise.
    """

    def __init__(self, console: Console | None = None) -> None:
        self._console = console or Console()
        self._live: Live | None = None

    def message(self, text: str) -> None:
        if self._live is not None:
            self._live.console.print(text, markup=False, highlight=False)
        else:
            self._console.print(text, markup=False, highlight=False)

    def progress(self, text: str) -> None:
        if not self._console.is_terminal:
            self._console.print(text, markup=False, highlight=False)
            return
        if self._live is None:
            self._live = Live(Text(text), console=self._console, auto_refresh=False)
            self._live.start()
        self._live.update(Text(text), refresh=True)

    def done(self) -> None:
        if self._live is not None:
            self._live.stop()
            self._live = None


class NullReporter:
    """``Reporter`` that discards everything."""

    def message(self, text: str) -> None:
        pass

    def progress(self, text: str) -> None:
        pass

    def done(self) -> None:
        pass
