"""Operator-facing output.

The migration core never prints; it reports through an injected Reporter.
ConsoleReporter renders with rich markup for the CLI, LoggingReporter routes
everything to the logging module and is the default for library use.
"""

import logging
from typing import Optional, Protocol, runtime_checkable

from rich.console import Console
from rich.markup import escape

logger = logging.getLogger(__name__)


@runtime_checkable
class Reporter(Protocol):
    """Protocol for operator messages."""

    def info(self, message: str) -> None:
        """Neutral progress message."""
        ...

    def success(self, message: str) -> None:
        """Something was created or completed."""
        ...

    def warn(self, message: str) -> None:
        """Skipped or tolerated problem."""
        ...

    def error(self, message: str) -> None:
        """Failure."""
        ...


class ConsoleReporter:
    """Reporter printing to a rich console."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def info(self, message: str) -> None:
        self.console.print(escape(message))

    def success(self, message: str) -> None:
        self.console.print(f"[green]✓[/green] {escape(message)}")

    def warn(self, message: str) -> None:
        self.console.print(f"[yellow]⚠[/yellow] {escape(message)}")

    def error(self, message: str) -> None:
        self.console.print(f"[red]✗[/red] {escape(message)}")


class LoggingReporter:
    """Reporter routing messages to a logger."""

    def __init__(self, log: Optional[logging.Logger] = None):
        self.log = log or logger

    def info(self, message: str) -> None:
        self.log.info(message)

    def success(self, message: str) -> None:
        self.log.info(message)

    def warn(self, message: str) -> None:
        self.log.warning(message)

    def error(self, message: str) -> None:
        self.log.error(message)
