import logging
from typing import Any, Mapping, Optional

from rich.box import HEAVY, ROUNDED, SIMPLE
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from apishield.domain.interfaces.user_interface import UserInterface

logger = logging.getLogger(__name__)

class ConsoleDisplay(UserInterface):
    """Concrete implementation of UserInterface using the rich library for console output."""

    def __init__(self, console: Optional[Console] = None):
        """Initializes the rich Console."""
        self.console = console or Console()

    def display_output(self, output: str, **kwargs: Any) -> None:
        """Displays output text, optionally inside a titled panel.

        Args:
            output: The text to display.
            **kwargs: Additional arguments including:
                - title: Panel title; plain text is printed when omitted.
        """
        title = kwargs.get("title")
        if title is None:
            self.console.print(Text(str(output)))
            return
        panel = Panel(
            Text(str(output)),
            title=f"[bold white]{title}[/bold white]",
            title_align="left",
            border_style="blue",
            box=ROUNDED,
            padding=(0, 1)
        )
        self.console.print(panel)

    def display_error(self, error_message: str, **kwargs: Any) -> None:
        """Displays an error message in a distinct style.

        Args:
            error_message: The error message to display.
        """
        panel = Panel(
            Text(error_message, style="white"),
            title="[bold red]Error[/bold red]",
            border_style="red",
            box=HEAVY,
            padding=(0, 1)
        )
        self.console.print(panel)

    def display_info(self, info_message: str, **kwargs: Any) -> None:
        """Displays an informational message with enhanced styling.

        Args:
            info_message: The informational message to display.
        """
        panel = Panel(
            Text(info_message, style="white"),
            title="[bold blue]Info[/bold blue]",
            border_style="blue",
            box=SIMPLE,
            padding=(0, 1)
        )
        self.console.print(panel)

    def display_warning(self, warning_message: str, **kwargs: Any) -> None:
        """Displays a warning message with enhanced styling.

        Args:
            warning_message: The warning message to display.
        """
        logger.warning(f"Display warning: {warning_message}")
        panel = Panel(
            Text(warning_message, style="white"),
            title="[bold yellow]Warning[/bold yellow]",
            border_style="yellow",
            box=HEAVY,
            padding=(0, 1)
        )
        self.console.print(panel)

    def display_status(self, title: str, status: Mapping[str, Any]) -> None:
        """Renders a status snapshot as a two-column table."""
        table = Table(title=title, box=ROUNDED, show_header=True, header_style="bold cyan")
        table.add_column("Field", style="cyan", no_wrap=True)
        table.add_column("Value", justify="right")
        for field, value in status.items():
            if isinstance(value, float):
                rendered = f"{value:.3f}"
            else:
                rendered = str(value)
            table.add_row(field.replace("_", " "), rendered)
        self.console.print(table)
