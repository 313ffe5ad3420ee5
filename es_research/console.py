"""Themed Rich console shared by the CLI and the workflows."""

from __future__ import annotations

import os
from typing import Any

from rich.console import Console as RichConsole
from rich.theme import Theme

_default_theme = Theme(
    {
        "accent": "bold rgb(255,149,0)",
        "muted": "dim",
        "title": "bold rgb(120,200,255)",
        "repo": "bold italic rgb(191,160,255)",
        "label": "bold rgb(160,160,160)",
        "value": "rgb(240,240,240)",
        "success": "bold rgb(104,255,203)",
        "warning": "bold rgb(255,213,128)",
        "danger": "bold rgb(255,128,128)",
        "divider": "rgb(85,85,85)",
    }
)


class Console(RichConsole):
    """Rich console pre-configured with the es-research theme."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        if os.getenv("ES_RESEARCH_NO_COLOR", "").lower() in ("1", "true", "yes"):
            kwargs.setdefault("no_color", True)
        theme = kwargs.pop("theme", None) or _default_theme
        super().__init__(*args, theme=theme, **kwargs)
        self._verbose = False
        self._quiet = False

    def set_verbose(self, verbose: bool) -> None:
        """Enable or disable verbose output."""
        self._verbose = verbose

    def set_quiet(self, quiet: bool) -> None:
        """Enable or disable quiet mode."""
        self._quiet = quiet

    def is_verbose(self) -> bool:
        return self._verbose

    def is_quiet(self) -> bool:
        return self._quiet

    def print(self, *args: Any, **kwargs: Any) -> None:
        """Print with respect to quiet mode."""
        if not self._quiet:
            super().print(*args, **kwargs)

    def log(self, *args: Any, **kwargs: Any) -> None:
        """Log with respect to verbose mode."""
        if self._verbose and not self._quiet:
            super().log(*args, **kwargs)

    def print_error(self, error: Exception | str, context: str = "") -> None:
        """Print an error message; errors are shown even in quiet mode.

        Args:
            error: Exception instance or error message string
            context: Optional context prefix (e.g., "Fetch failed:")
        """
        prefix = f"[danger]{context}[/]" if context else "[danger]Error:[/]"
        super().print(f"{prefix} {error}")

    def print_success(self, message: str) -> None:
        self.print(f"[success]{message}[/]")

    def print_warning(self, message: str) -> None:
        self.print(f"[warning]{message}[/]")


console = Console()

__all__ = ["Console", "console"]
