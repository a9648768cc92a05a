"""Rich console rendering of finished log records.

Used by ``ConsoleSink(pretty=True)`` for local development; the default
console output is one JSON document per line.
"""

import logging
from typing import Any

from rich.console import Console
from rich.markup import escape

from reqlog.core.config import NOTICE


class RichConsoleRenderer:
    """Render log records with Rich, one line per record plus extra fields."""

    def __init__(
        self,
        console: Console | None = None,
        show_timestamp: bool = True,
        show_request_id: bool = True,
    ) -> None:
        """Initialize the Rich console renderer.

        Args:
        ----
            console: Target console; stdout when omitted
            show_timestamp: Whether to show timestamp
            show_request_id: Whether to show the correlation id

        """
        self.console = console or Console(highlight=False)
        self.show_timestamp = show_timestamp
        self.show_request_id = show_request_id

        self.level_styles = {
            logging.DEBUG: ("dim cyan", "DEBUG"),
            logging.INFO: ("green", "INFO"),
            logging.WARNING: ("yellow", "WARNING"),
            logging.ERROR: ("red bold", "ERROR"),
            logging.CRITICAL: ("red bold reverse", "CRITICAL"),
            NOTICE: ("magenta", "NOTICE"),
        }

    def __call__(self, record: dict[str, Any]) -> None:
        record = dict(record)
        level = record.pop("level", logging.INFO)
        msg = record.pop("msg", "")
        timestamp = record.pop("time", None)
        name = record.pop("name", None)
        for noise in ("type", "hostname", "pid"):
            record.pop(noise, None)

        style, label = self.level_styles.get(level, ("white", str(level)))

        parts = []
        if self.show_timestamp and timestamp:
            parts.append(f"[dim]{escape(str(timestamp))}[/dim]")
        parts.append(f"[{style}]{label:>8}[/{style}]")
        if name:
            parts.append(f"[dim blue]{escape(str(name))}[/dim blue]")

        meta = record.get("meta")
        if self.show_request_id and isinstance(meta, dict) and meta.get("requestId"):
            parts.append(f"[dim]req={escape(str(meta['requestId'])[:8])}[/dim]")

        parts.append(f"[bold]{escape(str(msg))}[/bold]")
        self.console.print(" │ ".join(parts))

        for key, value in record.items():
            self.console.print(f"  [cyan]{escape(str(key))}[/cyan]: {escape(repr(value))}")
