"""CLI progress display for file transfers.

This module provides a Rich-based transfer display that the sync engine
drives through plain ``(bytes_done, total_bytes)`` callbacks.
"""

from typing import Callable, Optional

from rich.console import Console
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    TimeElapsedColumn,
    TimeRemainingColumn,
    TransferSpeedColumn,
)


class TransferProgressDisplay:
    """Rich-based progress bars for uploads and downloads.

    The live display is started lazily when a transfer begins and stopped
    when it ends, so interactive prompts between transfers are not drawn
    over.
    """

    def __init__(self, console: Optional[Console] = None) -> None:
        """Initialize the progress display.

        Args:
            console: Console to draw on (stderr by default)
        """
        self.console = console or Console(stderr=True)
        self._progress: Optional[Progress] = None

    def _start(self) -> Progress:
        if self._progress is None:
            self._progress = Progress(
                "[progress.description]{task.description}",
                BarColumn(),
                "[progress.percentage]{task.percentage:>3.0f}%",
                DownloadColumn(),
                TransferSpeedColumn(),
                TimeElapsedColumn(),
                TimeRemainingColumn(),
                console=self.console,
                refresh_per_second=10,
                transient=True,
            )
            self._progress.start()
        return self._progress

    def file_callback(self, description: str, total: int) -> Callable[[int, int], None]:
        """Start a progress bar for one transfer.

        Args:
            description: Label shown next to the bar (usually the relative path)
            total: Expected size in bytes (0 if unknown)

        Returns:
            Callback function(bytes_done, total_bytes)
        """
        progress = self._start()
        task_id = progress.add_task(f"[cyan]{description}", total=total or None)

        def progress_callback(bytes_done: int, total_bytes: int) -> None:
            progress.update(task_id, completed=bytes_done, total=total_bytes or None)

        return progress_callback

    def stop(self) -> None:
        """Stop the live display after a transfer finished or failed."""
        if self._progress is not None:
            self._progress.stop()
            self._progress = None

    def __enter__(self) -> "TransferProgressDisplay":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop()
