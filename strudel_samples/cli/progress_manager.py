"""
Manages a Rich progress display for sample pack downloads.
"""

import asyncio
import logging

from rich.console import Console
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeRemainingColumn,
    TransferSpeedColumn,
)

from strudel_samples.models.stats import DownloadProgress

log = logging.getLogger("strudel_samples")


class ProgressManager:
    """Shows one progress bar per active download while the context is open."""

    def __init__(self, console: Console, quiet: bool = False):
        self.console = console
        self.quiet = quiet
        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}", justify="left"),
            BarColumn(bar_width=30),
            "[progress.percentage]{task.percentage:>3.0f}%",
            "•",
            DownloadColumn(),
            "•",
            TransferSpeedColumn(),
            "•",
            TimeRemainingColumn(),
            console=console,
            transient=False,
        )
        self._tasks: dict[TaskID, str] = {}

    def add_download_task(self, description: str) -> TaskID | None:
        if self.quiet:
            return None
        if len(description) > 50:
            description = "…" + description[-49:]
        task_id = self.progress.add_task(description, total=None, start=True)
        self._tasks[task_id] = description
        return task_id

    def callback_for(self, task_id: TaskID | None):
        """Builds an `on_progress` callback that updates the given task."""

        def _on_progress(update: DownloadProgress) -> None:
            if task_id is None:
                return
            self.progress.update(
                task_id,
                completed=update.downloaded_bytes,
                total=update.total_bytes,
            )

        return _on_progress

    def remove_task(self, task_id: TaskID | None, success: bool = True):
        if task_id is None:
            return
        description = self._tasks.pop(task_id, "")
        self.progress.remove_task(task_id)
        if not success:
            log.debug(f"Download task failed: {description}")

    async def __aenter__(self):
        if not self.quiet:
            self.progress.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if not self.quiet:
            await asyncio.sleep(0.1)
            self.progress.stop()
