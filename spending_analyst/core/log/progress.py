"""Terminal progress indicators backed by rich."""
from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator

from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TaskID, TextColumn, TimeElapsedColumn


@dataclass
class _Spinner:
    progress: Progress
    task_id: TaskID
    description: str

    def update(self, description: str) -> None:
        self.description = description
        self.progress.update(self.task_id, description=description)


class ProgressManager:
    """Create spinners that share the logging console."""

    def __init__(self) -> None:
        self._console: Console = Console()

    @property
    def console(self) -> Console:
        return self._console

    def use_console(self, console: Console) -> None:
        self._console = console

    def reset_console(self) -> None:
        self._console = Console()

    @contextmanager
    def spinner(self, description: str) -> Iterator[_Spinner]:
        """Show an indeterminate spinner with elapsed time.

        Long bulk exports have no known total, so only elapsed time is shown.
        """

        progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold blue]{task.description}[/]"),
            TimeElapsedColumn(),
            console=self._console,
            transient=True,
        )
        with progress:
            task_id = progress.add_task(description, total=None)
            yield _Spinner(progress, task_id, description)


progress_manager = ProgressManager()
