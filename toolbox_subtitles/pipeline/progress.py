"""Rich progress display for jobs run from the command line."""

from __future__ import annotations

import threading

from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)

from toolbox_subtitles.jobs.models import ProgressUpdate


class RichProgressReporter:
    """Show one bar for the job and one per target language.

    Use as a context manager around :meth:`PipelineOrchestrator.run`; updates
    arrive from several worker threads and are serialized here.
    """

    def __init__(self, progress: Progress | None = None) -> None:
        self.progress = progress or Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            TimeElapsedColumn(),
        )
        self._lock = threading.Lock()
        self._overall: TaskID | None = None
        self._languages: dict[str, TaskID] = {}

    def __enter__(self) -> RichProgressReporter:
        self.progress.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.progress.stop()

    def report(self, job_id: str, update: ProgressUpdate) -> None:
        with self._lock:
            description = f"[bold]{update.current_step}"
            if self._overall is None:
                self._overall = self.progress.add_task(description, total=100)
            self.progress.update(self._overall, completed=update.overall_percentage, description=description)

            for lang in update.languages:
                label = f"  {lang.display_name} [{lang.status.value}]"
                task = self._languages.get(lang.language_code)
                if task is None:
                    task = self.progress.add_task(label, total=100)
                    self._languages[lang.language_code] = task
                self.progress.update(task, completed=lang.percentage, description=label)
