"""Per-language translation fan-out.

One worker per target language runs on a bounded thread pool. A worker
translates the source SRT chunk by chunk, uploads the joined result and
reports every step through the job's :class:`JobStateMachine`. Workers share
nothing but the state machine, and every external call gets a deadline thread
of its own, so a language that fails or hangs never holds up its siblings.
"""

from __future__ import annotations

import logging
import random
import threading
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field

from toolbox_subtitles.config import FanoutPolicy
from toolbox_subtitles.formatting import chunk_srt, join_srt_chunks
from toolbox_subtitles.jobs.languages import LanguageSpec
from toolbox_subtitles.jobs.models import LanguageStatus
from toolbox_subtitles.jobs.state_machine import JobStateMachine
from toolbox_subtitles.pipeline.collaborators import SrtStorage, TranslationService
from toolbox_subtitles.pipeline.errors import (
    CancellationRequested,
    RetriesExhaustedError,
    StorageFailure,
    SubtitlePipelineError,
    TranslationFailure,
    error_message,
)
from toolbox_subtitles.pipeline.retry import call_with_retry, checkpoint

logger = logging.getLogger(__name__)

# Share of a language's progress covered by translation; the upload adds the rest.
_TRANSLATION_SHARE = 95.0

__all__ = [
    "FanoutSummary",
    "TranslationFanoutCoordinator",
    "subtitle_filename",
]


def subtitle_filename(file_stem: str, language_code: str) -> str:
    return f"{file_stem}_{language_code}.srt"


@dataclass
class FanoutSummary:
    """Outcome of one :meth:`TranslationFanoutCoordinator.translate` call."""

    attempted: list[str] = field(default_factory=list)
    completed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    cancelled: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    def record(self, code: str, status: LanguageStatus) -> None:
        bucket = {
            LanguageStatus.COMPLETED: self.completed,
            LanguageStatus.FAILED: self.failed,
            LanguageStatus.CANCELLED: self.cancelled,
        }[status]
        bucket.append(code)


class TranslationFanoutCoordinator:
    """Translate a source SRT into several languages concurrently.

    Attributes:
        translation: Machine-translation collaborator.
        storage: Where translated files are uploaded.
        policy: Concurrency, batching, retry and deadline settings.
        cancel_event: Default cancellation token for :meth:`translate`.
    """

    def __init__(
        self,
        translation: TranslationService,
        storage: SrtStorage,
        policy: FanoutPolicy | None = None,
        cancel_event: threading.Event | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.translation = translation
        self.storage = storage
        self.policy = policy or FanoutPolicy()
        self.cancel_event = cancel_event
        self._rng = rng

    def translate(
        self,
        machine: JobStateMachine,
        source_srt: str,
        languages: Iterable[LanguageSpec],
        file_stem: str,
        cancel_event: threading.Event | None = None,
    ) -> FanoutSummary:
        """Translate *source_srt* into every language that is not yet completed.

        Languages already ``completed`` are skipped, as are ``cancelled`` ones;
        everything else (``pending``, ``failed``, a stale ``in_progress``) is
        worked on again.

        Args:
            machine: State machine of the job being processed.
            source_srt: Source-language SRT document.
            languages: Target languages.
            file_stem: Stem of the uploaded file names.
            cancel_event: Job cancellation token; defaults to ``self.cancel_event``.

        Returns:
            FanoutSummary: Per-language outcome of this call.
        """
        event = cancel_event if cancel_event is not None else self.cancel_event
        specs = list(languages)
        machine.ensure_languages(specs)
        job = machine.snapshot()

        summary = FanoutSummary()
        todo: list[LanguageSpec] = []
        for spec in specs:
            status = job.language(spec.code).status
            if status in (LanguageStatus.COMPLETED, LanguageStatus.CANCELLED):
                summary.skipped.append(spec.code)
            else:
                todo.append(spec)
                summary.attempted.append(spec.code)

        if summary.skipped:
            logger.info(f"Job {job.id}: skipping {', '.join(summary.skipped)}")
        if not todo:
            machine.finalize()
            return summary

        chunks = chunk_srt(source_srt, self.policy.batch_size) or [source_srt]
        logger.info(
            f"Job {job.id}: translating {len(chunks)} chunk(s) into {len(todo)} language(s) "
            f"with up to {self.policy.max_concurrency} worker(s)"
        )

        workers = ThreadPoolExecutor(max_workers=self.policy.max_concurrency, thread_name_prefix="translate")
        try:
            futures = {
                workers.submit(self._run_language, machine, spec, chunks, file_stem, event): spec
                for spec in todo
            }
            for future in as_completed(futures):
                spec = futures[future]
                try:
                    status = future.result()
                except Exception as exc:
                    logger.exception(f"Translation worker for {spec.code} crashed")
                    machine.fail_language(spec.code, error_message(exc))
                    status = LanguageStatus.FAILED
                summary.record(spec.code, status)
        finally:
            workers.shutdown(wait=True)

        machine.finalize()
        return summary

    def _run_language(
        self,
        machine: JobStateMachine,
        spec: LanguageSpec,
        chunks: list[str],
        file_stem: str,
        cancel_event: threading.Event | None,
    ) -> LanguageStatus:
        code = spec.code
        if cancel_event is not None and cancel_event.is_set():
            machine.cancel_language(code)
            return LanguageStatus.CANCELLED

        machine.start_language(code)
        current_attempt = 0
        retry_count = 0

        def track(attempt: int) -> None:
            nonlocal current_attempt, retry_count
            current_attempt = attempt
            retry_count = max(retry_count, attempt - 1)

        total = len(chunks)
        try:
            translated: list[str] = []
            for number, chunk in enumerate(chunks, start=1):
                checkpoint(cancel_event)
                translated.append(
                    call_with_retry(
                        lambda chunk=chunk: self.translation.translate_srt_batch(chunk, spec.display_name),
                        policy=self.policy,
                        operation=f"Translating {code} chunk {number}/{total}",
                        wrap_as=TranslationFailure,
                        cancel_event=cancel_event,
                        on_attempt=track,
                        rng=self._rng,
                    )
                )
                machine.advance_language(
                    code,
                    _TRANSLATION_SHARE * number / total,
                    f"Translating {spec.display_name} ({number}/{total})",
                )

            content = join_srt_chunks(translated)
            filename = subtitle_filename(file_stem, code)
            url = call_with_retry(
                lambda: self.storage.upload(content, filename),
                policy=self.policy,
                operation=f"Uploading {filename}",
                wrap_as=StorageFailure,
                cancel_event=cancel_event,
                on_attempt=track,
                rng=self._rng,
            )
        except CancellationRequested:
            machine.cancel_language(code)
            return LanguageStatus.CANCELLED
        except SubtitlePipelineError as exc:
            failures = exc.attempts if isinstance(exc, RetriesExhaustedError) else current_attempt
            machine.fail_language(code, error_message(exc), max(retry_count, failures))
            return LanguageStatus.FAILED

        machine.complete_language(code, url, retry_count)
        return LanguageStatus.COMPLETED
