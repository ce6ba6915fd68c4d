"""Job lifecycle and the single synchronization point for job state.

Workers never touch a :class:`SubtitleProcessingJob` directly. Every change
goes through :class:`JobStateMachine`, which holds one lock per job, applies
the change to a copy, recomputes the derived overall fields, and saves the
copy with the version it was derived from. When the store reports a
conflicting version the machine reloads and reapplies the change.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable

from toolbox_subtitles.jobs.languages import LanguageSpec
from toolbox_subtitles.jobs.models import (
    JobStatus,
    LanguageStatus,
    LanguageTranslationState,
    SubtitleProcessingJob,
    utcnow,
)
from toolbox_subtitles.jobs.repository import JobRepository
from toolbox_subtitles.pipeline.collaborators import ProgressReporter
from toolbox_subtitles.pipeline.errors import ConcurrencyConflictError, InvalidTransitionError
from toolbox_subtitles.utils.constant import ALLOW_PARTIAL_SUCCESS, MAX_SAVE_ATTEMPTS

logger = logging.getLogger(__name__)

__all__ = [
    "JobStateMachine",
    "compute_overall",
]

_TERMINAL = frozenset({
    JobStatus.PARTIALLY_COMPLETED,
    JobStatus.COMPLETED,
    JobStatus.FAILED,
    JobStatus.CANCELLED,
})

_ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.TRANSCRIBING, JobStatus.FAILED, JobStatus.CANCELLED}),
    JobStatus.TRANSCRIBING: frozenset({JobStatus.ASSEMBLING, JobStatus.FAILED, JobStatus.CANCELLED}),
    JobStatus.ASSEMBLING: frozenset({JobStatus.TRANSLATING, JobStatus.FAILED, JobStatus.CANCELLED}),
    JobStatus.TRANSLATING: _TERMINAL,
    # A terminal job may be resumed; only its unfinished languages are worked on.
    JobStatus.PARTIALLY_COMPLETED: frozenset({JobStatus.TRANSLATING}),
    JobStatus.COMPLETED: frozenset({JobStatus.TRANSLATING}),
    # Failed or cancelled before the source was stored: start over.
    JobStatus.FAILED: frozenset({JobStatus.TRANSCRIBING, JobStatus.TRANSLATING}),
    JobStatus.CANCELLED: frozenset({JobStatus.TRANSCRIBING, JobStatus.TRANSLATING}),
}

_TERMINAL_STEPS = {
    JobStatus.COMPLETED: "Completed",
    JobStatus.PARTIALLY_COMPLETED: "Completed with failures",
    JobStatus.FAILED: "Failed",
    JobStatus.CANCELLED: "Cancelled",
}

Mutator = Callable[[SubtitleProcessingJob], None]


def _check_transition(current: JobStatus, target: JobStatus) -> None:
    if current == target and not current.is_terminal:
        return
    if target not in _ALLOWED_TRANSITIONS[current]:
        raise InvalidTransitionError(f"Cannot move job from {current.value} to {target.value}")


def compute_overall(
    job: SubtitleProcessingJob, allow_partial_success: bool = ALLOW_PARTIAL_SUCCESS
) -> tuple[JobStatus, float]:
    """Derive the overall status and percentage from the language states.

    Pure function: it reads *job* and returns the values the job should show
    while translating. Languages not yet started count as 0 %.

    Args:
        job: Job whose languages are inspected.
        allow_partial_success: Whether a mix of completed and failed languages
            ends as ``partially_completed`` (otherwise ``failed``).

    Returns:
        tuple[JobStatus, float]: Status and arithmetic-mean percentage.
    """
    languages = job.languages
    if not languages:
        return JobStatus.COMPLETED, 100.0

    percentage = sum(state.percentage for state in languages) / len(languages)
    if any(not state.status.is_terminal for state in languages):
        return JobStatus.TRANSLATING, percentage

    # Languages only end cancelled through a cancellation of the job.
    if job.cancel_requested or any(state.status is LanguageStatus.CANCELLED for state in languages):
        return JobStatus.CANCELLED, percentage

    completed = sum(1 for state in languages if state.status is LanguageStatus.COMPLETED)
    if completed == len(languages):
        return JobStatus.COMPLETED, 100.0
    if completed > 0 and allow_partial_success:
        return JobStatus.PARTIALLY_COMPLETED, percentage
    return JobStatus.FAILED, percentage


class JobStateMachine:
    """Owns one job's lifecycle and serializes all writes to it.

    Attributes:
        repository: Store the job is saved to after every transition.
        reporter: Optional progress sink notified after every saved change.
        allow_partial_success: Partial-success policy used by aggregation.

    Examples:
        >>> repo = InMemoryJobRepository()
        >>> job = repo.create(SubtitleProcessingJob(talk_id="talk-1"))
        >>> machine = JobStateMachine(job, repo)
        >>> machine.begin_stage(JobStatus.TRANSCRIBING, "Transcribing audio").overall_status
        <JobStatus.TRANSCRIBING: 'transcribing'>
    """

    def __init__(
        self,
        job: SubtitleProcessingJob,
        repository: JobRepository,
        reporter: ProgressReporter | None = None,
        *,
        allow_partial_success: bool = ALLOW_PARTIAL_SUCCESS,
        max_save_attempts: int = MAX_SAVE_ATTEMPTS,
    ) -> None:
        self.repository = repository
        self.reporter = reporter
        self.allow_partial_success = allow_partial_success
        self._max_save_attempts = max(1, max_save_attempts)
        self._lock = threading.Lock()
        self._job = job.model_copy(deep=True)

    @classmethod
    def load(
        cls,
        job_id: str,
        repository: JobRepository,
        reporter: ProgressReporter | None = None,
        **kwargs: object,
    ) -> JobStateMachine:
        return cls(repository.load(job_id), repository, reporter, **kwargs)  # type: ignore[arg-type]

    @property
    def job_id(self) -> str:
        return self._job.id

    def snapshot(self) -> SubtitleProcessingJob:
        """Return a detached copy of the current job state."""
        with self._lock:
            return self._job.model_copy(deep=True)

    # ------------------------------------------------------------------
    # Commit loop
    # ------------------------------------------------------------------
    def _commit(self, mutate: Mutator) -> SubtitleProcessingJob:
        last_conflict: ConcurrencyConflictError | None = None
        with self._lock:
            for _attempt in range(self._max_save_attempts):
                draft = self._job.model_copy(deep=True)
                mutate(draft)
                if draft.overall_status is JobStatus.TRANSLATING:
                    self._aggregate(draft)
                draft.updated_at = utcnow()
                try:
                    saved = self.repository.save(draft, expected_version=self._job.version)
                except ConcurrencyConflictError as exc:
                    last_conflict = exc
                    logger.warning(f"{exc}; reloading and reapplying")
                    self._job = self.repository.load(self._job.id)
                    continue
                self._job = saved
                self._report(saved)
                return saved.model_copy(deep=True)
        assert last_conflict is not None
        raise last_conflict

    def _aggregate(self, job: SubtitleProcessingJob) -> None:
        status, percentage = compute_overall(job, self.allow_partial_success)
        job.overall_percentage = min(100.0, max(job.overall_percentage, percentage))
        if status is JobStatus.TRANSLATING:
            return
        job.overall_status = status
        job.current_step = _TERMINAL_STEPS[status]
        job.completed_at = utcnow()
        if status is JobStatus.COMPLETED:
            job.overall_percentage = 100.0
        if status is JobStatus.FAILED:
            unfinished = [s for s in job.languages if s.status is not LanguageStatus.COMPLETED]
            errors = [s.last_error for s in unfinished if s.last_error]
            detail = f": {errors[0]}" if errors else ""
            if len(unfinished) == len(job.languages):
                job.error_message = f"No target language was translated{detail}"
            else:
                codes = ", ".join(s.language_code for s in unfinished)
                job.error_message = f"Translation failed for {codes}{detail}"
        logger.info(f"Job {job.id} finished translating: {status.value}")

    def _report(self, job: SubtitleProcessingJob) -> None:
        if self.reporter is None:
            return
        try:
            self.reporter.report(job.id, job.to_progress_update())
        except Exception as exc:  # progress push is fire-and-forget
            logger.warning(f"Progress reporter failed for job {job.id}: {exc}")

    @staticmethod
    def _language(job: SubtitleProcessingJob, code: str) -> LanguageTranslationState:
        return job.language(code)

    # ------------------------------------------------------------------
    # Job-level transitions (driven by the orchestrator)
    # ------------------------------------------------------------------
    def begin_run(self) -> SubtitleProcessingJob:
        """Mark the start of a run and clear the previous run's outcome."""

        def mutate(job: SubtitleProcessingJob) -> None:
            job.started_at = utcnow()
            job.completed_at = None
            job.error_message = None
            job.cancel_requested = False

        return self._commit(mutate)

    def begin_stage(self, status: JobStatus, step: str) -> SubtitleProcessingJob:
        """Enter (or stay in) a pre-translation stage with a new step message."""

        def mutate(job: SubtitleProcessingJob) -> None:
            _check_transition(job.overall_status, status)
            job.overall_status = status
            job.current_step = step
            if job.started_at is None:
                job.started_at = utcnow()

        logger.info(f"Job {self.job_id}: {status.value} - {step}")
        return self._commit(mutate)

    def record_source(self, srt_text: str, srt_url: str | None, total_cues: int) -> SubtitleProcessingJob:
        def mutate(job: SubtitleProcessingJob) -> None:
            job.source_srt = srt_text
            job.source_srt_url = srt_url
            job.total_cues = total_cues

        return self._commit(mutate)

    def ensure_languages(self, specs: Iterable[LanguageSpec]) -> SubtitleProcessingJob:
        """Add any missing target languages as ``pending``; existing ones are kept."""
        specs = list(specs)

        def mutate(job: SubtitleProcessingJob) -> None:
            for spec in specs:
                if not job.has_language(spec.code):
                    job.languages.append(
                        LanguageTranslationState(
                            language_code=spec.code, display_name=spec.display_name
                        )
                    )

        return self._commit(mutate)

    def reset_languages(self, statuses: Iterable[LanguageStatus]) -> SubtitleProcessingJob:
        """Put languages in any of *statuses* back to ``pending`` for another attempt."""
        targets = frozenset(statuses)

        def mutate(job: SubtitleProcessingJob) -> None:
            for state in job.languages:
                if state.status in targets:
                    state.status = LanguageStatus.PENDING
                    state.percentage = 0.0
                    state.retry_count = 0
                    state.last_error = None
                    state.srt_url = None

        return self._commit(mutate)

    def begin_translation(self) -> SubtitleProcessingJob:
        """Enter ``translating``; the overall percentage baseline restarts here."""

        def mutate(job: SubtitleProcessingJob) -> None:
            _check_transition(job.overall_status, JobStatus.TRANSLATING)
            job.overall_status = JobStatus.TRANSLATING
            job.current_step = "Translating"
            job.completed_at = None
            job.error_message = None
            _status, percentage = compute_overall(job, self.allow_partial_success)
            job.overall_percentage = percentage if job.languages else 0.0

        logger.info(f"Job {self.job_id}: translating")
        return self._commit(mutate)

    def fail(self, message: str) -> SubtitleProcessingJob:
        """Short-circuit the job to ``failed`` with *message*.

        Before translation starts the languages stay ``pending``: none of them
        was attempted. During translation, unfinished languages fail too.
        """

        def mutate(job: SubtitleProcessingJob) -> None:
            _check_transition(job.overall_status, JobStatus.FAILED)
            translating = job.overall_status is JobStatus.TRANSLATING
            job.overall_status = JobStatus.FAILED
            job.current_step = _TERMINAL_STEPS[JobStatus.FAILED]
            job.error_message = message
            job.completed_at = utcnow()
            for state in job.languages:
                if translating and not state.status.is_terminal:
                    state.status = LanguageStatus.FAILED
                    state.last_error = message

        logger.error(f"Job {self.job_id} failed: {message}")
        return self._commit(mutate)

    def request_cancel(self) -> SubtitleProcessingJob:
        """Record that cancellation was requested; workers stop at their next checkpoint."""

        def mutate(job: SubtitleProcessingJob) -> None:
            if not job.overall_status.is_terminal:
                job.cancel_requested = True

        return self._commit(mutate)

    def cancel(self, reason: str = "Cancelled") -> SubtitleProcessingJob:
        """Move the job to ``cancelled``; unfinished languages become ``cancelled`` too."""

        def mutate(job: SubtitleProcessingJob) -> None:
            _check_transition(job.overall_status, JobStatus.CANCELLED)
            job.overall_status = JobStatus.CANCELLED
            job.cancel_requested = True
            job.current_step = reason
            job.error_message = None
            job.completed_at = utcnow()
            for state in job.languages:
                if not state.status.is_terminal:
                    state.status = LanguageStatus.CANCELLED

        logger.info(f"Job {self.job_id} cancelled")
        return self._commit(mutate)

    def finalize(self) -> SubtitleProcessingJob:
        """Settle the overall status once every language worker has returned."""

        def mutate(job: SubtitleProcessingJob) -> None:
            if job.overall_status is not JobStatus.TRANSLATING:
                return
            # Workers that never got to run leave their language pending.
            if job.cancel_requested:
                for state in job.languages:
                    if not state.status.is_terminal:
                        state.status = LanguageStatus.CANCELLED

        return self._commit(mutate)

    # ------------------------------------------------------------------
    # Language-level transitions (driven by translation workers)
    # ------------------------------------------------------------------
    def start_language(self, code: str) -> SubtitleProcessingJob:
        def mutate(job: SubtitleProcessingJob) -> None:
            state = self._language(job, code)
            if state.status is LanguageStatus.COMPLETED:
                raise InvalidTransitionError(f"Language {code} is already completed")
            state.status = LanguageStatus.IN_PROGRESS
            state.percentage = 0.0
            state.retry_count = 0
            state.last_error = None
            state.srt_url = None
            job.current_step = f"Translating {state.display_name}"

        return self._commit(mutate)

    def advance_language(self, code: str, percentage: float, step: str | None = None) -> SubtitleProcessingJob:
        def mutate(job: SubtitleProcessingJob) -> None:
            state = self._language(job, code)
            if state.status is not LanguageStatus.IN_PROGRESS:
                return
            state.percentage = min(100.0, max(state.percentage, percentage))
            if step:
                job.current_step = step

        return self._commit(mutate)

    def complete_language(self, code: str, srt_url: str, retry_count: int = 0) -> SubtitleProcessingJob:
        def mutate(job: SubtitleProcessingJob) -> None:
            state = self._language(job, code)
            state.status = LanguageStatus.COMPLETED
            state.percentage = 100.0
            state.srt_url = srt_url
            state.retry_count = retry_count
            state.last_error = None

        logger.info(f"Job {self.job_id}: {code} completed")
        return self._commit(mutate)

    def fail_language(self, code: str, error: str, retry_count: int = 0) -> SubtitleProcessingJob:
        def mutate(job: SubtitleProcessingJob) -> None:
            state = self._language(job, code)
            state.status = LanguageStatus.FAILED
            state.last_error = error
            state.retry_count = retry_count
            state.srt_url = None

        logger.warning(f"Job {self.job_id}: {code} failed: {error}")
        return self._commit(mutate)

    def cancel_language(self, code: str) -> SubtitleProcessingJob:
        def mutate(job: SubtitleProcessingJob) -> None:
            state = self._language(job, code)
            if not state.status.is_terminal:
                state.status = LanguageStatus.CANCELLED

        return self._commit(mutate)
