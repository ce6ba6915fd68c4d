"""End-to-end subtitle pipeline for one talk.

``resolve video URL -> transcribe -> assemble cues -> store source SRT ->
translate`` runs sequentially for a job; only the translation stage fans out.
The job's cancellation token is checked before every stage. A call already
handed to a collaborator is allowed to finish before the job is marked
cancelled.

:meth:`PipelineOrchestrator.run` never raises for pipeline failures: job-level
errors land in ``error_message`` and language-level errors in each language's
``last_error``.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Sequence

from toolbox_subtitles.config import AssemblyConfig, FanoutPolicy
from toolbox_subtitles.jobs.languages import LanguageSpec, dedupe_languages, normalize_language_code
from toolbox_subtitles.jobs.models import (
    JobStatus,
    LanguageStatus,
    LanguageTranslationState,
    SubtitleProcessingJob,
    TalkVideo,
)
from toolbox_subtitles.jobs.repository import JobRepository
from toolbox_subtitles.jobs.state_machine import JobStateMachine
from toolbox_subtitles.pipeline.collaborators import (
    ProgressReporter,
    SrtStorage,
    TranscriptionService,
    TranslationService,
    VideoSourceResolver,
)
from toolbox_subtitles.pipeline.errors import (
    ActiveJobExistsError,
    CancellationRequested,
    InvalidJobStateError,
    StorageFailure,
    SubtitlePipelineError,
    TranscriptionFailure,
    VideoResolutionFailure,
    error_message,
)
from toolbox_subtitles.pipeline.fanout import TranslationFanoutCoordinator, subtitle_filename
from toolbox_subtitles.pipeline.retry import call_with_retry, checkpoint
from toolbox_subtitles.timestamps.assembler import CueAssembler
from toolbox_subtitles.utils.cancel import CancellationRegistry
from toolbox_subtitles.utils.constant import SOURCE_LANGUAGE_CODE

logger = logging.getLogger(__name__)

__all__ = [
    "PipelineOrchestrator",
    "file_stem_for",
    "slugify",
]

_RETRYABLE_LANGUAGE_STATUSES = frozenset({LanguageStatus.FAILED, LanguageStatus.CANCELLED})


def slugify(text: str) -> str:
    """Lower-case *text*, drop everything but letters, digits and whitespace, join words with ``_``.

    Examples:
        >>> slugify("Fire Safety: Basics!")
        'fire_safety_basics'
    """
    kept = "".join(ch for ch in text.lower() if ch.isalnum() or ch.isspace())
    return "_".join(kept.split())


def file_stem_for(job: SubtitleProcessingJob) -> str:
    """Stem used for a job's subtitle files: the title slug, else the talk id slug."""
    return slugify(job.talk_title) or slugify(job.talk_id) or "talk"


class PipelineOrchestrator:
    """Drive subtitle jobs from a video link to translated SRT files.

    Attributes:
        repository: Job store.
        resolver: Turns share links into fetchable URLs.
        transcription: Speech-to-text collaborator.
        storage: SRT file storage.
        reporter: Optional progress sink.
        policy: Retry, deadline and fan-out settings.
        assembler: Cue assembler for the transcription output.
        coordinator: Translation fan-out.
        registry: Cancellation tokens of the jobs running in this process.
    """

    def __init__(
        self,
        repository: JobRepository,
        resolver: VideoSourceResolver,
        transcription: TranscriptionService,
        translation: TranslationService,
        storage: SrtStorage,
        reporter: ProgressReporter | None = None,
        *,
        policy: FanoutPolicy | None = None,
        assembly: AssemblyConfig | None = None,
        registry: CancellationRegistry | None = None,
        parent_cancel_event: threading.Event | None = None,
    ) -> None:
        self.repository = repository
        self.resolver = resolver
        self.transcription = transcription
        self.storage = storage
        self.reporter = reporter
        self.policy = policy or FanoutPolicy()
        self.assembler = CueAssembler(assembly)
        self.coordinator = TranslationFanoutCoordinator(translation, storage, self.policy)
        self.registry = registry or CancellationRegistry()
        self.parent_cancel_event = parent_cancel_event

    def _machine(self, job_id: str) -> JobStateMachine:
        return JobStateMachine.load(
            job_id,
            self.repository,
            self.reporter,
            allow_partial_success=self.policy.allow_partial_success,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def start(
        self, talk: TalkVideo, target_languages: Sequence[str | LanguageSpec]
    ) -> SubtitleProcessingJob:
        """Create a ``pending`` job for *talk*.

        The source language is removed from the targets and duplicates are
        collapsed.

        Raises:
            ActiveJobExistsError: If the talk already has an unfinished job.
            ValueError: If a target language is not a valid code or known name.
        """
        latest = self.repository.find_latest_for_talk(talk.talk_id)
        if latest is not None and not latest.overall_status.is_terminal:
            raise ActiveJobExistsError(
                f"Talk {talk.talk_id} already has an active job ({latest.id}, {latest.overall_status.value})"
            )

        specs = dedupe_languages(list(target_languages), exclude=SOURCE_LANGUAGE_CODE)
        job = SubtitleProcessingJob(
            talk_id=talk.talk_id,
            talk_title=talk.title,
            source_video_url=talk.source_url,
            video_source_type=talk.source_type,
            languages=[
                LanguageTranslationState(language_code=spec.code, display_name=spec.display_name)
                for spec in specs
            ],
        )
        created = self.repository.create(job)
        logger.info(
            f"Created job {created.id} for talk {talk.talk_id} "
            f"({len(specs)} target language(s): {', '.join(s.code for s in specs) or 'none'})"
        )
        return created

    def run(self, job_id: str) -> SubtitleProcessingJob:
        """Run *job_id* to a terminal status and return the final job.

        A job that already holds its source SRT skips transcription and only
        translates the languages that are not yet completed. A finished job
        that never stored its source SRT starts over from transcription.

        Raises:
            JobNotFoundError: If the job does not exist.
            InvalidJobStateError: If the job is running or cannot be resumed.
        """
        job = self.repository.load(job_id)
        if self.registry.is_running(job_id):
            raise InvalidJobStateError(f"Job {job_id} is already running")
        restart = job.source_srt is None and job.overall_status.is_terminal
        if job.source_srt is None and not (restart or job.overall_status is JobStatus.PENDING):
            raise InvalidJobStateError(
                f"Job {job_id} is {job.overall_status.value} without source subtitles; cancel it before resubmitting"
            )

        machine = self._machine(job_id)
        if restart:
            logger.info(f"Job {job_id} ended {job.overall_status.value} before its source was stored; restarting")
            # Languages of such a job were never attempted.
            machine.reset_languages(_RETRYABLE_LANGUAGE_STATUSES)
        event = self.registry.register(job_id, parent=self.parent_cancel_event)
        try:
            machine.begin_run()
            source_srt = job.source_srt
            if source_srt is None:
                source_srt = self._produce_source(machine, job, event)
            else:
                logger.info(f"Job {job_id}: reusing stored source subtitles")

            machine.begin_translation()
            checkpoint(event)
            specs = [
                LanguageSpec(code=state.language_code, display_name=state.display_name)
                for state in machine.snapshot().languages
            ]
            self.coordinator.translate(machine, source_srt, specs, file_stem_for(job), cancel_event=event)
            if event.is_set():
                self._mark_cancelled(machine)
        except CancellationRequested:
            self._mark_cancelled(machine)
        except SubtitlePipelineError as exc:
            self._mark_failed(machine, error_message(exc))
        except Exception as exc:
            logger.exception(f"Unexpected error while processing job {job_id}")
            self._mark_failed(machine, f"Unexpected error: {exc}")
        finally:
            self.registry.discard(job_id)

        final = machine.snapshot()
        logger.info(
            f"Job {job_id} finished: {final.overall_status.value} ({final.overall_percentage:.0f}%)"
        )
        return final

    def process(
        self, talk: TalkVideo, target_languages: Sequence[str | LanguageSpec]
    ) -> SubtitleProcessingJob:
        """:meth:`start` a job for *talk* and :meth:`run` it."""
        return self.run(self.start(talk, target_languages).id)

    def cancel(self, job_id: str) -> SubtitleProcessingJob:
        """Request cancellation of *job_id*.

        A job running in this process stops at its next checkpoint; a job
        that is not running is moved to ``cancelled`` directly.

        Raises:
            InvalidJobStateError: If the job already reached a terminal status.
        """
        job = self.repository.load(job_id)
        if job.overall_status.is_terminal:
            raise InvalidJobStateError(f"Job {job_id} is already {job.overall_status.value}")
        machine = self._machine(job_id)
        if self.registry.cancel(job_id):
            return machine.request_cancel()
        return machine.cancel()

    def retry_failed(self, job_id: str) -> SubtitleProcessingJob:
        """Translate the failed and cancelled languages of a finished job again.

        Raises:
            InvalidJobStateError: If the job is still running, has no source
                subtitles, or has no failed or cancelled language.
        """
        job = self.repository.load(job_id)
        if not job.overall_status.is_terminal or self.registry.is_running(job_id):
            raise InvalidJobStateError(f"Job {job_id} is still {job.overall_status.value}")
        if job.source_srt is None:
            raise InvalidJobStateError(f"Job {job_id} has no source subtitles to translate")
        retryable = [s.language_code for s in job.languages if s.status in _RETRYABLE_LANGUAGE_STATUSES]
        if not retryable:
            raise InvalidJobStateError(f"Job {job_id} has no failed languages to retry")

        logger.info(f"Job {job_id}: retrying {', '.join(retryable)}")
        self._machine(job_id).reset_languages(_RETRYABLE_LANGUAGE_STATUSES)
        return self.run(job_id)

    def get_status(self, talk_id: str) -> SubtitleProcessingJob | None:
        """Return the most recent job for *talk_id*, if any."""
        return self.repository.find_latest_for_talk(talk_id)

    def get_srt_content(self, talk_id: str, language_code: str) -> str | None:
        """Return the stored SRT of *talk_id* in *language_code*.

        The source language is served from storage, falling back to the copy
        kept on the job. Target languages are only served once completed.
        """
        job = self.get_status(talk_id)
        if job is None:
            return None
        code = normalize_language_code(language_code)
        filename = subtitle_filename(file_stem_for(job), code)
        if code == job.source_language_code:
            return self.storage.get(filename) or job.source_srt
        if not job.has_language(code) or job.language(code).status is not LanguageStatus.COMPLETED:
            return None
        return self.storage.get(filename)

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------
    def _produce_source(
        self, machine: JobStateMachine, job: SubtitleProcessingJob, event: threading.Event
    ) -> str:
        machine.begin_stage(JobStatus.TRANSCRIBING, "Resolving video URL")
        checkpoint(event)
        video_url = call_with_retry(
            lambda: self.resolver.get_direct_url(job.source_video_url, job.video_source_type),
            policy=self.policy,
            operation="Resolving video URL",
            wrap_as=VideoResolutionFailure,
            cancel_event=event,
        )

        checkpoint(event)
        machine.begin_stage(JobStatus.TRANSCRIBING, "Transcribing audio")
        words = call_with_retry(
            lambda: self.transcription.transcribe(video_url),
            policy=self.policy,
            operation="Transcribing audio",
            wrap_as=TranscriptionFailure,
            cancel_event=event,
        )

        checkpoint(event)
        machine.begin_stage(JobStatus.ASSEMBLING, "Generating subtitles")
        assembled = self.assembler.assemble(words)

        checkpoint(event)
        machine.begin_stage(JobStatus.ASSEMBLING, "Uploading source subtitles")
        filename = subtitle_filename(file_stem_for(job), job.source_language_code)
        srt_url = call_with_retry(
            lambda: self.storage.upload(assembled.srt_text, filename),
            policy=self.policy,
            operation=f"Uploading {filename}",
            wrap_as=StorageFailure,
            cancel_event=event,
        )
        machine.record_source(assembled.srt_text, srt_url, len(assembled.cues))
        logger.info(f"Job {job.id}: source subtitles stored ({len(assembled.cues)} cues)")
        return assembled.srt_text

    @staticmethod
    def _mark_cancelled(machine: JobStateMachine) -> None:
        if not machine.snapshot().overall_status.is_terminal:
            machine.cancel()

    @staticmethod
    def _mark_failed(machine: JobStateMachine, message: str) -> None:
        if not machine.snapshot().overall_status.is_terminal:
            machine.fail(message)
