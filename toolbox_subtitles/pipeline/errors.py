"""Error taxonomy for the subtitle pipeline.

Every failure raised by a pipeline stage is a :class:`SubtitlePipelineError`
carrying a ``kind`` and a ``retryable`` flag. The retry helper only retries
errors whose ``retryable`` flag is set; everything else propagates on the
first attempt.

Cancellation is not part of this hierarchy and never triggers a retry.
"""

from __future__ import annotations


class SubtitlePipelineError(Exception):
    """Base class for pipeline failures."""

    kind: str = "pipeline_error"
    default_retryable: bool = False

    def __init__(self, message: str, *, retryable: bool | None = None) -> None:
        self.message = message
        self.retryable = self.default_retryable if retryable is None else retryable
        super().__init__(message)


class VideoResolutionFailure(SubtitlePipelineError):
    """The share link could not be turned into a fetchable video URL."""

    kind = "video_resolution_failure"
    default_retryable = True


class TranscriptionFailure(SubtitlePipelineError):
    """Speech-to-text failed; no source text exists for the job."""

    kind = "transcription_failure"
    default_retryable = True


class CueAssemblyError(SubtitlePipelineError):
    """The word sequence could not be turned into subtitle cues."""

    kind = "cue_assembly_error"


class EmptyTranscriptError(CueAssemblyError):
    """The transcript contained no renderable tokens."""

    kind = "empty_transcript"


class SrtFormatError(SubtitlePipelineError):
    """An SRT document could not be parsed."""

    kind = "srt_format_error"


class TranslationFailure(SubtitlePipelineError):
    """A translation call for one chunk of one language failed."""

    kind = "translation_failure"
    default_retryable = True


class StorageFailure(SubtitlePipelineError):
    """Uploading or reading an SRT file failed."""

    kind = "storage_failure"
    default_retryable = True


class ExternalCallTimeout(SubtitlePipelineError):
    """An external call did not finish before its deadline."""

    kind = "timeout"
    default_retryable = True


class RetriesExhaustedError(SubtitlePipelineError):
    """A retryable call kept failing until the attempt budget ran out."""

    kind = "retries_exhausted"

    def __init__(self, operation: str, last_error: BaseException, attempts: int) -> None:
        self.operation = operation
        self.last_error = last_error
        self.attempts = attempts
        super().__init__(f"{operation} failed after {attempts} attempt(s): {last_error}")


class JobNotFoundError(SubtitlePipelineError):
    kind = "job_not_found"


class ActiveJobExistsError(SubtitlePipelineError):
    """A talk already has a job that has not reached a terminal status."""

    kind = "active_job_exists"


class InvalidJobStateError(SubtitlePipelineError):
    """The requested operation is not valid for the job's current status."""

    kind = "invalid_job_state"


class InvalidTransitionError(SubtitlePipelineError):
    kind = "invalid_transition"


class ConcurrencyConflictError(SubtitlePipelineError):
    """The stored job version no longer matches the caller's version."""

    kind = "concurrency_conflict"

    def __init__(self, job_id: str, expected: int, actual: int) -> None:
        self.job_id = job_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Job {job_id} was modified concurrently (expected version {expected}, found {actual})"
        )


class CancellationRequested(Exception):
    """Raised at a checkpoint once the job's cancellation token is set."""


def error_message(error: BaseException) -> str:
    """Return the human-readable message recorded in job and language state."""
    if isinstance(error, RetriesExhaustedError):
        return error_message(error.last_error)
    if isinstance(error, SubtitlePipelineError):
        return error.message
    return str(error) or error.__class__.__name__


__all__ = [
    "ActiveJobExistsError",
    "CancellationRequested",
    "ConcurrencyConflictError",
    "CueAssemblyError",
    "EmptyTranscriptError",
    "ExternalCallTimeout",
    "InvalidJobStateError",
    "InvalidTransitionError",
    "JobNotFoundError",
    "RetriesExhaustedError",
    "SrtFormatError",
    "StorageFailure",
    "SubtitlePipelineError",
    "TranscriptionFailure",
    "TranslationFailure",
    "VideoResolutionFailure",
    "error_message",
]
