"""Subtitle processing job aggregate.

A :class:`SubtitleProcessingJob` is the persisted root of one subtitle run:
overall status and progress plus one :class:`LanguageTranslationState` per
target language. ``version`` is the optimistic-concurrency token checked by
the repositories on every save.
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime, timezone

from pydantic import BaseModel, Field, model_validator

from toolbox_subtitles.jobs.languages import normalize_language_code
from toolbox_subtitles.utils.constant import SOURCE_LANGUAGE_CODE

__all__ = [
    "JobStatus",
    "LanguageStatus",
    "VideoSourceType",
    "TalkVideo",
    "LanguageTranslationState",
    "SubtitleProcessingJob",
    "LanguageProgress",
    "ProgressUpdate",
    "utcnow",
]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(str, enum.Enum):  # noqa: UP042
    """Overall status of a subtitle processing job.

    Attributes:
        PENDING: Job created but not yet started.
        TRANSCRIBING: Resolving the video and transcribing its audio.
        ASSEMBLING: Building and storing the source-language SRT.
        TRANSLATING: Per-language translation workers are running.
        PARTIALLY_COMPLETED: Some languages completed, others failed.
        COMPLETED: Every target language completed.
        FAILED: Transcription/assembly failed or no language completed.
        CANCELLED: Job cancelled by user.
    """

    PENDING = "pending"
    TRANSCRIBING = "transcribing"
    ASSEMBLING = "assembling"
    TRANSLATING = "translating"
    PARTIALLY_COMPLETED = "partially_completed"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_JOB_STATUSES


_TERMINAL_JOB_STATUSES = frozenset({
    JobStatus.PARTIALLY_COMPLETED,
    JobStatus.COMPLETED,
    JobStatus.FAILED,
    JobStatus.CANCELLED,
})


class LanguageStatus(str, enum.Enum):  # noqa: UP042
    """Status of one target language within a job."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (LanguageStatus.COMPLETED, LanguageStatus.FAILED, LanguageStatus.CANCELLED)


class VideoSourceType(str, enum.Enum):  # noqa: UP042
    """Where a talk's video is hosted."""

    GOOGLE_DRIVE = "google_drive"
    AZURE_BLOB = "azure_blob"
    DIRECT_URL = "direct_url"


class TalkVideo(BaseModel):
    """The talk whose video is being subtitled."""

    talk_id: str = Field(..., min_length=1, description="Identifier of the talk.")
    title: str = Field("", description="Talk title; used to name subtitle files.")
    source_url: str = Field(..., min_length=1, description="Share link of the video.")
    source_type: VideoSourceType = Field(VideoSourceType.DIRECT_URL)


class LanguageTranslationState(BaseModel):
    """Progress of one target language."""

    language_code: str
    display_name: str
    status: LanguageStatus = LanguageStatus.PENDING
    percentage: float = Field(0.0, ge=0.0, le=100.0)
    srt_url: str | None = None
    retry_count: int = Field(0, ge=0)
    last_error: str | None = None


class SubtitleProcessingJob(BaseModel):
    """Aggregate root of one subtitle processing run."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    talk_id: str
    talk_title: str = ""
    source_video_url: str = ""
    video_source_type: VideoSourceType = VideoSourceType.DIRECT_URL
    source_language_code: str = SOURCE_LANGUAGE_CODE
    overall_status: JobStatus = JobStatus.PENDING
    overall_percentage: float = Field(0.0, ge=0.0, le=100.0)
    current_step: str = "Queued"
    error_message: str | None = None
    languages: list[LanguageTranslationState] = Field(default_factory=list)
    source_srt: str | None = None
    source_srt_url: str | None = None
    total_cues: int = 0
    cancel_requested: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    version: int = 0

    @model_validator(mode="after")
    def _unique_language_codes(self) -> SubtitleProcessingJob:
        seen: set[str] = set()
        for state in self.languages:
            code = normalize_language_code(state.language_code)
            if code in seen:
                raise ValueError(f"Duplicate language code in job: {code}")
            seen.add(code)
        return self

    def language(self, code: str) -> LanguageTranslationState:
        """Return the state for *code*.

        Raises:
            KeyError: If the job has no such language.
        """
        normalized = normalize_language_code(code)
        for state in self.languages:
            if state.language_code == normalized:
                return state
        raise KeyError(code)

    def has_language(self, code: str) -> bool:
        normalized = normalize_language_code(code)
        return any(state.language_code == normalized for state in self.languages)

    def to_progress_update(self) -> ProgressUpdate:
        """Build the payload pushed to progress reporters."""
        return ProgressUpdate(
            job_id=self.id,
            overall_status=self.overall_status,
            overall_percentage=round(self.overall_percentage, 2),
            current_step=self.current_step,
            error_message=self.error_message,
            languages=[
                LanguageProgress(
                    language_code=state.language_code,
                    display_name=state.display_name,
                    status=state.status,
                    percentage=round(state.percentage, 2),
                    srt_url=state.srt_url,
                    last_error=state.last_error,
                )
                for state in self.languages
            ],
        )


class LanguageProgress(BaseModel):
    """Per-language slice of a progress update."""

    language_code: str
    display_name: str
    status: LanguageStatus
    percentage: float
    srt_url: str | None = None
    last_error: str | None = None


class ProgressUpdate(BaseModel):
    """Fire-and-forget progress payload for UIs."""

    job_id: str
    overall_status: JobStatus
    overall_percentage: float
    current_step: str
    error_message: str | None = None
    languages: list[LanguageProgress] = Field(default_factory=list)
