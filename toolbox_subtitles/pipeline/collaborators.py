"""Interfaces of the external services the pipeline drives.

Only the contracts matter to the orchestration logic; production adapters
(speech-to-text, machine translation, blob storage, video hosts) live in the
embedding application. The small adapters below cover local runs and the CLI.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Protocol

from pydantic import ValidationError

from toolbox_subtitles.jobs.models import ProgressUpdate, VideoSourceType
from toolbox_subtitles.pipeline.errors import TranscriptionFailure, VideoResolutionFailure
from toolbox_subtitles.timestamps.models import TranscriptWord

logger = logging.getLogger(__name__)

__all__ = [
    "VideoSourceResolver",
    "TranscriptionService",
    "TranslationService",
    "SrtStorage",
    "ProgressReporter",
    "PassthroughVideoResolver",
    "JsonTranscriptSource",
    "EchoTranslationService",
    "LoggingProgressReporter",
    "load_transcript_words",
]


class VideoSourceResolver(Protocol):
    def get_direct_url(self, source_url: str, source_type: VideoSourceType) -> str:
        """Convert a share link into a fetchable URL."""
        ...


class TranscriptionService(Protocol):
    def transcribe(self, video_url: str) -> list[TranscriptWord]:
        """Return word-level timings (seconds from video start)."""
        ...


class TranslationService(Protocol):
    def translate_srt_batch(self, srt_text: str, target_language: str) -> str:
        """Translate one SRT chunk, preserving cue indices and timing."""
        ...


class SrtStorage(Protocol):
    def upload(self, content: str, filename: str) -> str:
        """Store *content* under *filename* and return its URL."""
        ...

    def get(self, filename: str) -> str | None: ...

    def delete(self, filename: str) -> bool: ...


class ProgressReporter(Protocol):
    def report(self, job_id: str, update: ProgressUpdate) -> None:
        """Push a progress update; must not block for long."""
        ...


class PassthroughVideoResolver:
    """Resolver for videos that are already directly fetchable."""

    def get_direct_url(self, source_url: str, source_type: VideoSourceType) -> str:
        if source_type is not VideoSourceType.DIRECT_URL:
            raise VideoResolutionFailure(
                f"No resolver configured for {source_type.value} sources", retryable=False
            )
        return source_url


def _coerce_word(item: dict[str, Any]) -> TranscriptWord:
    data = dict(item)
    # Speech-to-text APIs commonly call the token kind "type".
    if "kind" not in data and "type" in data:
        data["kind"] = data.pop("type")
    return TranscriptWord.model_validate(data)


def load_transcript_words(path: Path | str) -> list[TranscriptWord]:
    """Read word timings from a JSON file.

    Accepts either a bare list of tokens or an object with a ``words`` list.

    Raises:
        TranscriptionFailure: If the file is missing or malformed.
    """
    try:
        payload = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise TranscriptionFailure(f"Could not read transcript {path}: {exc}", retryable=False) from exc
    items = payload.get("words") if isinstance(payload, dict) else payload
    if not isinstance(items, list):
        raise TranscriptionFailure(f"Transcript {path} has no word list", retryable=False)
    try:
        return [_coerce_word(item) for item in items]
    except (ValidationError, TypeError) as exc:
        raise TranscriptionFailure(f"Invalid word entry in {path}: {exc}", retryable=False) from exc


class JsonTranscriptSource:
    """Transcription service backed by a pre-computed word-timing JSON file."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)

    def transcribe(self, video_url: str) -> list[TranscriptWord]:
        logger.debug(f"Reading word timings for {video_url} from {self.path}")
        return load_transcript_words(self.path)


class EchoTranslationService:
    """Returns the source text unchanged; useful for dry runs of the fan-out."""

    def translate_srt_batch(self, srt_text: str, target_language: str) -> str:
        return srt_text


class LoggingProgressReporter:
    """Writes progress updates to the log."""

    def report(self, job_id: str, update: ProgressUpdate) -> None:
        logger.debug(
            f"Job {job_id[:8]}: {update.overall_status.value} "
            f"{update.overall_percentage:.0f}% - {update.current_step}"
        )
