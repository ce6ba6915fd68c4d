"""Common data models for word timings and subtitle cues.

This module defines pydantic models that are shared across cue assembly,
SRT formatting and the translation pipeline.
"""

from __future__ import annotations

import enum

from pydantic import BaseModel, ConfigDict, Field, model_validator

__all__ = [
    "WordKind",
    "TranscriptWord",
    "SubtitleCue",
    "AssembledSubtitles",
]


class WordKind(str, enum.Enum):  # noqa: UP042
    """Token kinds produced by the transcription service."""

    WORD = "word"
    SPACING = "spacing"
    PUNCTUATION = "punctuation"
    AUDIO_EVENT = "audio_event"


class TranscriptWord(BaseModel):
    """A single transcription token with timing relative to video start."""

    model_config = ConfigDict(frozen=True)

    text: str = Field(..., description="Token text exactly as transcribed.")
    kind: WordKind = Field(WordKind.WORD, description="Token kind.")
    start: float = Field(..., description="Start time of the token in seconds.")
    end: float = Field(..., description="End time of the token in seconds.")


class SubtitleCue(BaseModel):
    """One timed subtitle entry."""

    model_config = ConfigDict(frozen=True)

    index: int = Field(..., ge=1, description="1-based sequential cue number.")
    start: float = Field(..., ge=0, description="Cue start time (seconds).")
    end: float = Field(..., description="Cue end time (seconds).")
    text: str = Field(..., min_length=1, description="Rendered text (may contain a line break).")

    @model_validator(mode="after")
    def _check_timing(self) -> SubtitleCue:
        if self.end <= self.start:
            raise ValueError(f"cue {self.index}: end ({self.end}) must be after start ({self.start})")
        return self


class AssembledSubtitles(BaseModel):
    """Cue list together with its SRT rendering."""

    cues: list[SubtitleCue] = Field(..., description="Ordered, non-overlapping cues.")
    srt_text: str = Field(..., description="SRT document rendered from *cues*.")
