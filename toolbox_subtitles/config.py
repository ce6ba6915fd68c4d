"""Configuration dataclasses for the subtitle pipeline.

This module groups related settings so that the assembler, the fan-out
coordinator and the orchestrator each receive one small object instead of a
long parameter list. Defaults come from :mod:`toolbox_subtitles.utils.constant`
and can therefore be overridden through the environment or a ``.env`` file.
"""

from __future__ import annotations

from dataclasses import dataclass

from toolbox_subtitles.utils.constant import (
    ALLOW_PARTIAL_SUCCESS,
    BOUNDARY_CHARS,
    EXTERNAL_CALL_TIMEOUT_SEC,
    MAX_ATTEMPTS,
    MAX_CONCURRENCY,
    MAX_CUE_DURATION_SEC,
    MAX_LINE_CHARS,
    MAX_LINES_PER_CUE,
    RETRY_BASE_DELAY_SEC,
    RETRY_JITTER,
    RETRY_MAX_DELAY_SEC,
    SILENCE_GAP_SEC,
    TRANSLATION_BATCH_SIZE,
)


@dataclass(frozen=True)
class AssemblyConfig:
    """Groups cue assembly limits.

    Attributes:
        max_cue_duration: Longest a single cue may stay on screen (seconds).
        max_line_chars: Characters allowed on one physical line.
        max_lines: Physical lines allowed per cue.
        silence_gap: A pause longer than this always starts a new cue (seconds).
        boundary_chars: Sentence-terminating punctuation.

    """

    max_cue_duration: float = MAX_CUE_DURATION_SEC
    max_line_chars: int = MAX_LINE_CHARS
    max_lines: int = MAX_LINES_PER_CUE
    silence_gap: float = SILENCE_GAP_SEC
    boundary_chars: str = BOUNDARY_CHARS

    @property
    def max_cue_chars(self) -> int:
        """Character budget of a whole cue."""
        return self.max_line_chars * self.max_lines


@dataclass(frozen=True)
class RetryPolicy:
    """Groups retry and deadline settings for external calls.

    Attributes:
        max_attempts: Total attempts per call, including the first one.
        base_delay: Backoff before the second attempt (seconds).
        max_delay: Upper bound for a single backoff (seconds).
        jitter: Random spread applied to each backoff, as a fraction.
        call_timeout: Deadline of a single external call (seconds).

    """

    max_attempts: int = MAX_ATTEMPTS
    base_delay: float = RETRY_BASE_DELAY_SEC
    max_delay: float = RETRY_MAX_DELAY_SEC
    jitter: float = RETRY_JITTER
    call_timeout: float = EXTERNAL_CALL_TIMEOUT_SEC

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if not 0 <= self.jitter < 1:
            raise ValueError("jitter must be in [0, 1)")


@dataclass(frozen=True)
class FanoutPolicy(RetryPolicy):
    """Groups translation fan-out settings.

    Attributes:
        max_concurrency: Language workers running at the same time per job.
        batch_size: Cues sent to the translator per request.
        allow_partial_success: End with ``partially_completed`` instead of
            ``failed`` when some, but not all, languages succeed.

    """

    max_concurrency: int = MAX_CONCURRENCY
    batch_size: int = TRANSLATION_BATCH_SIZE
    allow_partial_success: bool = ALLOW_PARTIAL_SUCCESS

    def __post_init__(self) -> None:
        super().__post_init__()
        if self.max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        if self.batch_size < 1:
            raise ValueError("batch_size must be at least 1")
