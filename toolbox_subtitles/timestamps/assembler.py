"""Turn word-level transcription timings into subtitle cues.

The assembler walks the token stream once, growing a cue buffer and flushing
it whenever one of the break rules fires:

* the cue would stay on screen longer than ``max_cue_duration``;
* the text would no longer fit in ``max_lines`` lines of ``max_line_chars``;
* the pause before the next word exceeds ``silence_gap``;
* a sentence ends and the buffer already holds at least one full line.

Out-of-order or overlapping tokens are clamped forward rather than dropped.
The module performs no I/O and is fully deterministic.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from toolbox_subtitles.config import AssemblyConfig
from toolbox_subtitles.formatting import render_srt
from toolbox_subtitles.pipeline.errors import EmptyTranscriptError
from toolbox_subtitles.timestamps.models import (
    AssembledSubtitles,
    SubtitleCue,
    TranscriptWord,
    WordKind,
)

logger = logging.getLogger(__name__)

# SRT resolution; every cue keeps at least this much screen time
_MIN_CUE_SEC = 0.001

__all__ = [
    "CueAssembler",
    "assemble_cues",
    "split_lines",
]


def split_lines(text: str, max_line_chars: int, max_lines: int = 2) -> str:
    """Split *text* into lines that meet readability constraints.

    Rules for the common two-line case:
    1. Prefer a **balanced** break where both lines are <= ``max_line_chars``.
    2. Reject break positions that leave either line *very* short (<25 % of
       ``max_line_chars`` **or** fewer than 10 characters).
    3. Fall back to a greedy split just before the limit if no balanced break
       fulfils the minimum-length requirement.

    With ``max_lines`` above two the text is wrapped greedily.

    Returns:
        str: The text split into lines joined by ``\\n``.
    """
    if len(text) <= max_line_chars or max_lines < 2:
        return text

    if max_lines > 2:
        lines: list[str] = []
        line: list[str] = []
        for word in text.split():
            prospective = " ".join([*line, word])
            if line and len(prospective) > max_line_chars:
                lines.append(" ".join(line))
                line = [word]
            else:
                line.append(word)
        if line:
            lines.append(" ".join(line))
        return "\n".join(lines)

    min_line_len = max(10, int(max_line_chars * 0.25))

    best_split: tuple[str, str] | None = None
    best_delta = 10**9

    for idx, char in enumerate(text):
        if char != " ":
            continue
        line1, line2 = text[:idx].strip(), text[idx + 1 :].strip()
        if len(line1) > max_line_chars or len(line2) > max_line_chars:
            continue
        # Reject lines that are too short – avoids "orphan" second lines
        if len(line1) < min_line_len or len(line2) < min_line_len:
            continue
        delta = abs(len(line1) - len(line2))
        if delta < best_delta:
            best_delta, best_split = delta, (line1, line2)
            if delta == 0:
                break

    if not best_split:
        # Greedy fallback: cut as late as possible while keeping the first
        # line within the limit and the second line non-empty.
        first_break = text.rfind(" ", 0, max_line_chars + 1)
        if first_break <= 0 or first_break == len(text) - 1:
            first_break = max_line_chars
        best_split = text[:first_break].strip(), text[first_break:].strip()

    return "\n".join(part for part in best_split if part)


@dataclass
class _Draft:
    """Mutable cue under construction."""

    start: float
    end: float
    parts: list[str] = field(default_factory=list)

    @property
    def text(self) -> str:
        return " ".join("".join(self.parts).split())

    def add_word(self, text: str, end: float) -> None:
        if self.parts and not self.parts[-1][-1:].isspace() and not text[:1].isspace():
            self.parts.append(" ")
        self.parts.append(text)
        self.end = max(self.end, end)

    def add_punctuation(self, text: str, end: float) -> None:
        # Punctuation hugs the preceding word.
        while self.parts and self.parts[-1].isspace():
            self.parts.pop()
        self.parts.append(text)
        self.end = max(self.end, end)

    def preview_with(self, text: str) -> str:
        joiner = "" if self.parts and self.parts[-1][-1:].isspace() else " "
        return " ".join(("".join(self.parts) + joiner + text).split())


class CueAssembler:
    """Assemble :class:`SubtitleCue` objects from :class:`TranscriptWord` tokens.

    Attributes:
        config: Break and wrapping limits.

    Examples:
        >>> words = [
        ...     TranscriptWord(text="Fire", kind="word", start=0.0, end=0.3),
        ...     TranscriptWord(text=" ", kind="spacing", start=0.3, end=0.4),
        ...     TranscriptWord(text="safety", kind="word", start=0.4, end=0.9),
        ...     TranscriptWord(text=".", kind="punctuation", start=0.9, end=1.0),
        ... ]
        >>> CueAssembler().assemble(words).cues[0].text
        'Fire safety.'
    """

    def __init__(self, config: AssemblyConfig | None = None) -> None:
        self.config = config or AssemblyConfig()

    def assemble(
        self,
        words: Sequence[TranscriptWord],
        total_duration: float | None = None,
    ) -> AssembledSubtitles:
        """Build cues and their SRT rendering from *words*.

        Args:
            words: Tokens ordered by start time.
            total_duration: Optional video length; cue ends never exceed it.

        Returns:
            AssembledSubtitles: Cues and the SRT text.

        Raises:
            EmptyTranscriptError: If *words* holds no renderable token.
        """
        if not words:
            raise EmptyTranscriptError("Transcript contains no words")

        drafts = self._collect_drafts(words)
        if not drafts:
            raise EmptyTranscriptError("Transcript contains no renderable words")

        cues = self._finalise(drafts, total_duration)
        logger.debug(f"Assembled {len(cues)} cue(s) from {len(words)} token(s)")
        return AssembledSubtitles(cues=cues, srt_text=render_srt(cues))

    def _collect_drafts(self, words: Sequence[TranscriptWord]) -> list[_Draft]:
        cfg = self.config
        drafts: list[_Draft] = []
        buffer: _Draft | None = None
        prev_end = 0.0
        clamped = 0

        def flush() -> None:
            nonlocal buffer
            if buffer is not None and buffer.text:
                drafts.append(buffer)
            buffer = None

        for token in words:
            if token.kind is WordKind.AUDIO_EVENT:
                continue

            start = max(token.start, prev_end)
            end = max(token.end, start)
            if start != token.start or end != token.end:
                clamped += 1
            prev_end = end

            if token.kind is WordKind.SPACING or not token.text.strip():
                if buffer is not None:
                    buffer.parts.append(token.text or " ")
                continue

            if token.kind is WordKind.PUNCTUATION:
                mark = token.text.strip()
                target = buffer if buffer is not None else (drafts[-1] if drafts else None)
                if target is None:
                    # Leading punctuation has no word to attach to.
                    continue
                # A mark that trails after a long pause keeps the cue's timing.
                target.add_punctuation(mark, end if start - target.end <= cfg.silence_gap else target.end)
                if (
                    buffer is not None
                    and mark[-1] in cfg.boundary_chars
                    and len(buffer.text) >= cfg.max_line_chars
                ):
                    flush()
                continue

            text = token.text.strip()
            if buffer is not None:
                gap = start - buffer.end
                if (
                    gap > cfg.silence_gap
                    or end - buffer.start > cfg.max_cue_duration
                    or len(buffer.preview_with(text)) > cfg.max_cue_chars
                ):
                    flush()
            if buffer is None:
                buffer = _Draft(start=start, end=end)
            buffer.add_word(text, end)

        flush()
        if clamped:
            logger.debug(f"Clamped {clamped} out-of-order or overlapping token(s)")
        return drafts

    def _finalise(self, drafts: list[_Draft], total_duration: float | None) -> list[SubtitleCue]:
        cfg = self.config
        cues: list[SubtitleCue] = []
        prev_end = 0.0
        for i, draft in enumerate(drafts):
            start = max(round(draft.start, 3), prev_end)
            end = round(draft.end, 3)
            if i + 1 < len(drafts):
                end = min(end, round(drafts[i + 1].start, 3))
            if total_duration is not None:
                end = min(end, round(total_duration, 3))
            end = max(end, round(start + _MIN_CUE_SEC, 3))
            cues.append(
                SubtitleCue(
                    index=i + 1,
                    start=start,
                    end=end,
                    text=split_lines(draft.text, cfg.max_line_chars, cfg.max_lines),
                )
            )
            prev_end = end
        return cues


def assemble_cues(
    words: Sequence[TranscriptWord],
    total_duration: float | None = None,
    config: AssemblyConfig | None = None,
) -> AssembledSubtitles:
    """Convenience wrapper around :meth:`CueAssembler.assemble`."""
    return CueAssembler(config).assemble(words, total_duration)
