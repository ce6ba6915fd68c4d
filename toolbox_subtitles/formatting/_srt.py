"""SubRip Subtitle (.srt) rendering, parsing and chunking."""

from __future__ import annotations

import re
from collections.abc import Sequence

from toolbox_subtitles.pipeline.errors import SrtFormatError
from toolbox_subtitles.timestamps.models import SubtitleCue

_TIME_RE = re.compile(r"^(\d{2,}):(\d\d):(\d\d)[,.](\d\d\d)$")
_BLOCK_SPLIT_RE = re.compile(r"\n[ \t]*\n")


def format_timestamp(seconds: float) -> str:
    """Convert seconds to an ``HH:MM:SS,mmm`` string.

    Args:
        seconds: Non-negative number of seconds; rounded to milliseconds.

    Returns:
        str: Timestamp string in ``HH:MM:SS,mmm`` format.

    Raises:
        ValueError: If ``seconds`` is negative.
    """
    if seconds < 0:
        raise ValueError(f"non-negative timestamp required, got {seconds}")
    ms_total = int(round(seconds * 1000))
    hh, rem = divmod(ms_total, 3600_000)
    mm, rem = divmod(rem, 60_000)
    ss, ms = divmod(rem, 1000)
    return f"{hh:02d}:{mm:02d}:{ss:02d},{ms:03d}"


def parse_timestamp(ts: str) -> float:
    """Convert timestamp ``HH:MM:SS,mmm`` to seconds.

    A ``.`` millisecond separator is accepted as well, since translators
    occasionally emit VTT-style timestamps.

    Raises:
        SrtFormatError: If the timestamp string is not in the expected format.
    """
    match = _TIME_RE.match(ts.strip())
    if not match:
        raise SrtFormatError(f"Invalid timestamp '{ts}'")
    hh, mm, ss, ms = map(int, match.groups())
    return hh * 3600 + mm * 60 + ss + ms / 1000.0


def _normalise(text: str) -> str:
    return text.lstrip("﻿").replace("\r\n", "\n").replace("\r", "\n").strip()


def render_cue(cue: SubtitleCue) -> str:
    """Render one cue as an SRT block (without the separating blank line)."""
    return (
        f"{cue.index}\n{format_timestamp(cue.start)} --> {format_timestamp(cue.end)}\n"
        f"{cue.text.strip()}\n"
    )


def render_srt(cues: Sequence[SubtitleCue]) -> str:
    """Convert cues to an SRT formatted string.

    Args:
        cues: Ordered cues; their own ``index`` values are written.

    Returns:
        A string in SRT format, blocks separated by a blank line.
    """
    return "\n".join(render_cue(cue) for cue in cues)


def split_srt_blocks(srt_text: str) -> list[str]:
    """Split an SRT document into its cue blocks, preserving order.

    Returns:
        list[str]: Each block stripped of surrounding blank lines.
    """
    text = _normalise(srt_text)
    if not text:
        return []
    return [block.strip() for block in _BLOCK_SPLIT_RE.split(text) if block.strip()]


def count_srt_blocks(srt_text: str) -> int:
    """Return the number of cue blocks in ``srt_text``."""
    return len(split_srt_blocks(srt_text))


def parse_srt(srt_text: str) -> list[SubtitleCue]:
    """Parse an SRT document into cues preserving document order.

    Raises:
        SrtFormatError: If a block lacks an index or a timing line.
    """
    cues: list[SubtitleCue] = []
    for block in split_srt_blocks(srt_text):
        lines = block.splitlines()
        if len(lines) < 3:
            raise SrtFormatError(f"Incomplete SRT block: {block!r}")
        try:
            index = int(lines[0].strip())
        except ValueError as exc:
            raise SrtFormatError(f"Invalid cue index {lines[0]!r}") from exc
        if "-->" not in lines[1]:
            raise SrtFormatError(f"Missing timing line in block {index}")
        start_str, end_str = lines[1].split("-->", 1)
        body = "\n".join(line.rstrip() for line in lines[2:]).strip()
        try:
            cue = SubtitleCue(
                index=index,
                start=parse_timestamp(start_str),
                end=parse_timestamp(end_str),
                text=body,
            )
        except ValueError as exc:
            raise SrtFormatError(f"Invalid cue {index}: {exc}") from exc
        cues.append(cue)
    return cues


def chunk_srt(srt_text: str, batch_size: int) -> list[str]:
    """Split an SRT document into ordered chunks of at most ``batch_size`` cues.

    Cue blocks are never split across chunks. A document that fits in one
    batch is returned as a single chunk.

    Raises:
        ValueError: If ``batch_size`` is not positive.
    """
    if batch_size < 1:
        raise ValueError("batch_size must be at least 1")
    blocks = split_srt_blocks(srt_text)
    return [
        "\n\n".join(blocks[i : i + batch_size]) + "\n"
        for i in range(0, len(blocks), batch_size)
    ]


def join_srt_chunks(chunks: Sequence[str]) -> str:
    """Concatenate translated chunks back into one SRT document."""
    parts = [_normalise(chunk) for chunk in chunks]
    return "\n\n".join(part for part in parts if part) + "\n"
