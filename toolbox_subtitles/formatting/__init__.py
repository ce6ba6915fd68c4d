"""SRT codec used by cue assembly and the translation fan-out."""

from __future__ import annotations

from ._srt import (
    chunk_srt,
    count_srt_blocks,
    format_timestamp,
    join_srt_chunks,
    parse_srt,
    parse_timestamp,
    render_cue,
    render_srt,
    split_srt_blocks,
)

__all__ = [
    "chunk_srt",
    "count_srt_blocks",
    "format_timestamp",
    "join_srt_chunks",
    "parse_srt",
    "parse_timestamp",
    "render_cue",
    "render_srt",
    "split_srt_blocks",
]
