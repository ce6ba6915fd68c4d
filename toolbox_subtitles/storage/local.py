"""Filesystem-backed SRT storage.

Files are written below a single root directory; names that would escape the
root (absolute paths, ``..`` segments) are rejected. The returned URL is
either ``<public_base_url>/<filename>`` or a ``file://`` URI.
"""

from __future__ import annotations

import logging
import pathlib

from toolbox_subtitles.pipeline.errors import StorageFailure
from toolbox_subtitles.utils.constant import SRT_PUBLIC_BASE_URL, SRT_STORAGE_ROOT

logger = logging.getLogger(__name__)

PathLike = str | pathlib.Path

__all__ = ["LocalSrtStorage"]


class LocalSrtStorage:
    """Store subtitle files in a directory.

    Attributes:
        root: Directory all files are written to.
        public_base_url: Optional base URL the directory is served from.

    Examples:
        >>> storage = LocalSrtStorage("/tmp/subs")
        >>> storage.upload("1\\n00:00:00,000 --> 00:00:01,000\\nHi\\n", "talk_en.srt")
        'file:///tmp/subs/talk_en.srt'
    """

    def __init__(self, root: PathLike = SRT_STORAGE_ROOT, public_base_url: str = SRT_PUBLIC_BASE_URL) -> None:
        self.root = pathlib.Path(root).expanduser().resolve()
        self.public_base_url = public_base_url.rstrip("/")

    def _path_for(self, filename: str) -> pathlib.Path:
        candidate = (self.root / filename).resolve()
        if not filename or candidate.parent != self.root:
            raise StorageFailure(f"Refusing to store outside {self.root}: {filename!r}", retryable=False)
        return candidate

    def url_for(self, filename: str) -> str:
        path = self._path_for(filename)
        if self.public_base_url:
            return f"{self.public_base_url}/{path.name}"
        return path.as_uri()

    def upload(self, content: str, filename: str) -> str:
        """Write *content* to *filename* (replacing it) and return its URL.

        Raises:
            StorageFailure: If the name is unsafe or the write fails.
        """
        path = self._path_for(filename)
        tmp = path.with_name(f".{path.name}.tmp")
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            tmp.write_text(content, encoding="utf-8")
            tmp.replace(path)
        except OSError as exc:
            raise StorageFailure(f"Could not write {path}: {exc}") from exc
        logger.debug(f"Stored {len(content)} chars at {path}")
        return self.url_for(filename)

    def get(self, filename: str) -> str | None:
        path = self._path_for(filename)
        if not path.is_file():
            return None
        try:
            return path.read_text(encoding="utf-8")
        except OSError as exc:
            raise StorageFailure(f"Could not read {path}: {exc}") from exc

    def delete(self, filename: str) -> bool:
        path = self._path_for(filename)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise StorageFailure(f"Could not delete {path}: {exc}") from exc
        return True
