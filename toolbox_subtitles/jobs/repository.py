"""Persistence for :class:`SubtitleProcessingJob` records.

Repositories expose a load-by-id / save-with-version contract. ``save``
succeeds only when the stored version equals ``expected_version`` and
returns the stored copy with ``version`` incremented, so two writers can
never silently overwrite each other's changes.

Two implementations are provided: an in-memory store for tests and embedded
use, and a SQLite store (one row per job, languages embedded as JSON) used
by the CLI.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from pathlib import Path
from typing import Protocol

from toolbox_subtitles.jobs.models import SubtitleProcessingJob
from toolbox_subtitles.pipeline.errors import ConcurrencyConflictError, JobNotFoundError

logger = logging.getLogger(__name__)

__all__ = [
    "JobRepository",
    "InMemoryJobRepository",
    "SqliteJobRepository",
]


class JobRepository(Protocol):
    """Storage contract for job aggregates."""

    def create(self, job: SubtitleProcessingJob) -> SubtitleProcessingJob: ...

    def load(self, job_id: str) -> SubtitleProcessingJob: ...

    def save(self, job: SubtitleProcessingJob, expected_version: int) -> SubtitleProcessingJob: ...

    def find_latest_for_talk(self, talk_id: str) -> SubtitleProcessingJob | None: ...

    def list_jobs(self) -> list[SubtitleProcessingJob]: ...


class InMemoryJobRepository:
    """Thread-safe in-process job store holding deep copies."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._jobs: dict[str, SubtitleProcessingJob] = {}

    def create(self, job: SubtitleProcessingJob) -> SubtitleProcessingJob:
        with self._lock:
            if job.id in self._jobs:
                raise ValueError(f"Job {job.id} already exists")
            stored = job.model_copy(deep=True, update={"version": 1})
            self._jobs[job.id] = stored
            return stored.model_copy(deep=True)

    def load(self, job_id: str) -> SubtitleProcessingJob:
        with self._lock:
            stored = self._jobs.get(job_id)
            if stored is None:
                raise JobNotFoundError(f"Job {job_id} not found")
            return stored.model_copy(deep=True)

    def save(self, job: SubtitleProcessingJob, expected_version: int) -> SubtitleProcessingJob:
        with self._lock:
            stored = self._jobs.get(job.id)
            if stored is None:
                raise JobNotFoundError(f"Job {job.id} not found")
            if stored.version != expected_version:
                raise ConcurrencyConflictError(job.id, expected_version, stored.version)
            updated = job.model_copy(deep=True, update={"version": expected_version + 1})
            self._jobs[job.id] = updated
            return updated.model_copy(deep=True)

    def find_latest_for_talk(self, talk_id: str) -> SubtitleProcessingJob | None:
        with self._lock:
            candidates = [job for job in self._jobs.values() if job.talk_id == talk_id]
            if not candidates:
                return None
            return max(candidates, key=lambda j: j.created_at).model_copy(deep=True)

    def list_jobs(self) -> list[SubtitleProcessingJob]:
        """List all jobs, newest first."""
        with self._lock:
            jobs = sorted(self._jobs.values(), key=lambda j: j.created_at, reverse=True)
            return [job.model_copy(deep=True) for job in jobs]


_CREATE_TABLES = """
CREATE TABLE IF NOT EXISTS subtitle_jobs (
    id TEXT PRIMARY KEY,
    talk_id TEXT NOT NULL,
    status TEXT NOT NULL,
    version INTEGER NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    payload TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_subtitle_jobs_talk ON subtitle_jobs(talk_id, created_at DESC);
"""


class SqliteJobRepository:
    """SQLite-backed job store.

    The connection is shared across worker threads (``check_same_thread=False``)
    and guarded by an explicit lock. The version check is part of the
    ``UPDATE`` statement itself, so it also holds across processes sharing
    the database file.
    """

    def __init__(self, db_path: Path | str) -> None:
        self.db_path = Path(db_path)
        if str(db_path) != ":memory:":
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self.conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA journal_mode=WAL")
        self.conn.executescript(_CREATE_TABLES)
        self.conn.commit()

    def close(self) -> None:
        with self._lock:
            self.conn.close()

    @staticmethod
    def _row_to_job(row: sqlite3.Row) -> SubtitleProcessingJob:
        job = SubtitleProcessingJob.model_validate_json(row["payload"])
        job.version = row["version"]
        return job

    def create(self, job: SubtitleProcessingJob) -> SubtitleProcessingJob:
        stored = job.model_copy(deep=True, update={"version": 1})
        with self._lock:
            try:
                self.conn.execute(
                    "INSERT INTO subtitle_jobs (id, talk_id, status, version, created_at, updated_at, payload)"
                    " VALUES (?, ?, ?, ?, ?, ?, ?)",
                    (
                        stored.id,
                        stored.talk_id,
                        stored.overall_status.value,
                        stored.version,
                        stored.created_at.isoformat(),
                        stored.updated_at.isoformat(),
                        stored.model_dump_json(),
                    ),
                )
            except sqlite3.IntegrityError as exc:
                raise ValueError(f"Job {job.id} already exists") from exc
            self.conn.commit()
        return stored

    def load(self, job_id: str) -> SubtitleProcessingJob:
        with self._lock:
            row = self.conn.execute(
                "SELECT version, payload FROM subtitle_jobs WHERE id = ?", (job_id,)
            ).fetchone()
        if row is None:
            raise JobNotFoundError(f"Job {job_id} not found")
        return self._row_to_job(row)

    def save(self, job: SubtitleProcessingJob, expected_version: int) -> SubtitleProcessingJob:
        updated = job.model_copy(deep=True, update={"version": expected_version + 1})
        with self._lock:
            cur = self.conn.execute(
                "UPDATE subtitle_jobs SET status = ?, version = ?, updated_at = ?, payload = ?"
                " WHERE id = ? AND version = ?",
                (
                    updated.overall_status.value,
                    updated.version,
                    updated.updated_at.isoformat(),
                    updated.model_dump_json(),
                    job.id,
                    expected_version,
                ),
            )
            if cur.rowcount == 0:
                row = self.conn.execute(
                    "SELECT version FROM subtitle_jobs WHERE id = ?", (job.id,)
                ).fetchone()
                self.conn.rollback()
                if row is None:
                    raise JobNotFoundError(f"Job {job.id} not found")
                logger.debug(f"Version conflict saving job {job.id}: expected {expected_version}")
                raise ConcurrencyConflictError(job.id, expected_version, row["version"])
            self.conn.commit()
        return updated

    def find_latest_for_talk(self, talk_id: str) -> SubtitleProcessingJob | None:
        with self._lock:
            row = self.conn.execute(
                "SELECT version, payload FROM subtitle_jobs WHERE talk_id = ?"
                " ORDER BY created_at DESC LIMIT 1",
                (talk_id,),
            ).fetchone()
        return self._row_to_job(row) if row is not None else None

    def list_jobs(self) -> list[SubtitleProcessingJob]:
        """List all jobs, newest first."""
        with self._lock:
            rows = self.conn.execute(
                "SELECT version, payload FROM subtitle_jobs ORDER BY created_at DESC"
            ).fetchall()
        return [self._row_to_job(row) for row in rows]
