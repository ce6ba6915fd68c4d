"""Project-wide constants for convenient reuse."""

# pylint: disable=line-too-long

from __future__ import annotations

import os
import pathlib
import sys
from typing import Final

from toolbox_subtitles.utils.env_loader import load_project_env

# Ensure .env is loaded exactly once at import time for the whole project
if "pytest" not in sys.modules:
    load_project_env()


# Repository root resolved relative to this file (utils/constant.py → package → repo)
REPO_ROOT: Final[pathlib.Path] = pathlib.Path(__file__).resolve().parents[2]

# Default path of the dotenv file containing runtime overrides
ENV_FILE: Final[pathlib.Path] = REPO_ROOT / ".env"

# Language the talks are recorded in; its SRT is produced by transcription
SOURCE_LANGUAGE_CODE: Final[str] = os.getenv("SOURCE_LANGUAGE_CODE", "en").lower()

# Cue assembly limits (industry-standard subtitle readability defaults)
MAX_CUE_DURATION_SEC: Final[float] = float(os.getenv("MAX_CUE_DURATION_SEC", "7.0"))
MAX_LINE_CHARS: Final[int] = int(os.getenv("MAX_LINE_CHARS", "42"))
MAX_LINES_PER_CUE: Final[int] = int(os.getenv("MAX_LINES_PER_CUE", "2"))
SILENCE_GAP_SEC: Final[float] = float(
    os.getenv("SILENCE_GAP_SEC", "0.8")
)  # a pause longer than this always starts a new cue

# Sentence-terminating punctuation
BOUNDARY_CHARS: Final[str] = os.getenv("BOUNDARY_CHARS", ".?!…")

# Number of SRT cues sent to the translator per request
TRANSLATION_BATCH_SIZE: Final[int] = int(os.getenv("TRANSLATION_BATCH_SIZE", "30"))

# Per-job translation worker pool and retry policy
MAX_CONCURRENCY: Final[int] = int(os.getenv("MAX_CONCURRENCY", "3"))
MAX_ATTEMPTS: Final[int] = int(os.getenv("MAX_ATTEMPTS", "3"))
RETRY_BASE_DELAY_SEC: Final[float] = float(os.getenv("RETRY_BASE_DELAY_SEC", "1.0"))
RETRY_MAX_DELAY_SEC: Final[float] = float(os.getenv("RETRY_MAX_DELAY_SEC", "30.0"))
RETRY_JITTER: Final[float] = float(os.getenv("RETRY_JITTER", "0.1"))  # +/- fraction
EXTERNAL_CALL_TIMEOUT_SEC: Final[float] = float(os.getenv("EXTERNAL_CALL_TIMEOUT_SEC", "120"))

# A job with some failed languages ends PartiallyCompleted when true, Failed otherwise
ALLOW_PARTIAL_SUCCESS: Final[bool] = (
    os.getenv("ALLOW_PARTIAL_SUCCESS", "True").lower() == "true"
)

# Optimistic-concurrency retries when persisting the job aggregate
MAX_SAVE_ATTEMPTS: Final[int] = int(os.getenv("MAX_SAVE_ATTEMPTS", "5"))

# Local SRT storage; uploads are confined to this directory
SRT_STORAGE_ROOT: Final[pathlib.Path] = pathlib.Path(
    os.getenv("SRT_STORAGE_ROOT", str(REPO_ROOT / "output" / "subs"))
).resolve()
SRT_PUBLIC_BASE_URL: Final[str] = os.getenv("SRT_PUBLIC_BASE_URL", "")

# SQLite job store used by the CLI
JOB_DB_PATH: Final[pathlib.Path] = pathlib.Path(
    os.getenv("JOB_DB_PATH", str(REPO_ROOT / "output" / "jobs.sqlite3"))
)
