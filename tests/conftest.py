"""Shared fixtures and collaborator fakes for the toolbox_subtitles test suite."""

from __future__ import annotations

import random
import threading
import time
from collections import Counter
from types import SimpleNamespace

import pytest

from toolbox_subtitles.config import FanoutPolicy
from toolbox_subtitles.jobs.models import ProgressUpdate, VideoSourceType
from toolbox_subtitles.jobs.repository import InMemoryJobRepository
from toolbox_subtitles.timestamps.models import TranscriptWord, WordKind


class FakeTranslator:
    """Thread-safe translator fake.

    ``fail_times`` maps a target language to how many calls fail before it
    starts succeeding; targets in ``always_fail`` never succeed.
    """

    def __init__(
        self,
        fail_times: dict[str, int] | None = None,
        always_fail: set[str] | None = None,
        delay: float = 0.0,
    ) -> None:
        self.fail_times = fail_times or {}
        self.always_fail = always_fail or set()
        self.delay = delay
        self.calls: list[tuple[str, str]] = []
        self.failures: Counter[str] = Counter()
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def translate_srt_batch(self, srt_text: str, target_language: str) -> str:
        with self._lock:
            self.calls.append((target_language, srt_text))
            self.active += 1
            self.max_active = max(self.max_active, self.active)
            should_fail = target_language in self.always_fail or (
                self.failures[target_language] < self.fail_times.get(target_language, 0)
            )
            if should_fail:
                self.failures[target_language] += 1
        try:
            if self.delay:
                time.sleep(self.delay)
            if should_fail:
                raise RuntimeError(f"{target_language} backend unavailable")
            return srt_text
        finally:
            with self._lock:
                self.active -= 1

    def targets(self) -> list[str]:
        with self._lock:
            return [target for target, _ in self.calls]


class FakeStorage:
    """In-memory SRT storage."""

    def __init__(self, fail_uploads: int = 0) -> None:
        self.files: dict[str, str] = {}
        self.fail_uploads = fail_uploads
        self.upload_attempts = 0
        self._lock = threading.Lock()

    def upload(self, content: str, filename: str) -> str:
        with self._lock:
            self.upload_attempts += 1
            if self.upload_attempts <= self.fail_uploads:
                raise OSError("storage offline")
            self.files[filename] = content
        return f"memory://{filename}"

    def get(self, filename: str) -> str | None:
        with self._lock:
            return self.files.get(filename)

    def delete(self, filename: str) -> bool:
        with self._lock:
            return self.files.pop(filename, None) is not None


class FakeResolver:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.calls: list[tuple[str, VideoSourceType]] = []

    def get_direct_url(self, source_url: str, source_type: VideoSourceType) -> str:
        self.calls.append((source_url, source_type))
        if self.error is not None:
            raise self.error
        return f"https://cdn.example/{source_url.rsplit('/', 1)[-1]}"


class FakeTranscriber:
    def __init__(self, words: list[TranscriptWord], error: Exception | None = None) -> None:
        self.words = words
        self.error = error
        self.calls: list[str] = []

    def transcribe(self, video_url: str) -> list[TranscriptWord]:
        self.calls.append(video_url)
        if self.error is not None:
            raise self.error
        return list(self.words)


class RecordingReporter:
    def __init__(self) -> None:
        self.updates: list[ProgressUpdate] = []
        self._lock = threading.Lock()

    def report(self, job_id: str, update: ProgressUpdate) -> None:
        with self._lock:
            self.updates.append(update)


def make_words(*tokens: tuple[str, str, float, float]) -> list[TranscriptWord]:
    """Build tokens from ``(text, kind, start, end)`` tuples."""
    return [TranscriptWord(text=t, kind=WordKind(k), start=s, end=e) for t, k, s, e in tokens]


def random_words(seed: int, count: int = 60) -> tuple[list[TranscriptWord], list[int]]:
    """Short words with random pauses; returns the tokens and the indices after a long pause."""
    rng = random.Random(seed)
    words: list[TranscriptWord] = []
    breaks: list[int] = []
    t = 0.0
    for i in range(count):
        gap = round(rng.choice([0.0, 0.05, 0.2, 0.5, 0.81, 1.2, 2.0]), 3)
        if i and gap > 0.8:
            breaks.append(i)
        start = round(t + gap, 3)
        end = round(start + rng.uniform(0.1, 0.6), 3)
        words.append(TranscriptWord(text=rng.choice(["ok", "go", "stop", "look", "up"]), start=start, end=end))
        t = end
    return words, breaks


@pytest.fixture
def fire_safety_words() -> list[TranscriptWord]:
    return make_words(
        ("Fire", "word", 0.0, 0.3),
        (" ", "spacing", 0.3, 0.4),
        ("safety", "word", 0.4, 0.9),
        (".", "punctuation", 0.9, 1.0),
    )


@pytest.fixture
def talk_words() -> list[TranscriptWord]:
    """Two sentences separated by a long pause."""
    return make_words(
        ("Wear", "word", 0.0, 0.3),
        (" ", "spacing", 0.3, 0.35),
        ("your", "word", 0.35, 0.6),
        (" ", "spacing", 0.6, 0.65),
        ("helmet", "word", 0.65, 1.1),
        (".", "punctuation", 1.1, 1.15),
        ("Check", "word", 2.5, 2.8),
        (" ", "spacing", 2.8, 2.85),
        ("the", "word", 2.85, 3.0),
        (" ", "spacing", 3.0, 3.05),
        ("ladder", "word", 3.05, 3.5),
        (".", "punctuation", 3.5, 3.55),
    )


@pytest.fixture
def fast_policy() -> FanoutPolicy:
    """Fan-out policy without backoff delays."""
    return FanoutPolicy(
        max_concurrency=2,
        max_attempts=3,
        batch_size=30,
        base_delay=0.0,
        max_delay=0.0,
        jitter=0.0,
        call_timeout=5.0,
    )


@pytest.fixture
def repository() -> InMemoryJobRepository:
    return InMemoryJobRepository()


@pytest.fixture
def storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
def reporter() -> RecordingReporter:
    return RecordingReporter()


@pytest.fixture
def fakes() -> SimpleNamespace:
    """Collaborator fake classes and token helpers for tests that build their own."""
    return SimpleNamespace(
        Translator=FakeTranslator,
        Storage=FakeStorage,
        Resolver=FakeResolver,
        Transcriber=FakeTranscriber,
        Reporter=RecordingReporter,
        make_words=make_words,
        random_words=random_words,
    )
