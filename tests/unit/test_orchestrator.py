"""Unit tests for the end-to-end pipeline orchestrator."""

from __future__ import annotations

import dataclasses
import threading
from types import SimpleNamespace

import pytest

from toolbox_subtitles.config import FanoutPolicy
from toolbox_subtitles.formatting import count_srt_blocks
from toolbox_subtitles.jobs.models import JobStatus, LanguageStatus, TalkVideo, VideoSourceType
from toolbox_subtitles.jobs.repository import InMemoryJobRepository
from toolbox_subtitles.jobs.state_machine import JobStateMachine
from toolbox_subtitles.pipeline.errors import (
    ActiveJobExistsError,
    InvalidJobStateError,
    JobNotFoundError,
    VideoResolutionFailure,
)
from toolbox_subtitles.pipeline.orchestrator import PipelineOrchestrator, file_stem_for, slugify

TALK = TalkVideo(
    talk_id="talk-42",
    title="Fire Safety: Basics!",
    source_url="https://drive.example/file/abc",
)


@pytest.fixture
def pipeline(repository: InMemoryJobRepository, storage, reporter, fast_policy: FanoutPolicy, talk_words, fakes):
    """Orchestrator wired to fakes; the fakes are exposed as attributes."""
    deps = SimpleNamespace(
        resolver=fakes.Resolver(),
        transcriber=fakes.Transcriber(talk_words),
        translator=fakes.Translator(),
        storage=storage,
        reporter=reporter,
        repository=repository,
    )

    def build(**overrides: object) -> PipelineOrchestrator:
        for name, value in overrides.items():
            setattr(deps, name, value)
        deps.orchestrator = PipelineOrchestrator(
            deps.repository,
            deps.resolver,
            deps.transcriber,
            deps.translator,
            deps.storage,
            deps.reporter,
            policy=overrides.get("policy", fast_policy),
            parent_cancel_event=overrides.get("parent_cancel_event"),
        )
        return deps.orchestrator

    deps.build = build
    build()
    return deps


@pytest.mark.parametrize(
    "text,expected",
    [
        ("Fire Safety: Basics!", "fire_safety_basics"),
        ("  Working   at Height ", "working_at_height"),
        ("!!!", ""),
    ],
)
def test_slugify(text: str, expected: str) -> None:
    assert slugify(text) == expected


def test_file_stem_falls_back_to_talk_id(pipeline) -> None:
    job = pipeline.orchestrator.start(TalkVideo(talk_id="Talk 7", title="???", source_url="x"), [])
    assert file_stem_for(job) == "talk_7"


def test_process_happy_path(pipeline) -> None:
    job = pipeline.orchestrator.process(TALK, ["pl", "German", "en", "PL"])

    assert job.overall_status is JobStatus.COMPLETED
    assert job.overall_percentage == 100.0
    assert job.current_step == "Completed"
    assert [s.language_code for s in job.languages] == ["pl", "de"]
    assert sorted(pipeline.storage.files) == [
        "fire_safety_basics_de.srt",
        "fire_safety_basics_en.srt",
        "fire_safety_basics_pl.srt",
    ]
    assert job.source_srt_url == "memory://fire_safety_basics_en.srt"
    assert job.language("pl").srt_url == "memory://fire_safety_basics_pl.srt"
    assert "helmet" in job.source_srt
    assert job.total_cues == count_srt_blocks(job.source_srt) >= 1
    assert pipeline.resolver.calls == [(TALK.source_url, VideoSourceType.DIRECT_URL)]
    assert pipeline.transcriber.calls == ["https://cdn.example/abc"]
    assert sorted(pipeline.translator.targets()) == ["German", "Polish"]


def test_progress_follows_stage_order(pipeline) -> None:
    pipeline.orchestrator.process(TALK, ["pl"])

    stages = list(dict.fromkeys(u.overall_status for u in pipeline.reporter.updates))
    assert stages == [
        JobStatus.PENDING,
        JobStatus.TRANSCRIBING,
        JobStatus.ASSEMBLING,
        JobStatus.TRANSLATING,
        JobStatus.COMPLETED,
    ]
    percentages = [u.overall_percentage for u in pipeline.reporter.updates]
    assert percentages == sorted(percentages)


def test_no_targets_completes_with_source_only(pipeline) -> None:
    job = pipeline.orchestrator.process(TALK, ["en"])

    assert job.overall_status is JobStatus.COMPLETED
    assert job.languages == []
    assert list(pipeline.storage.files) == ["fire_safety_basics_en.srt"]


def test_partial_success_end_to_end(pipeline, fakes) -> None:
    pipeline.build(translator=fakes.Translator(fail_times={"German": 3}))
    job = pipeline.orchestrator.process(TALK, ["pl", "de", "fr"])

    assert job.overall_status is JobStatus.PARTIALLY_COMPLETED
    assert job.error_message is None
    assert job.language("de").status is LanguageStatus.FAILED
    assert job.language("de").retry_count == 3


def test_transcription_failure_fails_job_before_translation(pipeline, fakes) -> None:
    pipeline.build(transcriber=fakes.Transcriber([], error=RuntimeError("ASR quota exceeded")))
    job = pipeline.orchestrator.process(TALK, ["pl", "de"])

    assert job.overall_status is JobStatus.FAILED
    assert job.error_message == "Transcribing audio: ASR quota exceeded"
    assert len(pipeline.transcriber.calls) == 3
    assert pipeline.translator.calls == []
    assert {s.status for s in job.languages} == {LanguageStatus.PENDING}
    assert job.source_srt is None


def test_non_retryable_resolution_failure(pipeline, fakes) -> None:
    error = VideoResolutionFailure("Drive link is private", retryable=False)
    pipeline.build(resolver=fakes.Resolver(error=error))
    job = pipeline.orchestrator.process(TALK, ["pl"])

    assert job.overall_status is JobStatus.FAILED
    assert job.error_message == "Drive link is private"
    assert len(pipeline.resolver.calls) == 1
    assert pipeline.transcriber.calls == []


def test_empty_transcript_fails_job(pipeline, fakes) -> None:
    pipeline.build(transcriber=fakes.Transcriber([]))
    job = pipeline.orchestrator.process(TALK, ["pl"])

    assert job.overall_status is JobStatus.FAILED
    assert job.error_message == "Transcript contains no words"
    assert pipeline.storage.files == {}


def test_unexpected_errors_fail_the_job(pipeline, monkeypatch: pytest.MonkeyPatch) -> None:
    def explode(*_args, **_kwargs):
        raise RuntimeError("boom")

    monkeypatch.setattr(pipeline.orchestrator.assembler, "assemble", explode)
    job = pipeline.orchestrator.process(TALK, ["pl"])

    assert job.overall_status is JobStatus.FAILED
    assert job.error_message == "Unexpected error: boom"
    assert not pipeline.orchestrator.registry.is_running(job.id)


def test_one_active_job_per_talk(pipeline) -> None:
    job = pipeline.orchestrator.start(TALK, ["pl"])
    with pytest.raises(ActiveJobExistsError):
        pipeline.orchestrator.start(TALK, ["de"])

    pipeline.orchestrator.cancel(job.id)
    assert pipeline.orchestrator.start(TALK, ["de"]).id != job.id


def test_invalid_target_language_is_rejected(pipeline) -> None:
    with pytest.raises(ValueError):
        pipeline.orchestrator.start(TALK, ["not a language"])


def test_cancel_pending_job(pipeline) -> None:
    job = pipeline.orchestrator.start(TALK, ["pl", "de"])
    cancelled = pipeline.orchestrator.cancel(job.id)

    assert cancelled.overall_status is JobStatus.CANCELLED
    assert {s.status for s in cancelled.languages} == {LanguageStatus.CANCELLED}
    with pytest.raises(InvalidJobStateError):
        pipeline.orchestrator.cancel(job.id)

    resubmitted = pipeline.orchestrator.run(job.id)

    assert resubmitted.overall_status is JobStatus.COMPLETED
    assert {s.status for s in resubmitted.languages} == {LanguageStatus.COMPLETED}


def test_failed_job_without_source_restarts_from_transcription(pipeline, fakes, talk_words) -> None:
    transcriber = fakes.Transcriber(talk_words, error=RuntimeError("ASR quota exceeded"))
    orchestrator = pipeline.build(transcriber=transcriber)
    failed = orchestrator.process(TALK, ["pl", "de"])
    assert failed.overall_status is JobStatus.FAILED
    assert failed.source_srt is None

    transcriber.error = None
    resumed = orchestrator.run(failed.id)

    assert resumed.overall_status is JobStatus.COMPLETED
    assert resumed.error_message is None
    assert resumed.source_srt is not None
    assert len(transcriber.calls) == 4
    assert sorted(pipeline.storage.files) == [
        "fire_safety_basics_de.srt",
        "fire_safety_basics_en.srt",
        "fire_safety_basics_pl.srt",
    ]
    statuses = [update.overall_status for update in pipeline.reporter.updates]
    assert statuses[statuses.index(JobStatus.FAILED) + 1 :].count(JobStatus.TRANSCRIBING) > 0


def test_stale_job_without_source_is_not_resumed(pipeline) -> None:
    job = pipeline.orchestrator.start(TALK, ["pl"])
    JobStateMachine.load(job.id, pipeline.repository).begin_stage(JobStatus.TRANSCRIBING, "Transcribing audio")

    with pytest.raises(InvalidJobStateError, match="cancel it before resubmitting"):
        pipeline.orchestrator.run(job.id)

    pipeline.orchestrator.cancel(job.id)
    assert pipeline.orchestrator.run(job.id).overall_status is JobStatus.COMPLETED


def test_unknown_job(pipeline) -> None:
    with pytest.raises(JobNotFoundError):
        pipeline.orchestrator.run("missing")


def test_cancel_while_translating(pipeline, fast_policy: FanoutPolicy) -> None:
    class CancellingTranslator:
        def __init__(self) -> None:
            self.calls = 0
            self.job_id = ""

        def translate_srt_batch(self, srt_text: str, target_language: str) -> str:
            self.calls += 1
            pipeline.orchestrator.cancel(self.job_id)
            return srt_text

    translator = CancellingTranslator()
    orchestrator = pipeline.build(
        translator=translator, policy=dataclasses.replace(fast_policy, max_concurrency=1)
    )
    job = orchestrator.start(TALK, ["pl", "de"])
    translator.job_id = job.id

    final = orchestrator.run(job.id)

    assert final.overall_status is JobStatus.CANCELLED
    assert final.cancel_requested is True
    assert translator.calls == 1
    assert {s.status for s in final.languages} == {LanguageStatus.CANCELLED}
    assert list(pipeline.storage.files) == ["fire_safety_basics_en.srt"]


def test_process_wide_cancellation(pipeline) -> None:
    parent = threading.Event()
    parent.set()
    orchestrator = pipeline.build(parent_cancel_event=parent)

    job = orchestrator.process(TALK, ["pl"])

    assert job.overall_status is JobStatus.CANCELLED
    assert pipeline.resolver.calls == []


def test_process_wide_cancellation_during_translation(pipeline, fast_policy: FanoutPolicy) -> None:
    parent = threading.Event()

    class InterruptedTranslator:
        def __init__(self) -> None:
            self.calls = 0
            self.job_id = ""

        def translate_srt_batch(self, srt_text: str, target_language: str) -> str:
            self.calls += 1
            parent.set()
            assert pipeline.orchestrator.registry.get(self.job_id).wait(2.0)
            return srt_text

    translator = InterruptedTranslator()
    orchestrator = pipeline.build(
        translator=translator,
        policy=dataclasses.replace(fast_policy, max_concurrency=1),
        parent_cancel_event=parent,
    )
    job = orchestrator.start(TALK, ["pl", "de", "fr"])
    translator.job_id = job.id

    final = orchestrator.run(job.id)

    assert final.overall_status is JobStatus.CANCELLED
    assert translator.calls == 1
    assert {s.status for s in final.languages} == {LanguageStatus.CANCELLED}
    assert list(pipeline.storage.files) == ["fire_safety_basics_en.srt"]


def test_retry_failed_reuses_source(pipeline, fakes) -> None:
    translator = fakes.Translator(fail_times={"German": 3})
    orchestrator = pipeline.build(translator=translator)
    job = orchestrator.process(TALK, ["pl", "de"])
    assert job.overall_status is JobStatus.PARTIALLY_COMPLETED

    retried = orchestrator.retry_failed(job.id)

    assert retried.overall_status is JobStatus.COMPLETED
    assert retried.language("de").retry_count == 0
    assert len(pipeline.transcriber.calls) == 1
    assert translator.targets().count("Polish") == 1
    assert retried.version > job.version


def test_retry_failed_rejects_invalid_jobs(pipeline, fakes) -> None:
    done = pipeline.orchestrator.process(TALK, ["pl"])
    with pytest.raises(InvalidJobStateError, match="no failed languages"):
        pipeline.orchestrator.retry_failed(done.id)

    pending = pipeline.orchestrator.start(TALK, ["pl"])
    with pytest.raises(InvalidJobStateError):
        pipeline.orchestrator.retry_failed(pending.id)
    pipeline.orchestrator.cancel(pending.id)

    orchestrator = pipeline.build(transcriber=fakes.Transcriber([], error=RuntimeError("down")))
    failed = orchestrator.process(TALK, ["pl"])
    with pytest.raises(InvalidJobStateError, match="no source subtitles"):
        orchestrator.retry_failed(failed.id)


def test_get_status_and_srt_content(pipeline, fakes) -> None:
    orchestrator = pipeline.build(translator=fakes.Translator(always_fail={"German"}))
    assert orchestrator.get_status(TALK.talk_id) is None
    assert orchestrator.get_srt_content(TALK.talk_id, "en") is None

    job = orchestrator.process(TALK, ["pl", "de"])

    assert orchestrator.get_status(TALK.talk_id).id == job.id
    assert orchestrator.get_srt_content(TALK.talk_id, "en") == job.source_srt
    assert orchestrator.get_srt_content(TALK.talk_id, "PL") == pipeline.storage.files["fire_safety_basics_pl.srt"]
    assert orchestrator.get_srt_content(TALK.talk_id, "de") is None
    assert orchestrator.get_srt_content(TALK.talk_id, "fr") is None

    pipeline.storage.delete("fire_safety_basics_en.srt")
    assert orchestrator.get_srt_content(TALK.talk_id, "en") == job.source_srt
