"""Command-line interface for toolbox talk subtitles using Typer.

Commands:
- `assemble` turns a word-timing JSON file into an SRT file.
- `run` pushes a word-timing JSON file through the whole job pipeline.
- `status` / `jobs` show persisted jobs.
"""

from __future__ import annotations

import pathlib
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from toolbox_subtitles import __version__
from toolbox_subtitles.config import AssemblyConfig, FanoutPolicy
from toolbox_subtitles.jobs.models import SubtitleProcessingJob, TalkVideo
from toolbox_subtitles.jobs.repository import SqliteJobRepository
from toolbox_subtitles.pipeline.collaborators import (
    EchoTranslationService,
    JsonTranscriptSource,
    LoggingProgressReporter,
    PassthroughVideoResolver,
    load_transcript_words,
)
from toolbox_subtitles.pipeline.errors import SubtitlePipelineError
from toolbox_subtitles.pipeline.orchestrator import PipelineOrchestrator
from toolbox_subtitles.pipeline.progress import RichProgressReporter
from toolbox_subtitles.storage.local import LocalSrtStorage
from toolbox_subtitles.timestamps.assembler import CueAssembler
from toolbox_subtitles.utils.cancel import get_cancel_event, install_signal_handlers
from toolbox_subtitles.utils.constant import (
    JOB_DB_PATH,
    MAX_CUE_DURATION_SEC,
    MAX_LINE_CHARS,
    SILENCE_GAP_SEC,
    SRT_STORAGE_ROOT,
)
from toolbox_subtitles.utils.logging_config import configure_logging

console = Console()


def version_callback(value: bool) -> None:
    """Show the application's version and exit.

    Raises:
        typer.Exit: Always raised after printing when value is True.
    """
    if value:
        print(f"toolbox-subtitles version: {__version__}")
        raise typer.Exit()


app = typer.Typer(
    name="toolbox-subtitles",
    help="Generate and translate subtitles for toolbox talk videos.",
    add_completion=False,
)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            help="Show the application's version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = False,
) -> None:
    """Show help when no subcommand is given."""
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


@app.command()
def assemble(
    words_json: Annotated[
        pathlib.Path,
        typer.Argument(help="Word-timing JSON (a list of tokens or {'words': [...]}).", show_default=False),
    ],
    output: Annotated[
        pathlib.Path | None,
        typer.Option("--output", "-o", help="Write the SRT here instead of stdout."),
    ] = None,
    total_duration: Annotated[
        float | None,
        typer.Option("--total-duration", help="Video length in seconds; cue ends never exceed it."),
    ] = None,
    max_duration: Annotated[
        float, typer.Option("--max-duration", help="Longest a cue may stay on screen (s).")
    ] = MAX_CUE_DURATION_SEC,
    max_line_chars: Annotated[
        int, typer.Option("--max-line-chars", help="Characters per subtitle line.")
    ] = MAX_LINE_CHARS,
    silence_gap: Annotated[
        float, typer.Option("--silence-gap", help="Pause that always starts a new cue (s).")
    ] = SILENCE_GAP_SEC,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Enable debug logging.")] = False,
) -> None:
    """Convert word timings into an SRT file."""
    configure_logging(verbose=verbose)
    config = AssemblyConfig(
        max_cue_duration=max_duration,
        max_line_chars=max_line_chars,
        silence_gap=silence_gap,
    )
    try:
        words = load_transcript_words(words_json)
        result = CueAssembler(config).assemble(words, total_duration)
    except SubtitlePipelineError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    if output is None:
        typer.echo(result.srt_text, nl=False)
        return
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(result.srt_text, encoding="utf-8")
    typer.echo(f"Wrote {len(result.cues)} cue(s) to {output}")


@app.command()
def run(
    words_json: Annotated[
        pathlib.Path,
        typer.Argument(help="Word-timing JSON standing in for the transcription service.", show_default=False),
    ],
    title: Annotated[str, typer.Option("--title", help="Talk title; names the subtitle files.")],
    talk_id: Annotated[
        str | None, typer.Option("--talk-id", help="Talk identifier (defaults to the title).")
    ] = None,
    video_url: Annotated[
        str, typer.Option("--video-url", help="Direct URL of the talk video.")
    ] = "file://local",
    languages: Annotated[
        list[str] | None,
        typer.Option("--language", "-l", help="Target language code or name; repeatable."),
    ] = None,
    echo_translation: Annotated[
        bool,
        typer.Option(
            "--echo-translation",
            help="Copy the source text into every target language (dry run of the fan-out).",
        ),
    ] = False,
    max_concurrency: Annotated[
        int | None, typer.Option("--max-concurrency", help="Language workers running at once.")
    ] = None,
    storage_root: Annotated[
        pathlib.Path, typer.Option("--storage-root", help="Directory for generated SRT files.")
    ] = SRT_STORAGE_ROOT,
    db: Annotated[pathlib.Path, typer.Option("--db", help="SQLite job database.")] = JOB_DB_PATH,
    no_progress: Annotated[bool, typer.Option("--no-progress", help="Disable progress bars.")] = False,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Enable debug logging.")] = False,
    quiet: Annotated[bool, typer.Option("--quiet", "-q", help="Only log errors.")] = False,
) -> None:
    """Run the full subtitle job pipeline for one talk."""
    configure_logging(verbose=verbose, quiet=quiet)
    targets = list(languages or [])
    if targets and not echo_translation:
        typer.echo(
            "Error: no translation service is configured; pass --echo-translation for a dry run.",
            err=True,
        )
        raise typer.Exit(code=2)

    policy = FanoutPolicy() if max_concurrency is None else FanoutPolicy(max_concurrency=max_concurrency)
    repository = SqliteJobRepository(db)
    cancel_event = get_cancel_event()
    install_signal_handlers(cancel_event)
    reporter = None if no_progress or quiet else RichProgressReporter()
    orchestrator = PipelineOrchestrator(
        repository,
        PassthroughVideoResolver(),
        JsonTranscriptSource(words_json),
        EchoTranslationService(),
        LocalSrtStorage(storage_root),
        reporter or LoggingProgressReporter(),
        policy=policy,
        parent_cancel_event=cancel_event,
    )
    try:
        talk = TalkVideo(talk_id=talk_id or title, title=title, source_url=video_url)
        job = orchestrator.start(talk, targets)
        if reporter is not None:
            with reporter:
                job = orchestrator.run(job.id)
        else:
            job = orchestrator.run(job.id)
    except (SubtitlePipelineError, ValueError) as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    finally:
        repository.close()

    _print_job(job)
    if job.overall_status.value in ("failed", "cancelled"):
        raise typer.Exit(code=1)


@app.command()
def status(
    job_id: Annotated[str, typer.Argument(help="Job identifier.", show_default=False)],
    db: Annotated[pathlib.Path, typer.Option("--db", help="SQLite job database.")] = JOB_DB_PATH,
) -> None:
    """Show one job and its languages."""
    repository = SqliteJobRepository(db)
    try:
        job = repository.load(job_id)
    except SubtitlePipelineError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    finally:
        repository.close()
    _print_job(job)


@app.command()
def jobs(
    db: Annotated[pathlib.Path, typer.Option("--db", help="SQLite job database.")] = JOB_DB_PATH,
) -> None:
    """List persisted jobs, newest first."""
    repository = SqliteJobRepository(db)
    try:
        records = repository.list_jobs()
    finally:
        repository.close()

    table = Table(title="Subtitle jobs", show_header=True, header_style="bold magenta")
    table.add_column("Job", style="cyan", no_wrap=True)
    table.add_column("Talk", style="green")
    table.add_column("Status", style="yellow")
    table.add_column("Progress", justify="right")
    table.add_column("Updated")
    for job in records:
        table.add_row(
            job.id,
            job.talk_title or job.talk_id,
            job.overall_status.value,
            f"{job.overall_percentage:.0f}%",
            job.updated_at.strftime("%Y-%m-%d %H:%M:%S"),
        )
    console.print(table)


def _print_job(job: SubtitleProcessingJob) -> None:  # pragma: no cover - formatting helper
    table = Table(title=f"Job {job.id}", show_header=True, header_style="bold magenta")
    table.add_column("Language", style="cyan", no_wrap=True)
    table.add_column("Status", style="yellow")
    table.add_column("Progress", justify="right")
    table.add_column("Retries", justify="right")
    table.add_column("SRT / error", style="green")
    table.add_row(
        f"{job.source_language_code} (source)",
        "completed" if job.source_srt_url else "-",
        "",
        "",
        job.source_srt_url or "",
    )
    for state in job.languages:
        table.add_row(
            f"{state.display_name} ({state.language_code})",
            state.status.value,
            f"{state.percentage:.0f}%",
            str(state.retry_count),
            state.srt_url or state.last_error or "",
        )
    console.print(table)
    console.print(
        f"[bold]{job.overall_status.value}[/bold] {job.overall_percentage:.0f}% - {job.current_step}"
    )
    if job.error_message:
        console.print(f"[red]{job.error_message}[/red]")


if __name__ == "__main__":  # pragma: no cover
    app()
