"""CLI commands for autopost using Typer and Rich.

Implements 3 CLI commands:
- batch: Generate N independent post variations with a live status table
- pipeline: Run the staged creative pipeline for one post
- stages: List the pipeline stages
"""

import asyncio
import logging
import signal
from typing import List, Optional, Tuple

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.live import Live
from rich.table import Table

from autopost import validate_credentials
from autopost.config import settings
from autopost.errors import AutopostError, GenerationFailure
from autopost.orchestrator.batch import BatchJob, BatchOrchestrator, BatchRun, JobStatus
from autopost.orchestrator.pipeline import PipelineStateMachine
from autopost.orchestrator.state import PIPELINE_STAGES, Phase, PipelineSession, stage_statuses
from autopost.schemas.context import GOALS, STYLES, TONES, PostContext
from autopost.schemas.stage_params import TypographyParams
from autopost.services.caption_generator import LLMCaptionGenerator
from autopost.services.file_manager import ArtifactStore
from autopost.services.image_generator import GeminiImageGenerator

app = typer.Typer(name="autopost", help="AI-assisted social media post generation")
console = Console()

_STAGE_KEYS = [stage.key for stage in PIPELINE_STAGES]


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Configure logging for every command."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _build_context(
    topic: str,
    platform: str,
    style: str,
    tone: str,
    goal: str,
    aspect_ratio: Optional[str],
    product_image: Optional[str],
    preserve_model: bool,
) -> PostContext:
    for name, value, allowed in (("style", style, STYLES), ("tone", tone, TONES), ("goal", goal, GOALS)):
        if value not in allowed:
            console.print(f"[red]Error:[/red] Invalid {name}: {value}")
            console.print(f"Allowed: {', '.join(allowed)}")
            raise typer.Exit(code=1)
    try:
        return PostContext(
            topic=topic,
            platform=platform,
            style=style,
            tone=tone,
            goal=goal,
            aspect_ratio=aspect_ratio,
            product_image=product_image,
            preserve_model=preserve_model,
        )
    except ValidationError as e:
        console.print(f"[red]Error:[/red] {e.errors()[0]['msg']}")
        raise typer.Exit(code=1)


def _check_credentials() -> None:
    # Fail-fast credential validation
    try:
        validate_credentials()
    except RuntimeError as e:
        console.print(f"[red]Error:[/red] {str(e)}")
        raise typer.Exit(code=1)


@app.command()
def batch(
    topic: str = typer.Argument(..., help="What the posts are about"),
    platform: str = typer.Option("instagram", "--platform", "-p", help="Target platform"),
    style: str = typer.Option("professional", "--style", "-s", help="Visual style"),
    tone: str = typer.Option("inspiring", "--tone", "-t", help="Caption tone"),
    goal: str = typer.Option("engagement", "--goal", "-g", help="Post goal"),
    aspect_ratio: Optional[str] = typer.Option(None, "--aspect-ratio", "-a", help="Image aspect ratio"),
    quantity: int = typer.Option(3, "--quantity", "-n", help="Number of variations"),
    model_description: Optional[str] = typer.Option(
        None, "--model-description", help="Person to keep consistent across variations"
    ),
    product_image: Optional[str] = typer.Option(
        None, "--product-image", help="Path or URL of a product reference image"
    ),
    preserve_model: bool = typer.Option(
        False, "--preserve-model", help="Treat the reference image as a person to preserve"
    ),
    retry_failed: bool = typer.Option(
        False, "--retry-failed", help="Retry each failed job once after the run"
    ),
):
    """Generate several independent variations of one post.

    Jobs run one at a time with a short delay between them. Press Ctrl-C to
    stop after the job in progress. With --retry-failed, every job that
    ended in error is regenerated once on its own after the run.
    """
    if not 1 <= quantity <= settings.batch.max_quantity:
        console.print(
            f"[red]Error:[/red] quantity must be between 1 and {settings.batch.max_quantity}"
        )
        raise typer.Exit(code=1)
    context = _build_context(
        topic, platform, style, tone, goal, aspect_ratio, product_image, preserve_model
    )
    _check_credentials()
    asyncio.run(_batch_async(context, quantity, model_description, retry_failed))


def _job_table(run: BatchRun) -> Table:
    table = Table(show_header=True, header_style="bold blue")
    table.add_column("#", style="dim")
    table.add_column("Caption")
    table.add_column("Status")
    table.add_column("Artifact / Error")

    for job in run.jobs:
        caption = job.caption if len(job.caption) <= 50 else job.caption[:47] + "..."
        color = _get_status_color(job.status)
        detail = job.artifact or job.error_detail or ""
        table.add_row(str(job.index + 1), caption, f"[{color}]{job.status.value}[/{color}]", detail)
    return table


async def _retry_failed_jobs(
    orchestrator: BatchOrchestrator, run: BatchRun
) -> List[Tuple[int, Optional[GenerationFailure]]]:
    """Retry every failed job once, in index order, and report each outcome.

    Returns:
        (job index, failure or None) for each retried job
    """
    outcomes = []
    failed = [job.index for job in run.jobs if job.status is JobStatus.ERROR]
    for index in failed:
        if run.cancelled:
            break
        try:
            job = await orchestrator.retry(run, index)
        except GenerationFailure as e:
            console.print(f"[red]\u2717 Retry of job {index + 1} failed:[/red] {str(e)}")
            outcomes.append((index, e))
        else:
            console.print(f"[green]\u2713[/green] Retry of job {index + 1} succeeded: {job.artifact}")
            outcomes.append((index, None))
    return outcomes


async def _batch_async(
    context: PostContext,
    quantity: int,
    model_description: Optional[str],
    retry_failed: bool = False,
):
    """Async implementation of batch command."""
    live: Optional[Live] = None

    def progress_callback(run: BatchRun, _job: BatchJob):
        if live is not None:
            live.update(_job_table(run))

    store = ArtifactStore()
    orchestrator = BatchOrchestrator(
        generator=GeminiImageGenerator(store),
        caption_generator=LLMCaptionGenerator(),
        progress_callback=progress_callback,
    )

    try:
        with console.status("[bold green]Generating captions..."):
            run = await orchestrator.launch(context, quantity, model_description)
    except AutopostError as e:
        console.print(f"[red]\u2717 Launch failed:[/red] {str(e)}")
        raise typer.Exit(code=1)

    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, orchestrator.cancel, run)
    except NotImplementedError:
        # Windows event loops have no signal handlers; Ctrl-C aborts instead
        pass

    with Live(_job_table(run), console=console, refresh_per_second=4) as live:
        try:
            await orchestrator.advance(run)
            if retry_failed and not run.cancelled:
                await _retry_failed_jobs(orchestrator, run)
        finally:
            try:
                loop.remove_signal_handler(signal.SIGINT)
            except NotImplementedError:
                pass
            live.update(_job_table(run))

    summary = orchestrator.summarize(run)
    if summary.cancelled:
        console.print(f"[yellow]Batch cancelled:[/yellow] {summary.describe()}")
    else:
        console.print(f"[green]\u2713[/green] Batch complete: {summary.describe()}")

    for job in orchestrator.done_jobs(run):
        console.print(f"[green]{job.index + 1}.[/green] {job.artifact}")
        console.print(f"   {job.caption}")

    for job in run.jobs:
        if job.status is JobStatus.ERROR:
            console.print(f"[red]{job.index + 1}.[/red] {job.error_detail}")

    if summary.failed:
        if not retry_failed:
            console.print("Use --retry-failed to retry failed jobs once after the run")
        raise typer.Exit(code=1)


@app.command()
def pipeline(
    topic: str = typer.Argument(..., help="What the post is about"),
    platform: str = typer.Option("instagram", "--platform", "-p", help="Target platform"),
    style: str = typer.Option("professional", "--style", "-s", help="Visual style"),
    tone: str = typer.Option("inspiring", "--tone", "-t", help="Caption tone"),
    goal: str = typer.Option("engagement", "--goal", "-g", help="Post goal"),
    aspect_ratio: Optional[str] = typer.Option(None, "--aspect-ratio", "-a", help="Image aspect ratio"),
    product_image: Optional[str] = typer.Option(
        None, "--product-image", help="Path or URL of a product reference image"
    ),
    preserve_model: bool = typer.Option(
        False, "--preserve-model", help="Treat the reference image as a person to preserve"
    ),
    skip: List[str] = typer.Option([], "--skip", help="Stage key to skip (repeatable)"),
    finish_after: Optional[str] = typer.Option(
        None, "--finish-after", help="Stop after this stage and use its output"
    ),
    text: str = typer.Option("", "--text", help="Text overlay for the typography stage"),
):
    """Run the creative pipeline for one post.

    Generates a caption, then runs base scene, composition, color grading and
    typography in order, printing the final image handle.
    """
    for key in [*skip, *([finish_after] if finish_after else [])]:
        if key not in _STAGE_KEYS:
            console.print(f"[red]Error:[/red] Unknown stage: {key}")
            console.print(f"Allowed: {', '.join(_STAGE_KEYS)}")
            raise typer.Exit(code=1)
    if _STAGE_KEYS[0] in skip:
        console.print(f"[red]Error:[/red] Stage {_STAGE_KEYS[0]} cannot be skipped")
        raise typer.Exit(code=1)

    context = _build_context(
        topic, platform, style, tone, goal, aspect_ratio, product_image, preserve_model
    )
    _check_credentials()
    try:
        asyncio.run(_pipeline_async(context, set(skip), finish_after, text))
    except KeyboardInterrupt:
        console.print()
        console.print("[yellow]Pipeline interrupted.[/yellow]")
        raise typer.Exit(code=130)


def _print_stages(session: PipelineSession) -> None:
    marks = {"done": "[green]\u2713[/green]", "skipped": "[dim]-[/dim]",
             "active": "[yellow]>[/yellow]", "pending": "[dim].[/dim]"}
    line = "  ".join(f"{marks[status.value]} {stage.label}" for stage, status in stage_statuses(session))
    console.print(line)


async def _pipeline_async(
    context: PostContext, skip: set[str], finish_after: Optional[str], text: str
):
    """Async implementation of pipeline command."""
    store = ArtifactStore()
    machine = PipelineStateMachine(generator=GeminiImageGenerator(store))

    try:
        with console.status("[bold green]Generating caption..."):
            caption = await LLMCaptionGenerator().generate_one(context)
        console.print(f"[green]Caption:[/green] {caption}")

        session = machine.start(context, caption)
        while session.phase is Phase.RUNNING:
            stage = session.active_stage
            if stage.key in skip:
                session = machine.skip(session)
            else:
                params = TypographyParams(text=text) if stage.key == "typography" else None
                with console.status(f"[bold green]{stage.label}..."):
                    session = await machine.run_active_stage(session, params)
            _print_stages(session)

            if stage.key == finish_after and session.phase is Phase.RUNNING:
                session = machine.finish_early(session)

    except GenerationFailure as e:
        console.print()
        console.print(f"[red]\u2717 Generation failed:[/red] {str(e)}")
        raise typer.Exit(code=1)

    except AutopostError as e:
        console.print(f"[red]Error:[/red] {str(e)}")
        raise typer.Exit(code=1)

    output = machine.output(session)
    console.print(f"[green]\u2713[/green] Pipeline complete!")
    console.print(f"[green]Output:[/green] {output}")


@app.command()
def stages():
    """List the creative pipeline stages in order."""
    table = Table(show_header=True, header_style="bold blue")
    table.add_column("#", style="dim")
    table.add_column("Key")
    table.add_column("Label")
    table.add_column("Skippable")

    for i, stage in enumerate(PIPELINE_STAGES):
        table.add_row(str(i), stage.key, stage.label, "no" if i == 0 else "yes")

    console.print(table)


def _get_status_color(status: JobStatus) -> str:
    """Get Rich color for a batch job status.

    Color coding:
    - done: green
    - error: red
    - generating: yellow
    - pending: dim
    """
    if status is JobStatus.DONE:
        return "green"
    elif status is JobStatus.ERROR:
        return "red"
    elif status is JobStatus.GENERATING:
        return "yellow"
    else:
        return "dim"
