"""Sequential batch orchestrator for independent post variations.

Drives N generation jobs one at a time against a rate-limited Generator:
- One caption call up front produces every job's caption and image prompt
- Jobs run strictly in index order with a fixed delay between them
- A failed job is recorded and the run continues with the next one
- Cancellation is cooperative, checked only between jobs
- A failed job can be retried on its own without touching its siblings
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Tuple

from autopost.config import settings
from autopost.errors import (
    ConfigurationError,
    GenerationErrorCode,
    GenerationFailure,
)
from autopost.pipeline.variations import build_variation_request
from autopost.schemas.context import PostContext
from autopost.schemas.generation import GenerationRequest
from autopost.services.generation import CaptionGenerator, Generator

logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    PENDING = "pending"
    GENERATING = "generating"
    DONE = "done"
    ERROR = "error"


@dataclass
class BatchJob:
    """One variation in a batch. Identity is index, stable for the job's lifetime."""

    index: int
    caption: str
    request: GenerationRequest
    status: JobStatus = JobStatus.PENDING
    artifact: Optional[str] = None
    error_detail: Optional[str] = None
    error_code: Optional[GenerationErrorCode] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (JobStatus.DONE, JobStatus.ERROR)


class CancellationToken:
    """Cooperative cancellation flag checked by the batch loop between jobs."""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


@dataclass
class BatchRun:
    """State of one batch, owned by the orchestrator for the run's duration.

    Jobs with index < cursor are never Pending.
    """

    context: PostContext
    jobs: List[BatchJob]
    cursor: int = 0
    token: CancellationToken = field(default_factory=CancellationToken, compare=False)
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    in_flight: bool = field(default=False, compare=False)

    @property
    def cancelled(self) -> bool:
        return self.token.cancelled


@dataclass(frozen=True)
class BatchSummary:
    total: int
    done: int
    failed: int
    not_attempted: int
    cancelled: bool

    def describe(self) -> str:
        text = f"{self.done} done"
        if self.failed:
            text += f", {self.failed} failed"
        if self.not_attempted:
            text += f", {self.not_attempted} not attempted"
        return text


def _normalize_caption(caption: str) -> str:
    return " ".join(caption.split()).casefold()


class BatchOrchestrator:
    """Launches and drives BatchRuns against a Generator and CaptionGenerator."""

    def __init__(
        self,
        generator: Generator,
        caption_generator: CaptionGenerator,
        inter_job_delay: Optional[float] = None,
        max_quantity: Optional[int] = None,
        progress_callback: Optional[Callable[[BatchRun, BatchJob], None]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            generator: Image generation collaborator
            caption_generator: Caption/variation collaborator
            inter_job_delay: Seconds between two jobs; defaults to settings.batch.inter_job_delay
            max_quantity: Largest allowed batch; defaults to settings.batch.max_quantity
            progress_callback: Optional callback invoked after every job status change
            sleep: Awaitable used for the inter-job delay
        """
        self._generator = generator
        self._caption_generator = caption_generator
        self._delay = settings.batch.inter_job_delay if inter_job_delay is None else inter_job_delay
        self._max_quantity = max_quantity or settings.batch.max_quantity
        self._progress_callback = progress_callback
        self._sleep = sleep

    def _notify(self, run: BatchRun, job: BatchJob) -> None:
        if self._progress_callback:
            self._progress_callback(run, job)

    async def launch(
        self,
        context: PostContext,
        quantity: int,
        model_description: Optional[str] = None,
    ) -> BatchRun:
        """Create a run of `quantity` Pending jobs.

        A single caption call produces every job's caption and image prompt.
        No image is generated here.

        Args:
            context: Post configuration shared by all jobs
            quantity: Number of variations (1..max_quantity)
            model_description: Optional description of a person to keep
                consistent across all variations

        Raises:
            ConfigurationError: If quantity is out of range or configuration is incomplete
            GenerationFailure: If the caption call fails or returns an unusable set
        """
        if not 1 <= quantity <= self._max_quantity:
            raise ConfigurationError(
                f"Batch quantity must be between 1 and {self._max_quantity}, got {quantity}"
            )
        missing = context.missing_fields()
        if missing:
            raise ConfigurationError(f"Configuration incomplete, missing: {', '.join(missing)}")

        variations = await self._caption_generator.generate_many(context, quantity)

        if len(variations) != quantity:
            raise GenerationFailure(
                f"Caption generator returned {len(variations)} variations, expected {quantity}",
                GenerationErrorCode.INVALID_RESPONSE,
            )
        normalized = [_normalize_caption(v.caption) for v in variations]
        if any(not caption for caption in normalized):
            raise GenerationFailure(
                "Caption generator returned an empty caption",
                GenerationErrorCode.INVALID_RESPONSE,
            )
        if len(set(normalized)) != quantity:
            raise GenerationFailure(
                "Caption generator returned duplicate captions",
                GenerationErrorCode.INVALID_RESPONSE,
            )

        run_id = uuid.uuid4().hex
        jobs = [
            BatchJob(
                index=i,
                caption=variation.caption.strip(),
                request=build_variation_request(
                    context, variation, i, model_description, owner_id=run_id
                ),
            )
            for i, variation in enumerate(variations)
        ]
        run = BatchRun(context=context, jobs=jobs, run_id=run_id)
        logger.info(f"Batch {run.run_id}: launched {quantity} job(s) for topic {context.topic!r}")
        return run

    async def _generate_job(self, run: BatchRun, job: BatchJob) -> Optional[GenerationFailure]:
        """Run one Generator call for a job and record the outcome in place.

        Returns:
            The failure recorded on the job, or None on success
        """
        job.status = JobStatus.GENERATING
        job.error_detail = None
        job.error_code = None
        self._notify(run, job)
        logger.debug(f"Batch {run.run_id}: job {job.index} generating")

        job_start = time.monotonic()
        try:
            job.artifact = await self._generator.generate(job.request)
        except GenerationFailure as e:
            job.status = JobStatus.ERROR
            job.error_detail = str(e)
            job.error_code = e.code
            logger.warning(
                f"Batch {run.run_id}: job {job.index} failed after "
                f"{time.monotonic() - job_start:.2f}s: {e}"
            )
            self._notify(run, job)
            return e
        except Exception as e:
            # A job never stays Generating once its call has ended
            failure = GenerationFailure(f"{type(e).__name__}: {e}", GenerationErrorCode.API_ERROR)
            failure.__cause__ = e
            job.status = JobStatus.ERROR
            job.error_detail = str(failure)
            job.error_code = failure.code
            logger.error(
                f"Batch {run.run_id}: job {job.index} raised unexpectedly after "
                f"{time.monotonic() - job_start:.2f}s: {failure}",
                exc_info=True,
            )
            self._notify(run, job)
            return failure

        job.status = JobStatus.DONE
        logger.info(
            f"Batch {run.run_id}: job {job.index} done in {time.monotonic() - job_start:.2f}s"
        )
        self._notify(run, job)
        return None

    async def advance(self, run: BatchRun) -> BatchRun:
        """Drive the run until every job is terminal or the run is cancelled.

        Job failures are recorded on the job and never abort the loop.
        Cancellation is observed before each job and around each delay, so
        an in-flight job always finishes and keeps its result.

        Raises:
            ConfigurationError: If a Generator call for this run is already in flight
        """
        if run.in_flight:
            raise ConfigurationError(f"Batch {run.run_id} is already generating")

        last_index = len(run.jobs) - 1
        run.in_flight = True
        try:
            while run.cursor < len(run.jobs) and not run.cancelled:
                job = run.jobs[run.cursor]
                await self._generate_job(run, job)

                if run.cursor < last_index and not run.cancelled:
                    logger.debug(f"Batch {run.run_id}: waiting {self._delay}s before next job")
                    await self._sleep(self._delay)

                run.cursor += 1
        finally:
            run.in_flight = False

        summary = self.summarize(run)
        if run.cancelled:
            logger.info(f"Batch {run.run_id}: cancelled ({summary.describe()})")
        else:
            logger.info(f"Batch {run.run_id}: complete ({summary.describe()})")
        return run

    def cancel(self, run: BatchRun) -> None:
        """Stop the run from starting new jobs. An in-flight job still completes."""
        run.token.cancel()
        logger.info(f"Batch {run.run_id}: cancellation requested at job {run.cursor}")

    async def retry(self, run: BatchRun, index: int) -> BatchJob:
        """Regenerate one failed job outside the main loop.

        Only jobs[index] changes; the cursor and all other jobs are untouched.

        Raises:
            ConfigurationError: If index is out of range, the job is not in
                Error, or another Generator call for this run is in flight
            GenerationFailure: If the retry fails again (the job stays Error
                with the new detail)
        """
        if not 0 <= index < len(run.jobs):
            raise ConfigurationError(f"Batch {run.run_id} has no job {index}")
        job = run.jobs[index]
        if job.status is not JobStatus.ERROR:
            raise ConfigurationError(
                f"Only failed jobs can be retried (job {index} is {job.status.value})"
            )
        if run.in_flight:
            raise ConfigurationError(f"Batch {run.run_id} is already generating")

        logger.info(f"Batch {run.run_id}: retrying job {index}")
        run.in_flight = True
        try:
            failure = await self._generate_job(run, job)
        finally:
            run.in_flight = False
        if failure is not None:
            raise failure
        return job

    def snapshot(self, run: BatchRun) -> Tuple[BatchJob, ...]:
        """Return copies of the jobs, in index order, for progress display."""
        return tuple(replace(job) for job in run.jobs)

    def done_jobs(self, run: BatchRun) -> List[BatchJob]:
        """Return copies of the Done jobs in index order (export surface)."""
        return [replace(job) for job in run.jobs if job.status is JobStatus.DONE]

    def summarize(self, run: BatchRun) -> BatchSummary:
        done = sum(1 for job in run.jobs if job.status is JobStatus.DONE)
        failed = sum(1 for job in run.jobs if job.status is JobStatus.ERROR)
        return BatchSummary(
            total=len(run.jobs),
            done=done,
            failed=failed,
            not_attempted=sum(1 for job in run.jobs if job.status is JobStatus.PENDING),
            cancelled=run.cancelled,
        )
