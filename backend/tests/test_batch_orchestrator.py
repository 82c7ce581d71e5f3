"""Tests for the sequential batch orchestrator.

Usage:
    python -m pytest backend/tests/test_batch_orchestrator.py -v
"""

import pytest

from autopost.errors import ConfigurationError, GenerationErrorCode, GenerationFailure
from autopost.orchestrator.batch import BatchOrchestrator, JobStatus
from autopost.schemas.context import PostContext

from conftest import FakeCaptionGenerator, FakeGenerator

DONE, ERROR, PENDING, GENERATING = (
    JobStatus.DONE,
    JobStatus.ERROR,
    JobStatus.PENDING,
    JobStatus.GENERATING,
)


def statuses(run):
    return [job.status for job in run.jobs]


@pytest.fixture
def orchestrator(generator, caption_generator, sleep) -> BatchOrchestrator:
    return BatchOrchestrator(
        generator, caption_generator, inter_job_delay=3.0, max_quantity=10, sleep=sleep
    )


# ---------------------------------------------------------------------------
# launch
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_launch_creates_pending_jobs_with_distinct_captions(
    orchestrator, generator, caption_generator, context
):
    run = await orchestrator.launch(context, 3)

    assert statuses(run) == [PENDING] * 3
    assert [job.index for job in run.jobs] == [0, 1, 2]
    assert len({job.caption for job in run.jobs}) == 3
    assert run.cursor == 0
    assert not run.cancelled
    assert caption_generator.calls == 1
    assert generator.calls == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("quantity", [0, -1, 11])
async def test_launch_rejects_quantity_out_of_range(orchestrator, caption_generator, context, quantity):
    with pytest.raises(ConfigurationError):
        await orchestrator.launch(context, quantity)
    assert caption_generator.calls == 0


@pytest.mark.asyncio
async def test_launch_rejects_incomplete_context(orchestrator):
    with pytest.raises(ConfigurationError, match="goal"):
        await orchestrator.launch(PostContext(topic="coffee", style="casual", tone="funny"), 2)


@pytest.mark.asyncio
async def test_launch_rejects_duplicate_captions(generator, sleep, context):
    captions = FakeCaptionGenerator(captions=["Fresh brew #coffee", "fresh  BREW #coffee", "Other"])
    orchestrator = BatchOrchestrator(generator, captions, sleep=sleep)

    with pytest.raises(GenerationFailure) as exc_info:
        await orchestrator.launch(context, 3)
    assert exc_info.value.code is GenerationErrorCode.INVALID_RESPONSE


@pytest.mark.asyncio
async def test_launch_rejects_wrong_variation_count(generator, sleep, context):
    orchestrator = BatchOrchestrator(
        generator, FakeCaptionGenerator(captions=["one", "two"]), sleep=sleep
    )

    with pytest.raises(GenerationFailure) as exc_info:
        await orchestrator.launch(context, 3)
    assert exc_info.value.code is GenerationErrorCode.INVALID_RESPONSE


@pytest.mark.asyncio
async def test_launch_rejects_empty_caption(generator, sleep, context):
    orchestrator = BatchOrchestrator(
        generator, FakeCaptionGenerator(captions=["one", "  "]), sleep=sleep
    )

    with pytest.raises(GenerationFailure):
        await orchestrator.launch(context, 2)


@pytest.mark.asyncio
async def test_launch_adds_format_and_character_consistency(orchestrator, context):
    run = await orchestrator.launch(context, 2, model_description="Woman in her 30s, curly red hair")

    prompt = run.jobs[1].request.prompt
    assert "CHARACTER CONSISTENCY" in prompt
    assert "curly red hair" in prompt
    assert "VARIATION #2" in prompt
    assert prompt.endswith("(Format: 1:1)")
    assert run.jobs[1].request.auxiliary == {"batch_index": 1, "owner_id": run.run_id}


@pytest.mark.asyncio
async def test_launch_passes_product_image_as_reference(orchestrator, context):
    product_context = context.model_copy(update={"product_image": "uploads/mug.png"})

    run = await orchestrator.launch(product_context, 2)

    for job in run.jobs:
        assert job.request.reference_artifacts == ("uploads/mug.png",)
        assert job.request.prompt.startswith("IMPORTANT: The attached image contains the PRODUCT")


# ---------------------------------------------------------------------------
# advance
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_jobs_run_in_index_order(orchestrator, generator, context):
    run = await orchestrator.launch(context, 4)
    observed = []
    generator.on_call = lambda request: observed.append(statuses(run))

    await orchestrator.advance(run)

    for i, seen in enumerate(observed):
        assert all(status in (DONE, ERROR) for status in seen[:i])
        assert seen[i] is GENERATING
        assert seen[i + 1:] == [PENDING] * (len(seen) - i - 1)
    assert [r.auxiliary["batch_index"] for r in generator.requests] == [0, 1, 2, 3]


@pytest.mark.asyncio
async def test_delay_between_jobs_only(orchestrator, sleep, context):
    run = await orchestrator.launch(context, 3)

    await orchestrator.advance(run)

    assert sleep.delays == [3.0, 3.0]
    assert run.cursor == 3


@pytest.mark.asyncio
async def test_failed_job_does_not_abort_run(caption_generator, sleep, context):
    generator = FakeGenerator(fail_on={1})
    orchestrator = BatchOrchestrator(generator, caption_generator, inter_job_delay=1.0, sleep=sleep)
    run = await orchestrator.launch(context, 3)

    await orchestrator.advance(run)

    assert statuses(run) == [DONE, ERROR, DONE]
    assert run.jobs[0].artifact == "A1"
    assert run.jobs[1].artifact is None
    assert run.jobs[1].error_code is GenerationErrorCode.QUOTA_EXCEEDED
    assert "quota exhausted" in run.jobs[1].error_detail
    assert run.jobs[2].artifact == "A3"


@pytest.mark.asyncio
async def test_unexpected_generator_error_is_recorded_and_run_continues(
    caption_generator, sleep, context
):
    generator = FakeGenerator()

    def disk_full(request):
        if request.auxiliary["batch_index"] == 1:
            raise OSError(28, "No space left on device")

    generator.on_call = disk_full
    orchestrator = BatchOrchestrator(generator, caption_generator, inter_job_delay=1.0, sleep=sleep)
    run = await orchestrator.launch(context, 3)

    await orchestrator.advance(run)

    assert statuses(run) == [DONE, ERROR, DONE]
    assert run.cursor == 3
    assert not run.in_flight
    assert run.jobs[1].error_code is GenerationErrorCode.API_ERROR
    assert "No space left on device" in run.jobs[1].error_detail
    assert run.jobs[2].artifact == "A3"

    generator.on_call = None
    await orchestrator.retry(run, 1)
    assert statuses(run) == [DONE, DONE, DONE]


@pytest.mark.asyncio
async def test_advance_rejects_overlapping_calls(orchestrator, context):
    run = await orchestrator.launch(context, 2)
    run.in_flight = True

    with pytest.raises(ConfigurationError):
        await orchestrator.advance(run)


@pytest.mark.asyncio
async def test_advance_on_completed_run_is_noop(orchestrator, generator, context):
    run = await orchestrator.launch(context, 2)
    await orchestrator.advance(run)

    await orchestrator.advance(run)

    assert generator.calls == 2


# ---------------------------------------------------------------------------
# cancel
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
@pytest.mark.parametrize("boundary", [0, 1, 2])
async def test_cancellation_between_jobs(generator, caption_generator, sleep, context, boundary):
    orchestrator = None

    def cancel_after_boundary(run, job):
        if job.index == boundary and job.is_terminal:
            orchestrator.cancel(run)

    orchestrator = BatchOrchestrator(
        generator,
        caption_generator,
        inter_job_delay=3.0,
        progress_callback=cancel_after_boundary,
        sleep=sleep,
    )
    run = await orchestrator.launch(context, 4)

    await orchestrator.advance(run)

    assert statuses(run)[: boundary + 1] == [DONE] * (boundary + 1)
    assert statuses(run)[boundary + 1:] == [PENDING] * (3 - boundary)
    assert generator.calls == boundary + 1
    assert len(sleep.delays) == boundary
    assert run.cancelled


@pytest.mark.asyncio
async def test_cancel_during_in_flight_job_keeps_its_result(orchestrator, generator, context):
    run = await orchestrator.launch(context, 3)
    generator.on_call = lambda request: orchestrator.cancel(run)

    await orchestrator.advance(run)

    assert statuses(run) == [DONE, PENDING, PENDING]
    assert run.jobs[0].artifact == "A1"


@pytest.mark.asyncio
async def test_cancel_during_delay_stops_before_next_job(generator, caption_generator, context):
    orchestrator = None
    run = None
    delays = []

    async def cancelling_sleep(delay):
        delays.append(delay)
        orchestrator.cancel(run)

    orchestrator = BatchOrchestrator(
        generator, caption_generator, inter_job_delay=3.0, sleep=cancelling_sleep
    )
    run = await orchestrator.launch(context, 3)

    await orchestrator.advance(run)

    assert statuses(run) == [DONE, PENDING, PENDING]
    assert run.cursor == 1
    assert generator.calls == 1
    assert delays == [3.0]
    assert orchestrator.summarize(run).describe() == "1 done, 2 not attempted"


@pytest.mark.asyncio
async def test_cancel_before_advance_runs_nothing(orchestrator, generator, context):
    run = await orchestrator.launch(context, 3)
    orchestrator.cancel(run)

    await orchestrator.advance(run)

    assert generator.calls == 0
    assert orchestrator.summarize(run).describe() == "0 done, 3 not attempted"


# ---------------------------------------------------------------------------
# retry
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_batch_of_three_with_retry(caption_generator, sleep, context):
    generator = FakeGenerator(fail_on={1})
    orchestrator = BatchOrchestrator(generator, caption_generator, sleep=sleep)
    run = await orchestrator.launch(context, 3)
    assert len({job.caption for job in run.jobs}) == 3

    await orchestrator.advance(run)
    assert statuses(run) == [DONE, ERROR, DONE]

    job = await orchestrator.retry(run, 1)

    assert job is run.jobs[1]
    assert statuses(run) == [DONE, DONE, DONE]
    assert run.jobs[1].artifact == "A4"
    assert run.jobs[1].error_detail is None
    assert run.cursor == 3


@pytest.mark.asyncio
async def test_retry_changes_only_the_retried_job(caption_generator, sleep, context):
    generator = FakeGenerator(fail_on={1, 3})
    orchestrator = BatchOrchestrator(generator, caption_generator, sleep=sleep)
    run = await orchestrator.launch(context, 5)
    await orchestrator.advance(run)
    before = orchestrator.snapshot(run)
    cursor = run.cursor

    await orchestrator.retry(run, 3)
    after = orchestrator.snapshot(run)

    for i in (0, 1, 2, 4):
        assert after[i] == before[i]
    assert after[3] != before[3]
    assert after[3].status is DONE
    assert run.cursor == cursor


@pytest.mark.asyncio
async def test_retry_failure_surfaces_and_keeps_error(caption_generator, sleep, context):
    generator = FakeGenerator(fail_on={0, 2})
    orchestrator = BatchOrchestrator(generator, caption_generator, sleep=sleep)
    run = await orchestrator.launch(context, 2)
    await orchestrator.advance(run)

    with pytest.raises(GenerationFailure):
        await orchestrator.retry(run, 0)

    assert statuses(run) == [ERROR, DONE]
    assert "call 2" in run.jobs[0].error_detail
    assert not run.in_flight


@pytest.mark.asyncio
async def test_retry_requires_error_status(orchestrator, context):
    run = await orchestrator.launch(context, 2)

    with pytest.raises(ConfigurationError):
        await orchestrator.retry(run, 0)

    await orchestrator.advance(run)
    with pytest.raises(ConfigurationError):
        await orchestrator.retry(run, 1)
    with pytest.raises(ConfigurationError):
        await orchestrator.retry(run, 5)


# ---------------------------------------------------------------------------
# snapshot / export / summary
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_snapshot_is_detached_copy(orchestrator, context):
    run = await orchestrator.launch(context, 2)

    snapshot = orchestrator.snapshot(run)
    snapshot[0].status = JobStatus.DONE

    assert run.jobs[0].status is PENDING


@pytest.mark.asyncio
async def test_done_jobs_in_index_order(caption_generator, sleep, context):
    generator = FakeGenerator(fail_on={1})
    orchestrator = BatchOrchestrator(generator, caption_generator, sleep=sleep)
    run = await orchestrator.launch(context, 4)
    await orchestrator.advance(run)

    done = orchestrator.done_jobs(run)

    assert [job.index for job in done] == [0, 2, 3]
    assert [job.artifact for job in done] == ["A1", "A3", "A4"]


@pytest.mark.asyncio
async def test_summary_counts(caption_generator, sleep, context):
    generator = FakeGenerator(fail_on={1})
    orchestrator = BatchOrchestrator(generator, caption_generator, sleep=sleep)
    run = await orchestrator.launch(context, 3)
    await orchestrator.advance(run)

    summary = orchestrator.summarize(run)

    assert (summary.total, summary.done, summary.failed, summary.not_attempted) == (3, 2, 1, 0)
    assert not summary.cancelled
    assert summary.describe() == "2 done, 1 failed"


@pytest.mark.asyncio
async def test_progress_callback_reports_each_status_change(generator, caption_generator, sleep, context):
    events = []
    orchestrator = BatchOrchestrator(
        generator,
        caption_generator,
        progress_callback=lambda run, job: events.append((job.index, job.status)),
        sleep=sleep,
    )
    run = await orchestrator.launch(context, 2)

    await orchestrator.advance(run)

    assert events == [(0, GENERATING), (0, DONE), (1, GENERATING), (1, DONE)]
