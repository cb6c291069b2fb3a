import asyncio
import pytest
from unittest.mock import AsyncMock

from kb_ingest.errors import AlreadyProcessingError, InvalidInputError, JobFinishedError, NotFoundError
from kb_ingest.models.job import JobStatus, JobType
from kb_ingest.services.job_processor import JobProcessor


def test_create_job_records_pending_job(processor, store, ingest_metadata):
    submission = processor.create_job(JobType.INGEST_PDF, ingest_metadata)

    assert submission.status == JobStatus.PENDING
    job = store.get(submission.job_id)
    assert job.type == JobType.INGEST_PDF
    assert job.metadata["file_id"] == ingest_metadata["file_id"]
    assert job.metadata["options"]["delete_old_chunks"] is False
    assert job.progress is None
    assert job.started_at is None


def test_create_job_accepts_type_value(processor, ingest_metadata):
    submission = processor.create_job("ingest_pdf", ingest_metadata)
    assert processor.get_job(submission.job_id).type == JobType.INGEST_PDF


@pytest.mark.parametrize("metadata", [
    {},
    {"file_url": "https://example.com/a.pdf", "file_id": "uploads/a.pdf"},
    {"file_url": "ftp://example.com/a.pdf"},
    {"file_id": "uploads/a.pdf", "options": {"chunk_size": 100, "chunk_overlap": 100}},
])
def test_create_job_rejects_invalid_metadata(processor, store, metadata):
    with pytest.raises(InvalidInputError):
        processor.create_job(JobType.INGEST_PDF, metadata)
    assert store.list_all() == []


def test_create_job_rejects_unknown_and_unsupported_types(processor, ingest_metadata):
    with pytest.raises(InvalidInputError):
        processor.create_job("transcode_video", ingest_metadata)
    with pytest.raises(InvalidInputError):
        processor.create_job(JobType.BATCH_EMBED, ingest_metadata)


def test_max_concurrent_jobs_must_be_positive(store):
    with pytest.raises(ValueError):
        JobProcessor(store=store, max_concurrent_jobs=0)


@pytest.mark.asyncio
async def test_process_job_runs_pipeline(processor, store, ingest_metadata):
    submission = processor.create_job(JobType.INGEST_PDF, ingest_metadata)
    pipeline = AsyncMock()

    task = processor.process_job(submission.job_id, pipeline)
    assert submission.job_id in processor.active_job_ids
    await task

    pipeline.assert_awaited_once()
    job_arg = pipeline.await_args.args[0]
    assert job_arg.id == submission.job_id
    assert job_arg.status == JobStatus.PROCESSING
    job = store.get(submission.job_id)
    assert job.status == JobStatus.PROCESSING
    assert job.started_at is not None
    await asyncio.sleep(0)
    assert processor.active_job_ids == []


@pytest.mark.asyncio
async def test_process_unknown_job_raises(processor):
    with pytest.raises(NotFoundError):
        processor.process_job("missing", AsyncMock())


@pytest.mark.asyncio
async def test_duplicate_trigger_is_rejected(processor, ingest_metadata):
    submission = processor.create_job(JobType.INGEST_PDF, ingest_metadata)
    release = asyncio.Event()
    calls = []

    async def pipeline(job):
        calls.append(job.id)
        await release.wait()

    task = processor.process_job(submission.job_id, pipeline)
    with pytest.raises(AlreadyProcessingError):
        processor.process_job(submission.job_id, pipeline)

    await asyncio.sleep(0)
    with pytest.raises(AlreadyProcessingError):
        processor.process_job(submission.job_id, pipeline)

    release.set()
    await task
    assert calls == [submission.job_id]


@pytest.mark.asyncio
async def test_finished_job_cannot_be_processed_again(processor, store, ingest_metadata):
    submission = processor.create_job(JobType.INGEST_PDF, ingest_metadata)
    store.update(submission.job_id, {"status": JobStatus.COMPLETED})

    with pytest.raises(JobFinishedError):
        processor.process_job(submission.job_id, AsyncMock())


@pytest.mark.asyncio
async def test_pipeline_exception_fails_job(processor, store, ingest_metadata):
    submission = processor.create_job(JobType.INGEST_PDF, ingest_metadata)
    pipeline = AsyncMock(side_effect=RuntimeError("boom"))

    await processor.process_job(submission.job_id, pipeline)

    job = store.get(submission.job_id)
    assert job.status == JobStatus.FAILED
    assert job.error == "Job failed: boom"
    assert job.completed_at is not None


@pytest.mark.asyncio
async def test_concurrent_jobs_are_bounded(store, ingest_metadata):
    processor = JobProcessor(store=store, max_concurrent_jobs=2)
    running = 0
    peak = 0

    async def pipeline(job):
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        await asyncio.sleep(0.01)
        running -= 1

    tasks = [
        processor.process_job(processor.create_job(JobType.INGEST_PDF, ingest_metadata).job_id, pipeline)
        for _ in range(5)
    ]
    await asyncio.gather(*tasks)

    assert peak == 2
    assert all(job.status == JobStatus.PROCESSING for job in store.list_all())


@pytest.mark.asyncio
async def test_job_cancelled_while_waiting_for_a_slot_never_runs(store, ingest_metadata):
    processor = JobProcessor(store=store, max_concurrent_jobs=1)
    release = asyncio.Event()
    started = []

    async def pipeline(job):
        started.append(job.id)
        await release.wait()

    first = processor.create_job(JobType.INGEST_PDF, ingest_metadata).job_id
    second = processor.create_job(JobType.INGEST_PDF, ingest_metadata).job_id
    first_task = processor.process_job(first, pipeline)
    second_task = processor.process_job(second, pipeline)
    await asyncio.sleep(0)

    processor.cancel(second)
    release.set()
    await asyncio.gather(first_task, second_task)

    assert started == [first]
    assert store.get(second).status == JobStatus.CANCELLED
    assert store.get(second).started_at is None


def test_cancel_marks_job_cancelled(processor, ingest_metadata):
    submission = processor.create_job(JobType.INGEST_PDF, ingest_metadata)

    job = processor.cancel(submission.job_id)

    assert job.status == JobStatus.CANCELLED
    assert job.completed_at is not None


def test_cancel_has_no_effect_on_finished_job(processor, store, ingest_metadata):
    submission = processor.create_job(JobType.INGEST_PDF, ingest_metadata)
    store.update(submission.job_id, {"status": JobStatus.FAILED, "error": "bad pdf"})

    job = processor.cancel(submission.job_id)

    assert job.status == JobStatus.FAILED
    assert job.error == "bad pdf"


def test_save_job_result_keeps_status(processor, store, ingest_metadata):
    submission = processor.create_job(JobType.INGEST_PDF, ingest_metadata)
    store.update(submission.job_id, {"status": JobStatus.PROCESSING})

    job = processor.save_job_result(submission.job_id, {"chunks_processed": 3})

    assert job.result == {"chunks_processed": 3}
    assert job.status == JobStatus.PROCESSING


@pytest.mark.parametrize("final_status", [JobStatus.FAILED, JobStatus.CANCELLED])
def test_save_job_result_refuses_ended_job(processor, store, ingest_metadata, final_status):
    submission = processor.create_job(JobType.INGEST_PDF, ingest_metadata)
    store.update(submission.job_id, {"status": final_status})

    with pytest.raises(JobFinishedError):
        processor.save_job_result(submission.job_id, {"chunks_processed": 3})

    assert store.get(submission.job_id).result is None


def test_status_queries(processor, store, ingest_metadata):
    ids = [processor.create_job(JobType.INGEST_PDF, ingest_metadata).job_id for _ in range(3)]
    store.update(ids[0], {"status": JobStatus.FAILED})

    assert [j.id for j in processor.get_jobs_by_status(JobStatus.FAILED)] == [ids[0]]
    assert [j.id for j in processor.get_jobs_by_status("pending")] == [ids[2], ids[1]]
    assert [j.id for j in processor.get_recent_jobs(limit=2)] == [ids[2], ids[1]]


def test_find_and_fail_stuck_jobs(processor, store, ingest_metadata, age_job):
    stuck = processor.create_job(JobType.INGEST_PDF, ingest_metadata).job_id
    fresh = processor.create_job(JobType.INGEST_PDF, ingest_metadata).job_id
    done = processor.create_job(JobType.INGEST_PDF, ingest_metadata).job_id
    store.update(stuck, {"status": JobStatus.PROCESSING})
    store.update(done, {"status": JobStatus.COMPLETED})
    age_job(stuck, 3600)
    age_job(done, 3600)

    assert [j.id for j in processor.find_stuck_jobs(600)] == [stuck]

    failed = processor.fail_stuck_jobs(600)

    assert [j.id for j in failed] == [stuck]
    assert failed[0].status == JobStatus.FAILED
    assert "watchdog" in failed[0].error
    assert store.get(fresh).status == JobStatus.PENDING
    assert store.get(done).status == JobStatus.COMPLETED


@pytest.mark.asyncio
async def test_wait_for_active(processor, ingest_metadata):
    finished = []

    async def pipeline(job):
        await asyncio.sleep(0.01)
        finished.append(job.id)

    for _ in range(3):
        processor.process_job(processor.create_job(JobType.INGEST_PDF, ingest_metadata).job_id, pipeline)

    await processor.wait_for_active()

    assert len(finished) == 3


def test_get_job_is_stable_between_writes(processor, ingest_metadata):
    submission = processor.create_job(JobType.INGEST_PDF, ingest_metadata)

    first = processor.get_job(submission.job_id).model_dump_json()
    second = processor.get_job(submission.job_id).model_dump_json()

    assert first == second
