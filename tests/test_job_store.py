import time
import pytest

from kb_ingest.config import Settings
from kb_ingest.errors import NotFoundError
from kb_ingest.models.job import Job, JobProgress, JobStatus, JobType, ProgressStep
from kb_ingest.services.job_store import InMemoryJobStore, create_job_store


def _new_job(**kwargs) -> Job:
    return Job(type=JobType.INGEST_PDF, metadata={"file_id": "uploads/a.pdf"}, **kwargs)


def test_create_and_get(store):
    job = store.create(_new_job())
    fetched = store.get(job.id)

    assert fetched.id == job.id
    assert fetched.status == JobStatus.PENDING
    assert fetched.metadata == {"file_id": "uploads/a.pdf"}


def test_get_returns_copies(store):
    job = store.create(_new_job())
    fetched = store.get(job.id)
    fetched.metadata["file_id"] = "changed"

    assert store.get(job.id).metadata["file_id"] == "uploads/a.pdf"


def test_duplicate_create_is_rejected(store):
    job = store.create(_new_job())
    with pytest.raises(ValueError):
        store.create(job)


def test_unknown_job_raises_not_found(store):
    with pytest.raises(NotFoundError):
        store.get("missing")
    with pytest.raises(NotFoundError):
        store.update("missing", {"status": JobStatus.FAILED})


def test_update_merges_fields_and_refreshes_timestamp(store):
    job = store.create(_new_job())
    time.sleep(0.01)
    progress = JobProgress(step=ProgressStep.PARSING, percentage=30, message="Parsing document...")
    updated = store.update(job.id, {"status": JobStatus.PROCESSING, "progress": progress})

    assert updated.status == JobStatus.PROCESSING
    assert updated.progress.step == ProgressStep.PARSING
    assert updated.metadata == job.metadata
    assert updated.created_at == job.created_at
    assert updated.updated_at > job.updated_at


def test_update_cannot_change_id(store):
    job = store.create(_new_job())
    updated = store.update(job.id, {"id": "other", "error": "x"})
    assert updated.id == job.id


def test_list_recent_is_newest_first(store):
    jobs = [store.create(_new_job()) for _ in range(4)]

    recent = store.list_recent(3)
    assert [j.id for j in recent] == [jobs[3].id, jobs[2].id, jobs[1].id]
    assert store.list_recent(0) == []


def test_list_by_status(store):
    first = store.create(_new_job())
    second = store.create(_new_job())
    store.update(second.id, {"status": JobStatus.FAILED})

    assert [j.id for j in store.list_by_status(JobStatus.FAILED)] == [second.id]
    assert [j.id for j in store.list_by_status(JobStatus.PENDING)] == [first.id]
    assert len(store.list_all()) == 2


def test_create_job_store_selects_backend():
    assert isinstance(create_job_store(Settings(JOB_STORE_BACKEND="memory")), InMemoryJobStore)
    with pytest.raises(ValueError):
        create_job_store(Settings(JOB_STORE_BACKEND="sqlite"))
