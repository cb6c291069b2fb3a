import pytest
from datetime import datetime, timedelta

from kb_ingest.services.job_processor import JobProcessor
from kb_ingest.services.job_store import InMemoryJobStore


def pytest_configure(config):
    config.addinivalue_line("markers", "integration: needs a running Redis server")


@pytest.fixture
def store():
    """Provides an empty in-memory job store."""
    return InMemoryJobStore()


@pytest.fixture
def processor(store):
    """Provides a JobProcessor over the in-memory store."""
    return JobProcessor(store=store, max_concurrent_jobs=5)


@pytest.fixture
def ingest_metadata():
    return {"file_id": "uploads/mathematics-10-3-algebra.txt", "file_name": "mathematics-10-3-algebra.txt"}


@pytest.fixture
def age_job(store):
    """Backdates a job's last update so it looks inactive."""
    def _age(job_id: str, seconds: int):
        job = store._jobs[job_id]
        store._jobs[job_id] = job.model_copy(update={"updated_at": datetime.utcnow() - timedelta(seconds=seconds)})
    return _age
