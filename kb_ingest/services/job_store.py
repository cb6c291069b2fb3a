import logging
from abc import ABC, abstractmethod
from datetime import datetime
from threading import Lock
from typing import Dict, List, Any

from kb_ingest.config import Settings
from kb_ingest.errors import NotFoundError
from kb_ingest.models.job import Job, JobStatus

logger = logging.getLogger(__name__)


class BaseJobStore(ABC):
    """
    Persistence boundary for job records.

    Implementations must make every write atomic per job: a concurrent reader
    sees either the record before an update or after it, never a partial merge.
    """

    @abstractmethod
    def create(self, job: Job) -> Job:
        pass

    @abstractmethod
    def get(self, job_id: str) -> Job:
        """Returns the job or raises NotFoundError."""
        pass

    @abstractmethod
    def update(self, job_id: str, fields: Dict[str, Any]) -> Job:
        """
        Merges `fields` into the stored job, refreshes `updated_at` and returns
        the new record. Raises NotFoundError for an unknown ID.
        """
        pass

    @abstractmethod
    def list_by_status(self, status: JobStatus) -> List[Job]:
        pass

    @abstractmethod
    def list_recent(self, limit: int) -> List[Job]:
        """Returns up to `limit` jobs, newest first."""
        pass

    @abstractmethod
    def list_all(self) -> List[Job]:
        pass


def merge_job(job: Job, fields: Dict[str, Any]) -> Job:
    """Returns a validated copy of `job` with `fields` applied and `updated_at` refreshed."""
    data = job.model_dump()
    data.update(fields)
    data["id"] = job.id # Immutable
    data["updated_at"] = datetime.utcnow()
    return Job.model_validate(data)


class InMemoryJobStore(BaseJobStore):
    """
    Keeps jobs in a process-local dict. Copies are handed out on every read so
    callers never hold a reference to the stored record.
    """

    def __init__(self):
        self._jobs: Dict[str, Job] = {}
        self._lock = Lock()

    def create(self, job: Job) -> Job:
        with self._lock:
            if job.id in self._jobs:
                raise ValueError(f"Job {job.id} already exists.")
            self._jobs[job.id] = job.model_copy(deep=True)
            logger.info(f"Job {job.id} created in memory store.")
            return job.model_copy(deep=True)

    def get(self, job_id: str) -> Job:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise NotFoundError(job_id)
            return job.model_copy(deep=True)

    def update(self, job_id: str, fields: Dict[str, Any]) -> Job:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise NotFoundError(job_id)
            updated = merge_job(job, fields)
            self._jobs[job_id] = updated
            logger.debug(f"Job {job_id} updated in memory store to status: {updated.status.value}")
            return updated.model_copy(deep=True)

    def list_by_status(self, status: JobStatus) -> List[Job]:
        with self._lock:
            # Insertion order is creation order
            jobs = [job for job in reversed(list(self._jobs.values())) if job.status == status]
            return [job.model_copy(deep=True) for job in jobs]

    def list_recent(self, limit: int) -> List[Job]:
        with self._lock:
            jobs = list(reversed(list(self._jobs.values())))
            return [job.model_copy(deep=True) for job in jobs[:max(limit, 0)]]

    def list_all(self) -> List[Job]:
        with self._lock:
            return [job.model_copy(deep=True) for job in self._jobs.values()]


def create_job_store(settings: Settings) -> BaseJobStore:
    """Builds the job store selected by JOB_STORE_BACKEND."""
    backend = settings.JOB_STORE_BACKEND.lower()
    if backend == "memory":
        return InMemoryJobStore()
    if backend == "redis":
        from kb_ingest.services.redis_job_store import RedisJobStore
        return RedisJobStore(settings.REDIS_URL)
    raise ValueError(f"Unsupported JOB_STORE_BACKEND: {settings.JOB_STORE_BACKEND}")
