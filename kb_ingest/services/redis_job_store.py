import redis
import logging
from typing import Dict, List, Any, Optional

from kb_ingest.errors import NotFoundError
from kb_ingest.models.job import Job, JobStatus
from kb_ingest.services.job_store import BaseJobStore, merge_job

logger = logging.getLogger(__name__)


class RedisJobStore(BaseJobStore):
    """
    Persists jobs in Redis. Each Job is stored as a JSON string, and a sorted set
    scored by creation time indexes the jobs for recency listing.
    """
    _JOB_KEY_PREFIX = "ingestion_job:"
    _CREATED_INDEX_KEY = "ingestion_jobs:created"

    def __init__(self, redis_url: str, client: Optional[redis.Redis] = None):
        try:
            self._redis_client = client or redis.from_url(redis_url, decode_responses=True)
            self._redis_client.ping()
            logger.info("Connected to Redis successfully for RedisJobStore.")
        except redis.exceptions.ConnectionError as e:
            logger.error(f"Could not connect to Redis for RedisJobStore: {e}")
            raise ConnectionError("Failed to connect to Redis") from e

    def _get_job_key(self, job_id: str) -> str:
        return f"{self._JOB_KEY_PREFIX}{job_id}"

    def create(self, job: Job) -> Job:
        """Adds a new job to Redis."""
        job_key = self._get_job_key(job.id)
        pipe = self._redis_client.pipeline(transaction=True)
        pipe.set(job_key, job.model_dump_json(), nx=True)
        pipe.zadd(self._CREATED_INDEX_KEY, {job.id: job.created_at.timestamp()})
        try:
            created, _ = pipe.execute()
        except redis.exceptions.RedisError as e:
            logger.error(f"Failed to create job {job.id} in Redis: {e}")
            raise
        if not created:
            raise ValueError(f"Job {job.id} already exists.")
        logger.info(f"Job {job.id} created and stored in Redis.")
        return job

    def get(self, job_id: str) -> Job:
        """Retrieves a job by its ID from Redis."""
        job_json = self._redis_client.get(self._get_job_key(job_id))
        if not job_json:
            raise NotFoundError(job_id)
        return Job.model_validate_json(job_json)

    def update(self, job_id: str, fields: Dict[str, Any]) -> Job:
        """
        Merges fields into a job inside a WATCH/MULTI transaction, so a concurrent
        writer forces a retry instead of an interleaved merge.
        """
        job_key = self._get_job_key(job_id)

        def _merge(pipe) -> Job:
            job_json = pipe.get(job_key)
            if not job_json:
                raise NotFoundError(job_id)
            updated = merge_job(Job.model_validate_json(job_json), fields)
            pipe.multi()
            pipe.set(job_key, updated.model_dump_json())
            return updated

        updated = self._redis_client.transaction(_merge, job_key, value_from_callable=True)
        logger.debug(f"Job {job_id} updated in Redis to status: {updated.status.value}")
        return updated

    def _load_jobs(self, job_ids: List[str]) -> List[Job]:
        if not job_ids:
            return []
        payloads = self._redis_client.mget([self._get_job_key(job_id) for job_id in job_ids])
        return [Job.model_validate_json(payload) for payload in payloads if payload]

    def list_by_status(self, status: JobStatus) -> List[Job]:
        return [job for job in self.list_all() if job.status == status]

    def list_recent(self, limit: int) -> List[Job]:
        if limit <= 0:
            return []
        job_ids = self._redis_client.zrevrange(self._CREATED_INDEX_KEY, 0, limit - 1)
        return self._load_jobs(job_ids)

    def list_all(self) -> List[Job]:
        """Returns every job, newest first."""
        job_ids = self._redis_client.zrevrange(self._CREATED_INDEX_KEY, 0, -1)
        return self._load_jobs(job_ids)

    def delete_all_jobs(self):
        """Deletes all jobs from Redis. Primarily for testing."""
        keys = list(self._redis_client.scan_iter(self._get_job_key("*")))
        if keys:
            self._redis_client.delete(*keys)
        self._redis_client.delete(self._CREATED_INDEX_KEY)
        logger.info(f"Deleted {len(keys)} jobs from Redis.")
