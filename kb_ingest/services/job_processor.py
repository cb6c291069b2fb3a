import asyncio
import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Dict, List, Optional, Any

from pydantic import ValidationError

from kb_ingest.errors import AlreadyProcessingError, InvalidInputError, JobFinishedError
from kb_ingest.models.job import (
    JOB_METADATA_MODELS,
    Job,
    JobProgress,
    JobStatus,
    JobSubmission,
    JobType,
    ProgressStep,
)
from kb_ingest.services.job_store import BaseJobStore
from kb_ingest.services.progress_reporter import ProgressReporter

logger = logging.getLogger(__name__)

PipelineFn = Callable[[Job], Awaitable[None]]


class JobProcessor:
    """
    Lifecycle manager for background jobs.

    Creates jobs, runs their pipelines as asyncio tasks on a bounded pool, and
    exposes status queries and cooperative cancellation.
    """

    def __init__(
        self,
        store: BaseJobStore,
        reporter: Optional[ProgressReporter] = None,
        max_concurrent_jobs: int = 5,
    ):
        if max_concurrent_jobs < 1:
            raise ValueError("max_concurrent_jobs must be at least 1")
        self.store = store
        self.reporter = reporter or ProgressReporter(store)
        self._slots = asyncio.Semaphore(max_concurrent_jobs)
        self._active: Dict[str, asyncio.Task] = {}

    def create_job(self, job_type: JobType, metadata: Dict[str, Any]) -> JobSubmission:
        """
        Validates the metadata for `job_type` and records a new pending job.
        No pipeline stage runs here.
        """
        try:
            job_type = JobType(job_type)
        except ValueError as e:
            raise InvalidInputError(f"Unknown job type: {job_type}") from e

        metadata_model = JOB_METADATA_MODELS.get(job_type)
        if metadata_model is None:
            raise InvalidInputError(f"Job type '{job_type.value}' is not supported yet.")
        try:
            validated = metadata_model.model_validate(metadata)
        except ValidationError as e:
            raise InvalidInputError(f"Invalid metadata for {job_type.value} job: {e}") from e

        job = self.store.create(Job(type=job_type, metadata=validated.model_dump(mode="json")))
        logger.info(f"Job {job.id} ({job_type.value}) created with status '{job.status.value}'.")
        return JobSubmission(job_id=job.id, status=job.status)

    def process_job(self, job_id: str, pipeline_fn: PipelineFn) -> asyncio.Task:
        """
        Schedules `pipeline_fn(job)` as a background task and returns its handle.

        Callers may await the handle or drop it. Pipeline failures are recorded
        on the job and never raised through the handle.
        Must be called from a running event loop.
        """
        job = self.store.get(job_id)
        if job_id in self._active or job.status == JobStatus.PROCESSING:
            raise AlreadyProcessingError(job_id)
        if job.is_terminal:
            raise JobFinishedError(job_id, job.status.value)

        task = asyncio.create_task(self._run(job_id, pipeline_fn), name=f"job-{job_id}")
        self._active[job_id] = task
        task.add_done_callback(lambda _: self._active.pop(job_id, None))
        logger.info(f"Job {job_id} scheduled for processing.")
        return task

    async def _run(self, job_id: str, pipeline_fn: PipelineFn) -> None:
        async with self._slots:
            try:
                job = self.store.get(job_id)
                if job.is_terminal:
                    logger.info(f"Job {job_id} is {job.status.value} before starting. Skipping pipeline.")
                    return
                job = self.store.update(
                    job_id, {"status": JobStatus.PROCESSING, "started_at": datetime.utcnow()}
                )
                logger.info(f"Job {job_id} status updated to 'processing'.")
                await pipeline_fn(job)
            except Exception as e:
                logger.error(f"Job {job_id} FAILED due to exception: {e}", exc_info=True)
                self.reporter.report(
                    job_id,
                    JobProgress(step=ProgressStep.FAILED, percentage=0, message=f"Job failed: {e}"),
                )

    def get_job(self, job_id: str) -> Job:
        return self.store.get(job_id)

    def get_jobs_by_status(self, status: JobStatus) -> List[Job]:
        return self.store.list_by_status(JobStatus(status))

    def get_recent_jobs(self, limit: int = 50) -> List[Job]:
        return self.store.list_recent(limit)

    def save_job_result(self, job_id: str, result: Dict[str, Any]) -> Job:
        """
        Attaches a result payload without touching the job's status. A job that
        already ended as failed or cancelled keeps no result.
        """
        job = self.store.get(job_id)
        if job.is_terminal and job.status != JobStatus.COMPLETED:
            raise JobFinishedError(job_id, job.status.value)
        job = self.store.update(job_id, {"result": result})
        logger.info(f"Job {job_id}: result saved.")
        return job

    def cancel(self, job_id: str) -> Job:
        """
        Marks a job cancelled unless it already finished. The running pipeline
        observes this at its next stage boundary.
        """
        job = self.store.get(job_id)
        if job.is_terminal:
            logger.info(f"Job {job_id} is already {job.status.value}; cancel has no effect.")
            return job
        job = self.store.update(job_id, {"status": JobStatus.CANCELLED, "completed_at": datetime.utcnow()})
        logger.info(f"Job {job_id} cancelled.")
        return job

    def find_stuck_jobs(self, threshold_seconds: int) -> List[Job]:
        """
        Returns non-terminal jobs whose last write is older than the threshold.
        """
        now = datetime.utcnow()
        inactivity_threshold = timedelta(seconds=threshold_seconds)
        stuck_jobs = [
            job for job in self.store.list_all()
            if not job.is_terminal and (now - job.updated_at) > inactivity_threshold
        ]
        for job in stuck_jobs:
            logger.warning(
                f"Job {job.id} detected as stuck. "
                f"Status: {job.status.value}, Last update: {job.updated_at} (older than {threshold_seconds}s)"
            )
        return stuck_jobs

    def fail_stuck_jobs(self, threshold_seconds: int) -> List[Job]:
        """
        Marks stuck jobs as failed and returns them.
        """
        failed_jobs = []
        for job in self.find_stuck_jobs(threshold_seconds):
            message = f"Marked failed by watchdog due to inactivity exceeding {threshold_seconds} seconds."
            self.reporter.report(
                job.id,
                JobProgress(step=ProgressStep.FAILED, percentage=0, message=message),
            )
            failed_jobs.append(self.store.get(job.id))
        return failed_jobs

    @property
    def active_job_ids(self) -> List[str]:
        return list(self._active)

    async def wait_for_active(self) -> None:
        """Waits until every scheduled job task has finished."""
        pending = [task for task in self._active.values() if not task.done()]
        while pending:
            await asyncio.gather(*pending, return_exceptions=True)
            pending = [task for task in self._active.values() if not task.done()]
