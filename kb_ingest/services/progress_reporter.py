import logging
from datetime import datetime
from typing import Dict, Any

from kb_ingest.models.job import JobProgress, JobStatus, ProgressStep
from kb_ingest.services.job_store import BaseJobStore

logger = logging.getLogger(__name__)


class ProgressReporter:
    """
    Writes progress reports for a job through to the job store.

    Percentages never move backwards within a job, and the `complete` / `failed`
    steps move the job into its terminal status. Reporting is best-effort: a
    failing store write is logged and never raised into the pipeline.
    """

    def __init__(self, store: BaseJobStore):
        self._store = store

    def report(self, job_id: str, progress: JobProgress) -> None:
        try:
            job = self._store.get(job_id)
            if job.is_terminal:
                logger.info(
                    f"Job {job_id}: ignoring '{progress.step.value}' progress, job is already {job.status.value}."
                )
                return

            last_percentage = job.progress.percentage if job.progress else 0.0
            percentage = min(max(progress.percentage, last_percentage, 0.0), 100.0)
            if percentage != progress.percentage:
                logger.debug(
                    f"Job {job_id}: clamped progress {progress.percentage} to {percentage} "
                    f"(last reported {last_percentage})."
                )
                progress = progress.model_copy(update={"percentage": percentage})

            fields: Dict[str, Any] = {"progress": progress}
            if progress.step == ProgressStep.COMPLETE:
                fields["status"] = JobStatus.COMPLETED
                fields["completed_at"] = datetime.utcnow()
            elif progress.step == ProgressStep.FAILED:
                fields["status"] = JobStatus.FAILED
                fields["error"] = progress.message
                fields["completed_at"] = datetime.utcnow()

            self._store.update(job_id, fields)
            logger.debug(f"Job {job_id}: progress {progress.step.value} {percentage:.0f}% - {progress.message}")
        except Exception as e:
            logger.error(f"Job {job_id}: failed to persist progress report '{progress.step.value}': {e}", exc_info=True)
