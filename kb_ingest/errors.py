"""
Exception hierarchy for job management and the ingestion pipeline.
"""


class JobError(Exception):
    """Base class for all job related errors."""


# --- Raised synchronously to callers of the JobProcessor ---

class InvalidInputError(JobError):
    """The job submission is malformed (e.g. neither or both of file_url/file_id)."""


class NotFoundError(JobError):
    """No job exists with the given ID."""

    def __init__(self, job_id: str):
        super().__init__(f"Job with ID '{job_id}' not found.")
        self.job_id = job_id


class AlreadyProcessingError(JobError):
    """The job is already being processed; guards against duplicate triggers."""

    def __init__(self, job_id: str):
        super().__init__(f"Job '{job_id}' is already processing.")
        self.job_id = job_id


class JobFinishedError(JobError):
    """The job reached a terminal status and cannot be processed again."""

    def __init__(self, job_id: str, status: str):
        super().__init__(f"Job '{job_id}' is already {status} and cannot be processed.")
        self.job_id = job_id
        self.status = status


class JobCancelledError(JobError):
    """Raised inside a pipeline when a stage boundary observes a cancelled job."""


# --- Pipeline stage errors ---

class IngestionError(JobError):
    """Base class for errors raised by a pipeline stage."""


class DownloadError(IngestionError):
    pass


class ParseError(IngestionError):
    pass


class EmbeddingError(IngestionError):
    """Embedding failed for a single text. Recovered per chunk by the pipeline."""


class StoreError(IngestionError):
    pass
