import uuid
from enum import Enum
from typing import List, Optional, Dict, Any, Type
from datetime import datetime
from pydantic import BaseModel, Field, model_validator


class JobType(str, Enum):
    INGEST_PDF = "ingest_pdf"
    PROCESS_DOCUMENT = "process_document"
    BATCH_EMBED = "batch_embed"
    REINDEX = "reindex"


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})


class ProgressStep(str, Enum):
    DOWNLOADING = "downloading"
    PARSING = "parsing"
    CHUNKING = "chunking"
    EMBEDDING = "embedding"
    STORING = "storing"
    COMPLETE = "complete"
    FAILED = "failed"


# Baseline percentage reported when each stage starts
STEP_PERCENTAGES: Dict[ProgressStep, float] = {
    ProgressStep.DOWNLOADING: 10,
    ProgressStep.PARSING: 30,
    ProgressStep.CHUNKING: 50,
    ProgressStep.EMBEDDING: 70,
    ProgressStep.STORING: 90,
    ProgressStep.COMPLETE: 100,
}


class JobProgress(BaseModel):
    """
    A single progress report attached to a job.
    """
    step: ProgressStep
    percentage: float = 0
    message: str = ""
    details: Optional[Dict[str, Any]] = None


class Job(BaseModel):
    """
    A tracked unit of background work with its lifecycle status and progress.
    """
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    type: JobType
    status: JobStatus = JobStatus.PENDING
    progress: Optional[JobProgress] = None
    metadata: Dict[str, Any] = {}
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class JobSubmission(BaseModel):
    """Returned by JobProcessor.create_job."""
    job_id: str
    status: JobStatus


# --- Per job type metadata ---

class IngestOptions(BaseModel):
    skip_chunking: bool = False
    skip_embedding: bool = False
    delete_old_chunks: bool = False
    chunk_size: Optional[int] = Field(None, gt=0)
    chunk_overlap: Optional[int] = Field(None, ge=0)
    min_chunk_size: Optional[int] = Field(None, ge=0)

    @model_validator(mode="after")
    def check_overlap(self):
        if self.chunk_size is not None and self.chunk_overlap is not None and self.chunk_overlap >= self.chunk_size:
            raise ValueError("chunk_overlap must be smaller than chunk_size")
        return self


class IngestPdfMetadata(BaseModel):
    """
    Input of an `ingest_pdf` job. Exactly one of file_url / file_id must be set.
    """
    file_url: Optional[str] = None
    file_id: Optional[str] = None
    file_name: Optional[str] = None
    metadata: Dict[str, Any] = {}
    options: IngestOptions = Field(default_factory=IngestOptions)

    @model_validator(mode="after")
    def check_single_source(self):
        if bool(self.file_url) == bool(self.file_id):
            raise ValueError("Exactly one of file_url or file_id must be provided")
        if self.file_url and not self.file_url.startswith(("http://", "https://")):
            raise ValueError(f"file_url must use http:// or https:// scheme: {self.file_url}")
        return self


# Job types without an entry here cannot be submitted yet.
JOB_METADATA_MODELS: Dict[JobType, Type[BaseModel]] = {
    JobType.INGEST_PDF: IngestPdfMetadata,
}
