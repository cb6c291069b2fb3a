from typing import List, Optional, Dict, Any
from datetime import datetime
from pydantic import BaseModel, Field

from kb_ingest.models.job import IngestOptions, Job, JobProgress, JobStatus

# --- API Request/Response Schemas ---

class IngestRequest(BaseModel):
    """
    Schema for the POST /ingest request body.
    """
    file_url: Optional[str] = Field(
        None,
        description="Public URL of the document to ingest. Mutually exclusive with file_id.",
        examples=["https://www.example.com/mathematics-10-3-algebra.pdf"]
    )
    file_id: Optional[str] = Field(
        None,
        description="Storage key of a previously uploaded document. Mutually exclusive with file_url.",
        examples=["uploads/mathematics-10-3-algebra.pdf"]
    )
    file_name: Optional[str] = Field(
        None,
        description="Original file name. Used to infer subject, grade and chapter "
                    "from the subject-grade-chapter-title convention.",
        examples=["mathematics-10-3-algebra.pdf"]
    )
    metadata: Dict[str, Any] = Field(
        {},
        description="Explicit document metadata. Overrides values parsed from the file name.",
        examples=[{"subject": "mathematics", "grade": "10", "chapter": "3"}]
    )
    options: IngestOptions = Field(
        default_factory=IngestOptions,
        description="Pipeline options."
    )

class IngestResponse(BaseModel):
    """
    Schema for the POST /ingest response body.
    """
    job_id: str = Field(..., description="Unique identifier for the ingestion job.")
    status: JobStatus = Field(JobStatus.PENDING, description="Initial job status.")
    message: str = Field(..., description="Status message for the job initiation.")

class JobStatusResponse(BaseModel):
    """
    Schema for the GET /status/{job_id} response body.
    """
    job_id: str = Field(..., description="Unique identifier for the job.")
    type: str = Field(..., description="Job type, e.g. 'ingest_pdf'.")
    filename: Optional[str] = Field(None, description="Source file name or storage key.")
    status: JobStatus = Field(..., description="Current status of the job.")
    progress: Optional[JobProgress] = Field(None, description="Last reported progress.")
    message: Optional[str] = Field(None, description="Human-readable status line.")
    error: Optional[str] = Field(None, description="Failure reason, set only for failed jobs.")
    metadata: Dict[str, Any] = Field({}, description="Job input.")
    result: Optional[Dict[str, Any]] = Field(None, description="Job output once completed.")
    created_at: datetime = Field(..., description="Timestamp when the job was created.")
    updated_at: datetime = Field(..., description="Timestamp of the last status or progress write.")
    started_at: Optional[datetime] = Field(None, description="Timestamp when processing started.")
    completed_at: Optional[datetime] = Field(None, description="Timestamp when the job reached a terminal status.")

    @classmethod
    def from_job(cls, job: Job) -> "JobStatusResponse":
        filename = job.metadata.get("file_name") or job.metadata.get("file_id") or job.metadata.get("file_url")
        return cls(
            job_id=job.id,
            type=job.type.value,
            filename=filename,
            status=job.status,
            progress=job.progress,
            message=job.error if job.error else (job.progress.message if job.progress else "Job queued"),
            error=job.error,
            metadata=job.metadata,
            result=job.result,
            created_at=job.created_at,
            updated_at=job.updated_at,
            started_at=job.started_at,
            completed_at=job.completed_at,
        )

class JobListResponse(BaseModel):
    jobs: List[JobStatusResponse]
    count: int

class CancelResponse(BaseModel):
    job_id: str
    status: JobStatus
    message: str

class HealthCheckResponse(BaseModel):
    """
    Schema for the GET /health response body.
    """
    status: str = Field("ok", description="Status of the API service.")
    timestamp: datetime = Field(..., description="Current server time.")
    version: str = Field(..., description="Application version.")
    active_jobs: int = Field(0, description="Number of job pipelines currently scheduled or running.")
