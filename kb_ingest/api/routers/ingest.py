import os
import uuid
import logging
from typing import Optional
from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status

from kb_ingest.background.ingestion import IngestionPipeline
from kb_ingest.config import settings
from kb_ingest.dependencies import get_file_storage, get_ingestion_pipeline, get_job_processor
from kb_ingest.errors import AlreadyProcessingError, InvalidInputError, JobError, JobFinishedError
from kb_ingest.models.job import JobStatus, JobType
from kb_ingest.models.schemas import IngestRequest, IngestResponse, JobListResponse, JobStatusResponse
from kb_ingest.services.file_storage import BaseFileStorage
from kb_ingest.services.job_processor import JobProcessor

logger = logging.getLogger(__name__)
router = APIRouter()


def _start_ingestion(request: IngestRequest, processor: JobProcessor, pipeline: IngestionPipeline) -> IngestResponse:
    """Creates the job and schedules its pipeline without waiting for it."""
    try:
        submission = processor.create_job(JobType.INGEST_PDF, request.model_dump(mode="json"))
    except InvalidInputError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    try:
        processor.process_job(submission.job_id, pipeline.run)
    except (AlreadyProcessingError, JobFinishedError) as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except JobError as e:
        logger.error(f"Error scheduling job {submission.job_id}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to schedule ingestion job: {e}"
        )

    logger.info(f"Ingestion job {submission.job_id} queued for {request.file_url or request.file_id}.")
    return IngestResponse(
        job_id=submission.job_id,
        status=JobStatus.PENDING,
        message="Ingestion job queued. Check status using GET /status/{job_id}"
    )


@router.post("/ingest", response_model=IngestResponse, status_code=status.HTTP_202_ACCEPTED, summary="Start document ingestion")
async def ingest_document(
    request: IngestRequest,
    processor: JobProcessor = Depends(get_job_processor),
    pipeline: IngestionPipeline = Depends(get_ingestion_pipeline),
):
    """
    Queues a background job that downloads the document, extracts its text,
    chunks, embeds and stores it in the knowledge base.
    """
    logger.info("Received request to ingest a document.")
    return _start_ingestion(request, processor, pipeline)


@router.post("/ingest/upload", response_model=IngestResponse, status_code=status.HTTP_202_ACCEPTED, summary="Upload and ingest a document")
async def upload_and_ingest(
    file: UploadFile = File(...),
    delete_old_chunks: bool = Form(False),
    processor: JobProcessor = Depends(get_job_processor),
    pipeline: IngestionPipeline = Depends(get_ingestion_pipeline),
    storage: BaseFileStorage = Depends(get_file_storage),
):
    """
    Stores an uploaded document and queues its ingestion.
    """
    file_name = os.path.basename(file.filename or "document")
    limit = storage.max_size_bytes
    if limit is not None and file.size is not None and file.size > limit:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"File is too large. Maximum size is {limit} bytes.")
    # Never buffer more than one byte past the limit
    data = await file.read() if limit is None else await file.read(limit + 1)
    if limit is not None and len(data) > limit:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"File is too large. Maximum size is {limit} bytes.")
    path = f"{settings.UPLOAD_PREFIX}{uuid.uuid4().hex[:8]}-{file_name}"
    try:
        storage.upload(settings.STORAGE_BUCKET, path, data, file.content_type)
    except InvalidInputError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    logger.info(f"Uploaded {file_name} to {settings.STORAGE_BUCKET}/{path}.")

    request = IngestRequest(
        file_id=path,
        file_name=file_name,
        options={"delete_old_chunks": delete_old_chunks},
    )
    return _start_ingestion(request, processor, pipeline)


@router.get("/ingest", response_model=JobListResponse, summary="List ingestion jobs")
async def list_jobs(
    status_filter: Optional[JobStatus] = Query(None, alias="status"),
    limit: int = Query(20, ge=1, le=200),
    processor: JobProcessor = Depends(get_job_processor),
):
    """
    Lists jobs with the given status, or the most recent jobs when no status is given.
    """
    if status_filter is not None:
        jobs = processor.get_jobs_by_status(status_filter)
    else:
        jobs = processor.get_recent_jobs(limit)
    return JobListResponse(jobs=[JobStatusResponse.from_job(job) for job in jobs], count=len(jobs))
