import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

from kb_ingest.core.chunker import Chunker
from kb_ingest.core.downloader import Downloader
from kb_ingest.core.embedder import Embedder
from kb_ingest.core.extractor import extract_text
from kb_ingest.errors import (
    DownloadError,
    EmbeddingError,
    InvalidInputError,
    JobCancelledError,
    JobFinishedError,
    ParseError,
    StoreError,
)
from kb_ingest.models.chunk import Chunk, EmbeddingResult, StoredChunk
from kb_ingest.models.job import (
    STEP_PERCENTAGES,
    IngestPdfMetadata,
    Job,
    JobProgress,
    JobStatus,
    ProgressStep,
)
from kb_ingest.services.file_storage import BaseFileStorage
from kb_ingest.services.job_processor import JobProcessor
from kb_ingest.services.knowledge_base import BaseKnowledgeBase
from kb_ingest.utils.rate_limiter import RateLimiter
from kb_ingest.utils.text_utils import parse_metadata_from_filename, source_file_name

logger = logging.getLogger(__name__)

Extractor = Callable[[bytes], str]


class IngestionPipeline:
    """
    Runs one `ingest_pdf` job: download -> parse -> chunk -> embed -> store.

    Stages run strictly in order and report progress through the processor's
    ProgressReporter. Cancellation is checked between stages. Any stage error
    ends the job as failed; a failed embedding only empties that chunk's vector.
    """

    def __init__(
        self,
        processor: JobProcessor,
        file_storage: BaseFileStorage,
        downloader: Downloader,
        embedder: Embedder,
        knowledge_base: BaseKnowledgeBase,
        extractor: Extractor = extract_text,
        bucket: str = "source-documents",
        upload_prefix: str = "uploads/",
        chunk_size: int = 1000,
        chunk_overlap: int = 200,
        min_chunk_size: int = 0,
        embedding_concurrency: int = 1,
        progress_interval: int = 10,
        rate_limiter: Optional[RateLimiter] = None,
    ):
        self.processor = processor
        self.file_storage = file_storage
        self.downloader = downloader
        self.embedder = embedder
        self.knowledge_base = knowledge_base
        self.extractor = extractor
        self.bucket = bucket
        self.upload_prefix = upload_prefix
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self.min_chunk_size = min_chunk_size
        self.embedding_concurrency = max(embedding_concurrency, 1)
        self.progress_interval = max(progress_interval, 1)
        self.rate_limiter = rate_limiter

    def _report(self, job_id: str, step: ProgressStep, percentage: float, message: str,
                details: Optional[Dict[str, Any]] = None):
        self.processor.reporter.report(
            job_id, JobProgress(step=step, percentage=percentage, message=message, details=details)
        )

    def _ensure_active(self, job_id: str):
        """Stage boundary check: stops the pipeline once the job is cancelled or otherwise finished."""
        job = self.processor.get_job(job_id)
        if job.status == JobStatus.CANCELLED:
            raise JobCancelledError(f"Job {job_id} was cancelled.")
        if job.is_terminal:
            raise JobFinishedError(job_id, job.status.value)

    async def run(self, job: Job) -> None:
        job_id = job.id
        logger.info(f"Starting ingestion pipeline for Job {job_id}")
        percentage = 0.0
        try:
            request = IngestPdfMetadata.model_validate(job.metadata)
            file_name = source_file_name(request.file_name, request.file_id, request.file_url)
            options = request.options

            # Step 1: Download
            self._ensure_active(job_id)
            percentage = STEP_PERCENTAGES[ProgressStep.DOWNLOADING]
            self._report(job_id, ProgressStep.DOWNLOADING, percentage, "Downloading file...",
                         {"file": file_name})
            data = await self._download(job_id, request)

            # Step 2: Parse
            self._ensure_active(job_id)
            percentage = STEP_PERCENTAGES[ProgressStep.PARSING]
            self._report(job_id, ProgressStep.PARSING, percentage, "Parsing document...",
                         {"file": file_name, "bytes": len(data)})
            text = await self._parse(job_id, data)

            # Step 3: Chunk
            self._ensure_active(job_id)
            percentage = STEP_PERCENTAGES[ProgressStep.CHUNKING]
            self._report(job_id, ProgressStep.CHUNKING, percentage, "Chunking document...",
                         {"text_length": len(text)})
            chunk_size = options.chunk_size or self.chunk_size
            if options.chunk_overlap is not None:
                chunk_overlap = options.chunk_overlap
            elif options.chunk_size:
                # Default overlap must still fit a smaller requested chunk size
                chunk_overlap = min(self.chunk_overlap, options.chunk_size // 5)
            else:
                chunk_overlap = self.chunk_overlap
            if options.min_chunk_size is not None:
                min_chunk_size = options.min_chunk_size
            else:
                min_chunk_size = self.min_chunk_size
            chunker = Chunker(max_chunk_size=chunk_size, overlap=chunk_overlap, min_chunk_size=min_chunk_size)
            chunks = chunker.chunk(text, skip_chunking=options.skip_chunking)
            logger.info(f"Job {job_id}: split document into {len(chunks)} chunks.")

            # Step 4: Embed
            self._ensure_active(job_id)
            percentage = STEP_PERCENTAGES[ProgressStep.EMBEDDING]
            self._report(job_id, ProgressStep.EMBEDDING, percentage,
                         f"Generating embeddings for {len(chunks)} chunks...",
                         {"current": 0, "total": len(chunks)})
            embeddings = await self._embed_chunks(job_id, chunks, skip=options.skip_embedding)

            # Step 5: Store
            self._ensure_active(job_id)
            percentage = STEP_PERCENTAGES[ProgressStep.STORING]
            self._report(job_id, ProgressStep.STORING, percentage, f"Storing {len(chunks)} chunks...",
                         {"current": 0, "total": len(chunks)})
            doc_metadata = parse_metadata_from_filename(file_name, request.metadata)
            stored = await self._store(job_id, chunks, embeddings, doc_metadata, file_name,
                                       delete_old_chunks=options.delete_old_chunks)

            # Step 6: Complete
            self._ensure_active(job_id)
            embedding_count = sum(1 for e in embeddings if e.embedding)
            self.processor.save_job_result(job_id, {
                "chunks_processed": len(chunks),
                "embedding_count": embedding_count,
                "stored": stored,
                "metadata": doc_metadata,
            })
            self._report(job_id, ProgressStep.COMPLETE, 100, "Ingestion completed successfully",
                         {"chunks_processed": len(chunks), "embedding_count": embedding_count, "stored": stored})
            logger.info(f"Job {job_id} SUCCESS: {stored} chunks stored, {embedding_count} with embeddings.")

        except JobCancelledError:
            logger.info(f"Job {job_id} cancelled. Stopping pipeline before the next stage.")
        except JobFinishedError as e:
            logger.warning(f"Job {job_id}: stopping pipeline, {e}")
        except Exception as e:
            logger.error(f"Job {job_id} FAILED due to exception: {e}", exc_info=True)
            self._report(job_id, ProgressStep.FAILED, percentage, str(e) or e.__class__.__name__)

    async def _download(self, job_id: str, request: IngestPdfMetadata) -> bytes:
        if bool(request.file_url) == bool(request.file_id):
            raise InvalidInputError("Exactly one of file_url or file_id must be provided")

        if request.file_url:
            return await self.downloader.fetch(request.file_url, job_id)

        # File already in storage
        path = request.file_id if request.file_id.startswith(self.upload_prefix) else f"{self.upload_prefix}{request.file_id}"
        try:
            return await asyncio.to_thread(self.file_storage.download, self.bucket, path)
        except Exception as e:
            raise DownloadError(f"Download failed: {e}") from e

    async def _parse(self, job_id: str, data: bytes) -> str:
        try:
            text = await asyncio.to_thread(self.extractor, data)
        except Exception as e:
            raise ParseError(f"Failed to extract text from document: {e}") from e
        if not text or not text.strip():
            raise ParseError("Failed to extract text from document: no text content found")
        logger.info(f"Job {job_id}: extracted {len(text)} characters of text.")
        return text

    async def _embed_chunks(self, job_id: str, chunks: List[Chunk], skip: bool = False) -> List[EmbeddingResult]:
        """
        Embeds every chunk, keeping results aligned with `chunks` by index. A
        failed embedding yields an empty vector and the batch continues.
        """
        total = len(chunks)
        results: List[Optional[EmbeddingResult]] = [None] * total
        if skip:
            logger.info(f"Job {job_id}: skipping embedding generation.")
            return [EmbeddingResult(content=chunk.content, embedding=[]) for chunk in chunks]

        semaphore = asyncio.Semaphore(self.embedding_concurrency)
        done = 0

        async def embed_one(position: int, chunk: Chunk):
            nonlocal done
            async with semaphore:
                if self.rate_limiter is not None:
                    await self.rate_limiter.acquire()
                try:
                    vector = await self.embedder.embed(chunk.content)
                except EmbeddingError as e:
                    logger.warning(f"Job {job_id}: failed to generate embedding for chunk {position}: {e}")
                    vector = []
            results[position] = EmbeddingResult(content=chunk.content, embedding=vector)
            done += 1
            if done % self.progress_interval == 0 and done < total:
                self._report(
                    job_id, ProgressStep.EMBEDDING,
                    STEP_PERCENTAGES[ProgressStep.EMBEDDING] + (done / total) * 20,
                    f"Generating embeddings... {done}/{total}",
                    {"current": done, "total": total},
                )

        await asyncio.gather(*(embed_one(position, chunk) for position, chunk in enumerate(chunks)))
        return results

    async def _store(
        self,
        job_id: str,
        chunks: List[Chunk],
        embeddings: List[EmbeddingResult],
        doc_metadata: Dict[str, Any],
        source: str,
        delete_old_chunks: bool = False,
    ) -> int:
        subject = str(doc_metadata.get("subject") or "unknown")
        grade = str(doc_metadata.get("grade") or "unknown")
        chapter = str(doc_metadata.get("chapter") or "unknown")

        records = [
            StoredChunk(
                content=chunk.content,
                chunk_index=chunk.index,
                subject=subject,
                grade=grade,
                chapter=chapter,
                heading_hierarchy=chunk.heading_hierarchy,
                page_number=chunk.page_number,
                embedding=embeddings[i].embedding,
                source=source or None,
                job_id=job_id,
            )
            for i, chunk in enumerate(chunks)
        ]

        try:
            if delete_old_chunks:
                deleted = await asyncio.to_thread(self.knowledge_base.delete_chunks, subject, grade, chapter)
                logger.info(f"Job {job_id}: deleted {deleted} old chunks for {subject}/{grade}/{chapter}.")
            stored = await asyncio.to_thread(self.knowledge_base.add_chunks, records)
        except Exception as e:
            raise StoreError(f"Failed to store chunks: {e}") from e

        if stored != len(records):
            raise StoreError(f"Stored {stored} of {len(records)} chunks.")
        return stored
