from typing import List, Optional
from pydantic import BaseModel, Field


class Chunk(BaseModel):
    """
    An ordered slice of a document's extracted text, tagged with its heading context.
    """
    content: str = Field(..., min_length=1)
    index: int = Field(..., ge=0) # Zero-based position within the document
    heading_hierarchy: List[str] = [] # Enclosing heading titles, outermost first
    page_number: int = Field(1, ge=1) # Page the chunk starts on


class EmbeddingResult(BaseModel):
    """
    The embedding generated for one chunk. An empty vector marks a failed embedding.
    """
    content: str
    embedding: List[float] = []


class StoredChunk(BaseModel):
    """
    A chunk with its embedding and catalogue metadata, as written to the knowledge base.
    """
    content: str
    chunk_index: int
    subject: str = "unknown"
    grade: str = "unknown"
    chapter: str = "unknown"
    heading_hierarchy: List[str] = []
    page_number: int = 1
    embedding: List[float] = []
    source: Optional[str] = None
    job_id: Optional[str] = None
