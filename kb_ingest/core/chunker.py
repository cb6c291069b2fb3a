import re
import logging
from typing import List, Optional, Tuple

from kb_ingest.models.chunk import Chunk
from kb_ingest.utils.text_utils import split_text

logger = logging.getLogger(__name__)

# Markdown style headings, "#" through "######"
HEADING_PATTERN = re.compile(r"^(#{1,6})\s+(\S.*)$")
# Dotted section numbers, "1.1 Title" or "2.3.1 Title"; depth is the number of parts
NUMBERED_HEADING_PATTERN = re.compile(r"^(\d+(?:\.\d+)+)\s+(\S.*)$")
# "1. Title", only taken as a heading when the line is short
SIMPLE_NUMBERED_PATTERN = re.compile(r"^\d+\.\s+(\S.*)$")
SIMPLE_NUMBERED_MAX_LENGTH = 100

PAGE_BREAK = "\f"


def match_heading(line: str) -> Optional[Tuple[int, str]]:
    """Returns (depth, title) when the stripped line is a heading."""
    match = HEADING_PATTERN.match(line)
    if match:
        return len(match.group(1)), match.group(2).strip()
    match = NUMBERED_HEADING_PATTERN.match(line)
    if match:
        return match.group(1).count(".") + 1, match.group(2).strip()
    match = SIMPLE_NUMBERED_PATTERN.match(line)
    if match and len(line) < SIMPLE_NUMBERED_MAX_LENGTH:
        return 1, match.group(1).strip()
    return None


def merge_small_chunks(chunks: List[Chunk], min_size: int) -> List[Chunk]:
    """
    Folds every chunk shorter than `min_size` characters into the chunk that
    follows it. The merged chunk keeps the first chunk's page and the later
    chunk's headings; indexes are renumbered afterwards.
    """
    if min_size <= 0 or not chunks:
        return chunks

    merged: List[Chunk] = []
    current = chunks[0]
    for chunk in chunks[1:]:
        if len(current.content) < min_size:
            current = Chunk(
                content=f"{current.content}\n{chunk.content}",
                index=current.index,
                heading_hierarchy=list(chunk.heading_hierarchy),
                page_number=current.page_number,
            )
        else:
            merged.append(current)
            current = chunk
    merged.append(current)

    return [chunk.model_copy(update={"index": position}) for position, chunk in enumerate(merged)]


class Chunker:
    """
    Splits extracted document text into ordered, heading-aware chunks.

    A heading line closes the chunk being accumulated and opens a new one that
    starts with the heading itself. Each chunk carries the titles of its
    enclosing headings and the page it starts on (pages are separated by form
    feeds). Sections longer than `max_chunk_size` characters are then split on
    whitespace, with adjacent pieces sharing up to `overlap` characters.
    Chunks shorter than `min_chunk_size` are merged into the next one.
    """
    def __init__(self, max_chunk_size: int = 1000, overlap: int = 200, min_chunk_size: int = 0):
        if max_chunk_size <= 0:
            raise ValueError("max_chunk_size must be positive")
        if overlap < 0 or overlap >= max_chunk_size:
            raise ValueError("overlap must be >= 0 and smaller than max_chunk_size")
        if min_chunk_size < 0:
            raise ValueError("min_chunk_size must be >= 0")
        self.max_chunk_size = max_chunk_size
        self.overlap = overlap
        self.min_chunk_size = min_chunk_size

    def chunk(self, text: str, skip_chunking: bool = False) -> List[Chunk]:
        if not text or not text.strip():
            return []

        if skip_chunking:
            return [Chunk(content=text.strip(), index=0, heading_hierarchy=[])]

        chunks: List[Chunk] = []
        for content, hierarchy, page_number in self._split_sections(text):
            if len(content) <= self.max_chunk_size:
                pieces = [content]
            else:
                pieces = split_text(content, self.max_chunk_size, self.overlap)
            for piece in pieces:
                chunks.append(Chunk(
                    content=piece,
                    index=len(chunks),
                    heading_hierarchy=list(hierarchy),
                    page_number=page_number,
                ))

        chunks = merge_small_chunks(chunks, self.min_chunk_size)
        logger.debug(f"Chunked {len(text)} characters into {len(chunks)} chunks.")
        return chunks

    def _split_sections(self, text: str) -> List[Tuple[str, List[str], int]]:
        """Groups lines into sections bounded by headings."""
        sections: List[Tuple[str, List[str], int]] = []
        headings: List[Tuple[int, str]] = [] # (depth, title), outermost first
        buffer: List[str] = []
        start_page = 1
        started = False # buffer holds a non-blank line

        def flush():
            content = "\n".join(buffer).strip()
            if content:
                sections.append((content, [title for _, title in headings], start_page))

        for page_number, page in enumerate(text.split(PAGE_BREAK), start=1):
            for line in page.splitlines():
                heading = match_heading(line.strip())
                if heading:
                    flush()
                    depth, title = heading
                    while headings and headings[-1][0] >= depth:
                        headings.pop()
                    headings.append((depth, title))
                    buffer = [line]
                    start_page = page_number
                    started = True
                else:
                    if not started and line.strip():
                        start_page = page_number
                        started = True
                    buffer.append(line)
        flush()
        return sections
