import os
import re
from typing import List, Dict, Any
from urllib.parse import urlparse

_WORD_PATTERN = re.compile(r"\S+")

# subject-grade-chapter-title, e.g. mathematics-10-3-algebra
_FILENAME_METADATA_PATTERN = re.compile(r"^([a-z]+)-(\d+)-(\d+)-(.+)$", re.IGNORECASE)


def split_text(text: str, chunk_size: int = 1000, chunk_overlap: int = 200) -> List[str]:
    """
    Splits text into pieces of at most `chunk_size` characters on whitespace
    boundaries, never breaking a word. A single word longer than `chunk_size`
    becomes its own piece.

    Each piece after the first restarts at the earliest word that keeps the
    text shared with the previous piece within `chunk_overlap` characters.
    Whitespace inside a piece is kept as in the original text.
    """
    words = [(m.start(), m.end()) for m in _WORD_PATTERN.finditer(text)]
    pieces: List[str] = []
    i = 0
    while i < len(words):
        start = words[i][0]
        j = i
        while j + 1 < len(words) and words[j + 1][1] - start <= chunk_size:
            j += 1
        end = words[j][1]
        pieces.append(text[start:end])
        if j + 1 >= len(words):
            break

        # Walk back from the next unseen word while the shared tail fits the overlap
        k = j + 1
        while k - 1 > i and end - words[k - 1][0] <= chunk_overlap:
            k -= 1
        i = k
    return pieces


def parse_metadata_from_filename(file_name: str, metadata: Dict[str, Any]) -> Dict[str, Any]:
    """
    Extracts subject/grade/chapter/title from a `subject-grade-chapter-title.ext`
    file name. Explicitly supplied metadata overrides the parsed fields.
    """
    if not file_name:
        return dict(metadata)

    basename = os.path.splitext(os.path.basename(file_name))[0]
    match = _FILENAME_METADATA_PATTERN.match(basename)
    if not match:
        return dict(metadata)

    return {
        "subject": match.group(1),
        "grade": match.group(2),
        "chapter": match.group(3),
        "title": match.group(4),
        **metadata,
    }


def source_file_name(file_name: str, file_id: str, file_url: str) -> str:
    """Best guess at the source file name for a job: explicit name, then storage key, then URL path."""
    if file_name:
        return file_name
    if file_id:
        return os.path.basename(file_id)
    if file_url:
        return os.path.basename(urlparse(file_url).path)
    return ""
