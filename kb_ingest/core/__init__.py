"""
Core pipeline components
"""
from .chunker import Chunker
from .downloader import Downloader
from .embedder import Embedder
from .extractor import extract_text

__all__ = [
    "Chunker",
    "Downloader",
    "Embedder",
    "extract_text",
]
