"""
Utility functions
"""
from .logger import setup_logging
from .text_utils import parse_metadata_from_filename, split_text

__all__ = [
    "setup_logging",
    "parse_metadata_from_filename",
    "split_text",
]
