"""
Service layer components
"""
from .job_store import BaseJobStore, InMemoryJobStore, create_job_store
from .progress_reporter import ProgressReporter
from .job_processor import JobProcessor
from .file_storage import BaseFileStorage, LocalFileStorage
from .knowledge_base import BaseKnowledgeBase, FaissKnowledgeBase, InMemoryKnowledgeBase

__all__ = [
    "BaseJobStore",
    "InMemoryJobStore",
    "create_job_store",
    "ProgressReporter",
    "JobProcessor",
    "BaseFileStorage",
    "LocalFileStorage",
    "BaseKnowledgeBase",
    "FaissKnowledgeBase",
    "InMemoryKnowledgeBase",
]
