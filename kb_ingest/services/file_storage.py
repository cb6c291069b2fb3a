import os
import logging
from abc import ABC, abstractmethod
from threading import Lock
from typing import Iterable, Optional

from kb_ingest.errors import InvalidInputError

logger = logging.getLogger(__name__)

ALLOWED_CONTENT_TYPES = ("application/pdf", "text/plain", "text/markdown")


class BaseFileStorage(ABC):
    """
    Object storage for source documents, addressed by bucket and path.
    """
    max_size_bytes: Optional[int] = None # Upload size limit, None for unlimited

    @abstractmethod
    def download(self, bucket: str, path: str) -> bytes:
        """Returns the stored bytes or raises FileNotFoundError."""
        pass

    @abstractmethod
    def upload(self, bucket: str, path: str, data: bytes, content_type: str) -> str:
        """Stores `data` and returns its path within the bucket."""
        pass


class LocalFileStorage(BaseFileStorage):
    """
    Keeps each bucket as a directory on the local filesystem. In production this
    would be an object store; the interface is the same.
    """
    def __init__(
        self,
        storage_path: str,
        max_size_bytes: int = 50 * 1024 * 1024,
        allowed_content_types: Iterable[str] = ALLOWED_CONTENT_TYPES,
    ):
        self._storage_path = storage_path
        self.max_size_bytes = max_size_bytes
        self.allowed_content_types = tuple(allowed_content_types)
        self._lock = Lock()
        os.makedirs(self._storage_path, exist_ok=True)
        logger.info(f"Initialized local file storage at {self._storage_path}.")

    def _get_file_path(self, bucket: str, path: str) -> str:
        """Resolves bucket/path under the storage root, refusing paths that escape it."""
        bucket_root = os.path.realpath(os.path.join(self._storage_path, bucket))
        file_path = os.path.realpath(os.path.join(bucket_root, path))
        if os.path.commonpath([bucket_root, file_path]) != bucket_root or file_path == bucket_root:
            raise InvalidInputError(f"Invalid storage path: {path}")
        return file_path

    def download(self, bucket: str, path: str) -> bytes:
        file_path = self._get_file_path(bucket, path)
        if not os.path.isfile(file_path):
            raise FileNotFoundError(f"Object '{path}' not found in bucket '{bucket}'.")
        with open(file_path, "rb") as f:
            data = f.read()
        logger.debug(f"Read {len(data)} bytes from {bucket}/{path}")
        return data

    def upload(self, bucket: str, path: str, data: bytes, content_type: str) -> str:
        self.validate(data, content_type)
        file_path = self._get_file_path(bucket, path)
        with self._lock:
            if os.path.exists(file_path):
                logger.warning(f"Object {bucket}/{path} already exists. Overwriting.")
            os.makedirs(os.path.dirname(file_path), exist_ok=True)
            with open(file_path, "wb") as f:
                f.write(data)
        logger.info(f"Stored {len(data)} bytes at {bucket}/{path}")
        return path

    def validate(self, data: bytes, content_type: Optional[str]) -> None:
        if not data:
            raise InvalidInputError("Uploaded file is empty.")
        if len(data) > self.max_size_bytes:
            raise InvalidInputError(
                f"File is too large ({len(data)} bytes). Maximum size is {self.max_size_bytes} bytes."
            )
        if content_type not in self.allowed_content_types:
            raise InvalidInputError(
                f"Unsupported content type '{content_type}'. Allowed: {', '.join(self.allowed_content_types)}"
            )
