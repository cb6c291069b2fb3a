import os
import re
import json
import logging
from abc import ABC, abstractmethod
from threading import RLock
from typing import Dict, List, Optional, Tuple

import faiss
import numpy as np

from kb_ingest.models.chunk import StoredChunk

logger = logging.getLogger(__name__)

CollectionKey = Tuple[str, str, str] # (subject, grade, chapter)


def collection_key(chunk: StoredChunk) -> CollectionKey:
    return (chunk.subject, chunk.grade, chunk.chapter)


def _matches(key: CollectionKey, subject: Optional[str], grade: Optional[str], chapter: Optional[str]) -> bool:
    return (
        (subject is None or key[0] == subject)
        and (grade is None or key[1] == grade)
        and (chapter is None or key[2] == chapter)
    )


def _check_dimensions(chunks: List[StoredChunk], expected: Optional[int] = None) -> Optional[int]:
    """Returns the shared dimension of the non-empty embeddings, raising ValueError on a mismatch."""
    dimension = expected
    for chunk in chunks:
        if not chunk.embedding:
            continue
        if dimension is None:
            dimension = len(chunk.embedding)
        elif len(chunk.embedding) != dimension:
            raise ValueError(
                f"Embedding dimension mismatch for chunk {chunk.chunk_index}. "
                f"Expected: {dimension}, Got: {len(chunk.embedding)}"
            )
    return dimension


class BaseKnowledgeBase(ABC):
    """
    Chunk storage for semantic search, organised in collections keyed by
    (subject, grade, chapter). Chunks whose embedding failed are stored but
    are never returned by a vector query.
    """
    @abstractmethod
    def add_chunks(self, chunks: List[StoredChunk]) -> int:
        """Stores all chunks or none of them. Returns the number stored."""
        pass

    @abstractmethod
    def delete_chunks(self, subject: str, grade: str, chapter: str) -> int:
        """Removes a collection. Returns the number of chunks deleted."""
        pass

    @abstractmethod
    def get_chunks(self, subject: str, grade: str, chapter: str) -> List[StoredChunk]:
        pass

    @abstractmethod
    def query(
        self,
        embedding: List[float],
        k: int = 5,
        subject: Optional[str] = None,
        grade: Optional[str] = None,
        chapter: Optional[str] = None,
    ) -> List[Tuple[float, StoredChunk]]:
        """Returns up to k (L2 distance, chunk) pairs, closest first."""
        pass


class InMemoryKnowledgeBase(BaseKnowledgeBase):
    def __init__(self):
        self._collections: Dict[CollectionKey, List[StoredChunk]] = {}
        self._lock = RLock()

    def add_chunks(self, chunks: List[StoredChunk]) -> int:
        if not chunks:
            return 0
        with self._lock:
            grouped: Dict[CollectionKey, List[StoredChunk]] = {}
            for chunk in chunks:
                grouped.setdefault(collection_key(chunk), []).append(chunk)
            for key, new_chunks in grouped.items():
                existing = self._collections.get(key, [])
                _check_dimensions(existing + new_chunks)
            for key, new_chunks in grouped.items():
                self._collections.setdefault(key, []).extend(c.model_copy(deep=True) for c in new_chunks)
            return len(chunks)

    def delete_chunks(self, subject: str, grade: str, chapter: str) -> int:
        with self._lock:
            removed = self._collections.pop((subject, grade, chapter), [])
            return len(removed)

    def get_chunks(self, subject: str, grade: str, chapter: str) -> List[StoredChunk]:
        with self._lock:
            return [c.model_copy(deep=True) for c in self._collections.get((subject, grade, chapter), [])]

    def query(self, embedding, k=5, subject=None, grade=None, chapter=None):
        with self._lock:
            candidates = [
                chunk
                for key, chunks in self._collections.items() if _matches(key, subject, grade, chapter)
                for chunk in chunks if len(chunk.embedding) == len(embedding)
            ]
        if not candidates or k <= 0:
            return []
        query_np = np.array(embedding, dtype="float32")
        vectors = np.array([c.embedding for c in candidates], dtype="float32")
        # Squared L2, matching faiss.IndexFlatL2
        distances = ((vectors - query_np) ** 2).sum(axis=1)
        order = np.argsort(distances)[:k]
        return [(float(distances[i]), candidates[i]) for i in order]


class FaissKnowledgeBase(BaseKnowledgeBase):
    """
    Persists each collection to disk as a FAISS IndexFlatL2 plus its chunk list.
    The index only holds chunks with an embedding; an ID map links index rows
    back to positions in the chunk list.
    """
    def __init__(self, storage_path: str):
        self._storage_path = storage_path
        self._chunks: Dict[CollectionKey, List[StoredChunk]] = {}
        self._indexes: Dict[CollectionKey, faiss.IndexFlatL2] = {}
        self._id_maps: Dict[CollectionKey, List[int]] = {}
        self._lock = RLock()
        os.makedirs(self._storage_path, exist_ok=True)
        self._load_from_disk()

    @staticmethod
    def _collection_name(key: CollectionKey) -> str:
        return "__".join(re.sub(r"[^A-Za-z0-9_-]", "_", part) for part in key)

    def _paths(self, key: CollectionKey) -> Tuple[str, str]:
        name = self._collection_name(key)
        return (
            os.path.join(self._storage_path, f"index_{name}.faiss"),
            os.path.join(self._storage_path, f"chunks_{name}.json"),
        )

    def _load_from_disk(self):
        """Loads every persisted collection."""
        with self._lock:
            for filename in os.listdir(self._storage_path):
                if not (filename.startswith("chunks_") and filename.endswith(".json")):
                    continue
                chunks_path = os.path.join(self._storage_path, filename)
                try:
                    with open(chunks_path, "r", encoding="utf-8") as f:
                        chunks = [StoredChunk(**data) for data in json.load(f)]
                    if not chunks:
                        continue
                    key = collection_key(chunks[0])
                    self._install(key, chunks, self._read_index(key))
                except Exception as e:
                    logger.error(f"Failed to load knowledge base collection from {chunks_path}: {e}")
            logger.info(f"Initialized FaissKnowledgeBase. Loaded {len(self._chunks)} collections.")

    def _read_index(self, key: CollectionKey) -> Optional[faiss.Index]:
        index_path, _ = self._paths(key)
        if not os.path.exists(index_path):
            return None
        try:
            return faiss.read_index(index_path)
        except Exception as e:
            logger.warning(f"Could not read FAISS index {index_path}, it will be rebuilt: {e}")
            return None

    def _install(self, key: CollectionKey, chunks: List[StoredChunk], index: Optional[faiss.Index] = None):
        """
        Installs a collection in memory. A given index is used only when it has
        one row per embedded chunk; otherwise the index is rebuilt from the chunks.
        """
        id_map = [i for i, chunk in enumerate(chunks) if chunk.embedding]
        self._chunks[key] = chunks
        self._id_maps[key] = id_map
        if id_map:
            dimension = len(chunks[id_map[0]].embedding)
            if index is None or index.ntotal != len(id_map) or index.d != dimension:
                if index is not None:
                    logger.warning(f"FAISS index for {key} does not match its chunks. Rebuilding.")
                index = faiss.IndexFlatL2(dimension)
                index.add(np.array([chunks[i].embedding for i in id_map], dtype="float32"))
            self._indexes[key] = index
        else:
            self._indexes.pop(key, None)

    def _save_collection(self, key: CollectionKey, chunks: List[StoredChunk]) -> Optional[faiss.Index]:
        """Writes a collection to temporary files and swaps them in place. Returns the written index."""
        index_path, chunks_path = self._paths(key)
        vectors = [c.embedding for c in chunks if c.embedding]
        index = None
        if vectors:
            index = faiss.IndexFlatL2(len(vectors[0]))
            index.add(np.array(vectors, dtype="float32"))
            faiss.write_index(index, index_path + ".tmp")
        with open(chunks_path + ".tmp", "w", encoding="utf-8") as f:
            json.dump([c.model_dump(mode="json") for c in chunks], f, ensure_ascii=False)
        if vectors:
            os.replace(index_path + ".tmp", index_path)
        elif os.path.exists(index_path):
            os.remove(index_path)
        os.replace(chunks_path + ".tmp", chunks_path)
        return index

    def add_chunks(self, chunks: List[StoredChunk]) -> int:
        if not chunks:
            return 0
        with self._lock:
            grouped: Dict[CollectionKey, List[StoredChunk]] = {}
            for chunk in chunks:
                grouped.setdefault(collection_key(chunk), []).append(chunk)

            # Validate everything before touching disk
            merged: Dict[CollectionKey, List[StoredChunk]] = {}
            for key, new_chunks in grouped.items():
                existing = self._chunks.get(key, [])
                _check_dimensions(existing + new_chunks)
                merged[key] = existing + new_chunks

            previous = {key: list(self._chunks.get(key, [])) for key in merged}
            try:
                for key, collection in merged.items():
                    self._install(key, collection, self._save_collection(key, collection))
            except Exception:
                logger.error("Failed to persist knowledge base batch. Restoring previous collections.", exc_info=True)
                for key, collection in previous.items():
                    if collection:
                        self._install(key, collection, self._save_collection(key, collection))
                    else:
                        self._drop(key)
                raise

            logger.info(f"Stored {len(chunks)} chunks across {len(merged)} collections.")
            return len(chunks)

    def _drop(self, key: CollectionKey) -> int:
        removed = self._chunks.pop(key, [])
        self._indexes.pop(key, None)
        self._id_maps.pop(key, None)
        for path in self._paths(key):
            if os.path.exists(path):
                os.remove(path)
        return len(removed)

    def delete_chunks(self, subject: str, grade: str, chapter: str) -> int:
        with self._lock:
            removed = self._drop((subject, grade, chapter))
            logger.info(f"Deleted {removed} chunks for {subject}/{grade}/{chapter}.")
            return removed

    def get_chunks(self, subject: str, grade: str, chapter: str) -> List[StoredChunk]:
        with self._lock:
            return [c.model_copy(deep=True) for c in self._chunks.get((subject, grade, chapter), [])]

    def query(self, embedding, k=5, subject=None, grade=None, chapter=None):
        if k <= 0:
            return []
        query_np = np.array([embedding], dtype="float32")
        results: List[Tuple[float, StoredChunk]] = []
        with self._lock:
            for key, index in self._indexes.items():
                if not _matches(key, subject, grade, chapter) or index.d != query_np.shape[1]:
                    continue
                distances, rows = index.search(query_np, min(k, index.ntotal))
                for dist, row in zip(distances[0], rows[0]):
                    if row == -1: # FAISS returns -1 for empty slots
                        continue
                    chunk = self._chunks[key][self._id_maps[key][row]]
                    results.append((float(dist), chunk))
        # Sort by distance (smaller distance is better)
        results.sort(key=lambda x: x[0])
        return results[:k]


def create_knowledge_base(backend: str, storage_path: str) -> BaseKnowledgeBase:
    backend = backend.lower()
    if backend == "faiss":
        return FaissKnowledgeBase(storage_path)
    if backend == "memory":
        return InMemoryKnowledgeBase()
    raise ValueError(f"Unsupported KNOWLEDGE_BASE_BACKEND: {backend}")
