# core/vector_index.py

import heapq
import logging
import pickle
import re
import sqlite3
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

import faiss
import numpy as np

from core import codec
from core.exceptions import DimensionMismatch, IndexClosed
from core.models import SimilarityResult

logger = logging.getLogger(__name__)

_TABLE_NAME = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')
LOCK_STRIPES = 64
# Relative tolerance for FAISS squared distances when deciding a search is complete
_SEARCH_SLACK = 1e-4


def l2_distances(matrix: np.ndarray, query: np.ndarray) -> np.ndarray:
    """
    Euclidean distance from `query` to every row of `matrix`.

    Summed in float64, then rounded to float32 so that vectors at the same
    distance compare equal regardless of summation order and ties fall
    through to the owner id.
    """
    diff = matrix.astype(np.float64) - query.astype(np.float64)
    return np.sqrt(np.einsum('ij,ij->i', diff, diff)).astype(np.float32)


class VectorIndex(ABC):
    """
    Storage and query port for fixed-dimension embedding vectors.

    Every stored vector belongs to exactly one owner id (an image id or a
    label id). Distances are Euclidean.
    """

    def __init__(self, dimension: int = codec.EMBEDDING_DIMENSION):
        self.dimension = dimension

    @abstractmethod
    def upsert(self, owner_id: str, vector) -> None:
        """
        Store `vector` for `owner_id`, replacing any previous vector.

        Raises:
            DimensionMismatch: if the vector length is not `dimension`
        """
        pass

    @abstractmethod
    def remove(self, owner_id: str) -> None:
        """Delete the vector of `owner_id`; no-op if absent"""
        pass

    @abstractmethod
    def find_nearest(self, query, limit: int,
                     exclude: Iterable[str] = ()) -> List[SimilarityResult]:
        """
        Exact k-nearest-neighbour search.

        Args:
            query: Vector of length `dimension`
            limit: Maximum number of results (>= 1)
            exclude: Owner ids that must not appear in the results

        Returns:
            Results ordered by ascending distance, ties by ascending owner id
        """
        pass

    @abstractmethod
    def get(self, owner_id: str) -> Optional[np.ndarray]:
        pass

    @abstractmethod
    def generated_at(self, owner_id: str) -> Optional[datetime]:
        pass

    @abstractmethod
    def count(self) -> int:
        pass

    @abstractmethod
    def list_owner_ids(self) -> List[str]:
        pass

    @abstractmethod
    def close(self) -> None:
        pass

    def contains(self, owner_id: str) -> bool:
        return self.get(owner_id) is not None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def _prepare_vector(self, vector) -> np.ndarray:
        vector = codec.as_vector(vector, self.dimension)
        if not np.all(np.isfinite(vector)):
            raise ValueError("Embedding contains NaN or infinite values")
        return vector

    def _prepare_query(self, query, limit: int) -> np.ndarray:
        if limit < 1:
            raise ValueError(f"limit must be >= 1, got {limit}")
        return self._prepare_vector(query)


class SqliteVectorIndex(VectorIndex):
    """
    Exact brute-force index persisted in a SQLite table.

    Vectors are stored as codec-encoded blobs, one row per owner, and
    mirrored in an in-memory numpy cache that serves all reads. Writes for
    the same owner are serialised by a striped per-owner lock; `INSERT OR REPLACE`
    makes each write an atomic row replacement.
    """

    def __init__(self,
                 db_path: Optional[str] = None,
                 table: str = "image_embeddings",
                 dimension: int = codec.EMBEDDING_DIMENSION):
        super().__init__(dimension)
        if not _TABLE_NAME.match(table):
            raise ValueError(f"Invalid table name: {table!r}")

        self.db_path = db_path
        self.table = table

        self._vectors: Dict[str, np.ndarray] = {}
        self._generated: Dict[str, datetime] = {}
        self._cache_lock = threading.Lock()
        self._snapshot_ids: List[str] = []
        self._snapshot_matrix = np.empty((0, dimension), dtype=np.float32)
        self._dirty = False

        # Fixed pool; owners hashing to the same stripe share a lock
        self._owner_locks = [threading.Lock() for _ in range(LOCK_STRIPES)]

        self._local = threading.local()
        self._connections: List[sqlite3.Connection] = []
        self._connections_lock = threading.Lock()
        self._closed = False

        if self.db_path is not None:
            self._initialize_database()
            self._load_cache()

    def _initialize_database(self):
        """Create the vector table"""
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        conn = self._connection()
        with conn:
            conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {self.table} (
                    owner_id TEXT PRIMARY KEY,
                    vector BLOB NOT NULL,
                    generated_at TEXT NOT NULL
                )
            """)

    def _connection(self) -> sqlite3.Connection:
        """One connection per thread; all of them are closed by close()"""
        conn = getattr(self._local, 'conn', None)
        if conn is not None:
            return conn

        with self._connections_lock:
            if self._closed:
                raise IndexClosed(f"Vector index '{self.table}' is closed")
            conn = sqlite3.connect(self.db_path, timeout=5.0,
                                   check_same_thread=False)
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")
            conn.execute("PRAGMA busy_timeout=5000")
            self._connections.append(conn)

        self._local.conn = conn
        return conn

    def _load_cache(self):
        """Decode every stored row into the in-memory cache"""
        conn = self._connection()
        rows = conn.execute(
            f"SELECT owner_id, vector, generated_at FROM {self.table}"
        ).fetchall()

        skipped = 0
        for owner_id, blob, generated_at in rows:
            try:
                vector = codec.decode(blob, self.dimension)
            except DimensionMismatch as e:
                logger.warning(f"Skipping stored vector for {owner_id}: {e}")
                skipped += 1
                continue
            self._vectors[owner_id] = vector
            self._generated[owner_id] = datetime.fromisoformat(generated_at)

        self._dirty = True
        logger.info(
            f"Loaded {len(self._vectors)} vectors from {self.table}"
            + (f" ({skipped} skipped)" if skipped else "")
        )

    def _owner_lock(self, owner_id: str) -> threading.Lock:
        return self._owner_locks[hash(owner_id) % LOCK_STRIPES]

    def _check_open(self):
        if self._closed:
            raise IndexClosed(f"Vector index '{self.table}' is closed")

    def upsert(self, owner_id: str, vector) -> None:
        vector = self._prepare_vector(vector)
        blob = codec.encode(vector, self.dimension)
        generated_at = datetime.now()

        with self._owner_lock(owner_id):
            self._check_open()
            if self.db_path is not None:
                conn = self._connection()
                with conn:
                    conn.execute(
                        f"INSERT OR REPLACE INTO {self.table} "
                        f"(owner_id, vector, generated_at) VALUES (?, ?, ?)",
                        (owner_id, blob, generated_at.isoformat())
                    )
            with self._cache_lock:
                self._vectors[owner_id] = codec.decode(blob, self.dimension)
                self._generated[owner_id] = generated_at
                self._dirty = True

    def remove(self, owner_id: str) -> None:
        with self._owner_lock(owner_id):
            self._check_open()
            if self.db_path is not None:
                conn = self._connection()
                with conn:
                    conn.execute(
                        f"DELETE FROM {self.table} WHERE owner_id = ?",
                        (owner_id,)
                    )
            with self._cache_lock:
                if self._vectors.pop(owner_id, None) is not None:
                    self._dirty = True
                self._generated.pop(owner_id, None)

    def _snapshot(self) -> Tuple[List[str], np.ndarray]:
        """Immutable (ids, matrix) view of the cache for lock-free scans"""
        with self._cache_lock:
            if self._dirty:
                ids = sorted(self._vectors)
                if ids:
                    matrix = np.stack([self._vectors[i] for i in ids])
                else:
                    matrix = np.empty((0, self.dimension), dtype=np.float32)
                self._snapshot_ids = ids
                self._snapshot_matrix = matrix
                self._dirty = False
            return self._snapshot_ids, self._snapshot_matrix

    def find_nearest(self, query, limit: int,
                     exclude: Iterable[str] = ()) -> List[SimilarityResult]:
        query = self._prepare_query(query, limit)
        self._check_open()
        excluded = set(exclude or ())

        ids, matrix = self._snapshot()
        if not ids:
            return []

        distances = l2_distances(matrix, query)

        candidates = (
            (float(dist), owner_id)
            for dist, owner_id in zip(distances, ids)
            if owner_id not in excluded
        )
        return [
            SimilarityResult(owner_id=owner_id, distance=dist)
            for dist, owner_id in heapq.nsmallest(limit, candidates)
        ]

    def get(self, owner_id: str) -> Optional[np.ndarray]:
        self._check_open()
        vector = self._vectors.get(owner_id)
        return None if vector is None else vector.copy()

    def generated_at(self, owner_id: str) -> Optional[datetime]:
        return self._generated.get(owner_id)

    def count(self) -> int:
        self._check_open()
        return len(self._vectors)

    def list_owner_ids(self) -> List[str]:
        self._check_open()
        with self._cache_lock:
            return sorted(self._vectors)

    def close(self) -> None:
        with self._connections_lock:
            if self._closed:
                return
            self._closed = True
            connections, self._connections = self._connections, []

        for conn in connections:
            conn.close()
        logger.debug(f"Closed vector index '{self.table}'")


class FaissVectorIndex(VectorIndex):
    """
    FAISS-backed exact index (IndexFlatL2 behind an IndexIDMap2).

    FAISS reports squared L2 distances from its own float32 kernels. Those
    only select candidates; the returned distances are re-measured with
    l2_distances against the reconstructed vectors, as SqliteVectorIndex
    does, so both backends order and report results identically.

    With an index_path, close() saves the index to disk.
    """

    def __init__(self,
                 dimension: int = codec.EMBEDDING_DIMENSION,
                 index_path: Optional[str] = None):
        super().__init__(dimension)
        self.index_path = Path(index_path) if index_path else None
        self.index = None
        self.owner_to_id: Dict[str, int] = {}
        self.id_to_owner: Dict[int, str] = {}
        self._generated: Dict[str, datetime] = {}
        self._next_id = 0
        self._lock = threading.RLock()
        self._closed = False
        self.create_index()

    def create_index(self):
        """Create an empty exact index"""
        self.index = faiss.IndexIDMap2(faiss.IndexFlatL2(self.dimension))
        self.owner_to_id = {}
        self.id_to_owner = {}
        self._generated = {}
        self._next_id = 0

    def _check_open(self):
        if self._closed:
            raise IndexClosed("FAISS vector index is closed")

    def upsert(self, owner_id: str, vector) -> None:
        vector = self._prepare_vector(vector)
        with self._lock:
            self._check_open()
            internal_id = self.owner_to_id.get(owner_id)
            if internal_id is None:
                internal_id = self._next_id
                self._next_id += 1
            else:
                self.index.remove_ids(np.array([internal_id], dtype=np.int64))

            self.index.add_with_ids(vector.reshape(1, -1),
                                    np.array([internal_id], dtype=np.int64))
            self.owner_to_id[owner_id] = internal_id
            self.id_to_owner[internal_id] = owner_id
            self._generated[owner_id] = datetime.now()

    def remove(self, owner_id: str) -> None:
        with self._lock:
            self._check_open()
            internal_id = self.owner_to_id.pop(owner_id, None)
            if internal_id is None:
                return
            self.index.remove_ids(np.array([internal_id], dtype=np.int64))
            del self.id_to_owner[internal_id]
            self._generated.pop(owner_id, None)

    def find_nearest(self, query, limit: int,
                     exclude: Iterable[str] = ()) -> List[SimilarityResult]:
        query = self._prepare_query(query, limit)
        excluded = set(exclude or ())

        with self._lock:
            self._check_open()
            total = self.index.ntotal
            if total == 0:
                return []

            present_excluded = sum(1 for o in excluded if o in self.owner_to_id)
            k = min(total, limit + present_excluded + 1)
            while True:
                distances, labels = self.index.search(query.reshape(1, -1), k)
                eligible = [
                    (float(dist), self.id_to_owner[int(label)])
                    for dist, label in zip(distances[0], labels[0])
                    if label != -1 and self.id_to_owner[int(label)] not in excluded
                ]
                # Anything not fetched is at least as far as the last hit, so the
                # first `limit` hits are final once the boundary clears the
                # rounding noise of the FAISS kernel.
                if k >= total:
                    break
                if len(eligible) > limit:
                    edge = eligible[limit - 1][0]
                    if eligible[limit][0] > edge + _SEARCH_SLACK * (1.0 + edge):
                        break
                k = min(total, k * 2)

            if not eligible:
                return []
            owners = [owner_id for _, owner_id in eligible]
            matrix = np.stack([self.index.reconstruct(self.owner_to_id[o]) for o in owners])

        distances = l2_distances(matrix, query)
        results = sorted(zip(distances.tolist(), owners))
        return [SimilarityResult(owner_id=o, distance=d) for d, o in results[:limit]]

    def get(self, owner_id: str) -> Optional[np.ndarray]:
        with self._lock:
            self._check_open()
            internal_id = self.owner_to_id.get(owner_id)
            if internal_id is None:
                return None
            return np.array(self.index.reconstruct(internal_id), dtype=np.float32)

    def generated_at(self, owner_id: str) -> Optional[datetime]:
        return self._generated.get(owner_id)

    def count(self) -> int:
        self._check_open()
        return len(self.owner_to_id)

    def list_owner_ids(self) -> List[str]:
        with self._lock:
            self._check_open()
            return sorted(self.owner_to_id)

    def save(self):
        """Save index and id mapping"""
        if self.index_path is None:
            raise ValueError("No index_path configured")
        with self._lock:
            self._check_open()
            self.index_path.parent.mkdir(parents=True, exist_ok=True)
            faiss.write_index(self.index, str(self.index_path))

            with open(self.index_path.with_suffix('.pkl'), 'wb') as f:
                pickle.dump({
                    'owner_to_id': self.owner_to_id,
                    'generated': self._generated,
                    'next_id': self._next_id,
                }, f)
        logger.info(f"Saved {len(self.owner_to_id)} vectors to {self.index_path}")

    def load(self) -> bool:
        """Load an existing index; returns False if none is on disk"""
        if self.index_path is None or not self.index_path.exists():
            logger.info("Index file not found")
            return False

        metadata_path = self.index_path.with_suffix('.pkl')
        if not metadata_path.exists():
            logger.warning(f"Index metadata not found next to {self.index_path}")
            return False

        index = faiss.read_index(str(self.index_path))
        if index.d != self.dimension:
            raise DimensionMismatch(self.dimension, index.d)

        with open(metadata_path, 'rb') as f:
            metadata = pickle.load(f)

        with self._lock:
            self.index = index
            self.owner_to_id = dict(metadata['owner_to_id'])
            self.id_to_owner = {v: k for k, v in self.owner_to_id.items()}
            self._generated = dict(metadata.get('generated', {}))
            self._next_id = metadata.get('next_id', len(self.owner_to_id))
        logger.info(f"Loaded {len(self.owner_to_id)} vectors from {self.index_path}")
        return True

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            if self.index_path is not None:
                self.save()
            self._closed = True
            self.index = None
            self.owner_to_id = {}
            self.id_to_owner = {}


def create_vector_index(index_config, table: str) -> VectorIndex:
    """
    Build the vector index configured in `index_config`.

    Args:
        index_config: VectorIndexConfig
        table: Logical index name, e.g. "image_embeddings" or "label_embeddings"
    """
    backend = index_config.backend.lower()
    dimension = index_config.dimension

    if backend == "sqlite":
        return SqliteVectorIndex(db_path=index_config.database_path,
                                 table=table, dimension=dimension)
    if backend == "memory":
        return SqliteVectorIndex(db_path=None, table=table, dimension=dimension)
    if backend == "faiss":
        index_path = Path(index_config.index_dir) / f"{table}.index"
        index = FaissVectorIndex(dimension=dimension, index_path=str(index_path))
        index.load()
        return index

    raise ValueError(f"Unknown vector index backend: {index_config.backend}")
