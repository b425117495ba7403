"""Vector search over stored face encodings.

``FaissVectorSearch`` is an exact cosine search built with FAISS over an
EncodingStore, one index per model version so that a search never compares
descriptors from different embedding spaces. ``ResilientVectorSearch``
wraps any VectorSearch with a per-call timeout and retries with
exponential backoff.
"""

from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

import faiss
import numpy as np

from facesearch.exceptions import VectorSearchUnavailable
from facesearch.interfaces import EncodingStore, MatchCandidate, VectorSearch
from facesearch.logging_config import get_logger
from facesearch.utils import l2_normalize

logger = get_logger(__name__)


@dataclass
class _VersionIndex:
    index: faiss.Index
    photo_ids: List[str]


class FaissVectorSearch:
    """Exact k-NN over the encodings of an EncodingStore.

    Embeddings are L2-normalized and indexed with ``IndexFlatIP``, so the
    inner product is the cosine similarity and ``distance = 1 - similarity``
    (0 = identical). Indexes are rebuilt lazily when the store revision
    changes.

    Example:
        >>> search = FaissVectorSearch(store)
        >>> candidates = search.search(query, max_distance=0.2, limit=50,
        ...                            model_version="insightface-buffalo_l-precise")
    """

    def __init__(self, store: EncodingStore):
        self.store = store
        self._indexes: Dict[str, _VersionIndex] = {}
        self._built_revision: Optional[int] = None
        self._lock = threading.Lock()

    def _refresh(self) -> Dict[str, _VersionIndex]:
        with self._lock:
            revision = self.store.revision
            if revision == self._built_revision:
                return self._indexes

            grouped: Dict[str, list] = {}
            for row in self.store.all_encodings():
                grouped.setdefault(row.model_version, []).append(row)

            indexes = {}
            for version, rows in grouped.items():
                matrix = np.stack([row.embedding for row in rows]).astype(np.float32)
                matrix = np.ascontiguousarray(l2_normalize(matrix), dtype=np.float32)

                index = faiss.IndexFlatIP(matrix.shape[1])
                index.add(matrix)
                indexes[version] = _VersionIndex(
                    index=index, photo_ids=[row.photo_id for row in rows]
                )

            self._indexes = indexes
            self._built_revision = revision

            logger.info(
                f"Built FAISS indexes for {len(indexes)} model version(s) "
                f"at store revision {revision}"
            )
            return indexes

    def search(
        self,
        query_embedding: np.ndarray,
        max_distance: float,
        limit: int,
        model_version: Optional[str] = None,
    ) -> List[MatchCandidate]:
        """Return up to ``limit`` encodings within ``max_distance``, ascending.

        Raises:
            ValueError: If the query has the wrong dimension, or
                        ``model_version`` is omitted while several versions
                        are stored.
        """
        if limit < 1:
            return []

        indexes = self._refresh()

        if model_version is None:
            if len(indexes) > 1:
                raise ValueError(
                    f"model_version is required, store holds {sorted(indexes)}"
                )
            if not indexes:
                return []
            model_version = next(iter(indexes))

        entry = indexes.get(model_version)
        if entry is None or entry.index.ntotal == 0:
            return []

        query = np.asarray(query_embedding, dtype=np.float32).reshape(1, -1)
        if query.shape[1] != entry.index.d:
            raise ValueError(
                f"Expected query dimension {entry.index.d}, got {query.shape[1]}"
            )
        query = np.ascontiguousarray(l2_normalize(query), dtype=np.float32)

        k = min(limit, entry.index.ntotal)
        similarities, indices = entry.index.search(query, k)

        candidates = []
        for similarity, idx in zip(similarities[0], indices[0]):
            if idx == -1:
                break
            distance = float(max(0.0, 1.0 - float(similarity)))
            if distance <= max_distance:
                candidates.append(MatchCandidate(photo_id=entry.photo_ids[idx], distance=distance))

        candidates.sort(key=lambda c: c.distance)

        logger.debug(
            f"Vector search returned {len(candidates)} candidate(s) "
            f"(k={k}, max_distance={max_distance})"
        )
        return candidates

    def __repr__(self) -> str:
        sizes = {version: entry.index.ntotal for version, entry in self._indexes.items()}
        return f"FaissVectorSearch(indexes={sizes})"


class ResilientVectorSearch:
    """Adds a timeout and retries with exponential backoff to a VectorSearch.

    A call that times out is abandoned (its worker finishes in the
    background and the result is discarded).

    Attributes:
        timeout: Seconds allowed per attempt
        retries: Extra attempts after the first failure
        backoff: Sleep before the first retry, doubled for each later retry
    """

    def __init__(
        self,
        inner: VectorSearch,
        *,
        timeout: float = 10.0,
        retries: int = 2,
        backoff: float = 0.5,
        max_workers: int = 4,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.inner = inner
        self.timeout = timeout
        self.retries = retries
        self.backoff = backoff
        self._sleep = sleep
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="vector-search"
        )

    def search(
        self,
        query_embedding: np.ndarray,
        max_distance: float,
        limit: int,
        model_version: Optional[str] = None,
    ) -> List[MatchCandidate]:
        """Search through ``inner``.

        Raises:
            VectorSearchUnavailable: If every attempt failed or timed out.
        """
        attempts = self.retries + 1
        reason = "no attempt made"

        for attempt in range(1, attempts + 1):
            future = self._executor.submit(
                self.inner.search, query_embedding, max_distance, limit, model_version
            )
            try:
                return future.result(timeout=self.timeout)
            except FutureTimeoutError:
                future.cancel()
                reason = f"timed out after {self.timeout:.1f}s"
            except ValueError:
                # Bad query, retrying will not help
                raise
            except Exception as e:
                reason = f"{type(e).__name__}: {e}"

            logger.warning(f"Vector search attempt {attempt}/{attempts} failed: {reason}")

            if attempt < attempts:
                self._sleep(self.backoff * (2 ** (attempt - 1)))

        raise VectorSearchUnavailable(attempts, reason)

    def close(self) -> None:
        self._executor.shutdown(wait=False)

    def __repr__(self) -> str:
        return (
            f"ResilientVectorSearch(inner={self.inner!r}, timeout={self.timeout}, "
            f"retries={self.retries})"
        )
