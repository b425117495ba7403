"""In-process encoding store and photo catalog.

``InMemoryEncodingStore`` keeps FaceEncoding rows keyed by
``(photo_id, face_index)``. Writes are all-or-nothing: a rejected batch
leaves the previous rows untouched. The store can be saved to and loaded
from a pickle file so CLI runs share one library index.
"""

from __future__ import annotations

import pickle
import threading
from collections import Counter
from pathlib import Path
from typing import Dict, List, Sequence, Tuple

import numpy as np

from facesearch.interfaces import FaceEncoding
from facesearch.logging_config import get_logger

logger = get_logger(__name__)

STORE_FORMAT_VERSION = 1


class StoreConstraintError(ValueError):
    """A batch of encodings violates a store constraint."""


class InMemoryEncodingStore:
    """Thread-safe table of FaceEncoding rows.

    Constraints enforced on every write:
    - ``(photo_id, face_index)`` is unique
    - all rows of one photo share a ``model_version``
    - all rows of one ``model_version`` share an embedding dimension

    Attributes:
        revision: Counter bumped on every successful write; vector indexes
                  use it to know when to rebuild.

    Example:
        >>> store = InMemoryEncodingStore()
        >>> store.replace_photo("p1", encodings)
        >>> len(store.get_photo("p1"))
        2
    """

    def __init__(self):
        self._rows: Dict[Tuple[str, int], FaceEncoding] = {}
        self._lock = threading.RLock()
        self._revision = 0

    @property
    def revision(self) -> int:
        with self._lock:
            return self._revision

    def _check(self, encodings: Sequence[FaceEncoding], rows: Dict[Tuple[str, int], FaceEncoding]) -> None:
        """Validate ``encodings`` against ``rows`` (which they will join)."""
        keys = [enc.key for enc in encodings]
        duplicates = [key for key, count in Counter(keys).items() if count > 1]
        if duplicates:
            raise StoreConstraintError(f"Duplicate keys in batch: {duplicates}")

        existing = [key for key in keys if key in rows]
        if existing:
            raise StoreConstraintError(f"Keys already stored: {existing}")

        photo_versions: Dict[str, str] = {}
        dims: Dict[str, int] = {}
        for row in rows.values():
            photo_versions.setdefault(row.photo_id, row.model_version)
            dims.setdefault(row.model_version, int(row.embedding.shape[0]))

        for enc in encodings:
            if enc.face_index < 0:
                raise StoreConstraintError(f"Negative face_index for photo {enc.photo_id}")

            if enc.embedding.ndim != 1 or enc.embedding.size == 0:
                raise StoreConstraintError(
                    f"Embedding of {enc.key} must be a non-empty vector, "
                    f"got shape {enc.embedding.shape}"
                )

            version = photo_versions.setdefault(enc.photo_id, enc.model_version)
            if version != enc.model_version:
                raise StoreConstraintError(
                    f"Photo {enc.photo_id} would mix model versions "
                    f"'{version}' and '{enc.model_version}'"
                )

            dim = dims.setdefault(enc.model_version, int(enc.embedding.shape[0]))
            if dim != enc.embedding.shape[0]:
                raise StoreConstraintError(
                    f"Embedding dimension {enc.embedding.shape[0]} does not match "
                    f"{dim} for model version '{enc.model_version}'"
                )

    def bulk_insert(self, encodings: Sequence[FaceEncoding]) -> None:
        """Insert all rows or none.

        Raises:
            StoreConstraintError: If any row violates a constraint.
        """
        with self._lock:
            self._check(encodings, self._rows)
            for enc in encodings:
                self._rows[enc.key] = enc
            self._revision += 1

        logger.debug(f"Inserted {len(encodings)} encoding(s)")

    def delete_by_photo(self, photo_id: str) -> int:
        """Delete every row of ``photo_id`` and return how many were removed."""
        with self._lock:
            keys = [key for key in self._rows if key[0] == photo_id]
            for key in keys:
                del self._rows[key]
            if keys:
                self._revision += 1

        logger.debug(f"Deleted {len(keys)} encoding(s) of photo {photo_id}")
        return len(keys)

    def replace_photo(self, photo_id: str, encodings: Sequence[FaceEncoding]) -> None:
        """Atomically swap the rows of ``photo_id`` for ``encodings``.

        Raises:
            StoreConstraintError: If the new rows are invalid; the old rows
                                  are kept in that case.
        """
        foreign = [enc.key for enc in encodings if enc.photo_id != photo_id]
        if foreign:
            raise StoreConstraintError(f"Rows {foreign} do not belong to photo {photo_id}")

        with self._lock:
            remaining = {key: row for key, row in self._rows.items() if key[0] != photo_id}
            self._check(encodings, remaining)
            for enc in encodings:
                remaining[enc.key] = enc
            self._rows = remaining
            self._revision += 1

        logger.debug(f"Replaced encodings of photo {photo_id} ({len(encodings)} row(s))")

    def get_photo(self, photo_id: str) -> List[FaceEncoding]:
        with self._lock:
            rows = [row for key, row in self._rows.items() if key[0] == photo_id]
        return sorted(rows, key=lambda row: row.face_index)

    def all_encodings(self) -> List[FaceEncoding]:
        with self._lock:
            return sorted(self._rows.values(), key=lambda row: row.key)

    def photo_versions(self) -> Dict[str, str]:
        """Map each stored photo to the model version of its rows."""
        with self._lock:
            return {row.photo_id: row.model_version for row in self._rows.values()}

    def __len__(self) -> int:
        with self._lock:
            return len(self._rows)

    def save(self, path: str | Path) -> None:
        """Save all rows to a pickle file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        rows = self.all_encodings()
        data = {
            "format": STORE_FORMAT_VERSION,
            "rows": [
                {
                    "photo_id": row.photo_id,
                    "face_index": row.face_index,
                    "embedding": row.embedding,
                    "bounding_box": row.bounding_box,
                    "quality_score": row.quality_score,
                    "model_version": row.model_version,
                }
                for row in rows
            ],
        }

        with open(path, "wb") as f:
            pickle.dump(data, f)

        logger.info(f"Saved {len(rows)} encodings to {path}")

    @classmethod
    def load(cls, path: str | Path) -> InMemoryEncodingStore:
        """Load a store saved with ``save``.

        Raises:
            FileNotFoundError: If the file doesn't exist.
            ValueError: If the file has an unknown format.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Encodings file not found: {path}")

        with open(path, "rb") as f:
            data = pickle.load(f)

        if data.get("format") != STORE_FORMAT_VERSION:
            raise ValueError(f"Unsupported encodings file format: {data.get('format')}")

        store = cls()
        store.bulk_insert(
            [
                FaceEncoding(
                    photo_id=row["photo_id"],
                    face_index=row["face_index"],
                    embedding=np.asarray(row["embedding"], dtype=np.float32),
                    bounding_box=tuple(row["bounding_box"]),
                    quality_score=float(row["quality_score"]),
                    model_version=row["model_version"],
                )
                for row in data["rows"]
            ]
        )

        logger.info(f"Loaded {len(store)} encodings from {path}")
        return store

    def __repr__(self) -> str:
        return f"InMemoryEncodingStore(encodings={len(self)}, revision={self.revision})"


class InMemoryPhotoCatalog:
    """Keeps the ``is_face_indexed`` flag of each photo."""

    def __init__(self):
        self._indexed: Dict[str, bool] = {}
        self._lock = threading.Lock()

    def set_indexed(self, photo_id: str, indexed: bool) -> None:
        with self._lock:
            self._indexed[photo_id] = indexed

    def is_indexed(self, photo_id: str) -> bool:
        with self._lock:
            return self._indexed.get(photo_id, False)

    def indexed_photos(self) -> List[str]:
        with self._lock:
            return sorted(pid for pid, flag in self._indexed.items() if flag)
