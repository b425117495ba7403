"""Core interfaces and data structures for face indexing and search.

Detectors, embedders, stores and the vector search service are described by
Protocols so that backends and external collaborators can be swapped (or
faked in tests) without touching the pipelines.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, List, Optional, Protocol, Sequence, Tuple, runtime_checkable

import numpy as np


class Tier(str, Enum):
    """Detection capability tier."""

    FAST = "fast"
    PRECISE = "precise"


@dataclass
class BBox:
    """Bounding box for a detected face, in corner form.

    Attributes:
        x1: Left edge x-coordinate (pixels)
        y1: Top edge y-coordinate (pixels)
        x2: Right edge x-coordinate (pixels)
        y2: Bottom edge y-coordinate (pixels)
    """

    x1: int
    y1: int
    x2: int
    y2: int

    @property
    def width(self) -> int:
        return self.x2 - self.x1

    @property
    def height(self) -> int:
        return self.y2 - self.y1

    def clamp(self, img_width: int, img_height: int) -> BBox:
        """Clamp coordinates to image boundaries."""
        return BBox(
            x1=max(0, min(self.x1, img_width - 1)),
            y1=max(0, min(self.y1, img_height - 1)),
            x2=max(0, min(self.x2, img_width - 1)),
            y2=max(0, min(self.y2, img_height - 1)),
        )

    def scale(self, factor: float) -> BBox:
        """Map the box to an image resized by ``factor``."""
        return BBox(
            x1=int(round(self.x1 * factor)),
            y1=int(round(self.y1 * factor)),
            x2=int(round(self.x2 * factor)),
            y2=int(round(self.y2 * factor)),
        )

    def to_xywh(self) -> Tuple[int, int, int, int]:
        """Return the box as ``(x, y, width, height)``."""
        return (self.x1, self.y1, self.width, self.height)

    def __repr__(self) -> str:
        return f"BBox(x1={self.x1}, y1={self.y1}, x2={self.x2}, y2={self.y2})"


@dataclass
class Detection:
    """Raw detector output for one face.

    Attributes:
        bbox: Bounding box around detected face
        kps: Optional 5-point landmarks (shape [5, 2]) in absolute pixel coords.
             Order: left_eye, right_eye, nose, left_mouth, right_mouth
        score: Detection confidence score (0.0 to 1.0)
    """

    bbox: BBox
    kps: Optional[np.ndarray]
    score: float

    def __post_init__(self) -> None:
        if not 0.0 <= self.score <= 1.0:
            raise ValueError(f"Detection score must be in [0, 1], got {self.score}")

        if self.kps is not None:
            if not isinstance(self.kps, np.ndarray):
                raise TypeError(f"kps must be numpy array, got {type(self.kps)}")
            if self.kps.shape != (5, 2):
                raise ValueError(f"kps must have shape (5, 2), got {self.kps.shape}")

    def __repr__(self) -> str:
        kps_str = "None" if self.kps is None else f"array{self.kps.shape}"
        return f"Detection(bbox={self.bbox}, score={self.score:.3f}, kps={kps_str})"


@dataclass(frozen=True)
class DetectedFace:
    """One face of a DetectionResult, in source-image pixel space."""

    bounding_box: Tuple[int, int, int, int]
    quality_score: float
    embedding: np.ndarray


@dataclass
class DetectionResult:
    """Faces found by a single extractor call, best score first."""

    faces: List[DetectedFace] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.faces)

    def __iter__(self) -> Iterator[DetectedFace]:
        return iter(self.faces)

    @property
    def is_empty(self) -> bool:
        return not self.faces

    @property
    def best(self) -> Optional[DetectedFace]:
        return self.faces[0] if self.faces else None


@dataclass(frozen=True)
class FaceEncoding:
    """Persisted descriptor of one face in one photo.

    Attributes:
        photo_id: Owning photo (not owned by this subsystem)
        face_index: 0-based position among the faces of ``photo_id``
        embedding: L2-normalized descriptor, dtype float32
        bounding_box: ``(x, y, width, height)`` in source-image pixels
        quality_score: Detector confidence in [0, 1]
        model_version: Detector/embedder pair that produced the embedding
    """

    photo_id: str
    face_index: int
    embedding: np.ndarray
    bounding_box: Tuple[int, int, int, int]
    quality_score: float
    model_version: str

    @property
    def key(self) -> Tuple[str, int]:
        return (self.photo_id, self.face_index)


@dataclass(frozen=True)
class MatchCandidate:
    """Raw vector search hit (one per stored encoding)."""

    photo_id: str
    distance: float


@dataclass(frozen=True)
class PhotoMatch:
    """A photo that survived the match filter, with its best distance."""

    photo_id: str
    distance: float


@dataclass
class SearchResult:
    """Unique photo matches ordered by ascending distance."""

    matches: List[PhotoMatch] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.matches)

    def __iter__(self) -> Iterator[PhotoMatch]:
        return iter(self.matches)

    @property
    def photo_ids(self) -> List[str]:
        return [match.photo_id for match in self.matches]


@runtime_checkable
class Detector(Protocol):
    """Protocol for face detection models.

    Implementations return every face whose confidence is at or above the
    floor they were loaded with; threshold filtering happens in the
    extractor so the loaded weights stay read-only.
    """

    def detect(self, frame_bgr: np.ndarray) -> List[Detection]:
        """Detect faces in a BGR image of shape [H, W, 3]."""
        ...


@runtime_checkable
class Embedder(Protocol):
    """Protocol for face descriptor extraction."""

    embedding_dim: int

    def embed_face(self, frame_bgr: np.ndarray, detection: Detection) -> np.ndarray:
        """Return the L2-normalized descriptor of ``detection`` in ``frame_bgr``."""
        ...


@dataclass
class TierModels:
    """Loaded, read-only models for one detector tier.

    Attributes:
        tier: Tier these models serve
        detector: Face detector
        embedder: Descriptor extractor
        model_version: Tag stamped on every encoding produced with these models
        max_side: Longest image side fed to the detector
    """

    tier: Tier
    detector: Detector
    embedder: Embedder
    model_version: str
    max_side: int

    @property
    def embedding_dim(self) -> int:
        return self.embedder.embedding_dim

    def warm_up(self) -> None:
        """Run one dummy inference so the first real request is not slow."""
        side = min(self.max_side, 320)
        self.detector.detect(np.zeros((side, side, 3), dtype=np.uint8))


@runtime_checkable
class VectorSearch(Protocol):
    """Protocol for the k-NN service over stored encodings."""

    def search(
        self,
        query_embedding: np.ndarray,
        max_distance: float,
        limit: int,
        model_version: Optional[str] = None,
    ) -> List[MatchCandidate]:
        """Return up to ``limit`` candidates within ``max_distance``, ascending."""
        ...


@runtime_checkable
class EncodingStore(Protocol):
    """Protocol for the table of FaceEncoding rows keyed by (photo_id, face_index)."""

    def bulk_insert(self, encodings: Sequence[FaceEncoding]) -> None:
        ...

    def delete_by_photo(self, photo_id: str) -> int:
        ...

    def replace_photo(self, photo_id: str, encodings: Sequence[FaceEncoding]) -> None:
        ...

    def get_photo(self, photo_id: str) -> List[FaceEncoding]:
        ...

    def all_encodings(self) -> List[FaceEncoding]:
        ...

    @property
    def revision(self) -> int:
        ...


@runtime_checkable
class PhotoCatalog(Protocol):
    """Protocol for the owner of the per-photo ``is_face_indexed`` flag."""

    def set_indexed(self, photo_id: str, indexed: bool) -> None:
        ...

    def is_indexed(self, photo_id: str) -> bool:
        ...
