"""Indexing service: compute and persist the face encodings of a photo.

Workflow:
1. Ensure the precise tier is loaded
2. Decode and resize the photo once
3. Run the detection cascade in multi-face mode
4. Atomically replace the photo's encodings
5. Mark the photo as indexed
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

from facesearch.cascade import ConfidenceLadder, DetectionCascade
from facesearch.config import Config
from facesearch.exceptions import EncodingPersistenceFailure, NoFaceDetected
from facesearch.extractor import DescriptorExtractor
from facesearch.interfaces import EncodingStore, FaceEncoding, PhotoCatalog, Tier
from facesearch.logging_config import get_logger
from facesearch.registry import ModelRegistry
from facesearch.store import StoreConstraintError
from facesearch.utils import ImageInput

logger = get_logger(__name__)


@dataclass(frozen=True)
class IndexReport:
    """Summary of one successful indexing run.

    Attributes:
        photo_id: Indexed photo
        faces: Number of encodings stored
        model_version: Version stamped on every encoding
        threshold: Confidence threshold that found the faces
        attempts: Cascade steps needed
    """

    photo_id: str
    faces: int
    model_version: str
    threshold: float
    attempts: int


class IndexingService:
    """Produces and persists FaceEncoding rows for photos.

    Multi-face photos are expected: every detected face becomes its own
    encoding, numbered by ``face_index`` in descending quality order.

    Example:
        >>> service = IndexingService(registry, store, catalog)
        >>> report = service.index_photo("photo-123", image_bytes)
        >>> print(f"Indexed {report.faces} face(s)")
    """

    tier = Tier.PRECISE

    def __init__(
        self,
        registry: ModelRegistry,
        store: EncodingStore,
        catalog: PhotoCatalog,
        config: Optional[Config] = None,
    ):
        self.registry = registry
        self.store = store
        self.catalog = catalog
        self.ladder = ConfidenceLadder.of(config.confidence_ladder) if config else ConfidenceLadder()
        self.load_timeout = config.model_load_timeout if config else None

    def index_photo(self, photo_id: str, image: ImageInput) -> IndexReport:
        """Index every face of a photo, replacing any previous encodings.

        Args:
            photo_id: Identifier of the photo
            image: Encoded bytes, a file path or a decoded BGR array

        Returns:
            IndexReport describing the stored encodings.

        Raises:
            ModelLoadFailure: If the precise tier cannot be loaded.
            InvalidImage: If the image cannot be decoded.
            NoFaceDetected: If no face was found at any ladder threshold.
                            Nothing is written: a photo indexed before
                            keeps its previous encodings (and their
                            model version) and its indexed flag.
            EncodingPersistenceFailure: If the store rejects the encodings.
                            Previous encodings are kept and the photo is
                            not marked.
        """
        # Step 1: Models and a decoded, resized image
        models = self.registry.ensure_loaded(self.tier, timeout=self.load_timeout)
        extractor = DescriptorExtractor(models)
        prepared = extractor.prepare(image)

        # Step 2: Every face, descending the ladder until one is found
        outcome = DetectionCascade(extractor, self.ladder).run(prepared, single=False)

        if not outcome.found:
            logger.warning(f"No faces detected in photo {photo_id}")
            raise NoFaceDetected(photo_id, outcome.thresholds_tried)

        # Step 3: One encoding per face, stamped with the model version
        encodings: List[FaceEncoding] = [
            FaceEncoding(
                photo_id=photo_id,
                face_index=index,
                embedding=face.embedding,
                bounding_box=face.bounding_box,
                quality_score=face.quality_score,
                model_version=models.model_version,
            )
            for index, face in enumerate(outcome.result)
        ]

        # Step 4: Atomic replace, then mark indexed
        try:
            self.store.replace_photo(photo_id, encodings)
        except StoreConstraintError as e:
            logger.error(f"Store rejected encodings of photo {photo_id}: {e}")
            raise EncodingPersistenceFailure(photo_id, str(e)) from e
        except Exception as e:
            logger.error(f"Failed to persist encodings of photo {photo_id}: {e}", exc_info=True)
            raise EncodingPersistenceFailure(photo_id, str(e)) from e

        self.catalog.set_indexed(photo_id, True)

        logger.info(
            f"Indexed photo {photo_id}: {len(encodings)} face(s) at confidence "
            f"{outcome.threshold:.2f} ({models.model_version})"
        )

        return IndexReport(
            photo_id=photo_id,
            faces=len(encodings),
            model_version=models.model_version,
            threshold=outcome.threshold,
            attempts=outcome.attempts,
        )

    def remove_photo(self, photo_id: str) -> int:
        """Delete the encodings of a deleted photo and clear its flag."""
        removed = self.store.delete_by_photo(photo_id)
        self.catalog.set_indexed(photo_id, False)
        logger.info(f"Removed {removed} encoding(s) of photo {photo_id}")
        return removed

    def stale_photos(self) -> List[str]:
        """Photos whose encodings were made by another model version.

        Only meaningful once the precise tier is loaded; returns an empty
        list otherwise.
        """
        if not self.registry.is_loaded(self.tier):
            return []

        current = self.registry.ensure_loaded(self.tier).model_version
        versions = {row.photo_id: row.model_version for row in self.store.all_encodings()}
        return sorted(pid for pid, version in versions.items() if version != current)

    def __repr__(self) -> str:
        return f"IndexingService(ladder={self.ladder.thresholds}, store={self.store!r})"
