"""Query pipeline: turn a selfie into one descriptor for searching."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from facesearch.cascade import ConfidenceLadder, DetectionCascade
from facesearch.config import Config
from facesearch.exceptions import SearchCancelled
from facesearch.extractor import DescriptorExtractor
from facesearch.interfaces import Tier
from facesearch.logging_config import get_logger
from facesearch.progress import ANALYZING_FACE, LOADING_MODELS, ProgressChannel
from facesearch.registry import ModelRegistry
from facesearch.utils import ImageInput

logger = get_logger(__name__)


@dataclass(frozen=True)
class QueryEmbedding:
    """Descriptor of the best face in a query image.

    Attributes:
        embedding: L2-normalized descriptor
        model_version: Version of the models that produced it; vector search
                       must only compare against encodings of this version
        bounding_box: ``(x, y, width, height)`` of the face in the query image
        quality_score: Detector confidence
    """

    embedding: np.ndarray
    model_version: str
    bounding_box: Tuple[int, int, int, int]
    quality_score: float


class QueryPipeline:
    """Extracts a single query descriptor with the precise tier.

    The precise tier is always used, even for queries, so that the query
    lives in the same embedding space as the indexed library.

    Example:
        >>> pipeline = QueryPipeline(registry, config, progress=channel)
        >>> query = pipeline.embed_query(selfie_bytes)
        >>> if query is None:
        ...     print("No face in the selfie")
    """

    tier = Tier.PRECISE

    def __init__(
        self,
        registry: ModelRegistry,
        config: Config,
        progress: Optional[ProgressChannel] = None,
    ):
        self.registry = registry
        self.config = config
        self.progress = progress or ProgressChannel()
        self.ladder = ConfidenceLadder.of(config.query_confidence_ladder)

    @staticmethod
    def _check_cancelled(cancel_event: Optional[threading.Event], stage: str) -> None:
        if cancel_event is not None and cancel_event.is_set():
            logger.info(f"Query cancelled before {stage}")
            raise SearchCancelled(f"Query cancelled before {stage}")

    def embed_query(
        self,
        image: ImageInput,
        *,
        cancel_event: Optional[threading.Event] = None,
    ) -> Optional[QueryEmbedding]:
        """Return the descriptor of the highest-confidence face, or None.

        Args:
            image: Encoded bytes, a file path or a decoded BGR array
            cancel_event: Set by the caller to abandon the request; checked
                          between stages

        Raises:
            ModelLoadFailure: If the precise tier cannot be loaded.
            InvalidImage: If the image cannot be decoded.
            SearchCancelled: If ``cancel_event`` was set.
        """
        self._check_cancelled(cancel_event, "model loading")

        # Step 1: Precise tier (shared with indexing and warm-up)
        self.progress.emit(LOADING_MODELS, "Loading face recognition models...")
        models = self.registry.ensure_loaded(self.tier, timeout=self.config.model_load_timeout)

        self._check_cancelled(cancel_event, "face analysis")

        # Step 2: Single best face over the query ladder
        self.progress.emit(ANALYZING_FACE, "Analyzing your face...")

        extractor = DescriptorExtractor(models)
        outcome = DetectionCascade(extractor, self.ladder).run(
            extractor.prepare(image), single=True
        )

        self._check_cancelled(cancel_event, "search")

        face = outcome.result.best
        if face is None:
            logger.info("No face detected in query image")
            return None

        logger.debug(
            f"Query face at {face.bounding_box} with confidence {face.quality_score:.3f}"
        )
        return QueryEmbedding(
            embedding=face.embedding,
            model_version=models.model_version,
            bounding_box=face.bounding_box,
            quality_score=face.quality_score,
        )

    def __repr__(self) -> str:
        return f"QueryPipeline(ladder={self.ladder.thresholds})"
