"""Descriptor extraction: image + tier + threshold -> DetectionResult.

The extractor never raises for "no face found"; it returns an empty
result and leaves the retry policy to the detection cascade.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from facesearch.interfaces import BBox, DetectedFace, DetectionResult, TierModels
from facesearch.logging_config import get_logger
from facesearch.utils import ImageInput, load_image, resize_to_max_side

logger = get_logger(__name__)


@dataclass(frozen=True)
class PreparedImage:
    """Image resized for one tier, plus the factor back to source pixels.

    Attributes:
        pixels: BGR image whose longest side is at most the tier cap
        scale: Multiply detector coordinates by this to get source pixels
        source_size: (width, height) of the original image
    """

    pixels: np.ndarray
    scale: float
    source_size: tuple[int, int]


class DescriptorExtractor:
    """Detects faces with one tier's models and computes their descriptors.

    Example:
        >>> extractor = DescriptorExtractor(registry.ensure_loaded(Tier.PRECISE))
        >>> prepared = extractor.prepare(image_bytes)
        >>> result = extractor.extract(prepared, confidence_threshold=0.5)
        >>> print(f"{len(result)} face(s)")
    """

    def __init__(self, models: TierModels):
        self.models = models

    def prepare(self, image: ImageInput) -> PreparedImage:
        """Decode ``image`` and downscale it to the tier's size cap."""
        frame = load_image(image)
        h, w = frame.shape[:2]
        pixels, scale = resize_to_max_side(frame, self.models.max_side)
        return PreparedImage(pixels=pixels, scale=scale, source_size=(w, h))

    def extract(
        self,
        prepared: PreparedImage,
        confidence_threshold: float,
        *,
        single: bool = False,
    ) -> DetectionResult:
        """Detect faces at or above ``confidence_threshold`` and embed them.

        Args:
            prepared: Output of ``prepare``
            confidence_threshold: Minimum detector score in [0, 1]
            single: Keep only the highest-confidence face that could be
                    embedded (query mode)

        Returns:
            DetectionResult ordered by descending quality score; empty when
            no face passes the threshold.
        """
        detections = [
            det
            for det in self.models.detector.detect(prepared.pixels)
            if det.score >= confidence_threshold
        ]
        # Stable sort keeps the detector's order for equal scores
        detections.sort(key=lambda d: d.score, reverse=True)

        src_w, src_h = prepared.source_size
        faces = []

        for i, detection in enumerate(detections):
            if single and faces:
                break

            try:
                embedding = self.models.embedder.embed_face(prepared.pixels, detection)
            except (ValueError, RuntimeError) as e:
                logger.warning(f"Failed to embed face {i}: {e}. Skipping.")
                continue

            bbox: BBox = detection.bbox.scale(prepared.scale).clamp(src_w, src_h)
            faces.append(
                DetectedFace(
                    bounding_box=bbox.to_xywh(),
                    quality_score=float(detection.score),
                    embedding=np.asarray(embedding, dtype=np.float32),
                )
            )

        logger.debug(
            f"Extracted {len(faces)} face(s) at threshold {confidence_threshold:.2f} "
            f"({self.models.tier.value} tier)"
        )
        return DetectionResult(faces=faces)

    def __repr__(self) -> str:
        return f"DescriptorExtractor(tier={self.models.tier.value}, version={self.models.model_version})"
