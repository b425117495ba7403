"""Dlib face detector with confidence scores.

dlib reports a detection margin rather than a probability (0.0 is its own
default decision boundary). Margins are mapped through a logistic so that
dlib's default boundary lands on 0.5 and the cascade's confidence ladder
means the same thing for every backend.
"""

from __future__ import annotations

import math
from typing import List, Literal

import cv2
import dlib
import face_recognition_models
import numpy as np

from facesearch.interfaces import BBox, Detection
from facesearch.logging_config import get_logger

logger = get_logger(__name__)


def margin_to_score(margin: float) -> float:
    """Map a dlib detection margin to a confidence in (0, 1)."""
    return 1.0 / (1.0 + math.exp(-margin))


def score_to_margin(score: float) -> float:
    """Inverse of ``margin_to_score``."""
    score = min(max(score, 1e-6), 1.0 - 1e-6)
    return math.log(score / (1.0 - score))


class DlibDetector:
    """Face detector using dlib's HOG or CNN (MMOD) models.

    - HOG: Faster, CPU-friendly, less accurate (fast tier)
    - CNN: More accurate, slower without a GPU (precise tier)

    Attributes:
        model: Detection model ("hog" or "cnn")
        upsample: Number of times to upsample image (higher = smaller faces)
        min_score: Lowest confidence reported

    Example:
        >>> detector = DlibDetector(model="cnn", min_score=0.1)
        >>> detections = detector.detect(frame)
    """

    def __init__(
        self,
        model: Literal["hog", "cnn"] = "hog",
        upsample: int = 1,
        min_score: float = 0.1,
    ):
        if model not in ("hog", "cnn"):
            raise ValueError(f"model must be 'hog' or 'cnn', got '{model}'")

        self.model = model
        self.upsample = upsample
        self.min_score = min_score
        self._min_margin = score_to_margin(min_score)

        logger.info(f"Initializing dlib detector (model={model}, upsample={upsample})")

        if model == "cnn":
            self._net = dlib.cnn_face_detection_model_v1(
                face_recognition_models.cnn_face_detector_model_location()
            )
        else:
            self._net = dlib.get_frontal_face_detector()

    def _run(self, frame_rgb: np.ndarray) -> list[tuple[object, float]]:
        if self.model == "cnn":
            return [
                (det.rect, float(det.confidence))
                for det in self._net(frame_rgb, self.upsample)
                if det.confidence >= self._min_margin
            ]

        rects, margins, _ = self._net.run(frame_rgb, self.upsample, self._min_margin)
        return [(rect, float(margin)) for rect, margin in zip(rects, margins)]

    def detect(self, frame_bgr: np.ndarray) -> List[Detection]:
        """Detect faces in a BGR image.

        Returns:
            Detections sorted by confidence (highest first). dlib gives no
            5-point landmarks here, so ``kps`` is None.
        """
        if frame_bgr is None or frame_bgr.size == 0:
            logger.warning("Empty frame provided to detector")
            return []

        frame_rgb = cv2.cvtColor(frame_bgr, cv2.COLOR_BGR2RGB)
        h, w = frame_bgr.shape[:2]

        detections = []
        for rect, margin in self._run(frame_rgb):
            bbox = BBox(
                x1=int(rect.left()),
                y1=int(rect.top()),
                x2=int(rect.right()),
                y2=int(rect.bottom()),
            ).clamp(w, h)
            detections.append(Detection(bbox=bbox, kps=None, score=margin_to_score(margin)))

        detections.sort(key=lambda d: d.score, reverse=True)

        if detections:
            logger.debug(f"Detected {len(detections)} faces (model={self.model})")

        return detections

    def __repr__(self) -> str:
        return f"DlibDetector(model='{self.model}', upsample={self.upsample})"
