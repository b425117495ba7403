"""SCRFD face detector using InsightFace.

Wraps the detection model of an already prepared ``FaceAnalysis`` instance.
The instance is prepared once per tier with the lowest confidence the
cascade will ever ask for; higher thresholds are applied by the extractor.
"""

from __future__ import annotations

from typing import List

import numpy as np

from facesearch.interfaces import BBox, Detection
from facesearch.logging_config import get_logger

logger = get_logger(__name__)


class SCRFDDetector:
    """Face detector using the InsightFace SCRFD model.

    SCRFD provides both bounding boxes and 5-point facial landmarks, which
    the ArcFace embedder needs for alignment.

    Attributes:
        app: Prepared InsightFace FaceAnalysis instance
        det_size: Detection input size as (width, height)

    Example:
        >>> detector = SCRFDDetector(app, det_size=(640, 640))
        >>> detections = detector.detect(frame)
    """

    def __init__(self, app, det_size: tuple[int, int]):
        if "detection" not in app.models:
            raise RuntimeError("FaceAnalysis instance has no detection model")

        self.app = app
        self.det_size = det_size

    def detect(self, frame_bgr: np.ndarray) -> List[Detection]:
        """Detect faces in a BGR image.

        Returns:
            Detections sorted by confidence (highest first). Empty list if
            no face scores above the loaded floor.
        """
        if frame_bgr is None or frame_bgr.size == 0:
            logger.warning("Empty frame provided to detector")
            return []

        # bboxes: [N, 5] (x1, y1, x2, y2, score); kpss: [N, 5, 2] or None
        bboxes, kpss = self.app.det_model.detect(frame_bgr, max_num=0, metric="default")

        h, w = frame_bgr.shape[:2]
        detections = []

        for i in range(bboxes.shape[0]):
            x1, y1, x2, y2 = bboxes[i, :4].astype(int)
            bbox = BBox(x1=int(x1), y1=int(y1), x2=int(x2), y2=int(y2)).clamp(w, h)

            kps = kpss[i].astype(np.float32) if kpss is not None else None
            score = float(np.clip(bboxes[i, 4], 0.0, 1.0))

            detections.append(Detection(bbox=bbox, kps=kps, score=score))

        detections.sort(key=lambda d: d.score, reverse=True)

        if detections:
            logger.debug(f"Detected {len(detections)} faces (det_size={self.det_size})")

        return detections

    def __repr__(self) -> str:
        return f"SCRFDDetector(det_size={self.det_size})"
