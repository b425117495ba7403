"""Dlib embedder using the face_recognition library.

Produces 128-D descriptors with dlib's ResNet model. Jittering is disabled
so that the same image always yields the same descriptor.
"""

from __future__ import annotations

from typing import Literal

import cv2
import face_recognition
import numpy as np

from facesearch.interfaces import Detection
from facesearch.logging_config import get_logger

logger = get_logger(__name__)


class DlibEmbedder:
    """Dlib embedder for extracting 128-D face descriptors.

    Attributes:
        model: Landmark model used for alignment ("large" = 68 points,
               "small" = 5 points)
        embedding_dim: Dimension of output embeddings (128 for dlib)

    Example:
        >>> embedder = DlibEmbedder(model="large")
        >>> embedding = embedder.embed_face(frame, detection)
        >>> embedding.shape
        (128,)
    """

    def __init__(self, model: Literal["large", "small"] = "large"):
        if model not in ("large", "small"):
            raise ValueError(f"model must be 'large' or 'small', got '{model}'")

        self.model = model
        self.embedding_dim = 128

    def embed_face(self, frame_bgr: np.ndarray, detection: Detection) -> np.ndarray:
        """Extract the descriptor of one detected face.

        Returns:
            L2-normalized embedding vector, shape [128], dtype float32.

        Raises:
            ValueError: If no encoding could be computed at the location.
            RuntimeError: If the embedding has an unexpected shape or norm.
        """
        frame_rgb = cv2.cvtColor(frame_bgr, cv2.COLOR_BGR2RGB)

        bbox = detection.bbox
        # face_recognition expects (top, right, bottom, left)
        location = (bbox.y1, bbox.x2, bbox.y2, bbox.x1)

        encodings = face_recognition.face_encodings(
            frame_rgb,
            known_face_locations=[location],
            num_jitters=1,
            model=self.model,
        )

        if not encodings:
            raise ValueError("Could not compute face encoding at given location")

        embedding = np.asarray(encodings[0], dtype=np.float32)

        if embedding.shape[0] != self.embedding_dim:
            raise RuntimeError(
                f"Unexpected embedding dimension {embedding.shape[0]}, "
                f"expected {self.embedding_dim}"
            )

        norm = np.linalg.norm(embedding)
        if norm < 1e-10:
            raise RuntimeError("Embedding has near-zero norm")

        return embedding / norm

    def __repr__(self) -> str:
        return f"DlibEmbedder(model='{self.model}', dim={self.embedding_dim})"
