"""ArcFace embedder for face descriptor extraction.

Aligns each detected face to 112x112 with its 5 landmarks and converts the
crop into an L2-normalized 512-dimensional descriptor.
"""

from __future__ import annotations

import numpy as np

from facesearch.backends.insightface.aligner import FivePointAligner
from facesearch.interfaces import Detection
from facesearch.logging_config import get_logger

logger = get_logger(__name__)


class ArcFaceEmbedder:
    """ArcFace embedder for extracting 512-D face descriptors.

    Attributes:
        app: Prepared InsightFace FaceAnalysis instance
        aligner: Landmark aligner producing 112x112 crops
        embedding_dim: Dimension of output embeddings (512 for ArcFace)

    Example:
        >>> embedder = ArcFaceEmbedder(app)
        >>> embedding = embedder.embed_face(frame, detection)
        >>> embedding.shape
        (512,)
    """

    def __init__(self, app, aligner: FivePointAligner | None = None):
        rec_model = app.models.get("recognition")
        if rec_model is None:
            raise RuntimeError("Recognition model not found in FaceAnalysis")

        self.app = app
        self.rec_model = rec_model
        self.aligner = aligner or FivePointAligner()
        self.embedding_dim = 512

    def embed_face(self, frame_bgr: np.ndarray, detection: Detection) -> np.ndarray:
        """Extract the descriptor of one detected face.

        Args:
            frame_bgr: Image the detection was made on, BGR [H, W, 3]
            detection: Detection with 5-point landmarks

        Returns:
            L2-normalized embedding vector, shape [512], dtype float32.

        Raises:
            ValueError: If the detection has no landmarks.
            RuntimeError: If the model returns an unexpected embedding.
        """
        if detection.kps is None:
            raise ValueError("ArcFace embedding requires 5-point landmarks")

        aligned = self.aligner.align(frame_bgr, detection.kps)

        # ArcFaceONNX.get_feat takes BGR crops and swaps channels itself
        embedding = np.asarray(self.rec_model.get_feat(aligned)).flatten().astype(np.float32)

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
        return f"ArcFaceEmbedder(dim={self.embedding_dim})"
