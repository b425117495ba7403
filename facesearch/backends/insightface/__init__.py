"""InsightFace backend.

Components:
- SCRFDDetector: Face detection with 5-point landmarks
- FivePointAligner: Similarity-transform alignment to 112x112
- ArcFaceEmbedder: 512-D face descriptors
"""

from facesearch.backends.insightface.aligner import FivePointAligner
from facesearch.backends.insightface.detector import SCRFDDetector
from facesearch.backends.insightface.embedder import ArcFaceEmbedder

__all__ = [
    "SCRFDDetector",
    "FivePointAligner",
    "ArcFaceEmbedder",
]
