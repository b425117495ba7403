"""dlib backend.

Components:
- DlibDetector: HOG (fast tier) or CNN (precise tier) detection with scores
- DlibEmbedder: 128-D ResNet descriptors via face_recognition
"""

from facesearch.backends.dlib.detector import DlibDetector
from facesearch.backends.dlib.embedder import DlibEmbedder

__all__ = [
    "DlibDetector",
    "DlibEmbedder",
]
