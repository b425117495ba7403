"""Backend implementations of the detector and embedder capabilities.

- insightface: SCRFD detector + ArcFace embeddings (512-D)
- dlib: HOG/CNN detector + ResNet embeddings (128-D)

Use the factory module to create the models of a tier.
"""

from facesearch.backends.factory import (
    create_tier_models,
    detection_floor,
    make_loader,
    model_version_for,
)

__all__ = [
    "create_tier_models",
    "detection_floor",
    "make_loader",
    "model_version_for",
]
