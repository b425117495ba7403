"""Backend factory: builds the models of one detector tier.

Two backend families are supported, each with a fast and a precise tier:
- InsightFace: SCRFD + ArcFace (512-D). Fast tier uses a small model pack
  and a 320x320 detector input, precise tier a large pack at 640x640.
- dlib: HOG (fast) or CNN (precise) detection + ResNet descriptors (128-D).

Usage:
    models = create_tier_models(Tier.PRECISE, config)
    registry = ModelRegistry(make_loader(config))
"""

from __future__ import annotations

from functools import partial
from typing import Callable

from facesearch.config import Config
from facesearch.interfaces import Tier, TierModels
from facesearch.logging_config import get_logger

logger = get_logger(__name__)

INSIGHTFACE_DET_SIZES = {
    Tier.FAST: (320, 320),
    Tier.PRECISE: (640, 640),
}

# (detector model, landmark model) per tier
DLIB_MODELS = {
    Tier.FAST: ("hog", "small"),
    Tier.PRECISE: ("cnn", "large"),
}


def detection_floor(config: Config) -> float:
    """Lowest confidence any cascade step will ask the detector for."""
    return min(config.confidence_ladder + config.query_confidence_ladder)


def max_side_for(tier: Tier, config: Config) -> int:
    return config.fast_max_side if tier == Tier.FAST else config.precise_max_side


def model_version_for(tier: Tier, config: Config) -> str:
    """Tag identifying the detector/embedder pair of a tier.

    ``MODEL_VERSION`` overrides the derived tag, e.g. to keep encodings of
    an unchanged model valid after a rename.
    """
    if config.model_version:
        return f"{config.model_version}-{tier.value}"

    if config.backend == "insightface":
        pack = config.fast_model_pack if tier == Tier.FAST else config.precise_model_pack
        return f"insightface-{pack}-{tier.value}"

    detector_model, landmark_model = DLIB_MODELS[tier]
    return f"dlib-{detector_model}-{landmark_model}-{tier.value}"


def create_tier_models(tier: Tier, config: Config) -> TierModels:
    """Load detector and embedder for ``tier``.

    Args:
        tier: Tier to load
        config: Configuration object

    Returns:
        TierModels ready for concurrent read-only inference.

    Raises:
        ValueError: If the configured backend is unknown.
        Exception: Whatever the backend raises while loading artifacts;
                   ModelRegistry turns it into ModelLoadFailure.
    """
    tier = Tier(tier)

    if config.backend == "insightface":
        detector, embedder = _create_insightface_models(tier, config)
    elif config.backend == "dlib":
        detector, embedder = _create_dlib_models(tier, config)
    else:
        raise ValueError(
            f"Unknown backend: '{config.backend}'. "
            f"Supported backends: 'insightface', 'dlib'"
        )

    models = TierModels(
        tier=tier,
        detector=detector,
        embedder=embedder,
        model_version=model_version_for(tier, config),
        max_side=max_side_for(tier, config),
    )

    logger.info(
        f"Loaded {tier.value} tier: version={models.model_version}, "
        f"dim={models.embedding_dim}, max_side={models.max_side}"
    )
    return models


def _create_insightface_models(tier: Tier, config: Config):
    from insightface.app import FaceAnalysis

    from facesearch.backends.insightface import ArcFaceEmbedder, SCRFDDetector

    pack = config.fast_model_pack if tier == Tier.FAST else config.precise_model_pack
    det_size = INSIGHTFACE_DET_SIZES[tier]

    logger.info(
        f"Creating InsightFace {tier.value} tier (pack={pack}, det_size={det_size}, "
        f"device={'GPU:' + str(config.ctx_id) if config.ctx_id >= 0 else 'CPU'})"
    )

    app = FaceAnalysis(
        name=pack,
        root=str(config.models_dir / "insightface"),
        allowed_modules=["detection", "recognition"],
        providers=(
            ["CUDAExecutionProvider", "CPUExecutionProvider"]
            if config.ctx_id >= 0
            else ["CPUExecutionProvider"]
        ),
    )
    app.prepare(ctx_id=config.ctx_id, det_thresh=detection_floor(config), det_size=det_size)

    return SCRFDDetector(app, det_size=det_size), ArcFaceEmbedder(app)


def _create_dlib_models(tier: Tier, config: Config):
    from facesearch.backends.dlib import DlibDetector, DlibEmbedder

    detector_model, landmark_model = DLIB_MODELS[tier]

    logger.info(
        f"Creating dlib {tier.value} tier "
        f"(detector={detector_model}, landmarks={landmark_model})"
    )

    detector = DlibDetector(model=detector_model, min_score=detection_floor(config))
    embedder = DlibEmbedder(model=landmark_model)

    return detector, embedder


def make_loader(config: Config) -> Callable[[Tier], TierModels]:
    """Return a ``loader(tier)`` callable for ModelRegistry."""
    return partial(create_tier_models, config=config)
