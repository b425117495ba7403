"""Shared fakes for face search tests.

The fake detector returns scripted detections and the fake embedder derives
a deterministic descriptor from the face box, so the pipelines can be
tested without model artifacts.
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Sequence

import numpy as np
import pytest

from facesearch.config import Config
from facesearch.interfaces import BBox, Detection, Tier, TierModels


class FakeDetector:
    """Returns the same scripted detections for every frame."""

    def __init__(self, detections: Sequence[Detection] = ()):
        self.detections = list(detections)
        self.calls = 0

    def detect(self, frame_bgr: np.ndarray) -> List[Detection]:
        self.calls += 1
        return list(self.detections)


class FakeEmbedder:
    """Descriptor seeded by the detection box: same box, same vector."""

    def __init__(self, dim: int = 8):
        self.embedding_dim = dim
        self.calls = 0

    def embed_face(self, frame_bgr: np.ndarray, detection: Detection) -> np.ndarray:
        self.calls += 1
        b = detection.bbox
        rng = np.random.default_rng(b.x1 * 1_000_003 + b.y1 * 1_009 + b.x2 * 31 + b.y2)
        vec = rng.standard_normal(self.embedding_dim).astype(np.float32)
        return vec / np.linalg.norm(vec)


def make_detection(x1: int, y1: int, x2: int, y2: int, score: float) -> Detection:
    return Detection(bbox=BBox(x1=x1, y1=y1, x2=x2, y2=y2), kps=None, score=score)


def make_models(
    detections: Sequence[Detection] = (),
    tier: Tier = Tier.PRECISE,
    model_version: str = "test-v1",
    max_side: int = 1280,
    dim: int = 8,
) -> TierModels:
    return TierModels(
        tier=tier,
        detector=FakeDetector(detections),
        embedder=FakeEmbedder(dim),
        model_version=model_version,
        max_side=max_side,
    )


def make_config(**overrides) -> Config:
    values = dict(
        backend="insightface",
        ctx_id=-1,
        fast_model_pack="buffalo_s",
        precise_model_pack="buffalo_l",
        fast_max_side=640,
        precise_max_side=1280,
        confidence_ladder=(0.5, 0.3, 0.1),
        query_confidence_ladder=(0.5,),
        match_limit=50,
        search_ceiling=0.2,
        match_margin=0.08,
        match_hard_cap=0.25,
        model_load_timeout=5.0,
        search_timeout=5.0,
        search_retries=2,
        search_backoff=0.0,
        model_version="",
        warmup=False,
        log_level="INFO",
        data_dir=Path("data"),
        models_dir=Path("models"),
    )
    values.update(overrides)
    return Config(**values)


@pytest.fixture
def config():
    """Config with default values, independent of the environment."""
    return make_config()


@pytest.fixture
def blank_image():
    """A 200x300 black BGR image."""
    return np.zeros((200, 300, 3), dtype=np.uint8)


@pytest.fixture
def detection_factory():
    return make_detection


@pytest.fixture
def models_factory():
    return make_models


@pytest.fixture
def config_factory():
    return make_config
