"""Unit tests for the query pipeline."""

from __future__ import annotations

import threading
from unittest.mock import Mock

import pytest

from facesearch.exceptions import SearchCancelled
from facesearch.interfaces import Tier
from facesearch.progress import ANALYZING_FACE, LOADING_MODELS, ProgressChannel
from facesearch.registry import ModelRegistry
from facesearch.services.query import QueryPipeline


@pytest.fixture
def pipeline_factory(models_factory, config):
    """Create a QueryPipeline over fake precise-tier models."""
    registries = []

    def factory(detections, config=config, progress=None):
        models = models_factory(detections)
        loader = Mock(side_effect=lambda tier: models)
        registry = ModelRegistry(loader, warmup=False)
        registries.append(registry)
        return QueryPipeline(registry, config, progress=progress), models, loader

    yield factory

    for registry in registries:
        registry.shutdown(wait=True)


def test_returns_best_face(pipeline_factory, detection_factory, blank_image):
    """Test that the most confident face becomes the query."""
    pipeline, models, loader = pipeline_factory(
        [detection_factory(10, 10, 60, 60, 0.7), detection_factory(100, 10, 160, 70, 0.95)]
    )

    query = pipeline.embed_query(blank_image)

    assert query is not None
    assert query.quality_score == 0.95
    assert query.bounding_box == (100, 10, 60, 60)
    assert query.model_version == "test-v1"
    assert query.embedding.shape == (8,)
    assert models.embedder.calls == 1
    loader.assert_called_once_with(Tier.PRECISE)


def test_no_face_returns_none(pipeline_factory, detection_factory, blank_image):
    """Test that a selfie without a confident face gives None."""
    pipeline, _, _ = pipeline_factory([detection_factory(10, 10, 60, 60, 0.3)])

    assert pipeline.embed_query(blank_image) is None


def test_query_ladder_from_config(pipeline_factory, detection_factory, config_factory, blank_image):
    """Test that a configured query ladder is descended."""
    pipeline, models, _ = pipeline_factory(
        [detection_factory(10, 10, 60, 60, 0.35)],
        config=config_factory(query_confidence_ladder=(0.5, 0.3)),
    )

    query = pipeline.embed_query(blank_image)

    assert query is not None
    assert models.detector.calls == 2


def test_progress_events(pipeline_factory, detection_factory, blank_image):
    """Test that coarse stage events are published in order."""
    channel = ProgressChannel()
    events = []
    channel.subscribe(events.append)
    pipeline, _, _ = pipeline_factory([detection_factory(10, 10, 60, 60, 0.9)], progress=channel)

    pipeline.embed_query(blank_image)

    assert [e.stage for e in events] == [LOADING_MODELS, ANALYZING_FACE]
    assert all(e.message for e in events)


def test_failing_subscriber_does_not_break_query(pipeline_factory, detection_factory, blank_image):
    """Test that progress is purely advisory."""
    channel = ProgressChannel()
    channel.subscribe(Mock(side_effect=RuntimeError("ui gone")))
    pipeline, _, _ = pipeline_factory([detection_factory(10, 10, 60, 60, 0.9)], progress=channel)

    assert pipeline.embed_query(blank_image) is not None


def test_cancelled_before_start(pipeline_factory, detection_factory, blank_image):
    """Test that a cancelled request does not load models."""
    pipeline, _, loader = pipeline_factory([detection_factory(10, 10, 60, 60, 0.9)])
    cancel = threading.Event()
    cancel.set()

    with pytest.raises(SearchCancelled):
        pipeline.embed_query(blank_image, cancel_event=cancel)

    loader.assert_not_called()


def test_cancelled_during_analysis(pipeline_factory, detection_factory, blank_image):
    """Test that cancellation is honored after detection finishes."""
    pipeline, models, _ = pipeline_factory([detection_factory(10, 10, 60, 60, 0.9)])
    cancel = threading.Event()
    original_detect = models.detector.detect

    def detect_then_cancel(frame):
        cancel.set()
        return original_detect(frame)

    models.detector.detect = detect_then_cancel

    with pytest.raises(SearchCancelled):
        pipeline.embed_query(blank_image, cancel_event=cancel)


def test_unsubscribe():
    """Test that an unsubscribed callback stops receiving events."""
    channel = ProgressChannel()
    received = []
    unsubscribe = channel.subscribe(received.append)

    channel.emit(LOADING_MODELS, "Loading...")
    unsubscribe()
    channel.emit(ANALYZING_FACE, "Analyzing...")

    assert [e.stage for e in received] == [LOADING_MODELS]
