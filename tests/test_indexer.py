"""Unit tests for the indexing service."""

from __future__ import annotations

from unittest.mock import Mock

import numpy as np
import pytest

from facesearch.exceptions import EncodingPersistenceFailure, ModelLoadFailure, NoFaceDetected
from facesearch.interfaces import FaceEncoding, Tier
from facesearch.registry import ModelRegistry
from facesearch.services.indexer import IndexingService
from facesearch.store import InMemoryEncodingStore, InMemoryPhotoCatalog


@pytest.fixture
def store():
    return InMemoryEncodingStore()


@pytest.fixture
def catalog():
    return InMemoryPhotoCatalog()


@pytest.fixture
def service_factory(models_factory, store, catalog):
    """Create an IndexingService whose precise tier finds ``detections``."""
    registries = []

    def factory(detections, store=store, loader=None, config=None):
        models = models_factory(detections)
        registry = ModelRegistry(loader or (lambda tier: models), warmup=False)
        registries.append(registry)
        return IndexingService(registry, store, catalog, config), models

    yield factory

    for registry in registries:
        registry.shutdown(wait=True)


def test_clean_photo_indexed(service_factory, detection_factory, blank_image, store, catalog):
    """Test that a clear single face produces one encoding."""
    service, models = service_factory([detection_factory(20, 30, 120, 150, 0.92)])

    report = service.index_photo("p1", blank_image)

    assert report.faces == 1
    assert report.threshold == 0.5
    assert report.attempts == 1
    assert report.model_version == "test-v1"

    rows = store.get_photo("p1")
    assert len(rows) == 1
    assert rows[0].quality_score > 0.5
    assert rows[0].bounding_box == (20, 30, 100, 120)
    assert rows[0].model_version == "test-v1"
    assert catalog.is_indexed("p1")


def test_multi_face_photo(service_factory, detection_factory, blank_image, store):
    """Test that every face gets its own encoding, best first."""
    service, _ = service_factory(
        [
            detection_factory(10, 10, 60, 60, 0.7),
            detection_factory(100, 10, 150, 60, 0.95),
            detection_factory(200, 10, 250, 60, 0.8),
        ]
    )

    report = service.index_photo("group", blank_image)

    rows = store.get_photo("group")
    assert report.faces == 3
    assert [row.face_index for row in rows] == [0, 1, 2]
    assert [row.quality_score for row in rows] == [0.95, 0.8, 0.7]
    assert len({row.model_version for row in rows}) == 1


def test_reindex_is_idempotent(service_factory, detection_factory, blank_image, store):
    """Test that indexing the same photo twice leaves one encoding set."""
    service, _ = service_factory(
        [detection_factory(10, 10, 60, 60, 0.9), detection_factory(100, 10, 150, 60, 0.9)]
    )

    service.index_photo("p1", blank_image)
    first = store.get_photo("p1")
    service.index_photo("p1", blank_image)
    second = store.get_photo("p1")

    assert len(second) == 2
    for a, b in zip(first, second):
        np.testing.assert_array_equal(a.embedding, b.embedding)
        assert a.bounding_box == b.bounding_box


def test_reindex_replaces_face_set(service_factory, detection_factory, blank_image, store):
    """Test that a re-index with fewer faces drops the stale ones."""
    service, models = service_factory(
        [detection_factory(10, 10, 60, 60, 0.9), detection_factory(100, 10, 150, 60, 0.8)]
    )
    service.index_photo("p1", blank_image)

    models.detector.detections = [detection_factory(10, 10, 60, 60, 0.9)]
    service.index_photo("p1", blank_image)

    assert len(store.get_photo("p1")) == 1


def test_low_confidence_face_recovered(service_factory, detection_factory, blank_image, store):
    """Test that the cascade finds a faint face at a lower threshold."""
    service, _ = service_factory([detection_factory(10, 10, 60, 60, 0.15)])

    report = service.index_photo("p1", blank_image)

    assert report.threshold == 0.1
    assert report.attempts == 3
    assert len(store.get_photo("p1")) == 1


def test_no_face_not_marked_indexed(service_factory, detection_factory, blank_image, store, catalog):
    """Test that a photo without faces raises and stays unindexed."""
    service, models = service_factory([detection_factory(10, 10, 60, 60, 0.05)])

    with pytest.raises(NoFaceDetected) as exc_info:
        service.index_photo("p1", blank_image)

    assert exc_info.value.photo_id == "p1"
    assert exc_info.value.thresholds == (0.5, 0.3, 0.1)
    assert models.detector.calls == 3
    assert store.get_photo("p1") == []
    assert not catalog.is_indexed("p1")


def test_failed_reindex_keeps_previous_state(
    service_factory, detection_factory, blank_image, store, catalog
):
    """Test that a re-index finding no face leaves earlier encodings alone."""
    service, models = service_factory([detection_factory(10, 10, 60, 60, 0.9)])
    service.index_photo("p1", blank_image)
    before = store.get_photo("p1")

    models.detector.detections = []
    with pytest.raises(NoFaceDetected):
        service.index_photo("p1", blank_image)

    assert store.get_photo("p1") == before
    assert catalog.is_indexed("p1")


def test_persistence_failure_not_marked_indexed(
    service_factory, detection_factory, blank_image, catalog
):
    """Test that a store error surfaces and leaves the flag unset."""
    broken_store = Mock()
    broken_store.replace_photo.side_effect = RuntimeError("disk full")
    service, _ = service_factory([detection_factory(10, 10, 60, 60, 0.9)], store=broken_store)

    with pytest.raises(EncodingPersistenceFailure, match="disk full"):
        service.index_photo("p1", blank_image)

    assert not catalog.is_indexed("p1")


def test_rejected_encodings_keep_previous_set(
    service_factory, detection_factory, blank_image, store, catalog
):
    """Test that a constraint violation leaves the old encodings intact."""
    old = FaceEncoding(
        photo_id="p1",
        face_index=0,
        embedding=np.ones(8, dtype=np.float32) / np.sqrt(8),
        bounding_box=(0, 0, 10, 10),
        quality_score=0.9,
        model_version="old",
    )
    other = FaceEncoding(
        photo_id="other",
        face_index=0,
        embedding=np.ones(4, dtype=np.float32) / 2,
        bounding_box=(0, 0, 10, 10),
        quality_score=0.9,
        model_version="test-v1",
    )
    store.bulk_insert([old, other])
    service, _ = service_factory([detection_factory(10, 10, 60, 60, 0.9)])

    with pytest.raises(EncodingPersistenceFailure):
        service.index_photo("p1", blank_image)

    assert store.get_photo("p1") == [old]
    assert not catalog.is_indexed("p1")


def test_model_load_failure_propagates(service_factory, blank_image, store, catalog):
    """Test that indexing fails cleanly when models cannot load."""
    loader = Mock(side_effect=OSError("buffalo_l not found"))
    service, _ = service_factory([], loader=loader)

    with pytest.raises(ModelLoadFailure):
        service.index_photo("p1", blank_image)

    assert len(store) == 0
    assert not catalog.is_indexed("p1")


def test_indexing_uses_precise_tier(service_factory, detection_factory, models_factory, blank_image):
    """Test that the indexer always loads the precise tier."""
    loader = Mock(side_effect=lambda tier: models_factory([detection_factory(10, 10, 60, 60, 0.9)]))
    service, _ = service_factory([], loader=loader)

    service.index_photo("p1", blank_image)

    loader.assert_called_once_with(Tier.PRECISE)


def test_remove_photo(service_factory, detection_factory, blank_image, store, catalog):
    """Test removing a deleted photo's encodings."""
    service, _ = service_factory([detection_factory(10, 10, 60, 60, 0.9)])
    service.index_photo("p1", blank_image)

    assert service.remove_photo("p1") == 1
    assert store.get_photo("p1") == []
    assert not catalog.is_indexed("p1")


def test_stale_photos(service_factory, detection_factory, blank_image, store):
    """Test listing photos indexed by another model version."""
    store.bulk_insert(
        [
            FaceEncoding(
                photo_id="legacy",
                face_index=0,
                embedding=np.ones(128, dtype=np.float32) / np.sqrt(128),
                bounding_box=(0, 0, 10, 10),
                quality_score=0.9,
                model_version="dlib-hog-small-precise",
            )
        ]
    )
    service, _ = service_factory([detection_factory(10, 10, 60, 60, 0.9)])

    assert service.stale_photos() == []

    service.index_photo("p1", blank_image)

    assert service.stale_photos() == ["legacy"]


def test_ladder_from_config(service_factory, detection_factory, config_factory, blank_image):
    """Test that a shorter configured ladder gives up sooner."""
    service, models = service_factory(
        [detection_factory(10, 10, 60, 60, 0.35)],
        config=config_factory(confidence_ladder=(0.5,)),
    )

    with pytest.raises(NoFaceDetected):
        service.index_photo("p1", blank_image)

    assert models.detector.calls == 1
    assert service.load_timeout == 5.0
