"""Unit tests for the detection cascade."""

from __future__ import annotations

import pytest

from facesearch.cascade import ConfidenceLadder, DetectionCascade, retry_until
from facesearch.extractor import DescriptorExtractor


@pytest.fixture
def run_cascade(models_factory, detection_factory, blank_image):
    """Run the default cascade over one detection with the given score."""

    def run(score, single=False, ladder=None):
        models = models_factory([detection_factory(10, 10, 60, 60, score)])
        extractor = DescriptorExtractor(models)
        outcome = DetectionCascade(extractor, ladder).run(
            extractor.prepare(blank_image), single=single
        )
        return outcome, models

    return run


def test_default_ladder():
    """Test the default thresholds."""
    assert ConfidenceLadder().thresholds == (0.5, 0.3, 0.1)
    assert len(ConfidenceLadder()) == 3


@pytest.mark.parametrize(
    "thresholds",
    [(), (0.3, 0.5), (0.5, 0.5), (1.5, 0.3), (0.5, 0.0)],
)
def test_invalid_ladders_rejected(thresholds):
    """Test that empty, non-decreasing or out-of-range ladders fail."""
    with pytest.raises(ValueError):
        ConfidenceLadder(thresholds)


def test_retry_until_stops_at_first_accepted_step():
    """Test the generic retry combinator."""
    calls = []

    def attempt(step):
        calls.append(step)
        return step * 10

    outcome = retry_until(attempt, [1, 2, 3, 4], lambda r: r >= 20)

    assert outcome.succeeded
    assert outcome.step == 2
    assert outcome.result == 20
    assert outcome.attempts == 2
    assert calls == [1, 2]


def test_retry_until_exhausted():
    """Test that an exhausted retry reports the last result."""
    outcome = retry_until(lambda step: step, [1, 2, 3], lambda r: False)

    assert not outcome.succeeded
    assert outcome.step is None
    assert outcome.result == 3
    assert outcome.attempts == 3


def test_clear_face_found_on_first_step(run_cascade):
    """Test that a confident face needs a single detection pass."""
    outcome, models = run_cascade(0.9)

    assert outcome.found
    assert outcome.threshold == 0.5
    assert outcome.attempts == 1
    assert outcome.thresholds_tried == (0.5,)
    assert models.detector.calls == 1


def test_low_confidence_face_recovered(run_cascade):
    """Test that a face below the first threshold is found on a later step."""
    outcome, models = run_cascade(0.35)

    assert outcome.found
    assert outcome.threshold == 0.3
    assert outcome.attempts == 2
    assert outcome.thresholds_tried == (0.5, 0.3)
    assert outcome.result.best.quality_score == pytest.approx(0.35)
    assert models.detector.calls == 2


def test_exhausted_ladder_returns_empty(run_cascade):
    """Test that a face below every threshold is not found."""
    outcome, models = run_cascade(0.05)

    assert not outcome.found
    assert outcome.threshold is None
    assert outcome.attempts == 3
    assert outcome.thresholds_tried == (0.5, 0.3, 0.1)
    assert outcome.result.is_empty
    assert models.detector.calls == 3


def test_single_step_ladder(run_cascade):
    """Test a ladder with one threshold does not retry."""
    outcome, models = run_cascade(0.35, single=True, ladder=ConfidenceLadder((0.5,)))

    assert not outcome.found
    assert outcome.attempts == 1
    assert models.detector.calls == 1


def test_ladder_of_converts_values():
    """Test building a ladder from any sequence."""
    ladder = ConfidenceLadder.of([0.6, "0.2"])

    assert ladder.thresholds == (0.6, 0.2)
    assert list(ladder) == [0.6, 0.2]
