"""Detection cascade: retry extraction down a ladder of confidence thresholds.

Lowering the detector threshold for every image admits non-face regions,
so the ladder is only descended when the previous step found nothing.
The policy is data (``ConfidenceLadder``) consumed by the generic
``retry_until`` combinator.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Generic, Iterable, Optional, Sequence, Tuple, TypeVar

from facesearch.extractor import DescriptorExtractor, PreparedImage
from facesearch.interfaces import DetectionResult
from facesearch.logging_config import get_logger

logger = get_logger(__name__)

S = TypeVar("S")
R = TypeVar("R")

DEFAULT_LADDER = (0.5, 0.3, 0.1)


@dataclass(frozen=True)
class RetryOutcome(Generic[S, R]):
    """Result of ``retry_until``.

    Attributes:
        result: Accepted result, or the last one when no step was accepted
        step: Step that produced an accepted result (None if exhausted)
        attempts: Number of attempts made
    """

    result: Optional[R]
    step: Optional[S]
    attempts: int

    @property
    def succeeded(self) -> bool:
        return self.step is not None


def retry_until(
    attempt: Callable[[S], R],
    steps: Iterable[S],
    accept: Callable[[R], bool],
) -> RetryOutcome[S, R]:
    """Call ``attempt(step)`` for each step until ``accept(result)`` holds.

    Example:
        >>> outcome = retry_until(lambda t: detect(t), (0.5, 0.3), lambda r: len(r) > 0)
        >>> outcome.succeeded, outcome.step
        (True, 0.3)
    """
    result: Optional[R] = None
    attempts = 0

    for step in steps:
        attempts += 1
        result = attempt(step)
        if accept(result):
            return RetryOutcome(result=result, step=step, attempts=attempts)

    return RetryOutcome(result=result, step=None, attempts=attempts)


@dataclass(frozen=True)
class ConfidenceLadder:
    """Strictly decreasing detection thresholds in (0, 1]."""

    thresholds: Tuple[float, ...] = DEFAULT_LADDER

    def __post_init__(self) -> None:
        if not self.thresholds:
            raise ValueError("Confidence ladder must contain at least one threshold")

        for value in self.thresholds:
            if not 0.0 < value <= 1.0:
                raise ValueError(f"Ladder thresholds must be in (0, 1], got {value}")

        for higher, lower in zip(self.thresholds, self.thresholds[1:]):
            if lower >= higher:
                raise ValueError(f"Ladder must be strictly decreasing, got {self.thresholds}")

    @classmethod
    def of(cls, thresholds: Sequence[float]) -> ConfidenceLadder:
        return cls(tuple(float(t) for t in thresholds))

    def __iter__(self):
        return iter(self.thresholds)

    def __len__(self) -> int:
        return len(self.thresholds)


@dataclass(frozen=True)
class CascadeOutcome:
    """Faces found by the cascade and the threshold that found them.

    ``threshold`` is None when every step came back empty.
    """

    result: DetectionResult
    threshold: Optional[float]
    attempts: int
    thresholds_tried: Tuple[float, ...]

    @property
    def found(self) -> bool:
        return not self.result.is_empty


class DetectionCascade:
    """Runs the extractor down a confidence ladder until a face is found.

    Example:
        >>> cascade = DetectionCascade(extractor, ConfidenceLadder((0.5, 0.3, 0.1)))
        >>> outcome = cascade.run(extractor.prepare(image))
        >>> if not outcome.found:
        ...     raise NoFaceDetected(photo_id, outcome.thresholds_tried)
    """

    def __init__(self, extractor: DescriptorExtractor, ladder: ConfidenceLadder | None = None):
        self.extractor = extractor
        self.ladder = ladder or ConfidenceLadder()

    def run(self, prepared: PreparedImage, *, single: bool = False) -> CascadeOutcome:
        """Extract faces from an already prepared image.

        Each step re-runs full detection on the same resized pixels.
        """

        def attempt(threshold: float) -> DetectionResult:
            result = self.extractor.extract(prepared, threshold, single=single)
            if result.is_empty:
                logger.info(f"No faces detected at confidence {threshold:.2f}")
            return result

        outcome = retry_until(attempt, self.ladder, lambda r: not r.is_empty)

        tried = self.ladder.thresholds[: outcome.attempts]
        if outcome.succeeded and outcome.attempts > 1:
            logger.info(
                f"Recovered {len(outcome.result)} face(s) at confidence {outcome.step:.2f} "
                f"after {outcome.attempts} attempts"
            )

        return CascadeOutcome(
            result=outcome.result if outcome.result is not None else DetectionResult(),
            threshold=outcome.step,
            attempts=outcome.attempts,
            thresholds_tried=tried,
        )

    def __repr__(self) -> str:
        return f"DetectionCascade(ladder={self.ladder.thresholds})"
