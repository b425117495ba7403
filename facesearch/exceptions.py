"""Error taxonomy for face indexing and face search.

Each error carries a ``user_message`` suitable for showing to the person who
uploaded the photo or the selfie, separate from the technical ``str(e)``.
"""

from __future__ import annotations

from typing import Sequence


class FaceSearchError(Exception):
    """Base class for all face search errors."""

    user_message = "Face search failed. Please try again later."
    retriable = False


class ModelLoadFailure(FaceSearchError):
    """A detector tier could not be loaded (missing artifacts, backend init)."""

    user_message = "Face recognition models are unavailable right now."

    def __init__(self, tier: str, reason: str):
        super().__init__(f"Failed to load {tier} tier: {reason}")
        self.tier = tier
        self.reason = reason


class ModelLoadTimeout(ModelLoadFailure):
    """Waiting for a tier to load exceeded the configured timeout."""

    retriable = True

    def __init__(self, tier: str, timeout: float):
        super().__init__(tier, f"timed out after {timeout:.1f}s")
        self.timeout = timeout


class InvalidImage(FaceSearchError):
    """Image bytes could not be decoded."""

    user_message = "The image could not be read. Please upload a JPEG or PNG file."


class NoFaceDetected(FaceSearchError):
    """The detection cascade found no face at any threshold."""

    user_message = (
        "No face was found in the photo. Check the lighting and image quality."
    )

    def __init__(self, photo_id: str | None, thresholds: Sequence[float]):
        target = f"photo {photo_id}" if photo_id is not None else "image"
        super().__init__(
            f"No face detected in {target} "
            f"(thresholds tried: {', '.join(f'{t:.2f}' for t in thresholds)})"
        )
        self.photo_id = photo_id
        self.thresholds = tuple(thresholds)


class VectorSearchUnavailable(FaceSearchError):
    """The vector search call failed or timed out after all retries."""

    user_message = "Search is temporarily unavailable. Please try again shortly."
    retriable = True

    def __init__(self, attempts: int, reason: str):
        super().__init__(f"Vector search failed after {attempts} attempt(s): {reason}")
        self.attempts = attempts
        self.reason = reason


class EncodingPersistenceFailure(FaceSearchError):
    """The encoding store rejected the encodings of a photo."""

    user_message = "The photo could not be indexed. Please try again later."

    def __init__(self, photo_id: str, reason: str):
        super().__init__(f"Could not persist encodings for photo {photo_id}: {reason}")
        self.photo_id = photo_id
        self.reason = reason


class SearchCancelled(FaceSearchError):
    """The caller abandoned the request before it finished."""

    user_message = "The search was cancelled."
