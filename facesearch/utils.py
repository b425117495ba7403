"""Image and vector helpers shared by the pipelines and backends."""

from __future__ import annotations

from pathlib import Path
from typing import Tuple, Union

import cv2
import numpy as np

from facesearch.exceptions import InvalidImage
from facesearch.logging_config import get_logger

logger = get_logger(__name__)

ImageInput = Union[bytes, bytearray, str, Path, np.ndarray]


def decode_image(data: bytes | bytearray) -> np.ndarray:
    """Decode encoded image bytes (JPEG, PNG, ...) into a BGR array.

    Raises:
        InvalidImage: If the bytes are empty or not a decodable image.
    """
    if not data:
        raise InvalidImage("Empty image data")

    buffer = np.frombuffer(bytes(data), dtype=np.uint8)
    image = cv2.imdecode(buffer, cv2.IMREAD_COLOR)

    if image is None:
        raise InvalidImage(f"Could not decode image ({len(data)} bytes)")

    return image


def load_image(source: ImageInput) -> np.ndarray:
    """Accept raw bytes, a file path or an already decoded BGR array.

    Grayscale arrays are expanded to three channels and BGRA arrays lose
    their alpha channel, so the detectors always see [H, W, 3] uint8.
    """
    if isinstance(source, (bytes, bytearray)):
        return decode_image(source)

    if isinstance(source, (str, Path)):
        path = Path(source)
        if not path.is_file():
            raise InvalidImage(f"Image file not found: {path}")
        return decode_image(path.read_bytes())

    if not isinstance(source, np.ndarray) or source.size == 0:
        raise InvalidImage(f"Unsupported image input: {type(source).__name__}")

    if source.ndim == 2:
        return cv2.cvtColor(source, cv2.COLOR_GRAY2BGR)
    if source.ndim == 3 and source.shape[2] == 4:
        return cv2.cvtColor(source, cv2.COLOR_BGRA2BGR)
    if source.ndim == 3 and source.shape[2] == 3:
        return source

    raise InvalidImage(f"Unsupported image shape {source.shape}")


def resize_to_max_side(image: np.ndarray, max_side: int) -> Tuple[np.ndarray, float]:
    """Downscale so the longest side is at most ``max_side``.

    Aspect ratio is preserved and ``cv2.INTER_AREA`` is used to avoid the
    aliasing that degrades descriptors. Images already small enough are
    returned untouched.

    Returns:
        Tuple of (image, scale) where ``scale`` maps resized coordinates to
        the original image (``original = resized * scale``).

    Example:
        >>> small, scale = resize_to_max_side(photo, 1280)
        >>> bbox_in_original = bbox.scale(scale)
    """
    h, w = image.shape[:2]
    longest = max(h, w)

    if longest <= max_side:
        return image, 1.0

    factor = max_side / float(longest)
    new_w = max(1, int(round(w * factor)))
    new_h = max(1, int(round(h * factor)))

    resized = cv2.resize(image, (new_w, new_h), interpolation=cv2.INTER_AREA)

    logger.debug(f"Resized image {w}x{h} -> {new_w}x{new_h}")
    return resized, longest / float(max_side)


def l2_normalize(vec: np.ndarray, eps: float = 1e-10) -> np.ndarray:
    """L2-normalize a vector or a batch of vectors (shape [D] or [N, D])."""
    norm = np.linalg.norm(vec, axis=-1, keepdims=True)
    norm = np.maximum(norm, eps)
    return vec / norm
