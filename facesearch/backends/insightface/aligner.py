"""5-point face alignment to the 112x112 ArcFace template."""

from __future__ import annotations

import cv2
import numpy as np

from facesearch.logging_config import get_logger

logger = get_logger(__name__)


# Standard 5-point landmark positions for a 112x112 aligned face (ArcFace template)
ARCFACE_DST = np.array(
    [
        [38.2946, 51.6963],  # left eye
        [73.5318, 51.5014],  # right eye
        [56.0252, 71.7366],  # nose tip
        [41.5493, 92.3655],  # left mouth corner
        [70.7299, 92.2041],  # right mouth corner
    ],
    dtype=np.float32,
)


class FivePointAligner:
    """Warp a face onto the ArcFace template with a similarity transform.

    The transform (scale, rotation, translation, no shear) is estimated from
    the detector's 5 landmarks, so the same landmarks always produce the same
    crop.

    Example:
        >>> aligner = FivePointAligner()
        >>> crop = aligner.align(frame, detection.kps)
        >>> crop.shape
        (112, 112, 3)
    """

    def __init__(self, output_size: tuple[int, int] = (112, 112)):
        self.output_size = output_size
        # Template is defined for 112x112; rescale for other sizes
        self.dst_points = ARCFACE_DST * (output_size[0] / 112.0)

    def align(self, frame_bgr: np.ndarray, kps_5pt: np.ndarray) -> np.ndarray:
        """Return the aligned BGR uint8 crop of shape [H, W, 3].

        Raises:
            ValueError: If landmarks are missing or have the wrong shape.
        """
        if kps_5pt is None:
            raise ValueError("Landmarks (kps_5pt) cannot be None")

        if kps_5pt.shape != (5, 2):
            raise ValueError(f"Expected kps shape (5, 2), got {kps_5pt.shape}")

        src_points = kps_5pt.astype(np.float32)

        # Similarity transform: rotation, uniform scale and translation only
        tform, _ = cv2.estimateAffinePartial2D(src_points, self.dst_points, method=cv2.LMEDS)

        # LMEDS can fail on degenerate landmarks
        if tform is None:
            logger.warning("estimateAffinePartial2D failed, falling back to 3-point affine")
            tform = cv2.getAffineTransform(src_points[:3], self.dst_points[:3])

        # Warp to the aligned crop, padding with black outside the frame
        return cv2.warpAffine(
            frame_bgr,
            tform,
            self.output_size,
            flags=cv2.INTER_LINEAR,
            borderMode=cv2.BORDER_CONSTANT,
            borderValue=(0, 0, 0),
        )

    def __repr__(self) -> str:
        return f"FivePointAligner(output_size={self.output_size})"
