"""
Perspective rectification of a detected document.

Warps the quadrilateral defined by 4 ordered corners into an upright
rectangle. Output size follows the longest edge pairs, or a target aspect
ratio when one is supplied (e.g. from the aspect-ratio estimator).
"""

import logging
import time
from typing import Optional

import cv2
import numpy as np

from src.docdetect.geometry import as_corners

logger = logging.getLogger(__name__)

INTERPOLATION_FLAGS = {
    "nearest": cv2.INTER_NEAREST,
    "linear": cv2.INTER_LINEAR,
    "cubic": cv2.INTER_CUBIC,
    "area": cv2.INTER_AREA,
    "lanczos": cv2.INTER_LANCZOS4,
}


def compute_output_size(corners: np.ndarray, target_ratio: Optional[float] = None) -> tuple[int, int]:
    """
    Output (width, height) for rectifying the quad.

    Without a ratio, width and height are the longer of each opposite edge
    pair. With a ratio (min/max), the longer dimension is kept and the
    shorter one derived from it; orientation comes from the quad.

    Raises:
        ValueError: If corners is not 4 points, target_ratio is not in
            (0, 1], or the quad is degenerate.
    """
    tl, tr, br, bl = as_corners(corners)
    if target_ratio is not None and not 0.0 < target_ratio <= 1.0:
        raise ValueError(f"target_ratio must be in (0, 1], got {target_ratio}")

    width = int(max(np.linalg.norm(tr - tl), np.linalg.norm(br - bl)))
    height = int(max(np.linalg.norm(bl - tl), np.linalg.norm(br - tr)))
    if width <= 0 or height <= 0:
        raise ValueError(f"Invalid output dimensions: {width}x{height}")

    if target_ratio is None:
        return width, height

    long_dim = max(width, height)
    short_dim = max(int(long_dim * target_ratio), 1)
    if width >= height:
        return long_dim, short_dim
    return short_dim, long_dim


def rectify(
    image: np.ndarray,
    corners: np.ndarray,
    target_ratio: Optional[float] = None,
    interpolation: str = "cubic",
) -> np.ndarray:
    """
    Warp the document quad to a top-down rectangle.

    Args:
        image: Source image (any channel count).
        corners: Ordered corners [TL, TR, BR, BL], shape (4, 2).
        target_ratio: Optional aspect ratio (min/max) forced on the output.
        interpolation: One of "nearest", "linear", "cubic", "area", "lanczos".
            Cubic for final output, linear for previews.

    Returns:
        Rectified image.

    Raises:
        ValueError: If the image is empty, the interpolation is unknown or
            the corners are invalid.

    Example:
        >>> result = detect_document(image)
        >>> page = rectify(image, result.corners.corners, target_ratio=1 / 1.414)
    """
    if image is None or image.size == 0:
        raise ValueError("Invalid input image: image is None or empty")
    if interpolation not in INTERPOLATION_FLAGS:
        raise ValueError(
            f"Unknown interpolation '{interpolation}', expected one of {sorted(INTERPOLATION_FLAGS)}"
        )

    start = time.perf_counter()
    src = as_corners(corners).astype(np.float32)
    out_width, out_height = compute_output_size(src, target_ratio)

    dst = np.array(
        [
            [0, 0],  # Top-Left
            [out_width - 1, 0],  # Top-Right
            [out_width - 1, out_height - 1],  # Bottom-Right
            [0, out_height - 1],  # Bottom-Left
        ],
        dtype=np.float32,
    )

    M = cv2.getPerspectiveTransform(src, dst)
    rectified = cv2.warpPerspective(
        image, M, (out_width, out_height), flags=INTERPOLATION_FLAGS[interpolation]
    )

    ms = (time.perf_counter() - start) * 1000.0
    ratio_info = f", ratio={target_ratio:.3f}" if target_ratio is not None else ""
    logger.debug(f"rectify: {ms:.1f} ms (output={out_width}x{out_height}{ratio_info})")
    return rectified
