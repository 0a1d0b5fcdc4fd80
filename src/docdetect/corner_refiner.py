"""Sub-pixel refinement of detected document corners."""

import logging
import time
from typing import Optional

import cv2
import numpy as np

from src.docdetect.config_loader import DocDetectConfig
from src.docdetect.geometry import as_corners

logger = logging.getLogger(__name__)


def refine_corners(
    gray: np.ndarray,
    corners: np.ndarray,
    win_size: Optional[int] = None,
    config: Optional[DocDetectConfig] = None,
) -> np.ndarray:
    """
    Move corners onto the actual image corners with cv2.cornerSubPix.

    Corners are first clamped to [win, dim - 1 - win] so the search window
    stays inside the image. The search window is (2 * win + 1) squared.

    Args:
        gray: Single-channel uint8 image at the corners' resolution.
        corners: Corners [TL, TR, BR, BL], shape (4, 2).
        win_size: Half-size of the search window (config value when None).
        config: Detection configuration (defaults when None).

    Returns:
        Refined corners, float64 array of shape (4, 2), same order.

    Raises:
        ValueError: If gray is empty or not single-channel, if corners is
            not 4 points, or if the image is smaller than the search window.
    """
    if gray is None or gray.size == 0:
        raise ValueError("Input image is empty")
    if gray.ndim != 2:
        raise ValueError(f"Expected single-channel input, got shape {gray.shape}")
    pts = as_corners(corners)

    cfg = (config or DocDetectConfig.default()).refinement
    win = cfg.win_size if win_size is None else win_size
    height, width = gray.shape
    max_x = width - 1 - win
    max_y = height - 1 - win
    if max_x < win or max_y < win:
        raise ValueError(
            f"Image {width}x{height} too small for a {2 * win + 1}px refinement window"
        )

    start = time.perf_counter()
    clamped = np.empty((4, 1, 2), dtype=np.float32)
    clamped[:, 0, 0] = np.clip(pts[:, 0], win, max_x)
    clamped[:, 0, 1] = np.clip(pts[:, 1], win, max_y)

    criteria = (cv2.TERM_CRITERIA_COUNT + cv2.TERM_CRITERIA_EPS, cfg.max_iterations, cfg.epsilon)
    refined = cv2.cornerSubPix(gray, clamped, (win, win), (-1, -1), criteria)

    ms = (time.perf_counter() - start) * 1000.0
    logger.debug(f"refine_corners: {ms:.1f} ms")
    return refined.reshape(4, 2).astype(np.float64)
