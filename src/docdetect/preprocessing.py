"""
Preprocessing strategies for edge detection.

Each ``PreprocessStrategy`` maps to one pure function in ``PREPROCESSORS``.
Every function returns a single-channel uint8 image: either a filtered
grayscale image that still needs Canny, or (for strategies whose
``is_binary_output`` is True) a finished 0/255 edge map.

Input images are BGR, BGRA or grayscale and are never modified.
"""

import logging
import time
from typing import Callable, Optional

import cv2
import numpy as np

from src.docdetect.context import DetectionContext
from src.docdetect.scene_analyzer import channel_count, to_gray
from src.docdetect.types import PreprocessStrategy

logger = logging.getLogger(__name__)

PreprocessFn = Callable[[np.ndarray, np.ndarray, DetectionContext], np.ndarray]


def _to_bgr(image: np.ndarray) -> np.ndarray:
    if channel_count(image) == 4:
        return cv2.cvtColor(image, cv2.COLOR_BGRA2BGR)
    return image


def histogram_percentile(image: np.ndarray, fraction: float) -> int:
    """
    Smallest 8-bit value v such that at least int(fraction * N) pixels are <= v.

    Returns 255 if the target is never reached.
    """
    histogram = np.bincount(image.ravel(), minlength=256)
    target = int(image.size * fraction)
    cumulative = np.cumsum(histogram)
    reached = np.nonzero(cumulative >= target)[0]
    return int(reached[0]) if len(reached) else 255


def _standard(image: np.ndarray, gray: np.ndarray, context: DetectionContext) -> np.ndarray:
    # 9x9 suppresses text and table edges so the document boundary dominates
    return cv2.GaussianBlur(gray, (9, 9), 0)


def _clahe_enhanced(image: np.ndarray, gray: np.ndarray, context: DetectionContext) -> np.ndarray:
    clahe = cv2.createCLAHE(clipLimit=3.0, tileGridSize=(4, 4))
    enhanced = clahe.apply(gray)
    return cv2.GaussianBlur(enhanced, (5, 5), 0)


def _saturation_channel(image: np.ndarray, gray: np.ndarray, context: DetectionContext) -> np.ndarray:
    """Inverted HSV saturation: white paper becomes bright on colored backgrounds."""
    if channel_count(image) < 3:
        return _standard(image, gray, context)

    hsv = cv2.cvtColor(_to_bgr(image), cv2.COLOR_BGR2HSV)
    inverted = cv2.bitwise_not(hsv[:, :, 1])
    return cv2.GaussianBlur(inverted, (9, 9), 0)


def _bilateral(image: np.ndarray, gray: np.ndarray, context: DetectionContext) -> np.ndarray:
    return cv2.bilateralFilter(gray, 9, 75, 75)


def _adaptive_threshold(image: np.ndarray, gray: np.ndarray, context: DetectionContext) -> np.ndarray:
    """
    Adaptive binarization followed by boundary extraction.

    Block size 51 follows the document boundary scale rather than text lines.
    The morphological gradient turns the binary segmentation into thin edges.
    """
    blurred = cv2.GaussianBlur(gray, (5, 5), 0)
    binary = cv2.adaptiveThreshold(
        blurred, 255, cv2.ADAPTIVE_THRESH_GAUSSIAN_C, cv2.THRESH_BINARY, 51, 5
    )
    edges = cv2.morphologyEx(binary, cv2.MORPH_GRADIENT, context.morph_kernel_3x3)
    return cv2.morphologyEx(edges, cv2.MORPH_CLOSE, context.morph_kernel_3x3)


def _lab_clahe(image: np.ndarray, gray: np.ndarray, context: DetectionContext) -> np.ndarray:
    """LAB lightness with aggressive CLAHE (clip 6.0, 2x2 tiles)."""
    if channel_count(image) < 3:
        lightness = gray
    else:
        lab = cv2.cvtColor(_to_bgr(image), cv2.COLOR_BGR2Lab)
        lightness = lab[:, :, 0]

    clahe = cv2.createCLAHE(clipLimit=6.0, tileGridSize=(2, 2))
    enhanced = clahe.apply(np.ascontiguousarray(lightness))
    return cv2.GaussianBlur(enhanced, (5, 5), 0)


def _gradient_magnitude(image: np.ndarray, gray: np.ndarray, context: DetectionContext) -> np.ndarray:
    """Sobel magnitude thresholded at its own 95th percentile."""
    grad_x = cv2.Sobel(gray, cv2.CV_32F, 1, 0)
    grad_y = cv2.Sobel(gray, cv2.CV_32F, 0, 1)
    magnitude = cv2.magnitude(grad_x, grad_y)
    magnitude_u8 = cv2.normalize(magnitude, None, 0, 255, cv2.NORM_MINMAX, dtype=cv2.CV_8U)

    threshold = histogram_percentile(magnitude_u8, 0.95)
    _, binary = cv2.threshold(magnitude_u8, threshold, 255, cv2.THRESH_BINARY)
    return cv2.morphologyEx(binary, cv2.MORPH_CLOSE, context.morph_kernel_5x5)


def _dog(image: np.ndarray, gray: np.ndarray, context: DetectionContext) -> np.ndarray:
    """Difference of Gaussians |G3x3 - G21x21|, a band-pass for edge-scale features."""
    blur_small = cv2.GaussianBlur(gray, (3, 3), 0)
    blur_large = cv2.GaussianBlur(gray, (21, 21), 0)
    return cv2.absdiff(blur_small, blur_large)


def _multichannel_fusion(image: np.ndarray, gray: np.ndarray, context: DetectionContext) -> np.ndarray:
    """Canny(20, 50) per color channel, OR-combined."""
    if channel_count(image) < 3:
        edges = cv2.Canny(image.reshape(image.shape[:2]), 20, 50)
        return cv2.morphologyEx(edges, cv2.MORPH_CLOSE, context.morph_kernel_3x3)

    combined = None
    for channel in cv2.split(_to_bgr(image)):
        edges = cv2.Canny(channel, 20, 50)
        combined = edges if combined is None else cv2.bitwise_or(combined, edges)
    return cv2.morphologyEx(combined, cv2.MORPH_CLOSE, context.morph_kernel_3x3)


def _directional_gradient(image: np.ndarray, gray: np.ndarray, context: DetectionContext) -> np.ndarray:
    """
    Directional gradient smoothing for ultra-low-contrast scenes.

    Runs at half resolution: blur, Sobel, directional line accumulation via
    the context's kernel, normalization, percentile threshold, then resize
    back with nearest-neighbour and a 3x3 close.
    """
    orig_rows, orig_cols = gray.shape
    small = cv2.resize(
        gray, (max(1, orig_cols // 2), max(1, orig_rows // 2)), interpolation=cv2.INTER_AREA
    )
    blurred = cv2.GaussianBlur(small, (5, 5), 1.4)

    abs_gx = cv2.convertScaleAbs(cv2.Sobel(blurred, cv2.CV_16S, 1, 0, ksize=3))
    abs_gy = cv2.convertScaleAbs(cv2.Sobel(blurred, cv2.CV_16S, 0, 1, ksize=3))

    response = context.kernel.accumulate(abs_gy, abs_gx, context.offsets)

    # Normalize and threshold in one pooled half-resolution buffer; the response is ours to scale in place
    handle, small = context.pool.acquire(response.shape, np.uint8)
    try:
        global_max = max(1, int(response.max()))
        response *= 255
        response //= global_max
        np.copyto(small, response, casting="unsafe")
        threshold = histogram_percentile(small, context.config.kernel.threshold_percentile)
        cv2.threshold(small, threshold, 255, cv2.THRESH_BINARY, dst=small)
        binary = cv2.resize(small, (orig_cols, orig_rows), interpolation=cv2.INTER_NEAREST)
    finally:
        context.pool.release(handle)

    return cv2.morphologyEx(binary, cv2.MORPH_CLOSE, context.morph_kernel_3x3)


PREPROCESSORS: dict[PreprocessStrategy, PreprocessFn] = {
    PreprocessStrategy.STANDARD: _standard,
    PreprocessStrategy.CLAHE_ENHANCED: _clahe_enhanced,
    PreprocessStrategy.SATURATION_CHANNEL: _saturation_channel,
    PreprocessStrategy.BILATERAL: _bilateral,
    # Heavier morphology happens in the edge stage
    PreprocessStrategy.HEAVY_MORPH: _standard,
    PreprocessStrategy.ADAPTIVE_THRESHOLD: _adaptive_threshold,
    PreprocessStrategy.LAB_CLAHE: _lab_clahe,
    PreprocessStrategy.GRADIENT_MAGNITUDE: _gradient_magnitude,
    PreprocessStrategy.DOG: _dog,
    PreprocessStrategy.MULTICHANNEL_FUSION: _multichannel_fusion,
    PreprocessStrategy.DIRECTIONAL_GRADIENT: _directional_gradient,
}


def preprocess(
    image: np.ndarray,
    strategy: PreprocessStrategy = PreprocessStrategy.STANDARD,
    context: Optional[DetectionContext] = None,
    gray: Optional[np.ndarray] = None,
) -> np.ndarray:
    """
    Apply one preprocessing strategy.

    Args:
        image: BGR, BGRA or grayscale image (not modified).
        strategy: Strategy to apply.
        context: Detection context; a default one is built when None.
        gray: Precomputed grayscale of image (e.g. from analyze_scene).

    Returns:
        Single-channel uint8 image of the same height and width.
    """
    if context is None:
        context = DetectionContext()
    if gray is None:
        gray = to_gray(image)

    start = time.perf_counter()
    result = PREPROCESSORS[strategy](image, gray, context)
    ms = (time.perf_counter() - start) * 1000.0
    logger.debug(f"preprocess({strategy.name}): {ms:.1f} ms")
    return result
