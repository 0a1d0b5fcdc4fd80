"""
Scene analysis: lighting classification and preprocessing strategy order.

A single mean/stddev pass over the grayscale image decides which
preprocessing strategies the cascade should try, most promising first.
Lighting rarely changes between consecutive video frames, so a
``SceneCache`` can reuse one analysis for a number of frames.
"""

import logging
import time
from typing import Optional

import cv2
import numpy as np

from src.docdetect.config_loader import DocDetectConfig, SceneConfig
from src.docdetect.types import PreprocessStrategy, SceneAnalysis

logger = logging.getLogger(__name__)


def to_gray(image: np.ndarray) -> np.ndarray:
    """
    Convert a BGR, BGRA or single-channel image to a new grayscale array.

    Raises:
        ValueError: If the image is empty or has an unsupported channel count.
    """
    if image is None or image.size == 0:
        raise ValueError("Image is empty")

    channels = 1 if image.ndim == 2 else image.shape[2]
    if channels == 1:
        return image.reshape(image.shape[:2]).copy()
    if channels == 3:
        return cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
    if channels == 4:
        return cv2.cvtColor(image, cv2.COLOR_BGRA2GRAY)
    raise ValueError(f"Unsupported channel count: {channels}")


def channel_count(image: np.ndarray) -> int:
    return 1 if image.ndim == 2 else int(image.shape[2])


class SceneCache:
    """
    Frame-count cache for scene analyses.

    A stored analysis is served for ``max_frames`` subsequent calls, then
    recomputed. ``generation`` increases on every fresh analysis and on
    ``invalidate()`` so callers can tell when the strategy order may have
    changed.
    """

    def __init__(self, max_frames: int = 10):
        self.max_frames = max_frames
        self.generation = 0
        self._analysis: Optional[SceneAnalysis] = None
        self._hits = 0

    def get(self) -> Optional[SceneAnalysis]:
        """Return the cached analysis (without gray) while it is fresh."""
        if self._analysis is None or self._hits >= self.max_frames:
            return None
        self._hits += 1
        return self._analysis

    def store(self, analysis: SceneAnalysis) -> None:
        self._analysis = analysis.without_gray()
        self._hits = 0
        self.generation += 1

    def invalidate(self) -> None:
        """Drop the cached analysis, e.g. when switching from preview to capture."""
        self._analysis = None
        self._hits = 0
        self.generation += 1


def select_strategies(
    is_low_light: bool,
    is_low_contrast: bool,
    is_low_differentiation: bool,
    channels: int,
) -> tuple[PreprocessStrategy, ...]:
    """Ordered strategy list for the given scene classification."""
    if is_low_differentiation:
        return (
            PreprocessStrategy.DOG,
            PreprocessStrategy.DIRECTIONAL_GRADIENT,
            PreprocessStrategy.GRADIENT_MAGNITUDE,
            PreprocessStrategy.LAB_CLAHE,
            PreprocessStrategy.CLAHE_ENHANCED,
            PreprocessStrategy.MULTICHANNEL_FUSION,
            PreprocessStrategy.ADAPTIVE_THRESHOLD,
        )

    strategies = []
    if is_low_light or is_low_contrast:
        strategies.append(PreprocessStrategy.CLAHE_ENHANCED)
        strategies.append(PreprocessStrategy.DOG)

    strategies.append(PreprocessStrategy.STANDARD)

    if is_low_contrast:
        strategies.append(PreprocessStrategy.GRADIENT_MAGNITUDE)

    # CLAHE as a later fallback when it was not already tried first
    if not is_low_light and not is_low_contrast:
        strategies.append(PreprocessStrategy.CLAHE_ENHANCED)

    if channels >= 3:
        strategies.append(PreprocessStrategy.SATURATION_CHANNEL)

    strategies.append(PreprocessStrategy.BILATERAL)
    strategies.append(PreprocessStrategy.HEAVY_MORPH)
    return tuple(strategies)


def analyze_scene(
    image: np.ndarray,
    cache: Optional[SceneCache] = None,
    config: Optional[DocDetectConfig] = None,
) -> SceneAnalysis:
    """
    Classify scene lighting and choose the preprocessing strategy order.

    Args:
        image: BGR, BGRA or grayscale image.
        cache: Optional per-caller cache. A fresh cached analysis is returned
            without its grayscale image.
        config: Detection configuration (defaults when None).

    Returns:
        SceneAnalysis. A freshly computed analysis carries the grayscale
        image so preprocessing can reuse it.

    Raises:
        ValueError: If the image is empty or has an unsupported channel count.
    """
    if cache is not None:
        cached = cache.get()
        if cached is not None:
            return cached

    scene_cfg: SceneConfig = (config or DocDetectConfig.default()).scene
    start = time.perf_counter()

    gray = to_gray(image)
    mean, stddev = cv2.meanStdDev(gray)
    mean_val = float(mean[0][0])
    stddev_val = float(stddev[0][0])

    is_low_light = mean_val < scene_cfg.low_light_mean
    is_low_contrast = stddev_val < scene_cfg.low_contrast_stddev
    is_low_diff = mean_val > scene_cfg.low_diff_mean and stddev_val < scene_cfg.low_diff_stddev

    strategies = select_strategies(is_low_light, is_low_contrast, is_low_diff, channel_count(image))

    ms = (time.perf_counter() - start) * 1000.0
    logger.debug(
        f"analyze_scene: {ms:.1f} ms (mean={mean_val:.0f}, stddev={stddev_val:.0f}, "
        f"lowContrast={is_low_contrast}, whiteOnWhite={is_low_diff}) -> "
        f"{[s.name for s in strategies]}"
    )

    analysis = SceneAnalysis(
        mean_intensity=mean_val,
        stddev_intensity=stddev_val,
        is_low_light=is_low_light,
        is_low_contrast=is_low_contrast,
        is_low_differentiation=is_low_diff,
        strategies=strategies,
        gray=gray,
    )
    if cache is not None:
        cache.store(analysis)
    return analysis
