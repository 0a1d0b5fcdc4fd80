"""
Line Segment Detection and Clustering

Detects faint straight segments directly from the gradient orientation
field with OpenCV's Line Segment Detector, which responds to boundaries far
fainter than thresholded Canny edges. Collinear segments are then merged
into per-edge clusters, split into horizontal and vertical groups.
"""

import logging
import math
import time
from typing import Optional, Sequence

import cv2
import numpy as np

from src.docdetect.config_loader import DocDetectConfig, LineClusterConfig
from src.docdetect.types import EdgeCluster, LineSegment

logger = logging.getLogger(__name__)


def _create_detector():
    # quant=1.0 halves the gradient quantization, roughly 2.6 gray-level edges
    return cv2.createLineSegmentDetector(
        cv2.LSD_REFINE_STD,
        0.8,     # scale
        0.6,     # sigma_scale
        1.0,     # quant
        22.5,    # ang_th
        0.0,     # log_eps
        0.7,     # density_th
        1024,    # n_bins
    )


def detect_segments(gray: np.ndarray, min_length_fraction: float = 0.05) -> list[LineSegment]:
    """
    Detect line segments in a grayscale image.

    Args:
        gray: Single-channel uint8 image (not modified).
        min_length_fraction: Segments shorter than this fraction of the
            larger image dimension are discarded.

    Returns:
        Segments sorted by length, longest first. Empty when the OpenCV
        build has no line segment detector.

    Raises:
        ValueError: If gray is empty or not single-channel.
    """
    if gray is None or gray.size == 0:
        raise ValueError("Input image is empty")
    if gray.ndim != 2:
        raise ValueError(f"Expected single-channel input, got shape {gray.shape}")

    start = time.perf_counter()
    height, width = gray.shape
    min_length = max(width, height) * min_length_fraction

    try:
        detector = _create_detector()
        lines, widths, _, _ = detector.detect(gray)
    except cv2.error as e:
        logger.warning(f"Line segment detector unavailable: {e}")
        return []

    if lines is None or len(lines) == 0:
        logger.debug("detect_segments: no segments detected")
        return []

    raw = lines.reshape(-1, 4)
    seg_widths = widths.reshape(-1) if widths is not None else np.ones(len(raw))

    segments = []
    for (x1, y1, x2, y2), seg_width in zip(raw, seg_widths):
        segment = LineSegment(float(x1), float(y1), float(x2), float(y2), float(seg_width))
        if segment.length >= min_length:
            segments.append(segment)

    segments.sort(key=lambda s: s.length, reverse=True)

    ms = (time.perf_counter() - start) * 1000.0
    logger.debug(
        f"detect_segments: {ms:.1f} ms ({len(raw)} raw, {len(segments)} after "
        f"length filter >= {min_length:.0f}px)"
    )
    return segments


def is_horizontal_angle(angle_deg: float) -> bool:
    return angle_deg < 45.0 or angle_deg >= 135.0


def angle_difference(a: float, b: float) -> float:
    """Difference between two undirected angles in [0, 180), at most 90."""
    diff = abs(a - b)
    return 180.0 - diff if diff > 90.0 else diff


def perpendicular_distance(
    segment: LineSegment, reference_angle: float, center: tuple[float, float]
) -> float:
    """Signed distance from center to the segment midpoint along the normal at reference_angle + 90."""
    normal = math.radians(reference_angle + 90.0)
    mid_x, mid_y = segment.midpoint
    return (mid_x - center[0]) * math.cos(normal) + (mid_y - center[1]) * math.sin(normal)


class _ClusterAccumulator:
    """Length-weighted running sums for one cluster."""

    def __init__(self, segment: LineSegment, rho: float):
        length = segment.length
        self.members = [segment]
        self.angle_sum = segment.angle * length
        self.rho_sum = rho * length
        self.total_length = length

    @property
    def avg_angle(self) -> float:
        return self.angle_sum / self.total_length if self.total_length > 0.0 else 0.0

    @property
    def avg_rho(self) -> float:
        return self.rho_sum / self.total_length if self.total_length > 0.0 else 0.0

    def add(self, segment: LineSegment, rho: float) -> None:
        length = segment.length
        self.members.append(segment)
        self.angle_sum += segment.angle * length
        self.rho_sum += rho * length
        self.total_length += length


def _cluster_group(
    segments: Sequence[LineSegment],
    center: tuple[float, float],
    is_horizontal: bool,
    cfg: LineClusterConfig,
) -> list[EdgeCluster]:
    accumulators: list[_ClusterAccumulator] = []

    # Angle-sorted so that neighbouring orientations meet consecutively
    for segment in sorted(segments, key=lambda s: s.angle):
        rho = perpendicular_distance(segment, segment.angle, center)
        for acc in accumulators:
            if (
                angle_difference(segment.angle, acc.avg_angle) <= cfg.angle_tolerance_deg
                and abs(rho - acc.avg_rho) <= cfg.rho_tolerance_px
            ):
                acc.add(segment, rho)
                break
        else:
            accumulators.append(_ClusterAccumulator(segment, rho))

    return [
        EdgeCluster(
            segments=list(acc.members),
            angle=acc.avg_angle,
            rho=acc.avg_rho,
            total_length=acc.total_length,
            is_horizontal=is_horizontal,
        )
        for acc in accumulators
    ]


def cluster_segments(
    segments: Sequence[LineSegment],
    width: int,
    height: int,
    config: Optional[DocDetectConfig] = None,
) -> list[EdgeCluster]:
    """
    Merge segments into horizontal and vertical edge clusters.

    Returns:
        Clusters of at least 20% of the image diagonal in total length, at
        most max_clusters_per_orientation per orientation, longest first.

    Raises:
        ValueError: If width or height is not positive.
    """
    if width <= 0:
        raise ValueError(f"width must be positive, got {width}")
    if height <= 0:
        raise ValueError(f"height must be positive, got {height}")
    if not segments:
        return []

    cfg = (config or DocDetectConfig.default()).line_clusters
    start = time.perf_counter()
    center = (width / 2.0, height / 2.0)
    min_cluster_length = math.hypot(width, height) * cfg.min_cluster_length_fraction

    horizontal = [s for s in segments if is_horizontal_angle(s.angle)]
    vertical = [s for s in segments if not is_horizontal_angle(s.angle)]

    kept = []
    for group, is_horizontal in ((horizontal, True), (vertical, False)):
        clusters = [
            c for c in _cluster_group(group, center, is_horizontal, cfg)
            if c.total_length >= min_cluster_length
        ]
        clusters.sort(key=lambda c: c.total_length, reverse=True)
        kept.extend(clusters[:cfg.max_clusters_per_orientation])

    kept.sort(key=lambda c: c.total_length, reverse=True)

    ms = (time.perf_counter() - start) * 1000.0
    n_h = sum(1 for c in kept if c.is_horizontal)
    logger.debug(
        f"cluster_segments: {ms:.1f} ms (segs={len(segments)}, H={n_h}/{len(horizontal)}, "
        f"V={len(kept) - n_h}/{len(vertical)}, minLen={min_cluster_length:.0f})"
    )
    return kept
