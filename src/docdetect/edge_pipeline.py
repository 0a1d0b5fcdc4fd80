"""
Edge Detection and Contour Analysis

Turns a preprocessed image into a binary edge map, removes long straight
lines that cross the whole frame (tile grout, table seams), and extracts
4-vertex polygon candidates from the remaining contours.
"""

import logging
import math
import time
from typing import Optional

import cv2
import numpy as np

from src.docdetect.config_loader import DocDetectConfig, EdgeConfig
from src.docdetect.context import DetectionContext
from src.docdetect.preprocessing import histogram_percentile, preprocess
from src.docdetect.types import ContourAnalysis, PreprocessStrategy

logger = logging.getLogger(__name__)


def compute_threshold_statistic(gray: np.ndarray, statistic: str = "mean") -> float:
    """
    Intensity statistic driving the automatic Canny thresholds.

    Args:
        gray: Single-channel uint8 image.
        statistic: "mean" (single meanStdDev pass) or "median" (histogram).

    Raises:
        ValueError: For an unknown statistic name.
    """
    if statistic == "mean":
        mean, _ = cv2.meanStdDev(gray)
        return float(mean[0][0])
    if statistic == "median":
        return float(histogram_percentile(gray, 0.5))
    raise ValueError(f"Unknown threshold statistic: {statistic}")


def auto_canny_thresholds(value: float, edges_cfg: EdgeConfig) -> tuple[float, float]:
    """(low, high) Canny thresholds scaled from an intensity statistic and clamped."""
    low = min(max(edges_cfg.low_factor * value, edges_cfg.canny_low_min), edges_cfg.canny_low_max)
    high = min(max(edges_cfg.high_factor * value, edges_cfg.canny_high_min), edges_cfg.canny_high_max)
    return low, high


def detect_edges(
    gray: np.ndarray,
    low: Optional[float] = None,
    high: Optional[float] = None,
    heavy_morph: bool = False,
    config: Optional[DocDetectConfig] = None,
    kernel: Optional[np.ndarray] = None,
) -> np.ndarray:
    """
    Canny edge detection followed by a morphological close.

    Args:
        gray: Preprocessed single-channel image.
        low: Low hysteresis threshold. Derived from the image when None.
        high: High hysteresis threshold. Derived from the image when None.
        heavy_morph: Use a 5x5 close instead of 3x3 to bridge wider gaps.
        config: Detection configuration (defaults when None).
        kernel: Closing structuring element. Built from heavy_morph when None;
            DetectionContext holds shared 3x3 and 5x5 kernels.

    Returns:
        Binary edge map (0/255), same size as gray.
    """
    edges_cfg = (config or DocDetectConfig.default()).edges
    start = time.perf_counter()

    statistic = compute_threshold_statistic(gray, edges_cfg.threshold_statistic)
    auto_low, auto_high = auto_canny_thresholds(statistic, edges_cfg)
    low = auto_low if low is None else low
    high = auto_high if high is None else high

    edges = cv2.Canny(gray, low, high)
    if kernel is None:
        size = 5 if heavy_morph else 3
        kernel = cv2.getStructuringElement(cv2.MORPH_RECT, (size, size))
    edges = cv2.morphologyEx(edges, cv2.MORPH_CLOSE, kernel)

    ms = (time.perf_counter() - start) * 1000.0
    logger.debug(
        f"detect_edges: {ms:.1f} ms ({edges_cfg.threshold_statistic}={statistic:.0f}, "
        f"low={low:.0f}, high={high:.0f}, heavy={heavy_morph})"
    )
    return edges


def _spans_opposite_borders(
    x1: float, y1: float, x2: float, y2: float, width: float, height: float, margin: float
) -> bool:
    horizontal_span = (x1 <= margin and x2 >= width - margin) or (x2 <= margin and x1 >= width - margin)
    vertical_span = (y1 <= margin and y2 >= height - margin) or (y2 <= margin and y1 >= height - margin)
    return horizontal_span or vertical_span


def _line_kernel(length: int, direction: tuple[float, float]) -> np.ndarray:
    """Odd-sized square structuring element holding a 1-px line along direction."""
    size = length if length % 2 == 1 else length + 1
    kernel = np.zeros((size, size), dtype=np.uint8)
    center = size // 2
    dx, dy = direction[0] * center, direction[1] * center
    cv2.line(
        kernel,
        (int(round(center - dx)), int(round(center - dy))),
        (int(round(center + dx)), int(round(center + dy))),
        1,
        1,
    )
    return kernel


def _bridge_crossings(
    edges: np.ndarray, line: tuple[int, int, int, int], bridge_length: int
) -> np.ndarray:
    """
    Pixels that reconnect edges crossing an erased line.

    Edge structures running across the line (runs of at least 3 px along its
    normal) are extended along the normal by up to bridge_length / 2 on each
    side, restricted to a band of bridge_length around the line. Edges
    parallel to the line are thin along the normal and never extended.
    """
    x1, y1, x2, y2 = line
    length = math.hypot(float(x2 - x1), float(y2 - y1))
    along = ((x2 - x1) / length, (y2 - y1) / length)
    normal = (-along[1], along[0])

    crossing = cv2.dilate(edges, _line_kernel(3, along))
    crossing = cv2.erode(crossing, _line_kernel(3, normal))
    bridge = cv2.dilate(crossing, _line_kernel(bridge_length, normal))

    band = np.zeros_like(edges)
    cv2.line(band, (x1, y1), (x2, y2), 255, bridge_length)
    return cv2.bitwise_and(bridge, band)


def suppress_spanning_lines(edges: np.ndarray, config: Optional[DocDetectConfig] = None) -> int:
    """
    Erase long straight lines running between opposite frame borders, in place.

    Documents never span the full frame edge-to-edge, but grout lines and
    table seams do, and they merge with the document contour. Lines of at
    least 70% of the larger image dimension whose endpoints lie within the
    border margin of opposite borders are painted black. Document edges cut
    by the erased strip are then bridged across it along the line normal,
    so the document outline stays closed.

    Returns:
        Number of lines erased.
    """
    edges_cfg = (config or DocDetectConfig.default()).edges
    height, width = edges.shape[:2]
    min_length = edges_cfg.span_min_fraction * max(width, height)

    lines = cv2.HoughLinesP(
        edges,
        1,
        math.pi / 180.0,
        edges_cfg.hough_threshold,
        minLineLength=min_length,
        maxLineGap=edges_cfg.hough_max_gap,
    )
    if lines is None:
        return 0

    erased = []
    for x1, y1, x2, y2 in lines.reshape(-1, 4):
        if math.hypot(float(x2 - x1), float(y2 - y1)) < min_length:
            continue
        if not _spans_opposite_borders(
            float(x1), float(y1), float(x2), float(y2), width, height, edges_cfg.border_margin_px
        ):
            continue
        erased.append((int(x1), int(y1), int(x2), int(y2)))

    if not erased:
        return 0

    for x1, y1, x2, y2 in erased:
        cv2.line(edges, (x1, y1), (x2, y2), 0, edges_cfg.mask_thickness)

    # Bridges are computed on the fully erased map so parallel lines of one grout seam heal together
    bridges = [_bridge_crossings(edges, line, edges_cfg.bridge_length_px) for line in erased]
    for bridge in bridges:
        cv2.bitwise_or(edges, bridge, dst=edges)

    logger.debug(f"suppress_spanning_lines: erased {len(erased)} line(s)")
    return len(erased)


def touches_frame_edges(points: np.ndarray, width: int, height: int, proximity: float = 5.0) -> int:
    """Number of distinct frame edges (top, right, bottom, left) the points come near."""
    pts = np.asarray(points, dtype=np.float64).reshape(-1, 2)
    if len(pts) == 0:
        return 0
    max_x = width - 1
    max_y = height - 1
    touches = (
        bool(np.any(pts[:, 1] <= proximity)),
        bool(np.any(pts[:, 0] >= max_x - proximity)),
        bool(np.any(pts[:, 1] >= max_y - proximity)),
        bool(np.any(pts[:, 0] <= proximity)),
    )
    return sum(touches)


def analyze_contours(edges: np.ndarray, config: Optional[DocDetectConfig] = None) -> ContourAnalysis:
    """
    Find 4-vertex polygon candidates in a binary edge map.

    Contours below the minimum area are skipped. A large contour that does
    not simplify to 4 vertices but touches two or more frame edges sets the
    partial-document flag: the document probably extends past the frame.
    """
    contour_cfg = (config or DocDetectConfig.default()).contours
    start = time.perf_counter()

    height, width = edges.shape[:2]
    total_area = float(width * height)
    min_area = total_area * contour_cfg.min_area_ratio
    partial_min_area = total_area * contour_cfg.partial_min_area_ratio

    contours, _ = cv2.findContours(edges, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)

    quads = []
    has_partial = False
    for contour in contours:
        area = cv2.contourArea(contour)
        if area < min_area:
            continue

        perimeter = cv2.arcLength(contour, True)
        approx = cv2.approxPolyDP(contour, contour_cfg.approx_epsilon_ratio * perimeter, True)

        if len(approx) == 4:
            quads.append(approx.reshape(4, 2).astype(np.float64))
        elif not has_partial and area >= partial_min_area:
            touched = touches_frame_edges(contour, width, height, contour_cfg.edge_proximity_px)
            if touched >= contour_cfg.min_touched_edges:
                has_partial = True

    ms = (time.perf_counter() - start) * 1000.0
    logger.debug(
        f"analyze_contours: {ms:.1f} ms (contours={len(contours)}, quads={len(quads)}, "
        f"partial={has_partial})"
    )
    return ContourAnalysis(quads=quads, has_partial_document=has_partial)


def edge_map_for_strategy(
    image: np.ndarray,
    strategy: PreprocessStrategy,
    context: DetectionContext,
    gray: Optional[np.ndarray] = None,
) -> np.ndarray:
    """
    Preprocess with one strategy and produce its binary edge map.

    Binary strategies already return an edge map. DOG runs Canny at fixed low
    thresholds because its output has no meaningful intensity statistic.
    HEAVY_MORPH closes with 5x5 instead of 3x3.
    """
    processed = preprocess(image, strategy, context, gray=gray)
    if strategy.is_binary_output:
        return processed

    edges_cfg = context.config.edges
    if strategy == PreprocessStrategy.DOG:
        return detect_edges(
            processed,
            edges_cfg.dog_low,
            edges_cfg.dog_high,
            config=context.config,
            kernel=context.morph_kernel_3x3,
        )

    heavy = strategy == PreprocessStrategy.HEAVY_MORPH
    return detect_edges(
        processed,
        heavy_morph=heavy,
        config=context.config,
        kernel=context.morph_kernel_5x5 if heavy else context.morph_kernel_3x3,
    )
