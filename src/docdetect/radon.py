"""
Gradient-evidence primitives for the line-based rectangle solver.

Restricted Radon accumulation: the mean absolute gradient component sampled
along a candidate line (angle, rho), where rho is the signed offset of the
line from the image center along its normal at angle + 90 degrees.
Accumulating only the component perpendicular to the line reinforces a
coherent boundary while randomly oriented texture averages out.

Also provides the gradient-density gate used to accept or reject candidate
quads from Radon search.
"""

import logging
import math
import time
from typing import Optional, Sequence

import cv2
import numpy as np

from src.docdetect.config_loader import DocDetectConfig, SolverConfig
from src.docdetect.geometry import as_corners
from src.docdetect.types import RadonPeak

logger = logging.getLogger(__name__)


def sobel_gradients(gray: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Signed 16-bit Sobel derivatives (gx, gy) with a 3x3 aperture."""
    gx = cv2.Sobel(gray, cv2.CV_16S, 1, 0, ksize=3)
    gy = cv2.Sobel(gray, cv2.CV_16S, 0, 1, ksize=3)
    return gx, gy


def _round_half_up(values: np.ndarray) -> np.ndarray:
    return np.floor(values + 0.5).astype(np.int64)


def radon_accumulate(
    gradient: np.ndarray,
    angle_deg: float,
    rho: float,
    width: int,
    height: int,
    num_samples: int = 100,
) -> float:
    """
    Mean |gradient| along one line, sampled across the image half-diagonal.

    Samples falling outside the image are skipped; 0.0 when none is inside.
    """
    rows, cols = gradient.shape[:2]
    if rows == 0 or cols == 0:
        return 0.0

    rad = math.radians(angle_deg)
    dir_x, dir_y = math.cos(rad), math.sin(rad)
    base_x = width / 2.0 + rho * -dir_y
    base_y = height / 2.0 + rho * dir_x

    half_extent = math.hypot(width, height) / 2.0
    if num_samples > 1:
        t = -half_extent + (2.0 * half_extent * np.arange(num_samples)) / (num_samples - 1)
    else:
        t = np.zeros(1)

    col = _round_half_up(base_x + t * dir_x)
    row = _round_half_up(base_y + t * dir_y)
    inside = (col >= 0) & (col < cols) & (row >= 0) & (row < rows)
    if not np.any(inside):
        return 0.0

    values = np.abs(gradient[row[inside], col[inside]].astype(np.float64))
    return float(values.mean())


def radon_line_search(
    gx: np.ndarray,
    gy: np.ndarray,
    search_angle_deg: float,
    rho_min: float,
    rho_max: float,
    width: int,
    height: int,
    is_horizontal_edge: bool,
    config: Optional[DocDetectConfig] = None,
) -> list[RadonPeak]:
    """
    Coarse-to-fine search for the strongest lines in a rho window.

    A coarse sweep at coarse_step_px is followed by 1 px refinement within
    fine_half_window_px of the top coarse responses. Horizontal edges
    accumulate |gy|, vertical edges |gx|.

    Returns:
        All refined responses > 0, strongest first.

    Raises:
        ValueError: If rho_max < rho_min.
    """
    if rho_max < rho_min:
        raise ValueError(f"rho_max ({rho_max}) must be >= rho_min ({rho_min})")

    solver: SolverConfig = (config or DocDetectConfig.default()).solver
    gradient = gy if is_horizontal_edge else gx

    def evaluate(rho: float) -> float:
        return radon_accumulate(gradient, search_angle_deg, rho, width, height, solver.radon_samples)

    coarse = []
    rho = rho_min
    while rho <= rho_max:
        response = evaluate(rho)
        if response > 0.0:
            coarse.append(RadonPeak(search_angle_deg, rho, response))
        rho += solver.coarse_step_px

    if not coarse:
        return []

    coarse.sort(key=lambda p: p.response, reverse=True)

    fine = []
    for peak in coarse[:solver.coarse_top_peaks]:
        fine_rho = max(rho_min, peak.rho - solver.fine_half_window_px)
        fine_max = min(rho_max, peak.rho + solver.fine_half_window_px)
        while fine_rho <= fine_max:
            response = evaluate(fine_rho)
            if response > 0.0:
                fine.append(RadonPeak(search_angle_deg, fine_rho, response))
            fine_rho += 1.0

    fine.sort(key=lambda p: p.response, reverse=True)
    return fine


def find_radon_peaks(
    responses: Sequence[float],
    rho_values: Sequence[float],
    min_separation: float,
    max_peaks: int = 4,
) -> list[tuple[float, float]]:
    """
    Strict local maxima of a response profile, strongest first.

    A maximum closer than min_separation to an already selected one is
    skipped. Profiles shorter than 3 values have no interior maxima.

    Returns:
        Up to max_peaks (rho, response) pairs.
    """
    if len(responses) != len(rho_values):
        raise ValueError(
            f"responses and rho_values must have the same size: "
            f"{len(responses)} vs {len(rho_values)}"
        )
    if len(responses) < 3:
        return []

    candidates = [
        (rho_values[i], responses[i])
        for i in range(1, len(responses) - 1)
        if responses[i] > responses[i - 1] and responses[i] > responses[i + 1]
    ]
    candidates.sort(key=lambda c: c[1], reverse=True)

    selected: list[tuple[float, float]] = []
    for rho, response in candidates:
        if len(selected) >= max_peaks:
            break
        if all(abs(s_rho - rho) >= min_separation for s_rho, _ in selected):
            selected.append((rho, response))
    return selected


def gradient_density_for_side(
    gx: np.ndarray,
    gy: np.ndarray,
    p1: np.ndarray,
    p2: np.ndarray,
    num_samples: int = 50,
) -> float:
    """
    Average absolute gradient component along the normal of segment p1-p2.

    Returns 0.0 for a degenerate side or when no sample lies inside the image.
    """
    if num_samples <= 0:
        raise ValueError(f"num_samples must be positive, got {num_samples}")

    rows, cols = gx.shape[:2]
    if rows == 0 or cols == 0:
        return 0.0

    sdx = float(p2[0] - p1[0])
    sdy = float(p2[1] - p1[1])
    side_len = math.hypot(sdx, sdy)
    if side_len < 1e-6:
        return 0.0

    normal_x = -sdy / side_len
    normal_y = sdx / side_len

    if num_samples > 1:
        t = np.arange(num_samples) / (num_samples - 1)
    else:
        t = np.array([0.5])
    col = _round_half_up(p1[0] + t * sdx)
    row = _round_half_up(p1[1] + t * sdy)
    inside = (col >= 0) & (col < cols) & (row >= 0) & (row < rows)
    if not np.any(inside):
        return 0.0

    gx_vals = gx[row[inside], col[inside]].astype(np.float64)
    gy_vals = gy[row[inside], col[inside]].astype(np.float64)
    return float(np.mean(np.abs(gx_vals * normal_x + gy_vals * normal_y)))


def verify_gradient_density(
    gx: np.ndarray,
    gy: np.ndarray,
    corners: np.ndarray,
    samples_per_side: int = 50,
    config: Optional[DocDetectConfig] = None,
) -> float:
    """
    Gradient support of a quad's four sides.

    Each side scores min(1, avg perpendicular gradient / reference_gradient).
    Fewer than min_passing_sides sides above min_side_score yields 0.0;
    otherwise the mean of the four side scores.

    Raises:
        ValueError: If corners is not 4 points.
    """
    pts = as_corners(corners)
    solver = (config or DocDetectConfig.default()).solver

    side_scores = []
    for i in range(4):
        avg = gradient_density_for_side(gx, gy, pts[i], pts[(i + 1) % 4], samples_per_side)
        side_scores.append(min(1.0, avg / solver.reference_gradient))

    passing = sum(1 for score in side_scores if score > solver.min_side_score)
    if passing < solver.min_passing_sides:
        return 0.0
    return sum(side_scores) / 4.0


def verify_gradient_density_gray(
    gray: np.ndarray,
    corners: np.ndarray,
    samples_per_side: int = 50,
    config: Optional[DocDetectConfig] = None,
) -> float:
    """verify_gradient_density on a grayscale image, computing Sobel first."""
    if gray is None or gray.size == 0:
        raise ValueError("Input image is empty")
    if gray.ndim != 2:
        raise ValueError(f"Expected single-channel input, got shape {gray.shape}")

    start = time.perf_counter()
    gx, gy = sobel_gradients(gray)
    score = verify_gradient_density(gx, gy, corners, samples_per_side, config)
    ms = (time.perf_counter() - start) * 1000.0
    logger.debug(f"verify_gradient_density: {ms:.2f} ms, score={score:.3f} (incl. Sobel)")
    return score
