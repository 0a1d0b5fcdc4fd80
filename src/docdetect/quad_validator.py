"""
Edge-support validation and confidence blending for contour quads.

A real document boundary produces continuous edges that follow the quad
perimeter closely. False detections in texture or empty space have little
supporting edge evidence.
"""

import logging
from typing import Optional

import numpy as np

from src.docdetect.config_loader import DocDetectConfig
from src.docdetect.geometry import as_corners, round_half_up

logger = logging.getLogger(__name__)


def edge_density_score(
    edges: np.ndarray,
    quad: np.ndarray,
    search_radius: int = 3,
    samples_per_side: int = 20,
) -> float:
    """
    Fraction of perimeter samples with an edge pixel nearby.

    Each side TL->TR, TR->BR, BR->BL, BL->TL is sampled at
    samples_per_side + 1 evenly spaced points. A sample counts as supported
    when any pixel in the (2r+1)^2 window around it is non-zero. Samples
    whose window lies entirely outside the image are skipped.

    Args:
        edges: Binary edge map (uint8).
        quad: Corners [TL, TR, BR, BL], shape (4, 2).
        search_radius: Half-size of the search window in pixels.
        samples_per_side: Sampling intervals per side.

    Returns:
        Score in [0.0, 1.0]; 0.0 when no sample could be evaluated.

    Raises:
        ValueError: If quad is not 4 points.
    """
    pts = as_corners(quad)
    rows, cols = edges.shape[:2]
    if rows == 0 or cols == 0:
        return 0.0

    supported = 0
    total = 0
    for i in range(4):
        start = pts[i]
        end = pts[(i + 1) % 4]
        for s in range(samples_per_side + 1):
            t = s / samples_per_side
            cx = round_half_up(start[0] + t * (end[0] - start[0]))
            cy = round_half_up(start[1] + t * (end[1] - start[1]))

            if cx + search_radius < 0 or cx - search_radius >= cols:
                continue
            if cy + search_radius < 0 or cy - search_radius >= rows:
                continue

            total += 1
            y_min = max(cy - search_radius, 0)
            y_max = min(cy + search_radius, rows - 1)
            x_min = max(cx - search_radius, 0)
            x_max = min(cx + search_radius, cols - 1)
            if np.any(edges[y_min:y_max + 1, x_min:x_max + 1] > 0):
                supported += 1

    return 0.0 if total == 0 else supported / total


def combine_confidence(
    score: float,
    density: float,
    margin: float,
    candidate_count: int,
    config: Optional[DocDetectConfig] = None,
) -> float:
    """
    Blend ranking score and edge density, then penalize ambiguous rankings.

    With two or more candidates whose score margin is below the ambiguity
    margin, the blend is scaled linearly from min_penalty (tie) up to 1.0.
    """
    ranking = (config or DocDetectConfig.default()).ranking
    confidence = ranking.weight_score * score + ranking.weight_density * density

    if candidate_count >= 2 and margin < ranking.ambiguity_margin:
        penalty = ranking.ambiguity_min_penalty + (
            1.0 - ranking.ambiguity_min_penalty
        ) * (max(margin, 0.0) / ranking.ambiguity_margin)
        logger.debug(f"Ambiguous ranking (margin={margin:.3f}), penalty={penalty:.3f}")
        confidence *= penalty

    return float(min(max(confidence, 0.0), 1.0))
