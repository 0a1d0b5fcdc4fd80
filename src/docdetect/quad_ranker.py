"""
Quadrilateral scoring and ranking.

Candidates are scored by a weighted combination of:
- Area (largest preferred, normalized to image area)
- Angle regularity (corners close to 90 degrees preferred)
- Aspect plausibility (side ratio close to a known document format)

Non-convex quads are rejected outright. The ranking also reports how
clearly the winner beats the runner-up, so ambiguous frames can be penalized.
"""

import logging
import math
import time
from typing import Optional, Sequence

import numpy as np

from src.docdetect.config_loader import DocDetectConfig, RankingConfig
from src.docdetect.geometry import angle_regularity, edge_lengths, is_convex, order_corners, quad_area
from src.docdetect.types import KNOWN_FORMATS, QuadRankResult

logger = logging.getLogger(__name__)


def side_ratio(quad: np.ndarray) -> float:
    """min/max of the two opposite-edge means; 1.0 for degenerate sides."""
    lengths = edge_lengths(order_corners(quad))
    side1 = (lengths[0] + lengths[2]) / 2.0
    side2 = (lengths[1] + lengths[3]) / 2.0
    if side1 <= 0.0 or side2 <= 0.0:
        return 1.0
    return float(min(side1, side2) / max(side1, side2))


def aspect_plausibility(ratio: float, sigma: float = 0.10) -> float:
    """Gaussian closeness of ratio to the nearest known document format ratio."""
    distance = min(abs(ratio - fmt.ratio) for fmt in KNOWN_FORMATS)
    return math.exp(-(distance * distance) / (2.0 * sigma * sigma))


def score_quad(
    quad: np.ndarray,
    image_area: float,
    config: Optional[DocDetectConfig] = None,
) -> float:
    """
    Score a single quadrilateral in [0.0, 1.0].

    Raises:
        ValueError: If quad is not 4 points or image_area is not positive.
    """
    if image_area <= 0.0:
        raise ValueError(f"image_area must be positive, got {image_area}")
    ranking: RankingConfig = (config or DocDetectConfig.default()).ranking
    return _score(np.asarray(quad, dtype=np.float64), image_area, ranking)


def _score(quad: np.ndarray, image_area: float, ranking: RankingConfig) -> float:
    ordered = order_corners(quad)
    area_score = min(max(quad_area(ordered) / image_area, 0.0), 1.0)
    angle_score = angle_regularity(ordered)
    aspect_score = aspect_plausibility(side_ratio(ordered), ranking.aspect_sigma)
    return (
        ranking.weight_area * area_score
        + ranking.weight_angle * angle_score
        + ranking.weight_aspect * aspect_score
    )


def rank_quads(
    candidates: Sequence[np.ndarray],
    image_area: float,
    config: Optional[DocDetectConfig] = None,
) -> QuadRankResult:
    """
    Rank candidate quads and return the best one with scoring metadata.

    The score margin is 0.0 with no convex candidate, 1.0 with exactly one,
    and (best - second) / best otherwise.

    Returns:
        QuadRankResult whose quad is ordered [TL, TR, BR, BL], or None.
    """
    ranking = (config or DocDetectConfig.default()).ranking
    start = time.perf_counter()

    best_score = -1.0
    second_score = -1.0
    best_quad = None
    convex_count = 0

    for quad in candidates:
        pts = np.asarray(quad, dtype=np.float64).reshape(-1, 2)
        if len(pts) != 4:
            continue
        # Candidates may arrive in any vertex order
        ordered = order_corners(pts)
        if quad_area(ordered) <= 0.0 or not is_convex(ordered):
            continue

        convex_count += 1
        score = _score(ordered, image_area, ranking)
        if score > best_score:
            second_score = best_score
            best_score = score
            best_quad = ordered
        elif score > second_score:
            second_score = score

    if convex_count == 0:
        margin = 0.0
    elif convex_count == 1:
        margin = 1.0
    elif best_score <= 0.0:
        margin = 0.0
    else:
        margin = min(max((best_score - second_score) / best_score, 0.0), 1.0)

    ms = (time.perf_counter() - start) * 1000.0
    logger.debug(
        f"rank_quads: {ms:.1f} ms (candidates={len(candidates)}, convex={convex_count}, "
        f"best={best_score:.3f}, margin={margin:.3f})"
    )

    return QuadRankResult(
        quad=best_quad,
        score=max(best_score, 0.0),
        candidate_count=convex_count,
        score_margin=margin,
    )
