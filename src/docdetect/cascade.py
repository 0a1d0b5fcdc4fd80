"""
Multi-strategy contour detection cascade.

Runs the edge pipeline once per preprocessing strategy, in the order chosen
by scene analysis, and keeps the most confident quad. Stops early when a
quad is confident enough or the time budget is spent. The budget is only
checked between strategies; a strategy in progress always completes.
"""

import logging
import time
from typing import Optional

import numpy as np

from src.docdetect.context import DetectionContext
from src.docdetect.edge_pipeline import (
    analyze_contours,
    edge_map_for_strategy,
    suppress_spanning_lines,
)
from src.docdetect.quad_ranker import rank_quads
from src.docdetect.quad_validator import combine_confidence, edge_density_score
from src.docdetect.scene_analyzer import analyze_scene, to_gray
from src.docdetect.types import (
    DetectionOutcome,
    DetectionSource,
    DetectionStatus,
    DocumentCorners,
    PreprocessStrategy,
)

logger = logging.getLogger(__name__)


def detect_document_cascade(
    image: np.ndarray, context: Optional[DetectionContext] = None
) -> DetectionStatus:
    """
    Detect a document quad by trying preprocessing strategies in turn.

    Args:
        image: BGR, BGRA or grayscale image (not modified).
        context: Detection context; a default one is built when None. Reuse
            one context across frames so the scene cache takes effect.

    Returns:
        DetectionStatus. NOT_FOUND is a normal outcome and still carries the
        partial-document flag, OR'd over every strategy tried.

    Raises:
        ValueError: If the image is empty or has an unsupported channel count.
    """
    if image is None or image.size == 0:
        raise ValueError("Image is empty")
    if image.dtype != np.uint8:
        raise ValueError(f"Unsupported image dtype {image.dtype}, expected uint8")
    if context is None:
        context = DetectionContext()

    config = context.config
    cascade_cfg = config.cascade
    ranking_cfg = config.ranking
    start = time.perf_counter()

    analysis = analyze_scene(image, context.scene_cache, config)
    gray = analysis.gray if analysis.gray is not None else to_gray(image)
    height, width = gray.shape[:2]
    image_area = float(width * height)

    best_corners: Optional[np.ndarray] = None
    best_confidence = -1.0
    best_strategy: Optional[PreprocessStrategy] = None
    is_partial = False
    tried: list[PreprocessStrategy] = []

    for strategy in analysis.strategies:
        tried.append(strategy)
        edges = edge_map_for_strategy(image, strategy, context, gray=gray)
        if config.edges.suppress_spanning_lines:
            suppress_spanning_lines(edges, config)

        contours = analyze_contours(edges, config)
        is_partial = is_partial or contours.has_partial_document

        ranked = rank_quads(contours.quads, image_area, config)
        if ranked.quad is not None:
            density = edge_density_score(
                edges, ranked.quad, ranking_cfg.search_radius, ranking_cfg.samples_per_side
            )
            confidence = combine_confidence(
                ranked.score, density, ranked.score_margin, ranked.candidate_count, config
            )
            logger.debug(
                f"Strategy {strategy.name}: score={ranked.score:.3f}, density={density:.3f}, "
                f"confidence={confidence:.3f}"
            )
            if confidence > best_confidence:
                best_confidence = confidence
                best_corners = ranked.quad
                best_strategy = strategy

            if confidence >= cascade_cfg.short_circuit_confidence:
                logger.debug(f"Short-circuit on {strategy.name} ({confidence:.3f})")
                break

        elapsed_ms = (time.perf_counter() - start) * 1000.0
        if best_corners is not None and elapsed_ms >= cascade_cfg.time_budget_ms:
            logger.debug(f"Time budget exhausted after {strategy.name} ({elapsed_ms:.1f} ms)")
            break

    elapsed_ms = (time.perf_counter() - start) * 1000.0

    if best_corners is None or best_confidence < cascade_cfg.min_confidence:
        logger.debug(
            f"detect_document_cascade: {elapsed_ms:.1f} ms, not found "
            f"(best={best_confidence:.3f}, tried={len(tried)}, partial={is_partial})"
        )
        return DetectionStatus(
            outcome=DetectionOutcome.NOT_FOUND,
            corners=None,
            is_partial_document=is_partial,
            strategies_tried=tried,
            best_strategy=None,
        )

    corners = DocumentCorners(
        corners=best_corners,
        confidence=best_confidence,
        elapsed_ms=elapsed_ms,
        source=DetectionSource.CONTOUR,
    )
    logger.debug(
        f"detect_document_cascade: {elapsed_ms:.1f} ms, found via {best_strategy.name} "
        f"(confidence={best_confidence:.3f})"
    )
    return DetectionStatus(
        outcome=DetectionOutcome.FOUND,
        corners=corners,
        is_partial_document=is_partial,
        strategies_tried=tried,
        best_strategy=best_strategy,
    )
