"""
Single-frame document aspect-ratio estimation.

The raw edge ratio of a detected quad is distorted by perspective. Mild tilt
is corrected from the convergence of opposite edges alone; strong tilt uses
the camera intrinsics to decompose the quad homography. The corrected ratio
is then snapped to a canonical document format when one is close enough.
"""

import logging
import math
from typing import Optional

import cv2
import numpy as np

from src.docdetect.config_loader import DocDetectConfig
from src.docdetect.geometry import (
    UNIT_SQUARE,
    as_corners,
    compute_homography,
    edge_lengths,
    interior_angles,
)
from src.docdetect.types import (
    KNOWN_FORMATS,
    AspectRatioEstimate,
    CameraIntrinsics,
    KnownFormat,
    RatioMethod,
)

logger = logging.getLogger(__name__)


def _fold(ratio: float) -> float:
    """Map a width/height ratio onto min/max in (0, 1]."""
    if ratio <= 0.0:
        return 1.0
    return ratio if ratio <= 1.0 else 1.0 / ratio


def _opposite_edge_means(pts: np.ndarray) -> tuple[float, float]:
    lengths = edge_lengths(pts)
    width = (lengths[0] + lengths[2]) / 2.0
    height = (lengths[1] + lengths[3]) / 2.0
    return width, height


def compute_raw_ratio(corners: np.ndarray) -> float:
    """
    Raw aspect ratio (min/max, always <= 1.0) from the quad edge pairs.

    Returns 1.0 when either averaged side is degenerate.

    Raises:
        ValueError: If corners is not 4 points.
    """
    pts = as_corners(corners)
    side1, side2 = _opposite_edge_means(pts)
    if side1 <= 0.0 or side2 <= 0.0:
        return 1.0
    return min(side1, side2) / max(side1, side2)


def perspective_severity(corners: np.ndarray) -> float:
    """Maximum deviation of an interior angle from 90 degrees."""
    pts = as_corners(corners)
    return max(abs(angle - 90.0) for angle in interior_angles(pts))


def _angle_between(d1: np.ndarray, d2: np.ndarray) -> float:
    n1 = float(np.linalg.norm(d1))
    n2 = float(np.linalg.norm(d2))
    if n1 == 0.0 or n2 == 0.0:
        return 0.0
    cos_angle = abs(float(np.dot(d1, d2))) / (n1 * n2)
    return math.degrees(math.acos(min(1.0, cos_angle)))


def convergence_angles(corners: np.ndarray) -> tuple[float, float]:
    """
    Convergence angles of the opposite edge pairs, in degrees.

    Returns:
        (alpha_h, alpha_v): angle between the top and bottom edges, and
        between the left and right edges. Both 0 for a parallelogram.
    """
    tl, tr, br, bl = as_corners(corners)
    alpha_h = _angle_between(tr - tl, br - bl)
    alpha_v = _angle_between(bl - tl, br - tr)
    return alpha_h, alpha_v


def angular_corrected_ratio(corners: np.ndarray) -> float:
    """
    First-order foreshortening correction without calibration.

    The width/height ratio of the averaged edges is scaled by
    cos(alpha_v / 2) / cos(alpha_h / 2) and folded to min/max.
    """
    pts = as_corners(corners)
    width, height = _opposite_edge_means(pts)
    if width <= 0.0 or height <= 0.0:
        return 1.0

    alpha_h, alpha_v = convergence_angles(pts)
    correction = math.cos(math.radians(alpha_v) / 2.0) / math.cos(math.radians(alpha_h) / 2.0)
    return _fold(width / height * correction)


def _rotation_columns(
    homography: np.ndarray, intrinsics: CameraIntrinsics
) -> Optional[tuple[np.ndarray, np.ndarray]]:
    try:
        m = np.linalg.inv(intrinsics.matrix()) @ homography
    except np.linalg.LinAlgError as e:
        logger.debug(f"Singular camera matrix: {e}")
        return None
    return m[:, 0], m[:, 1]


def projective_ratio(corners: np.ndarray, intrinsics: CameraIntrinsics) -> Optional[float]:
    """
    Aspect ratio from decomposing the plane-to-image homography.

    The homography maps the quad to the unit square; its inverse maps the
    document plane into the image. K^-1 applied to it yields columns r1 and
    r2, scaled rotation columns whose norm ratio is the document ratio.

    Returns:
        Ratio in (0, 1], or None when the homography is degenerate.
    """
    pts = as_corners(corners)
    to_square = compute_homography(pts, UNIT_SQUARE)
    if to_square is None:
        return None
    try:
        to_image = np.linalg.inv(to_square)
    except np.linalg.LinAlgError as e:
        logger.debug(f"projective_ratio: homography not invertible: {e}")
        return None

    columns = _rotation_columns(to_image, intrinsics)
    if columns is None:
        return None
    norm_r1 = float(np.linalg.norm(columns[0]))
    norm_r2 = float(np.linalg.norm(columns[1]))
    if norm_r1 < 1e-12 or norm_r2 < 1e-12:
        return None
    return min(norm_r1, norm_r2) / max(norm_r1, norm_r2)


def homography_error(corners: np.ndarray, candidate_ratio: float, intrinsics: CameraIntrinsics) -> float:
    """
    Consistency of a candidate ratio with a planar view by a calibrated camera.

    The quad is mapped onto a rectangle with the candidate ratio (orientation
    taken from the quad) and K^-1 H is checked for equal column norms and
    orthogonal columns.

    Returns:
        |1 - |r1|/|r2|| + |r1 . r2| / (|r1| |r2|); lower is better, inf on
        failure.

    Raises:
        ValueError: If candidate_ratio is not in (0, 1].
    """
    pts = as_corners(corners)
    if not 0.0 < candidate_ratio <= 1.0:
        raise ValueError(f"Ratio must be in (0, 1], got {candidate_ratio}")

    quad_width, quad_height = _opposite_edge_means(pts)
    long_side = 1000.0
    short_side = long_side * candidate_ratio
    if quad_width >= quad_height:
        dst_w, dst_h = long_side, short_side
    else:
        dst_w, dst_h = short_side, long_side

    dst = np.array(
        [[0.0, 0.0], [dst_w - 1.0, 0.0], [dst_w - 1.0, dst_h - 1.0], [0.0, dst_h - 1.0]],
        dtype=np.float32,
    )
    try:
        homography = cv2.getPerspectiveTransform(pts.astype(np.float32), dst)
    except cv2.error as e:
        logger.warning(f"homography_error failed: {e}")
        return math.inf

    columns = _rotation_columns(homography, intrinsics)
    if columns is None:
        return math.inf
    r1, r2 = columns
    norm_r1 = float(np.linalg.norm(r1))
    norm_r2 = float(np.linalg.norm(r2))
    if norm_r1 == 0.0 or norm_r2 == 0.0:
        return math.inf

    norm_ratio_error = abs(1.0 - norm_r1 / norm_r2)
    dot_error = abs(float(np.dot(r1, r2))) / (norm_r1 * norm_r2)
    return norm_ratio_error + dot_error


def _snap_confidence(distance: float, sigma: float) -> float:
    return min(max(math.exp(-distance * distance / (2.0 * sigma * sigma)), 0.0), 1.0)


def corrected_ratio(
    corners: np.ndarray,
    intrinsics: Optional[CameraIntrinsics] = None,
    config: Optional[DocDetectConfig] = None,
) -> tuple[float, RatioMethod, float]:
    """
    Perspective-corrected ratio, choosing the regime by severity.

    Below angular_max_severity_deg the angular correction is used; above
    projective_min_severity_deg the projective decomposition (falling back
    to angular without intrinsics or on degeneracy); in between both are
    blended linearly by severity.

    Returns:
        (ratio, method, severity_deg)
    """
    cfg = (config or DocDetectConfig.default()).aspect_ratio
    pts = as_corners(corners)
    severity = perspective_severity(pts)
    angular = angular_corrected_ratio(pts)

    if severity < cfg.angular_max_severity_deg:
        return angular, RatioMethod.ANGULAR, severity

    projective = projective_ratio(pts, intrinsics) if intrinsics is not None else None
    if projective is None:
        logger.debug(f"Projective ratio unavailable at severity {severity:.1f} deg, using angular")
        return angular, RatioMethod.ANGULAR, severity

    if severity > cfg.projective_min_severity_deg:
        return projective, RatioMethod.PROJECTIVE, severity

    span = cfg.projective_min_severity_deg - cfg.angular_max_severity_deg
    t = (severity - cfg.angular_max_severity_deg) / span if span > 0.0 else 1.0
    return (1.0 - t) * angular + t * projective, RatioMethod.BLENDED, severity


def estimate_aspect_ratio(
    corners: np.ndarray,
    intrinsics: Optional[CameraIntrinsics] = None,
    config: Optional[DocDetectConfig] = None,
) -> AspectRatioEstimate:
    """
    Estimate the document aspect ratio from detected corners.

    Algorithm:
    1. Correct the raw ratio for perspective (angular, projective or blended).
    2. Find known formats within snap_threshold of the corrected ratio.
    3. Single candidate or clear winner: snap with Gaussian confidence.
    4. Ambiguous with intrinsics: pick the lowest homography_error.
    5. Ambiguous without intrinsics: nearest, with reduced confidence.
    6. No candidate: keep the corrected ratio, no format.

    Args:
        corners: Ordered corners [TL, TR, BR, BL], shape (4, 2).
        intrinsics: Optional camera intrinsics.
        config: Detection configuration (defaults when None).

    Returns:
        AspectRatioEstimate.

    Raises:
        ValueError: If corners is not 4 points.
    """
    config = config or DocDetectConfig.default()
    cfg = config.aspect_ratio
    pts = as_corners(corners)

    ratio, method, severity = corrected_ratio(pts, intrinsics, config)

    candidates: list[tuple[KnownFormat, float]] = sorted(
        (
            (fmt, abs(ratio - fmt.ratio))
            for fmt in KNOWN_FORMATS
            if abs(ratio - fmt.ratio) <= cfg.snap_threshold
        ),
        key=lambda c: c[1],
    )

    if not candidates:
        logger.debug(f"Ratio {ratio:.4f} ({method.value}) matches no known format")
        return AspectRatioEstimate(
            estimated_ratio=ratio,
            matched_format=None,
            confidence=cfg.unmatched_confidence,
            method=method,
            severity_deg=severity,
        )

    best_format, best_dist = candidates[0]
    if len(candidates) == 1 or candidates[1][1] > best_dist * cfg.clear_winner_factor:
        confidence = _snap_confidence(best_dist, cfg.snap_sigma)
        verified = False
    elif intrinsics is not None:
        errors = [(homography_error(pts, fmt.ratio, intrinsics), fmt, dist) for fmt, dist in candidates]
        _, best_format, best_dist = min(errors, key=lambda e: e[0])
        confidence = _snap_confidence(best_dist, cfg.snap_sigma)
        verified = True
    else:
        confidence = _snap_confidence(best_dist, cfg.snap_sigma) * cfg.unverified_confidence_scale
        verified = False

    logger.debug(
        f"Ratio {ratio:.4f} ({method.value}, severity={severity:.1f}) -> {best_format.name} "
        f"(confidence={confidence:.2f}, verified={verified})"
    )
    return AspectRatioEstimate(
        estimated_ratio=best_format.ratio,
        matched_format=best_format,
        confidence=confidence,
        verified_by_homography=verified,
        method=method,
        severity_deg=severity,
    )
