"""
Planar Geometry Utilities

Corner ordering, polygon measurements, homogeneous line algebra and
homography estimation shared by every stage of the detector. All functions
take and return numpy arrays in pixel coordinates (x right, y down).
"""

import logging
import math
from typing import Optional, Union

import numpy as np

logger = logging.getLogger(__name__)

PARALLEL_W_THRESHOLD = 1e-8

Line = tuple[float, float, float]


def as_corners(corners: Union[np.ndarray, list]) -> np.ndarray:
    """
    Convert input to a float64 array of 4 points.

    Raises:
        ValueError: If the input does not hold exactly 4 (x, y) points.
    """
    pts = np.asarray(corners, dtype=np.float64)
    if pts.shape != (4, 2):
        raise ValueError(
            f"Expected 4 corners with shape (4, 2), got shape {pts.shape}"
        )
    return pts


def order_corners(points: Union[np.ndarray, list]) -> np.ndarray:
    """
    Order 4 points as Top-Left, Top-Right, Bottom-Right, Bottom-Left.

    Points are sorted by their angle around the centroid, which walks the
    polygon clockwise in image coordinates, and the sequence is rotated so
    that the point with the smallest (x + y) comes first. Unlike the
    sum/difference heuristic this never assigns one point to two slots, so
    the output is always a permutation of the input.

    Args:
        points: Array of 4 points with shape (4, 2) or list of [x, y].

    Returns:
        Array of shape (4, 2) in [TL, TR, BR, BL] order.

    Raises:
        ValueError: If input does not contain exactly 4 points.

    Example:
        >>> pts = np.array([[320, 400], [100, 200], [300, 150], [80, 380]])
        >>> order_corners(pts)[0]
        array([100., 200.])
    """
    pts = as_corners(points)
    centroid = pts.mean(axis=0)
    angles = np.arctan2(pts[:, 1] - centroid[1], pts[:, 0] - centroid[0])
    clockwise = pts[np.argsort(angles, kind="stable")]

    start = int(np.argmin(clockwise.sum(axis=1)))
    return np.roll(clockwise, -start, axis=0)


def quad_area(points: np.ndarray) -> float:
    """Polygon area via the shoelace formula."""
    pts = np.asarray(points, dtype=np.float64)
    x, y = pts[:, 0], pts[:, 1]
    return float(abs(np.dot(x, np.roll(y, -1)) - np.dot(np.roll(x, -1), y)) / 2.0)


def interior_angle_deg(a: np.ndarray, b: np.ndarray, c: np.ndarray) -> float:
    """Angle ABC in degrees. Zero-length arms yield 0."""
    ba = np.asarray(a, dtype=np.float64) - np.asarray(b, dtype=np.float64)
    bc = np.asarray(c, dtype=np.float64) - np.asarray(b, dtype=np.float64)
    mag_ba = float(np.hypot(*ba))
    mag_bc = float(np.hypot(*bc))
    if mag_ba == 0.0 or mag_bc == 0.0:
        return 0.0
    cos_angle = float(np.dot(ba, bc)) / (mag_ba * mag_bc)
    return math.degrees(math.acos(max(-1.0, min(1.0, cos_angle))))


def interior_angles(quad: np.ndarray) -> list[float]:
    """Interior angles at each of the 4 vertices, in vertex order."""
    return [
        interior_angle_deg(quad[(i + 3) % 4], quad[i], quad[(i + 1) % 4])
        for i in range(4)
    ]


def angle_regularity(quad: np.ndarray) -> float:
    """
    Closeness of the interior angles to 90 degrees.

    1.0 for a perfect rectangle, decreasing by the total deviation from
    90 degrees over 360, clamped to [0, 1].
    """
    total_deviation = sum(abs(angle - 90.0) for angle in interior_angles(quad))
    return float(np.clip(1.0 - total_deviation / 360.0, 0.0, 1.0))


def is_convex(quad: np.ndarray) -> bool:
    """
    Check if 4 ordered points form a convex quadrilateral.

    All consecutive edge cross products must share a sign. Collinear
    triples (zero cross product) are ignored.
    """
    pts = as_corners(quad)
    positive = negative = 0
    for i in range(4):
        p1, p2, p3 = pts[i], pts[(i + 1) % 4], pts[(i + 2) % 4]
        cross = (p2[0] - p1[0]) * (p3[1] - p2[1]) - (p2[1] - p1[1]) * (p3[0] - p2[0])
        if cross > 0.0:
            positive += 1
        elif cross < 0.0:
            negative += 1
    return positive == 0 or negative == 0


def edge_lengths(quad: np.ndarray) -> np.ndarray:
    """Lengths of the edges TL->TR, TR->BR, BR->BL, BL->TL."""
    pts = np.asarray(quad, dtype=np.float64)
    return np.linalg.norm(np.roll(pts, -1, axis=0) - pts, axis=1)


def line_through_angle(angle_deg: float, rho: float, center: tuple[float, float]) -> Line:
    """
    Homogeneous line (a, b, c) with ax + by + c = 0.

    The line has direction angle_deg and signed offset rho from center along
    its normal at (angle_deg + 90) degrees.
    """
    normal = math.radians(angle_deg + 90.0)
    a = math.cos(normal)
    b = math.sin(normal)
    c = -(a * center[0] + b * center[1]) - rho
    return (a, b, c)


def intersect_lines(line1: Line, line2: Line) -> Optional[np.ndarray]:
    """Intersection of two homogeneous lines, None when (nearly) parallel."""
    a1, b1, c1 = line1
    a2, b2, c2 = line2
    x = b1 * c2 - b2 * c1
    y = c1 * a2 - c2 * a1
    w = a1 * b2 - a2 * b1
    if abs(w) < PARALLEL_W_THRESHOLD:
        return None
    return np.array([x / w, y / w], dtype=np.float64)


def _hartley_normalization(points: np.ndarray) -> np.ndarray:
    """Similarity transform moving the centroid to the origin, mean distance sqrt(2)."""
    centroid = points.mean(axis=0)
    mean_dist = float(np.mean(np.linalg.norm(points - centroid, axis=1)))
    if mean_dist < 1e-12:
        raise ValueError("Degenerate point set: all points coincide")
    scale = math.sqrt(2.0) / mean_dist
    return np.array(
        [
            [scale, 0.0, -scale * centroid[0]],
            [0.0, scale, -scale * centroid[1]],
            [0.0, 0.0, 1.0],
        ],
        dtype=np.float64,
    )


def compute_homography(src: np.ndarray, dst: np.ndarray) -> Optional[np.ndarray]:
    """
    Estimate the homography mapping src points onto dst points.

    Uses the normalized direct linear transform: both point sets are
    Hartley-normalized, the 2N x 9 system is solved by SVD and the result is
    denormalized and scaled so that H[2, 2] == 1.

    Args:
        src: Source points, shape (N, 2) with N >= 4.
        dst: Destination points, shape (N, 2).

    Returns:
        3x3 homography, or None for degenerate configurations.
    """
    src = np.asarray(src, dtype=np.float64)
    dst = np.asarray(dst, dtype=np.float64)
    if src.shape != dst.shape or src.ndim != 2 or src.shape[1] != 2 or len(src) < 4:
        raise ValueError(
            f"Expected matching (N, 2) point arrays with N >= 4, got {src.shape} and {dst.shape}"
        )

    try:
        t_src = _hartley_normalization(src)
        t_dst = _hartley_normalization(dst)
    except ValueError as e:
        logger.debug(f"compute_homography: {e}")
        return None

    src_h = np.column_stack([src, np.ones(len(src))]) @ t_src.T
    dst_h = np.column_stack([dst, np.ones(len(dst))]) @ t_dst.T

    rows = []
    for (x, y, _), (u, v, _) in zip(src_h, dst_h):
        rows.append([-x, -y, -1.0, 0.0, 0.0, 0.0, u * x, u * y, u])
        rows.append([0.0, 0.0, 0.0, -x, -y, -1.0, v * x, v * y, v])

    try:
        _, _, vt = np.linalg.svd(np.asarray(rows))
    except np.linalg.LinAlgError as e:
        logger.debug(f"compute_homography: SVD failed: {e}")
        return None

    h_norm = vt[-1].reshape(3, 3)
    homography = np.linalg.inv(t_dst) @ h_norm @ t_src
    if abs(homography[2, 2]) < 1e-12:
        return None
    return homography / homography[2, 2]


UNIT_SQUARE = np.array([[0.0, 0.0], [1.0, 0.0], [1.0, 1.0], [0.0, 1.0]], dtype=np.float64)


def round_half_up(value: float) -> int:
    """Round to the nearest integer with halves going up (floor(x + 0.5))."""
    return int(math.floor(value + 0.5))
