"""
Tiered Rectangle Solver

Line-based fallback used when the contour cascade finds nothing. It works on
the raw gradient field instead of binarized edges, so it can recover much
fainter document boundaries.

Three tiers with progressive fallback:
- Tier 1: intersect 2 horizontal + 2 vertical segment clusters.
- Tier 2: use 2-3 known cluster edges to constrain a Radon search for the
  missing edge(s).
- Tier 3: full restricted Radon scan over a small set of tilt angles when
  segment detection gives nothing usable.
"""

import logging
import math
import time
from typing import Optional, Sequence

import numpy as np

from src.docdetect.config_loader import DocDetectConfig, SolverConfig
from src.docdetect.geometry import (
    Line,
    angle_regularity,
    edge_lengths,
    interior_angles,
    intersect_lines,
    is_convex,
    line_through_angle,
    order_corners,
    quad_area,
    round_half_up,
)
from src.docdetect.line_clusters import cluster_segments, detect_segments
from src.docdetect.radon import (
    find_radon_peaks,
    radon_accumulate,
    radon_line_search,
    sobel_gradients,
    verify_gradient_density,
)
from src.docdetect.types import DetectionSource, DocumentCorners, EdgeCluster, RadonPeak

logger = logging.getLogger(__name__)


def _check_gray(gray: np.ndarray) -> None:
    if gray is None or gray.size == 0:
        raise ValueError("Input image is empty")
    if gray.ndim != 2:
        raise ValueError(f"Expected single-channel input, got shape {gray.shape}")


def _check_dimensions(width: int, height: int) -> None:
    if width <= 0:
        raise ValueError(f"width must be positive, got {width}")
    if height <= 0:
        raise ValueError(f"height must be positive, got {height}")


def _center(width: int, height: int) -> tuple[float, float]:
    return (width / 2.0, height / 2.0)


def cluster_to_line(cluster: EdgeCluster, center: tuple[float, float]) -> Line:
    """Homogeneous line through the cluster's mean angle and offset."""
    return line_through_angle(cluster.angle, cluster.rho, center)


def peak_to_line(peak: RadonPeak, center: tuple[float, float]) -> Line:
    return line_through_angle(peak.angle_deg, peak.rho, center)


def _map_confidence(score: float, bounds: tuple[float, float]) -> float:
    low, high = bounds
    return low + score * (high - low)


def quad_from_lines(
    h_line1: Line,
    h_line2: Line,
    v_line1: Line,
    v_line2: Line,
    width: int,
    height: int,
    solver: SolverConfig,
) -> Optional[np.ndarray]:
    """
    Intersect two horizontal and two vertical lines into a plausible quad.

    Rejects parallel pairs, corners more than bounds_overflow_fraction
    outside the frame, non-convex shapes, quads below the minimum area and
    interior angles outside the allowed range.

    Returns:
        Ordered corners [TL, TR, BR, BL], or None.
    """
    raw = []
    for h_line, v_line in ((h_line1, v_line1), (h_line1, v_line2), (h_line2, v_line1), (h_line2, v_line2)):
        point = intersect_lines(h_line, v_line)
        if point is None:
            return None
        raw.append(point)

    margin_x = width * solver.bounds_overflow_fraction
    margin_y = height * solver.bounds_overflow_fraction
    for x, y in raw:
        if x < -margin_x or x > width + margin_x or y < -margin_y or y > height + margin_y:
            return None

    ordered = order_corners(np.array(raw))
    if not is_convex(ordered):
        return None
    if quad_area(ordered) < width * height * solver.min_quad_area_fraction:
        return None
    for angle in interior_angles(ordered):
        if angle < solver.min_interior_angle_deg or angle > solver.max_interior_angle_deg:
            return None
    return ordered


def _geometric_score(ordered: np.ndarray, image_area: float) -> tuple[float, float]:
    area_ratio = min(max(quad_area(ordered) / image_area, 0.0), 1.0)
    return area_ratio, angle_regularity(ordered)


def try_form_quad(
    h_line1: Line,
    h_line2: Line,
    v_line1: Line,
    v_line2: Line,
    width: int,
    height: int,
    gx: Optional[np.ndarray] = None,
    gy: Optional[np.ndarray] = None,
    config: Optional[DocDetectConfig] = None,
) -> Optional[tuple[np.ndarray, float]]:
    """
    Geometric gate plus gradient-weighted score for a Radon-assisted quad.

    Without gradients the score is 0.5 area + 0.5 angle regularity. With
    gradients a zero gradient density rejects the quad, otherwise the score
    becomes 0.4 geometry + 0.6 gradient density.
    """
    config = config or DocDetectConfig.default()
    solver = config.solver
    ordered = quad_from_lines(h_line1, h_line2, v_line1, v_line2, width, height, solver)
    if ordered is None:
        return None

    area_ratio, regularity = _geometric_score(ordered, float(width * height))
    score = 0.5 * area_ratio + 0.5 * regularity

    if gx is not None and gy is not None:
        gradient_score = verify_gradient_density(
            gx, gy, ordered, solver.gradient_samples_per_side, config
        )
        if gradient_score <= 0.0:
            return None
        score = 0.4 * score + 0.6 * gradient_score

    return ordered, score


# ---------------------------------------------------------------------------
# Tier 1: cluster intersection
# ---------------------------------------------------------------------------


def detect_rectangle_tier1(
    clusters: Sequence[EdgeCluster],
    width: int,
    height: int,
    config: Optional[DocDetectConfig] = None,
) -> Optional[DocumentCorners]:
    """
    Form a rectangle from 2 horizontal and 2 vertical clusters.

    Every 2H x 2V combination is intersected and gated; the survivor with
    the best blend of cluster length, area and angle regularity wins.

    Returns:
        DocumentCorners with confidence in the tier 1 range, or None.
    """
    _check_dimensions(width, height)
    solver = (config or DocDetectConfig.default()).solver
    start = time.perf_counter()

    h_clusters = [c for c in clusters if c.is_horizontal]
    v_clusters = [c for c in clusters if not c.is_horizontal]
    if len(h_clusters) < 2 or len(v_clusters) < 2:
        logger.debug(
            f"detect_rectangle_tier1: insufficient clusters "
            f"(H={len(h_clusters)}, V={len(v_clusters)}, need 2+2)"
        )
        return None

    center = _center(width, height)
    image_area = float(width * height)
    image_perimeter = 2.0 * (width + height)
    h_lines = [cluster_to_line(c, center) for c in h_clusters]
    v_lines = [cluster_to_line(c, center) for c in v_clusters]

    best_corners = None
    best_score = -1.0
    for hi in range(len(h_clusters)):
        for hj in range(hi + 1, len(h_clusters)):
            for vi in range(len(v_clusters)):
                for vj in range(vi + 1, len(v_clusters)):
                    ordered = quad_from_lines(
                        h_lines[hi], h_lines[hj], v_lines[vi], v_lines[vj], width, height, solver
                    )
                    if ordered is None:
                        continue

                    total_length = (
                        h_clusters[hi].total_length + h_clusters[hj].total_length
                        + v_clusters[vi].total_length + v_clusters[vj].total_length
                    )
                    evidence = min(max(total_length / image_perimeter, 0.0), 1.0)
                    area_ratio, regularity = _geometric_score(ordered, image_area)
                    score = 0.4 * evidence + 0.3 * area_ratio + 0.3 * regularity

                    if score > best_score:
                        best_score = score
                        best_corners = ordered

    ms = (time.perf_counter() - start) * 1000.0
    if best_corners is None:
        logger.debug(
            f"detect_rectangle_tier1: {ms:.1f} ms, no valid quad from "
            f"{len(h_clusters)} H x {len(v_clusters)} V combinations"
        )
        return None

    confidence = _map_confidence(best_score, solver.tier1_confidence)
    logger.debug(f"detect_rectangle_tier1: {ms:.1f} ms, score={best_score:.3f}, confidence={confidence:.2f}")
    return DocumentCorners(best_corners, confidence, ms, DetectionSource.LSD_TIER1)


# ---------------------------------------------------------------------------
# Tier 2: corner-constrained Radon search
# ---------------------------------------------------------------------------


class _Tier2Search:
    """Shared state for one Tier 2 invocation."""

    def __init__(self, gx, gy, width: int, height: int, config: DocDetectConfig):
        self.gx = gx
        self.gy = gy
        self.width = width
        self.height = height
        self.config = config
        self.solver = config.solver
        self.center = _center(width, height)
        self.best_corners: Optional[np.ndarray] = None
        self.best_score = -1.0

    def search(self, angle: float, rho_min: float, rho_max: float, horizontal: bool) -> list[RadonPeak]:
        if rho_min > rho_max:
            return []
        return radon_line_search(
            self.gx, self.gy, angle, rho_min, rho_max, self.width, self.height, horizontal, self.config
        )

    def side_ranges(self, rho: float, dimension: float) -> list[tuple[float, float]]:
        """Rho windows on both sides of a known edge, at least the minimum edge distance away."""
        extension = dimension * self.solver.tier2_search_extension_fraction
        min_distance = dimension * self.solver.tier2_min_edge_distance_fraction
        return [(rho + min_distance, rho + extension), (rho - extension, rho - min_distance)]

    def consider(self, h1: Line, h2: Line, v1: Line, v2: Line) -> None:
        candidate = try_form_quad(h1, h2, v1, v2, self.width, self.height, self.gx, self.gy, self.config)
        if candidate is not None and candidate[1] > self.best_score:
            self.best_corners, self.best_score = candidate

    def missing_edge(
        self,
        parallel_lines: Sequence[Line],
        perp_cluster: EdgeCluster,
        perp_line: Line,
        search_horizontal: bool,
    ) -> None:
        """Three known edges: find the fourth, parallel to the single known one."""
        dimension = float(self.height if search_horizontal else self.width)
        max_peaks = self.solver.tier2_max_candidate_peaks

        for rho_min, rho_max in self.side_ranges(perp_cluster.rho, dimension):
            peaks = self.search(perp_cluster.angle, rho_min, rho_max, search_horizontal)
            for peak in peaks[:max_peaks]:
                candidate_line = peak_to_line(peak, self.center)
                for pi in range(len(parallel_lines)):
                    for pj in range(pi + 1, len(parallel_lines)):
                        if search_horizontal:
                            self.consider(perp_line, candidate_line, parallel_lines[pi], parallel_lines[pj])
                        else:
                            self.consider(parallel_lines[pi], parallel_lines[pj], perp_line, candidate_line)

    def two_missing(self, h_cluster: EdgeCluster, h_line: Line, v_cluster: EdgeCluster, v_line: Line) -> None:
        """One known corner: search the opposite horizontal and vertical edges."""
        h_peaks = []
        for rho_min, rho_max in self.side_ranges(h_cluster.rho, float(self.height)):
            h_peaks.extend(self.search(h_cluster.angle, rho_min, rho_max, True))
        v_peaks = []
        for rho_min, rho_max in self.side_ranges(v_cluster.rho, float(self.width)):
            v_peaks.extend(self.search(v_cluster.angle, rho_min, rho_max, False))

        h_peaks.sort(key=lambda p: p.response, reverse=True)
        v_peaks.sort(key=lambda p: p.response, reverse=True)

        max_peaks = self.solver.tier2_max_candidate_peaks
        for hp in h_peaks[:max_peaks]:
            candidate_h = peak_to_line(hp, self.center)
            for vp in v_peaks[:max_peaks]:
                self.consider(h_line, candidate_h, v_line, peak_to_line(vp, self.center))

    def perpendicular_pair(
        self, known_clusters: Sequence[EdgeCluster], known_lines: Sequence[Line], search_horizontal: bool
    ) -> None:
        """Two parallel known edges: search both perpendicular edges near their endpoint extremes."""
        known_angle = (known_clusters[0].angle + known_clusters[1].angle) / 2.0
        search_angle = known_angle - 90.0 if search_horizontal else known_angle + 90.0
        if search_angle < 0.0:
            search_angle += 180.0
        if search_angle >= 180.0:
            search_angle -= 180.0

        normal = math.radians(search_angle + 90.0)
        nx, ny = math.cos(normal), math.sin(normal)
        cx, cy = self.center
        endpoint_rhos = []
        for cluster in known_clusters:
            for px, py in (cluster.start_point, cluster.end_point):
                endpoint_rhos.append((px - cx) * nx + (py - cy) * ny)

        dimension = float(self.height if search_horizontal else self.width)
        extension = (
            dimension * self.solver.tier2_search_extension_fraction
            * self.solver.tier2_parallel_extension_scale
        )
        low_end, high_end = min(endpoint_rhos), max(endpoint_rhos)

        peaks1 = self.search(search_angle, low_end - extension, low_end + extension, search_horizontal)
        peaks2 = self.search(search_angle, high_end - extension, high_end + extension, search_horizontal)

        max_peaks = self.solver.tier2_max_candidate_peaks
        for p1 in peaks1[:max_peaks]:
            for p2 in peaks2[:max_peaks]:
                line1 = peak_to_line(p1, self.center)
                line2 = peak_to_line(p2, self.center)
                if search_horizontal:
                    self.consider(line1, line2, known_lines[0], known_lines[1])
                else:
                    self.consider(known_lines[0], known_lines[1], line1, line2)


def detect_rectangle_tier2(
    gray: np.ndarray,
    clusters: Sequence[EdgeCluster],
    width: int,
    height: int,
    config: Optional[DocDetectConfig] = None,
) -> Optional[DocumentCorners]:
    """
    Rescue partial cluster evidence with a constrained Radon search.

    Dispatch by the known edges:
    - 2+ H and 1 V, or 1 H and 2+ V: search the one missing edge.
    - at least 1 H and 1 V: search the two edges opposite the known corner.
    - 2+ H and no V, or 2+ V and no H: search both perpendicular edges.

    Returns:
        DocumentCorners with confidence in the tier 2 range, or None.
    """
    _check_gray(gray)
    _check_dimensions(width, height)
    config = config or DocDetectConfig.default()
    start = time.perf_counter()

    h_clusters = [c for c in clusters if c.is_horizontal]
    v_clusters = [c for c in clusters if not c.is_horizontal]
    h_count, v_count = len(h_clusters), len(v_clusters)
    if h_count + v_count < 2:
        logger.debug(f"detect_rectangle_tier2: only {h_count + v_count} edges, need >= 2")
        return None

    gx, gy = sobel_gradients(gray)
    search = _Tier2Search(gx, gy, width, height, config)
    h_lines = [cluster_to_line(c, search.center) for c in h_clusters]
    v_lines = [cluster_to_line(c, search.center) for c in v_clusters]

    if h_count >= 2 and v_count == 1:
        search.missing_edge(h_lines, v_clusters[0], v_lines[0], search_horizontal=False)
    elif h_count == 1 and v_count >= 2:
        search.missing_edge(v_lines, h_clusters[0], h_lines[0], search_horizontal=True)
    elif h_count >= 1 and v_count >= 1:
        search.two_missing(h_clusters[0], h_lines[0], v_clusters[0], v_lines[0])
    elif h_count >= 2 and v_count == 0:
        search.perpendicular_pair(h_clusters[:2], h_lines[:2], search_horizontal=False)
    elif v_count >= 2 and h_count == 0:
        search.perpendicular_pair(v_clusters[:2], v_lines[:2], search_horizontal=True)

    ms = (time.perf_counter() - start) * 1000.0
    if search.best_corners is None or search.best_score < 0.0:
        logger.debug(f"detect_rectangle_tier2: {ms:.1f} ms, H={h_count} V={v_count}, no valid quad")
        return None

    confidence = _map_confidence(search.best_score, config.solver.tier2_confidence)
    logger.debug(
        f"detect_rectangle_tier2: {ms:.1f} ms, H={h_count} V={v_count}, confidence={confidence:.2f}"
    )
    return DocumentCorners(search.best_corners, confidence, ms, DetectionSource.LSD_TIER2)


# ---------------------------------------------------------------------------
# Tier 3: joint Radon rectangle fit
# ---------------------------------------------------------------------------


def _scan_peaks(
    gradient: np.ndarray,
    angle: float,
    rho_min_abs: float,
    rho_max_abs: float,
    offset: float,
    min_separation: float,
    width: int,
    height: int,
    solver: SolverConfig,
) -> list[tuple[float, float]]:
    """Coarse profile over absolute positions, then 1 px refinement around each peak."""
    step = solver.coarse_step_px
    count = round_half_up((rho_max_abs - rho_min_abs) / step) + 1
    coarse_rho = np.zeros(count)
    coarse_resp = np.zeros(count)
    for i in range(count):
        abs_pos = rho_min_abs + i * step
        if abs_pos > rho_max_abs:
            break
        coarse_rho[i] = abs_pos - offset
        coarse_resp[i] = radon_accumulate(gradient, angle, coarse_rho[i], width, height, solver.radon_samples)

    coarse_peaks = find_radon_peaks(
        coarse_resp.tolist(), coarse_rho.tolist(), min_separation, solver.tier3_max_peaks
    )

    half = solver.fine_half_window_px
    refined = []
    for rho, _ in coarse_peaks:
        fine_count = round_half_up(2.0 * half) + 1
        fine_rho = [rho - half + j for j in range(fine_count)]
        fine_resp = [
            radon_accumulate(gradient, angle, r, width, height, solver.radon_samples) for r in fine_rho
        ]
        best = find_radon_peaks(fine_resp, fine_rho, min_separation, max_peaks=1)
        if best:
            refined.append(best[0])
        else:
            mid = fine_count // 2
            refined.append((fine_rho[mid], fine_resp[mid]))
    return refined


def _tier3_score(
    ordered: np.ndarray,
    responses: Sequence[float],
    width: int,
    height: int,
    solver: SolverConfig,
) -> float:
    image_area = float(width * height)
    radon_score = min(max(sum(responses) / 4.0 / solver.reference_gradient, 0.0), 1.0)
    area_ratio, regularity = _geometric_score(ordered, image_area)
    score = 0.5 * radon_score + 0.5 * (0.5 * area_ratio + 0.5 * regularity)

    cx, cy = width / 2.0, height / 2.0
    quad_cx, quad_cy = ordered.mean(axis=0)
    center_dist = math.hypot(quad_cx - cx, quad_cy - cy) / math.hypot(cx, cy)
    centering_bonus = solver.tier3_centering_bonus * min(max(1.0 - center_dist, 0.0), 1.0)

    lengths = edge_lengths(ordered)
    avg_width = (lengths[0] + lengths[2]) / 2.0
    avg_height = (lengths[1] + lengths[3]) / 2.0
    longer = max(avg_width, avg_height)
    ratio = min(avg_width, avg_height) / longer if longer > 0.0 else 0.0
    aspect_bonus = 0.0
    if 0.5 <= ratio <= 1.0:
        aspect_bonus = solver.tier3_aspect_bonus * min(max(1.0 - abs(ratio - 0.75) / 0.25, 0.0), 1.0)

    return min(max(score + centering_bonus + aspect_bonus, 0.0), 1.0)


def detect_rectangle_tier3(
    gray: np.ndarray,
    width: int,
    height: int,
    config: Optional[DocDetectConfig] = None,
) -> Optional[DocumentCorners]:
    """
    Full restricted Radon scan for a rectangle.

    For each tilt offset, horizontal peaks (|gy|) and vertical peaks (|gx|)
    are searched within the central band of the frame, and every 2H x 2V
    peak combination passing the geometric and gradient-density gates is
    scored with small bonuses for centering and typical document ratios.

    Returns:
        DocumentCorners with confidence in the tier 3 range, or None.
    """
    _check_gray(gray)
    _check_dimensions(width, height)
    config = config or DocDetectConfig.default()
    solver = config.solver
    start = time.perf_counter()

    gx, gy = sobel_gradients(gray)
    center = _center(width, height)

    h_rho_min, h_rho_max = height * solver.tier3_rho_min_fraction, height * solver.tier3_rho_max_fraction
    v_rho_min, v_rho_max = width * solver.tier3_rho_min_fraction, width * solver.tier3_rho_max_fraction
    h_min_sep = height * solver.tier3_peak_separation_fraction
    v_min_sep = width * solver.tier3_peak_separation_fraction

    best_corners = None
    best_score = -1.0

    for theta in solver.tier3_theta_offsets_deg:
        v_angle = theta + 90.0
        h_peaks = _scan_peaks(gy, theta, h_rho_min, h_rho_max, height / 2.0, h_min_sep, width, height, solver)
        v_peaks = _scan_peaks(gx, v_angle, v_rho_min, v_rho_max, width / 2.0, v_min_sep, width, height, solver)
        if len(h_peaks) < 2 or len(v_peaks) < 2:
            continue

        for hi in range(len(h_peaks)):
            for hj in range(hi + 1, len(h_peaks)):
                for vi in range(len(v_peaks)):
                    for vj in range(vi + 1, len(v_peaks)):
                        (h_rho1, h_resp1), (h_rho2, h_resp2) = h_peaks[hi], h_peaks[hj]
                        (v_rho1, v_resp1), (v_rho2, v_resp2) = v_peaks[vi], v_peaks[vj]

                        ordered = quad_from_lines(
                            line_through_angle(theta, h_rho1, center),
                            line_through_angle(theta, h_rho2, center),
                            line_through_angle(v_angle, v_rho1, center),
                            line_through_angle(v_angle, v_rho2, center),
                            width,
                            height,
                            solver,
                        )
                        if ordered is None:
                            continue

                        density = verify_gradient_density(
                            gx, gy, ordered, solver.gradient_samples_per_side, config
                        )
                        if density < solver.tier3_min_gradient_density:
                            continue

                        score = _tier3_score(
                            ordered, (h_resp1, h_resp2, v_resp1, v_resp2), width, height, solver
                        )
                        if score > best_score:
                            best_score = score
                            best_corners = ordered

    ms = (time.perf_counter() - start) * 1000.0
    if best_corners is None:
        logger.debug(f"detect_rectangle_tier3: {ms:.1f} ms, no valid rectangle found")
        return None

    confidence = _map_confidence(best_score, solver.tier3_confidence)
    logger.debug(f"detect_rectangle_tier3: {ms:.1f} ms, score={best_score:.3f}, confidence={confidence:.2f}")
    return DocumentCorners(best_corners, confidence, ms, DetectionSource.LSD_TIER3)


def detect_document_lsd(
    gray: np.ndarray,
    width: int,
    height: int,
    config: Optional[DocDetectConfig] = None,
) -> Optional[DocumentCorners]:
    """
    Detect a document from line evidence: Tier 1, then Tier 2, then Tier 3.

    Tier 2 only runs when at least two clusters were found. The returned
    elapsed_ms covers the whole call.

    Args:
        gray: Single-channel uint8 image (not modified).
        width: Image width in pixels.
        height: Image height in pixels.
        config: Detection configuration (defaults when None).

    Returns:
        DocumentCorners from the first tier that succeeds, or None.
    """
    _check_gray(gray)
    _check_dimensions(width, height)
    config = config or DocDetectConfig.default()
    start = time.perf_counter()

    segments = detect_segments(gray, config.line_clusters.min_length_fraction)
    clusters = cluster_segments(segments, width, height, config) if segments else []

    result = detect_rectangle_tier1(clusters, width, height, config) if clusters else None
    if result is None and len(clusters) >= 2:
        result = detect_rectangle_tier2(gray, clusters, width, height, config)
    if result is None:
        result = detect_rectangle_tier3(gray, width, height, config)

    ms = (time.perf_counter() - start) * 1000.0
    if result is None:
        logger.debug(f"detect_document_lsd: {ms:.1f} ms, no document found (all tiers exhausted)")
        return None

    logger.debug(
        f"detect_document_lsd: {ms:.1f} ms, {result.source.value} success "
        f"(confidence={result.confidence:.2f})"
    )
    return result.with_elapsed(ms)
