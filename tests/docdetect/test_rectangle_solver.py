"""
Unit tests for rectangle_solver module.

Covers the three solver tiers on synthetic clusters and images, plus the
tiered fallback entry point.
"""

import numpy as np
import pytest

from src.docdetect.config_loader import DocDetectConfig
from src.docdetect.geometry import line_through_angle
from src.docdetect.rectangle_solver import (
    detect_document_lsd,
    detect_rectangle_tier1,
    detect_rectangle_tier2,
    detect_rectangle_tier3,
    quad_from_lines,
    try_form_quad,
)
from src.docdetect.types import DetectionSource, EdgeCluster, LineSegment

CENTER = (320.0, 240.0)
LSD_SOURCES = {DetectionSource.LSD_TIER1, DetectionSource.LSD_TIER2, DetectionSource.LSD_TIER3}


def _h_cluster(y: float, x0: float, x1: float) -> EdgeCluster:
    return EdgeCluster(
        segments=[LineSegment(x0, y, x1, y)],
        angle=0.0,
        rho=y - CENTER[1],
        total_length=x1 - x0,
        is_horizontal=True,
    )


def _v_cluster(x: float, y0: float, y1: float) -> EdgeCluster:
    return EdgeCluster(
        segments=[LineSegment(x, y0, x, y1)],
        angle=90.0,
        rho=CENTER[0] - x,
        total_length=y1 - y0,
        is_horizontal=False,
    )


def _assert_corners_near(actual, expected, tol):
    np.testing.assert_allclose(actual, np.asarray(expected, dtype=np.float64), atol=tol)


@pytest.fixture
def faint_rectangle_gray():
    """Very low contrast rectangle: a 4-level step on mid gray."""
    gray = np.full((480, 640), 128, dtype=np.uint8)
    gray[120:360, 160:480] = 132
    return gray


class TestQuadFromLines:
    """Tests for the geometric gate."""

    def test_valid_rectangle(self):
        solver = DocDetectConfig.default().solver
        quad = quad_from_lines(
            line_through_angle(0.0, -150.0, CENTER),
            line_through_angle(0.0, 150.0, CENTER),
            line_through_angle(90.0, 200.0, CENTER),
            line_through_angle(90.0, -200.0, CENTER),
            640,
            480,
            solver,
        )
        _assert_corners_near(quad, [[120, 90], [520, 90], [520, 390], [120, 390]], 1e-6)

    def test_small_quad_rejected(self):
        solver = DocDetectConfig.default().solver
        assert quad_from_lines(
            line_through_angle(0.0, -10.0, CENTER),
            line_through_angle(0.0, 10.0, CENTER),
            line_through_angle(90.0, 10.0, CENTER),
            line_through_angle(90.0, -10.0, CENTER),
            640,
            480,
            solver,
        ) is None

    def test_corners_out_of_frame_rejected(self):
        solver = DocDetectConfig.default().solver
        assert quad_from_lines(
            line_through_angle(0.0, -150.0, CENTER),
            line_through_angle(0.0, 150.0, CENTER),
            line_through_angle(90.0, 200.0, CENTER),
            line_through_angle(90.0, -400.0, CENTER),
            640,
            480,
            solver,
        ) is None

    def test_parallel_lines_rejected(self):
        solver = DocDetectConfig.default().solver
        h = line_through_angle(0.0, -150.0, CENTER)
        assert quad_from_lines(h, h, h, h, 640, 480, solver) is None

    def test_try_form_quad_geometric_score(self):
        result = try_form_quad(
            line_through_angle(0.0, -150.0, CENTER),
            line_through_angle(0.0, 150.0, CENTER),
            line_through_angle(90.0, 200.0, CENTER),
            line_through_angle(90.0, -200.0, CENTER),
            640,
            480,
        )
        assert result is not None
        _, score = result
        assert score == pytest.approx(0.5 * (120000.0 / 307200.0) + 0.5)

    def test_try_form_quad_rejects_unsupported_quad(self, rectangle_gray):
        gx = np.zeros(rectangle_gray.shape, dtype=np.int16)
        gy = np.zeros(rectangle_gray.shape, dtype=np.int16)
        assert try_form_quad(
            line_through_angle(0.0, -150.0, CENTER),
            line_through_angle(0.0, 150.0, CENTER),
            line_through_angle(90.0, 200.0, CENTER),
            line_through_angle(90.0, -200.0, CENTER),
            640,
            480,
            gx,
            gy,
        ) is None


class TestTier1:
    """Tests for cluster intersection."""

    def test_four_clusters_form_rectangle(self):
        clusters = [
            _h_cluster(90, 120, 520),
            _h_cluster(390, 120, 520),
            _v_cluster(120, 90, 390),
            _v_cluster(520, 90, 390),
        ]

        result = detect_rectangle_tier1(clusters, 640, 480)

        assert result is not None
        assert result.source == DetectionSource.LSD_TIER1
        _assert_corners_near(result.corners, [[120, 90], [520, 90], [520, 390], [120, 390]], 1.0)
        expected_score = 0.4 * (1400.0 / 2240.0) + 0.3 * (120000.0 / 307200.0) + 0.3
        assert result.confidence == pytest.approx(0.50 + 0.35 * expected_score)

    def test_confidence_within_tier_range(self):
        clusters = [
            _h_cluster(90, 120, 520),
            _h_cluster(390, 120, 520),
            _v_cluster(120, 90, 390),
            _v_cluster(520, 90, 390),
        ]
        result = detect_rectangle_tier1(clusters, 640, 480)
        assert 0.50 <= result.confidence <= 0.85

    def test_best_combination_wins_over_distractor(self):
        clusters = [
            _h_cluster(90, 120, 520),
            _h_cluster(390, 120, 520),
            _h_cluster(250, 300, 340),
            _v_cluster(120, 90, 390),
            _v_cluster(520, 90, 390),
        ]
        result = detect_rectangle_tier1(clusters, 640, 480)
        _assert_corners_near(result.corners, [[120, 90], [520, 90], [520, 390], [120, 390]], 1.0)

    def test_insufficient_clusters(self):
        clusters = [_h_cluster(90, 120, 520), _v_cluster(120, 90, 390), _v_cluster(520, 90, 390)]
        assert detect_rectangle_tier1(clusters, 640, 480) is None

    def test_invalid_dimensions(self):
        with pytest.raises(ValueError, match="height"):
            detect_rectangle_tier1([], 640, 0)


class TestTier2:
    """Tests for the corner-constrained Radon search."""

    def test_three_edges_find_missing_fourth(self, rectangle_gray):
        clusters = [
            _h_cluster(120, 160, 480),
            _h_cluster(360, 160, 480),
            _v_cluster(160, 120, 360),
        ]

        result = detect_rectangle_tier2(rectangle_gray, clusters, 640, 480)

        assert result is not None
        assert result.source == DetectionSource.LSD_TIER2
        assert 0.45 <= result.confidence <= 0.75
        _assert_corners_near(result.corners, [[160, 120], [480, 120], [480, 360], [160, 360]], 2.0)

    def test_single_cluster_insufficient(self, rectangle_gray):
        assert detect_rectangle_tier2(rectangle_gray, [_h_cluster(120, 160, 480)], 640, 480) is None

    def test_empty_image_rejected(self):
        with pytest.raises(ValueError, match="empty"):
            detect_rectangle_tier2(np.zeros((0, 0), np.uint8), [], 640, 480)


class TestTier3:
    """Tests for the full Radon rectangle scan."""

    def test_faint_rectangle_recovered(self, faint_rectangle_gray):
        result = detect_rectangle_tier3(faint_rectangle_gray, 640, 480)

        assert result is not None
        assert result.source == DetectionSource.LSD_TIER3
        assert 0.40 <= result.confidence <= 0.65
        _assert_corners_near(result.corners, [[160, 120], [480, 120], [480, 360], [160, 360]], 2.0)

    def test_flat_image_has_no_rectangle(self):
        flat = np.full((480, 640), 128, dtype=np.uint8)
        assert detect_rectangle_tier3(flat, 640, 480) is None


class TestDetectDocumentLsd:
    """Tests for the tiered fallback entry point."""

    def test_rectangle_detected(self, rectangle_gray):
        result = detect_document_lsd(rectangle_gray, 640, 480)

        assert result is not None
        assert result.source in LSD_SOURCES
        assert 0.40 <= result.confidence <= 0.85
        assert result.elapsed_ms >= 0.0
        _assert_corners_near(result.corners, [[160, 120], [480, 120], [480, 360], [160, 360]], 3.0)

    def test_flat_image_returns_none(self):
        flat = np.full((480, 640), 90, dtype=np.uint8)
        assert detect_document_lsd(flat, 640, 480) is None

    def test_color_input_rejected(self, document_image):
        with pytest.raises(ValueError, match="single-channel"):
            detect_document_lsd(document_image, 640, 480)
