"""
Unit tests for geometry module.

Tests corner ordering, polygon measurements, line intersection and
homography estimation.
"""

import math

import numpy as np
import pytest

from src.docdetect.geometry import (
    UNIT_SQUARE,
    angle_regularity,
    as_corners,
    compute_homography,
    edge_lengths,
    interior_angles,
    intersect_lines,
    is_convex,
    line_through_angle,
    order_corners,
    quad_area,
    round_half_up,
)


class TestOrderCorners:
    """Test suite for order_corners function."""

    def test_order_corners_basic(self, sample_quadrilateral_points):
        """Test basic point ordering with a shuffled quadrilateral."""
        ordered = order_corners(sample_quadrilateral_points)

        assert ordered.shape == (4, 2)
        np.testing.assert_array_equal(ordered[0], [100, 200])  # TL
        np.testing.assert_array_equal(ordered[1], [300, 150])  # TR
        np.testing.assert_array_equal(ordered[2], [320, 400])  # BR
        np.testing.assert_array_equal(ordered[3], [80, 380])  # BL

    def test_order_corners_idempotent(self, sample_quadrilateral_points):
        """Test that ordering twice gives the same result as once."""
        once = order_corners(sample_quadrilateral_points)
        twice = order_corners(once)

        np.testing.assert_array_equal(once, twice)

    def test_every_rotation_collapses_to_same_order(self, document_corners):
        """Test that all cyclic relabelings give the canonical TL-first order."""
        expected = order_corners(document_corners)
        for shift in range(4):
            rotated = np.roll(document_corners, shift, axis=0)
            np.testing.assert_array_equal(order_corners(rotated), expected)
            np.testing.assert_array_equal(order_corners(rotated[::-1]), expected)

    def test_output_is_permutation_of_input(self):
        """Test that a strongly rotated quad never duplicates a corner."""
        pts = np.array([[200, 50], [350, 200], [200, 350], [50, 200]], dtype=np.float64)
        ordered = order_corners(pts)

        assert sorted(map(tuple, ordered)) == sorted(map(tuple, pts))

    def test_order_corners_list_input(self):
        """Test that function accepts list input and converts it."""
        ordered = order_corners([[300, 150], [100, 200], [320, 400], [80, 380]])

        assert isinstance(ordered, np.ndarray)
        assert ordered.dtype == np.float64

    def test_order_corners_invalid_count(self):
        """Test that wrong number of points raises ValueError."""
        with pytest.raises(ValueError, match="Expected 4 corners"):
            order_corners(np.array([[100, 200], [300, 150], [10, 10]]))


class TestMeasurements:
    """Tests for area, angle and convexity helpers."""

    def test_quad_area_rectangle(self):
        rect = np.array([[0, 0], [400, 0], [400, 300], [0, 300]], dtype=np.float64)
        assert quad_area(rect) == pytest.approx(120000.0)

    def test_rectangle_angles_are_right(self):
        rect = np.array([[10, 10], [110, 10], [110, 60], [10, 60]], dtype=np.float64)

        for angle in interior_angles(rect):
            assert angle == pytest.approx(90.0)
        assert angle_regularity(rect) == pytest.approx(1.0)

    def test_skewed_quad_angle_regularity_below_one(self):
        quad = np.array([[0, 0], [100, 0], [140, 100], [40, 100]], dtype=np.float64)
        assert 0.0 < angle_regularity(quad) < 1.0

    def test_convexity(self):
        convex = np.array([[0, 0], [100, 0], [100, 100], [0, 100]], dtype=np.float64)
        concave = np.array([[0, 0], [100, 0], [30, 30], [0, 100]], dtype=np.float64)

        assert is_convex(convex) is True
        assert is_convex(concave) is False

    def test_edge_lengths_order(self):
        rect = np.array([[0, 0], [400, 0], [400, 300], [0, 300]], dtype=np.float64)
        np.testing.assert_allclose(edge_lengths(rect), [400, 300, 400, 300])

    def test_as_corners_rejects_bad_shape(self):
        with pytest.raises(ValueError, match="got shape"):
            as_corners(np.zeros((4, 3)))

    def test_round_half_up(self):
        assert round_half_up(2.5) == 3
        assert round_half_up(-2.5) == -2
        assert round_half_up(1.49) == 1


class TestLines:
    """Tests for homogeneous line construction and intersection."""

    def test_horizontal_line_offset(self):
        """Test that angle 0 and rho r gives the line y = cy + r."""
        a, b, c = line_through_angle(0.0, 50.0, (320.0, 240.0))
        for x in (0.0, 100.0, 639.0):
            assert a * x + b * 290.0 + c == pytest.approx(0.0, abs=1e-9)

    def test_intersection_of_perpendicular_lines(self):
        center = (320.0, 240.0)
        horizontal = line_through_angle(0.0, -150.0, center)
        vertical = line_through_angle(90.0, 200.0, center)

        point = intersect_lines(horizontal, vertical)

        np.testing.assert_allclose(point, [120.0, 90.0], atol=1e-9)

    def test_parallel_lines_return_none(self):
        center = (0.0, 0.0)
        assert intersect_lines(
            line_through_angle(30.0, 0.0, center), line_through_angle(30.0, 10.0, center)
        ) is None


class TestComputeHomography:
    """Tests for the normalized DLT homography."""

    def test_maps_quad_onto_unit_square(self, document_corners):
        H = compute_homography(document_corners, UNIT_SQUARE)
        assert H is not None

        pts = np.column_stack([document_corners, np.ones(4)]) @ H.T
        mapped = pts[:, :2] / pts[:, 2:3]
        np.testing.assert_allclose(mapped, UNIT_SQUARE, atol=1e-9)
        assert H[2, 2] == pytest.approx(1.0)

    def test_degenerate_points_return_none(self):
        same = np.full((4, 2), 7.0)
        assert compute_homography(same, UNIT_SQUARE) is None

    def test_mismatched_shapes_raise(self):
        with pytest.raises(ValueError, match="matching"):
            compute_homography(np.zeros((4, 2)), np.zeros((3, 2)))

    def test_recovers_known_projective_transform(self):
        H_true = np.array([[1.2, 0.1, 30.0], [-0.05, 0.9, 12.0], [1e-4, 2e-4, 1.0]])
        src = np.array([[0, 0], [200, 10], [210, 150], [-5, 140], [100, 70]], dtype=np.float64)
        dst_h = np.column_stack([src, np.ones(len(src))]) @ H_true.T
        dst = dst_h[:, :2] / dst_h[:, 2:3]

        H = compute_homography(src, dst)

        np.testing.assert_allclose(H, H_true, rtol=1e-6, atol=1e-8)
        assert math.isfinite(H.sum())
