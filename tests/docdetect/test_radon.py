"""
Unit tests for radon module.
"""

import numpy as np
import pytest

from src.docdetect.radon import (
    find_radon_peaks,
    gradient_density_for_side,
    radon_accumulate,
    radon_line_search,
    sobel_gradients,
    verify_gradient_density,
    verify_gradient_density_gray,
)

RECT_CORNERS = np.array([[160, 120], [480, 120], [480, 360], [160, 360]], dtype=np.float64)


class TestRadonAccumulate:
    """Tests for single-line accumulation."""

    def test_response_peaks_on_edge(self, rectangle_gray):
        _, gy = sobel_gradients(rectangle_gray)

        on_edge = radon_accumulate(gy, 0.0, -120.0, 640, 480)
        off_edge = radon_accumulate(gy, 0.0, -60.0, 640, 480)

        assert on_edge > 100.0
        assert off_edge == 0.0

    def test_line_outside_image(self, rectangle_gray):
        _, gy = sobel_gradients(rectangle_gray)
        assert radon_accumulate(gy, 0.0, 10000.0, 640, 480) == 0.0


class TestRadonLineSearch:
    """Tests for coarse-to-fine line search."""

    def test_finds_top_edge(self, rectangle_gray):
        gx, gy = sobel_gradients(rectangle_gray)

        peaks = radon_line_search(gx, gy, 0.0, -200.0, -50.0, 640, 480, is_horizontal_edge=True)

        assert peaks
        assert abs(peaks[0].rho + 120.5) <= 1.0
        responses = [p.response for p in peaks]
        assert responses == sorted(responses, reverse=True)

    def test_finds_left_edge_with_gx(self, rectangle_gray):
        gx, gy = sobel_gradients(rectangle_gray)

        peaks = radon_line_search(gx, gy, 90.0, 96.0, 224.0, 640, 480, is_horizontal_edge=False)

        assert peaks
        assert abs(peaks[0].rho - 159.5) <= 1.0

    def test_empty_band_returns_nothing(self, rectangle_gray):
        gx, gy = sobel_gradients(rectangle_gray)
        assert radon_line_search(gx, gy, 0.0, -50.0, 50.0, 640, 480, True) == []

    def test_inverted_range_raises(self, rectangle_gray):
        gx, gy = sobel_gradients(rectangle_gray)
        with pytest.raises(ValueError, match="rho_max"):
            radon_line_search(gx, gy, 0.0, 10.0, -10.0, 640, 480, True)


class TestFindRadonPeaks:
    """Tests for 1D peak picking."""

    def test_strict_maxima_with_separation(self):
        responses = [0, 5, 1, 7, 2, 3, 1]
        rhos = [0, 1, 2, 3, 4, 5, 6]

        assert find_radon_peaks(responses, rhos, 3.0) == [(3, 7)]
        assert find_radon_peaks(responses, rhos, 1.0, max_peaks=2) == [(3, 7), (1, 5)]

    def test_plateau_is_not_a_peak(self):
        assert find_radon_peaks([0, 4, 4, 0], [0, 1, 2, 3], 1.0) == []

    def test_short_profile(self):
        assert find_radon_peaks([1, 2], [0, 1], 1.0) == []

    def test_mismatched_sizes(self):
        with pytest.raises(ValueError, match="same size"):
            find_radon_peaks([1, 2, 3], [0, 1], 1.0)


class TestGradientDensity:
    """Tests for the gradient-density gate."""

    def test_true_rectangle_fully_supported(self, rectangle_gray):
        assert verify_gradient_density_gray(rectangle_gray, RECT_CORNERS) == pytest.approx(1.0)

    def test_quad_in_flat_region_rejected(self, rectangle_gray):
        inner = np.array([[200, 150], [440, 150], [440, 330], [200, 330]], dtype=np.float64)
        assert verify_gradient_density_gray(rectangle_gray, inner) == 0.0

    def test_two_supported_sides_fail_gate(self, rectangle_gray):
        gx, gy = sobel_gradients(rectangle_gray)
        shifted = np.array([[160, 120], [560, 120], [560, 420], [160, 420]], dtype=np.float64)

        assert verify_gradient_density(gx, gy, shifted) == 0.0

    def test_degenerate_side(self, rectangle_gray):
        gx, gy = sobel_gradients(rectangle_gray)
        point = np.array([160.0, 120.0])
        assert gradient_density_for_side(gx, gy, point, point) == 0.0

    def test_color_input_rejected(self, document_image):
        with pytest.raises(ValueError, match="single-channel"):
            verify_gradient_density_gray(document_image, RECT_CORNERS)
