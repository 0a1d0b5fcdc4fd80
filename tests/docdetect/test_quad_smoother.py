"""
Unit tests for quad_smoother module.
"""

import numpy as np
import pytest

from src.docdetect.config_loader import DocDetectConfig, SmoothingConfig
from src.docdetect.quad_smoother import QuadSmoother


class TestSmoothing:
    """Tests for rolling-window averaging."""

    def test_first_update_returns_input(self, document_corners):
        smoother = QuadSmoother()
        np.testing.assert_allclose(smoother.update(document_corners, 0.9), document_corners)

    def test_average_over_window(self, document_corners):
        smoother = QuadSmoother()
        smoother.update(document_corners, 0.8)
        smoothed = smoother.update(document_corners + 10.0, 0.6)

        np.testing.assert_allclose(smoothed, document_corners + 5.0)
        assert smoother.average_confidence == pytest.approx(0.7)

    def test_window_keeps_last_frames(self, document_corners):
        config = DocDetectConfig(smoothing=SmoothingConfig(window_size=2))
        smoother = QuadSmoother(config)
        smoother.update(document_corners, 0.5)
        smoother.update(document_corners + 2.0, 0.5)
        smoothed = smoother.update(document_corners + 4.0, 0.5)

        np.testing.assert_allclose(smoothed, document_corners + 3.0)

    def test_empty_confidence(self):
        assert QuadSmoother().average_confidence == 0.0


class TestStability:
    """Tests for capture stability tracking."""

    def test_stable_after_threshold(self, document_corners):
        smoother = QuadSmoother()
        for _ in range(14):
            smoother.update(document_corners, 0.9)
        assert not smoother.is_stable
        assert smoother.stability_progress == pytest.approx(14 / 15)

        smoother.update(document_corners, 0.9)
        assert smoother.is_stable
        assert smoother.stability_progress == 1.0

    def test_large_jump_restarts_count(self, document_corners):
        smoother = QuadSmoother()
        for _ in range(5):
            smoother.update(document_corners, 0.9)
        smoother.update(document_corners + 200.0, 0.9)

        assert smoother.stability_progress == pytest.approx(1 / 15)
        assert not smoother.is_stable

    def test_miss_resets_stability_but_keeps_average(self, document_corners):
        smoother = QuadSmoother()
        for _ in range(15):
            smoother.update(document_corners, 0.9)

        smoothed = smoother.update(None)

        np.testing.assert_allclose(smoothed, document_corners)
        assert not smoother.is_stable
        assert smoother.stability_progress == 0.0

    def test_window_cleared_after_misses(self, document_corners):
        smoother = QuadSmoother()
        smoother.update(document_corners, 0.9)
        for _ in range(9):
            assert smoother.update(None) is not None

        assert smoother.update(None) is None
        assert smoother.update(None) is None
        assert smoother.average_confidence == 0.0

    def test_clear(self, document_corners):
        smoother = QuadSmoother()
        for _ in range(15):
            smoother.update(document_corners, 0.9)
        smoother.clear()

        assert not smoother.is_stable
        assert smoother.update(None) is None
