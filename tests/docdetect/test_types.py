"""
Unit tests for types module.
"""

import numpy as np
import pytest

from src.docdetect.types import CameraIntrinsics, DetectionSource, DocumentCorners


class TestDocumentCorners:
    """Tests for DocumentCorners construction checks."""

    def test_valid_corners(self, document_corners):
        corners = DocumentCorners(document_corners.tolist(), 0.8, 3.5, DetectionSource.LSD_TIER2)

        assert corners.corners.dtype == np.float64
        assert corners.corners.shape == (4, 2)
        assert corners.with_elapsed(9.0).elapsed_ms == 9.0

    @pytest.mark.parametrize("confidence", [-0.1, 1.5, 7.5])
    def test_confidence_out_of_range(self, document_corners, confidence):
        with pytest.raises(ValueError, match="Confidence"):
            DocumentCorners(document_corners, confidence)

    def test_confidence_bounds_accepted(self, document_corners):
        assert DocumentCorners(document_corners, 0.0).confidence == 0.0
        assert DocumentCorners(document_corners, 1.0).confidence == 1.0

    def test_self_intersecting_quad_rejected(self, document_corners):
        bowtie = document_corners[[0, 2, 1, 3]]
        with pytest.raises(ValueError, match="convex"):
            DocumentCorners(bowtie, 0.5)

    def test_wrong_shape_rejected(self):
        with pytest.raises(ValueError, match="shape"):
            DocumentCorners(np.zeros((3, 2)), 0.5)

    def test_non_finite_rejected(self, document_corners):
        document_corners[1, 0] = np.nan
        with pytest.raises(ValueError, match="finite"):
            DocumentCorners(document_corners, 0.5)


class TestCameraIntrinsics:
    """Tests for CameraIntrinsics."""

    def test_matrix(self):
        k = CameraIntrinsics(fx=800.0, fy=810.0, cx=320.0, cy=240.0).matrix()

        np.testing.assert_array_equal(
            k, [[800.0, 0.0, 320.0], [0.0, 810.0, 240.0], [0.0, 0.0, 1.0]]
        )
