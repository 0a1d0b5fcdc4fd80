"""
Integration tests for the DocumentDetector pipeline.
"""

import numpy as np
import pytest

from src.docdetect.config_loader import CascadeConfig, DocDetectConfig, RefinementConfig
from src.docdetect.processor import DocumentDetector, detect_document
from src.docdetect.types import (
    DetectionOutcome,
    DetectionSource,
    DetectionStatus,
    DocumentResult,
)

LINE_SOURCES = {DetectionSource.LSD_TIER1, DetectionSource.LSD_TIER2, DetectionSource.LSD_TIER3}


class TestDocumentDetector:
    """Test suite for DocumentDetector class."""

    def test_detects_document(self, config, document_image, document_corners):
        detector = DocumentDetector(config=config)
        result = detector.process(document_image)

        assert result.is_found()
        assert not result.used_fallback
        assert result.corners.source == DetectionSource.CONTOUR
        assert np.abs(result.corners.corners - document_corners).max() <= 6.0
        assert result.aspect_ratio is not None
        assert result.rectified is None
        assert result.get_summary().startswith("Document found via contour")

    def test_rectified_output(self, config, document_image):
        result = DocumentDetector(config=config).process(document_image, rectify=True)

        height, width, channels = result.rectified.shape
        assert channels == 3
        assert abs(width - 355) <= 5
        assert abs(height - 300) <= 5
        assert result.rectified[height // 2, width // 2].tolist() == [230, 230, 230]

    def test_blank_frame(self, config, blank_image):
        result = DocumentDetector(config=config).process(blank_image)

        assert not result.is_found()
        assert result.aspect_ratio is None
        assert result.get_summary() == "No document found"

    def test_line_fallback(self, document_image):
        config = DocDetectConfig(
            cascade=CascadeConfig(min_confidence=1.0, short_circuit_confidence=1.0)
        )
        result = DocumentDetector(config=config).process(document_image)

        assert result.status.outcome == DetectionOutcome.NOT_FOUND
        assert result.is_found()
        assert result.used_fallback
        assert result.corners.source in LINE_SOURCES

    def test_refinement_disabled_keeps_integer_corners(self, document_image):
        config = DocDetectConfig(refinement=RefinementConfig(enabled=False))
        result = DocumentDetector(config=config).process(document_image)

        corners = result.corners.corners
        np.testing.assert_array_equal(corners, np.round(corners))

    def test_input_not_modified(self, config, document_image):
        original = document_image.copy()
        DocumentDetector(config=config).process(document_image, rectify=True)
        np.testing.assert_array_equal(document_image, original)

    def test_empty_image(self, config):
        with pytest.raises(ValueError, match="empty"):
            DocumentDetector(config=config).process(np.zeros((0, 0, 3), dtype=np.uint8))

    def test_sixteen_bit_image_rejected(self, config, document_image):
        deep = document_image.astype(np.uint16) * 257
        with pytest.raises(ValueError, match="uint8"):
            DocumentDetector(config=config).process(deep)

    def test_release(self, config, document_image):
        detector = DocumentDetector(config=config)
        detector.process(document_image)
        detector.release()
        assert detector.process(document_image).is_found()


class TestDetectDocument:
    """Tests for the one-shot convenience function."""

    def test_convenience_function(self, config, document_image):
        result = detect_document(document_image, config=config)
        assert result.is_found()

    def test_loads_default_config_file(self, document_image):
        assert detect_document(document_image).is_found()


class TestDocumentResult:
    """Tests for result summaries."""

    def test_partial_document_summary(self):
        result = DocumentResult(
            status=DetectionStatus(DetectionOutcome.NOT_FOUND, None, is_partial_document=True),
            corners=None,
        )

        assert not result.is_found()
        assert result.get_summary() == "No document found (document extends past frame)"
