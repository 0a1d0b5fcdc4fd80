"""
Unit tests for cascade module.
"""

import cv2
import numpy as np
import pytest

from src.docdetect.cascade import detect_document_cascade
from src.docdetect.config_loader import CascadeConfig, DocDetectConfig
from src.docdetect.context import DetectionContext
from src.docdetect.types import DetectionOutcome, DetectionSource, PreprocessStrategy


class TestDetectDocumentCascade:
    """Tests for the multi-strategy contour cascade."""

    def test_clear_document_found_by_first_strategy(self, document_image, document_corners, context):
        status = detect_document_cascade(document_image, context)

        assert status.is_found()
        assert status.outcome == DetectionOutcome.FOUND
        assert status.best_strategy == PreprocessStrategy.STANDARD
        assert status.strategies_tried == [PreprocessStrategy.STANDARD]
        assert status.corners.source == DetectionSource.CONTOUR
        assert status.corners.confidence >= 0.65
        np.testing.assert_allclose(status.corners.corners, document_corners, atol=6.0)

    def test_blank_frame_tries_every_strategy(self, blank_image, context):
        status = detect_document_cascade(blank_image, context)

        assert not status.is_found()
        assert status.corners is None
        assert status.best_strategy is None
        assert not status.is_partial_document
        assert len(status.strategies_tried) == len(set(status.strategies_tried))
        assert PreprocessStrategy.STANDARD in status.strategies_tried
        assert PreprocessStrategy.HEAVY_MORPH in status.strategies_tried

    def test_confidence_floor_rejects_detection(self, document_image):
        config = DocDetectConfig(
            cascade=CascadeConfig(min_confidence=1.0, short_circuit_confidence=1.0)
        )
        status = detect_document_cascade(document_image, DetectionContext(config=config))

        assert status.outcome == DetectionOutcome.NOT_FOUND
        assert status.corners is None

    def test_input_not_modified(self, document_image, context):
        original = document_image.copy()
        detect_document_cascade(document_image, context)
        np.testing.assert_array_equal(document_image, original)

    def test_grayscale_input(self, document_image, document_corners, context):
        gray = document_image[:, :, 0].copy()
        status = detect_document_cascade(gray, context)

        assert status.is_found()
        np.testing.assert_allclose(status.corners.corners, document_corners, atol=6.0)

    def test_scene_cache_reused_across_frames(self, document_image, context):
        detect_document_cascade(document_image, context)
        detect_document_cascade(document_image, context)

        assert context.scene_cache.generation == 1

    def test_empty_image_raises(self, context):
        with pytest.raises(ValueError, match="empty"):
            detect_document_cascade(np.zeros((0, 0, 3), dtype=np.uint8), context)

    def test_non_uint8_image_raises(self, document_image, context):
        with pytest.raises(ValueError, match="uint8"):
            detect_document_cascade(document_image.astype(np.float32), context)

    def test_page_crossed_by_grout_line(self, context):
        image = np.full((480, 640, 3), 130, dtype=np.uint8)
        cv2.rectangle(image, (160, 120), (480, 360), (230, 230, 230), -1)
        cv2.line(image, (0, 240), (639, 240), (0, 0, 0), 2)

        status = detect_document_cascade(image, context)

        assert status.outcome == DetectionOutcome.FOUND
        np.testing.assert_allclose(
            status.corners.corners,
            [[160, 120], [480, 120], [480, 360], [160, 360]],
            atol=8.0,
        )
