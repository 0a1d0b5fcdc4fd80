"""
Unit tests for preprocessing module.
"""

import numpy as np
import pytest

from src.docdetect.preprocessing import PREPROCESSORS, histogram_percentile, preprocess
from src.docdetect.types import PreprocessStrategy


class TestHistogramPercentile:
    """Tests for histogram_percentile."""

    def test_uniform_ramp(self):
        ramp = np.arange(256, dtype=np.uint8).repeat(4)
        assert histogram_percentile(ramp, 0.5) == 127
        assert histogram_percentile(ramp, 0.95) == 242

    def test_constant_image(self):
        flat = np.full((10, 10), 77, dtype=np.uint8)
        assert histogram_percentile(flat, 0.9) == 77


class TestPreprocess:
    """Tests for the strategy dispatcher and individual strategies."""

    def test_every_strategy_registered(self):
        assert set(PREPROCESSORS) == set(PreprocessStrategy)

    @pytest.mark.parametrize("strategy", list(PreprocessStrategy))
    def test_output_shape_and_dtype(self, strategy, document_image, context):
        result = preprocess(document_image, strategy, context)

        assert result.shape == document_image.shape[:2]
        assert result.dtype == np.uint8

    @pytest.mark.parametrize(
        "strategy", [s for s in PreprocessStrategy if s.is_binary_output]
    )
    def test_binary_strategies_emit_edge_maps(self, strategy, document_image, context):
        result = preprocess(document_image, strategy, context)

        assert set(np.unique(result)).issubset({0, 255})
        assert result.max() == 255

    @pytest.mark.parametrize("strategy", list(PreprocessStrategy))
    def test_input_not_modified(self, strategy, document_image, context):
        original = document_image.copy()
        preprocess(document_image, strategy, context)

        np.testing.assert_array_equal(document_image, original)

    @pytest.mark.parametrize("strategy", list(PreprocessStrategy))
    def test_grayscale_input_supported(self, strategy, rectangle_gray, context):
        result = preprocess(rectangle_gray, strategy, context)
        assert result.shape == rectangle_gray.shape

    def test_bgra_input_supported(self, document_image, context):
        bgra = np.dstack([document_image, np.full(document_image.shape[:2], 255, np.uint8)])
        for strategy in (
            PreprocessStrategy.SATURATION_CHANNEL,
            PreprocessStrategy.LAB_CLAHE,
            PreprocessStrategy.MULTICHANNEL_FUSION,
        ):
            assert preprocess(bgra, strategy, context).shape == bgra.shape[:2]

    def test_dog_of_flat_image_is_zero(self, blank_image, context):
        result = preprocess(blank_image, PreprocessStrategy.DOG, context)
        assert not result.any()

    def test_standard_uses_precomputed_gray(self, document_image, context):
        gray = np.zeros(document_image.shape[:2], dtype=np.uint8)
        result = preprocess(document_image, PreprocessStrategy.STANDARD, context, gray=gray)
        assert not result.any()

    def test_directional_gradient_returns_pool_buffer(self, rectangle_gray, context):
        preprocess(rectangle_gray, PreprocessStrategy.DIRECTIONAL_GRADIENT, context)
        preprocess(rectangle_gray, PreprocessStrategy.DIRECTIONAL_GRADIENT, context)

        assert context.pool.size == 1
        assert context.pool.total_reuses == 1

    def test_directional_gradient_output_is_binary(self, rectangle_gray, context):
        result = preprocess(rectangle_gray, PreprocessStrategy.DIRECTIONAL_GRADIENT, context)

        assert result.shape == rectangle_gray.shape
        assert set(np.unique(result)) <= {0, 255}
        assert result.any()
        assert context.pool.size == 1
