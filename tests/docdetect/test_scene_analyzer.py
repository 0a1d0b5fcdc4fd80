"""
Unit tests for scene_analyzer module.
"""

import numpy as np
import pytest

from src.docdetect.scene_analyzer import (
    SceneCache,
    analyze_scene,
    select_strategies,
    to_gray,
)
from src.docdetect.types import PreprocessStrategy as S


def _noise_image(mean: float, stddev: float, channels: int = 3) -> np.ndarray:
    rng = np.random.default_rng(7)
    shape = (120, 160, channels) if channels > 1 else (120, 160)
    values = rng.normal(mean, stddev, size=shape)
    return np.clip(values, 0, 255).astype(np.uint8)


class TestToGray:
    """Tests for to_gray conversion."""

    def test_bgr_input(self, document_image):
        gray = to_gray(document_image)
        assert gray.shape == (480, 640)
        assert gray.dtype == np.uint8

    def test_bgra_input(self):
        image = np.full((10, 12, 4), 90, dtype=np.uint8)
        assert to_gray(image).shape == (10, 12)

    def test_grayscale_input_copied(self, rectangle_gray):
        gray = to_gray(rectangle_gray)
        gray[0, 0] = 255
        assert rectangle_gray[0, 0] == 40

    def test_empty_image_raises(self):
        with pytest.raises(ValueError, match="empty"):
            to_gray(np.zeros((0, 0), dtype=np.uint8))

    def test_unsupported_channels_raise(self):
        with pytest.raises(ValueError, match="channel count"):
            to_gray(np.zeros((4, 4, 2), dtype=np.uint8))


class TestSelectStrategies:
    """Tests for strategy ordering by scene classification."""

    def test_normal_color_scene(self):
        assert select_strategies(False, False, False, 3) == (
            S.STANDARD,
            S.CLAHE_ENHANCED,
            S.SATURATION_CHANNEL,
            S.BILATERAL,
            S.HEAVY_MORPH,
        )

    def test_normal_grayscale_scene_skips_saturation(self):
        strategies = select_strategies(False, False, False, 1)
        assert S.SATURATION_CHANNEL not in strategies
        assert strategies[0] == S.STANDARD

    def test_low_light_puts_clahe_first(self):
        strategies = select_strategies(True, False, False, 3)
        assert strategies[:3] == (S.CLAHE_ENHANCED, S.DOG, S.STANDARD)
        assert strategies.count(S.CLAHE_ENHANCED) == 1

    def test_low_contrast_adds_gradient_magnitude(self):
        strategies = select_strategies(False, True, False, 3)
        assert strategies[:4] == (S.CLAHE_ENHANCED, S.DOG, S.STANDARD, S.GRADIENT_MAGNITUDE)

    def test_white_on_white_order(self):
        strategies = select_strategies(False, True, True, 3)
        assert strategies == (
            S.DOG,
            S.DIRECTIONAL_GRADIENT,
            S.GRADIENT_MAGNITUDE,
            S.LAB_CLAHE,
            S.CLAHE_ENHANCED,
            S.MULTICHANNEL_FUSION,
            S.ADAPTIVE_THRESHOLD,
        )

    def test_every_order_is_duplicate_free(self):
        for flags in [(a, b, c) for a in (0, 1) for b in (0, 1) for c in (0, 1)]:
            for channels in (1, 3):
                strategies = select_strategies(*map(bool, flags), channels)
                assert len(strategies) == len(set(strategies))


class TestAnalyzeScene:
    """Tests for analyze_scene classification and caching."""

    def test_dark_scene_is_low_light(self):
        analysis = analyze_scene(_noise_image(40, 50))
        assert analysis.is_low_light
        assert not analysis.is_low_differentiation
        assert analysis.strategies[0] == S.CLAHE_ENHANCED

    def test_flat_bright_scene_is_white_on_white(self):
        analysis = analyze_scene(_noise_image(220, 5))
        assert analysis.is_low_differentiation
        assert analysis.is_low_contrast
        assert analysis.strategies[0] == S.DOG

    def test_contrasty_scene_is_normal(self, document_image):
        analysis = analyze_scene(document_image)
        assert not analysis.is_low_light
        assert not analysis.is_low_contrast
        assert analysis.strategies[0] == S.STANDARD
        assert analysis.gray is not None
        assert analysis.gray.shape == document_image.shape[:2]

    def test_cache_serves_analysis_without_gray(self, document_image):
        cache = SceneCache(max_frames=2)
        first = analyze_scene(document_image, cache=cache)
        second = analyze_scene(_noise_image(220, 5), cache=cache)

        assert first.gray is not None
        assert second.gray is None
        assert second.strategies == first.strategies
        assert cache.generation == 1

    def test_cache_expires_after_max_frames(self, document_image):
        cache = SceneCache(max_frames=1)
        analyze_scene(document_image, cache=cache)
        analyze_scene(document_image, cache=cache)
        refreshed = analyze_scene(_noise_image(220, 5), cache=cache)

        assert refreshed.is_low_differentiation
        assert cache.generation == 2

    def test_invalidate_forces_recompute(self, document_image):
        cache = SceneCache(max_frames=10)
        analyze_scene(document_image, cache=cache)
        cache.invalidate()

        fresh = analyze_scene(_noise_image(220, 5), cache=cache)
        assert fresh.gray is not None
        assert fresh.is_low_differentiation
