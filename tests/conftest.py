"""
Pytest Configuration and Shared Fixtures

This file contains pytest configuration and fixtures that are available
to all test modules.
"""

import cv2
import numpy as np
import pytest

from src.docdetect.config_loader import DocDetectConfig
from src.docdetect.context import DetectionContext

# Slightly rotated document in a 640x480 frame, ordered [TL, TR, BR, BL]
DOCUMENT_CORNERS = np.array(
    [[150, 100], [480, 90], [495, 390], [140, 380]], dtype=np.float64
)


@pytest.fixture
def config():
    """Fixture providing the built-in default configuration."""
    return DocDetectConfig.default()


@pytest.fixture
def context(config):
    """Fixture providing a fresh detection context."""
    return DetectionContext(config=config)


@pytest.fixture
def document_corners():
    return DOCUMENT_CORNERS.copy()


@pytest.fixture
def document_image():
    """Fixture providing a bright document on a dark background (BGR)."""
    image = np.full((480, 640, 3), 40, dtype=np.uint8)
    cv2.fillPoly(image, [DOCUMENT_CORNERS.astype(np.int32)], (230, 230, 230))
    return image


@pytest.fixture
def blank_image():
    """Fixture providing a uniform gray frame with nothing to detect."""
    return np.full((480, 640, 3), 128, dtype=np.uint8)


@pytest.fixture
def rectangle_gray():
    """Fixture providing an axis-aligned 320x240 bright rectangle on a dark gray frame."""
    gray = np.full((480, 640), 40, dtype=np.uint8)
    gray[120:360, 160:480] = 200
    return gray


@pytest.fixture
def sample_quadrilateral_points():
    """Fixture providing sample 4-corner points in shuffled order."""
    return np.array(
        [
            [300, 150],  # Top-right area
            [100, 200],  # Top-left area
            [320, 400],  # Bottom-right area
            [80, 380],  # Bottom-left area
        ],
        dtype=np.float32,
    )
