"""
Per-caller detection context.

Bundles everything that would otherwise be module-level state: configuration,
the scene cache, the scratch pool, the selected directional kernel with its
offset table, and shared morphology structuring elements. Build one per
camera session or worker thread and pass it to every detection call.
"""

import logging
from pathlib import Path
from typing import Optional

import cv2
import numpy as np

from src.docdetect.config_loader import DocDetectConfig, load_config
from src.docdetect.gradient_kernel import (
    DirectionalKernel,
    OffsetTable,
    build_offset_table,
    select_kernel,
)
from src.docdetect.scene_analyzer import SceneCache
from src.docdetect.scratch_pool import ScratchPool

logger = logging.getLogger(__name__)


class DetectionContext:
    """
    Explicit owner of detection state.

    Not thread-safe; never share one context between threads.

    Example:
        >>> context = DetectionContext(DocDetectConfig.default())
        >>> status = detect_document_cascade(frame, context)
        >>> context.scene_cache.invalidate()  # before a one-shot capture
    """

    def __init__(
        self,
        config: Optional[DocDetectConfig] = None,
        config_path: Optional[Path] = None,
    ):
        if config is not None:
            self.config = config
        else:
            self.config = load_config(config_path) if config_path else load_config()

        self.scene_cache = SceneCache(self.config.scene.cache_frames)
        self.pool = ScratchPool(self.config.pool.capacity)
        self.kernel: DirectionalKernel = select_kernel(self.config.kernel.prefer_accelerated)
        self.offsets: OffsetTable = build_offset_table(
            self.config.kernel.tilt_angles_deg, self.config.kernel.kernel_length
        )
        self.morph_kernel_3x3: np.ndarray = cv2.getStructuringElement(cv2.MORPH_RECT, (3, 3))
        self.morph_kernel_5x5: np.ndarray = cv2.getStructuringElement(cv2.MORPH_RECT, (5, 5))

        logger.debug(
            f"DetectionContext ready (kernel={self.kernel.name}, "
            f"cache_frames={self.config.scene.cache_frames}, pool={self.pool.capacity})"
        )

    def release(self) -> None:
        """Drop cached analysis and pooled buffers."""
        self.scene_cache.invalidate()
        self.pool.clear()
