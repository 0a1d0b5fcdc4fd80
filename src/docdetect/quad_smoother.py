"""
Temporal smoothing of per-frame detections.

Averages the last few detected quads to reduce jitter and tracks whether the
document has been held still long enough for an automatic capture.
"""

import logging
from collections import deque
from typing import Optional

import numpy as np

from src.docdetect.config_loader import DocDetectConfig
from src.docdetect.geometry import as_corners

logger = logging.getLogger(__name__)


class QuadSmoother:
    """
    Rolling-window corner averaging with stability tracking.

    After miss_threshold consecutive frames without a detection the window
    is cleared. The document is stable after stable_threshold consecutive
    detections whose largest corner movement stays under
    max_corner_drift_fraction of the quad's bounding-box diagonal.

    Not thread-safe.
    """

    def __init__(self, config: Optional[DocDetectConfig] = None):
        cfg = (config or DocDetectConfig.default()).smoothing
        self.window_size = cfg.window_size
        self.miss_threshold = cfg.miss_threshold
        self.stable_threshold = cfg.stable_threshold
        self.max_corner_drift_fraction = cfg.max_corner_drift_fraction

        self._corners: deque = deque(maxlen=self.window_size)
        self._confidences: deque = deque(maxlen=self.window_size)
        self._consecutive_misses = 0
        self._consecutive_stable = 0
        self._previous: Optional[np.ndarray] = None
        self.is_stable = False
        self.stability_progress = 0.0

    @property
    def average_confidence(self) -> float:
        if not self._confidences:
            return 0.0
        return sum(self._confidences) / len(self._confidences)

    def update(self, corners: Optional[np.ndarray], confidence: float = 0.0) -> Optional[np.ndarray]:
        """
        Feed one frame's detection; None for a miss.

        Returns:
            Smoothed corners, or None once the detection is lost.
        """
        if corners is None:
            self._consecutive_misses += 1
            self._reset_stability()
            if self._consecutive_misses >= self.miss_threshold:
                self._corners.clear()
                self._confidences.clear()
                self._previous = None
                return None
            return self._average() if self._corners else None

        self._consecutive_misses = 0
        self._corners.append(as_corners(corners))
        self._confidences.append(confidence)

        smoothed = self._average()
        self._update_stability(smoothed)
        self._previous = smoothed
        return smoothed

    def clear(self) -> None:
        self._corners.clear()
        self._confidences.clear()
        self._consecutive_misses = 0
        self._previous = None
        self._reset_stability()

    def _average(self) -> np.ndarray:
        return np.mean(np.stack(self._corners), axis=0)

    def _reset_stability(self) -> None:
        self._consecutive_stable = 0
        self.stability_progress = 0.0
        self.is_stable = False

    def _update_stability(self, current: np.ndarray) -> None:
        if self._previous is None:
            self._consecutive_stable = 1
            self.stability_progress = self._consecutive_stable / self.stable_threshold
            self.is_stable = False
            return

        extent = current.max(axis=0) - current.min(axis=0)
        diagonal = float(np.hypot(*extent))
        if diagonal < 1.0:
            self._reset_stability()
            return

        drift = float(np.max(np.linalg.norm(current - self._previous, axis=1))) / diagonal
        if drift < self.max_corner_drift_fraction:
            self._consecutive_stable += 1
        else:
            self._consecutive_stable = 1

        self.stability_progress = min(self._consecutive_stable / self.stable_threshold, 1.0)
        self.is_stable = self._consecutive_stable >= self.stable_threshold
        if self.is_stable:
            logger.debug(f"Stable: consecutive={self._consecutive_stable}, drift={drift:.4f}")
