"""
Multi-frame aspect-ratio estimation.

Accumulates document corner observations over a stabilization window. Each
quad yields a homography to the unit square; for a planar document viewed
by a pinhole camera, the plane-to-image homography is H = K [r1 r2 t] up to
the document size, so the norm ratio of K^-1 h1 and K^-1 h2 is the document
aspect ratio.

Two estimation paths:
1. With intrinsics: per-frame |r1| / |r2|, median over frames.
2. Without intrinsics (Zhang self-calibration): each homography gives two
   linear constraints on the image of the absolute conic B = K^-T K^-1;
   the stacked 2N x 6 system is solved by SVD, K is recovered in closed
   form and path 1 is applied.

Not thread-safe; use one estimator per capture session.
"""

import logging
import math
from typing import Optional

import numpy as np

from src.docdetect.config_loader import DocDetectConfig
from src.docdetect.geometry import UNIT_SQUARE, as_corners, compute_homography
from src.docdetect.types import CameraIntrinsics, MultiFrameEstimate

logger = logging.getLogger(__name__)


def _constraint_row(h: np.ndarray, i: int, j: int) -> np.ndarray:
    """Zhang's v_ij built from homography columns i and j."""
    return np.array(
        [
            h[0, i] * h[0, j],
            h[0, i] * h[1, j] + h[1, i] * h[0, j],
            h[1, i] * h[1, j],
            h[2, i] * h[0, j] + h[0, i] * h[2, j],
            h[2, i] * h[1, j] + h[1, i] * h[2, j],
            h[2, i] * h[2, j],
        ],
        dtype=np.float64,
    )


class MultiFrameAspectEstimator:
    """
    Accumulates per-frame homographies and estimates the document ratio.

    The estimate is cached per intrinsics argument until the next
    add_frame() or reset().

    Example:
        >>> estimator = MultiFrameAspectEstimator()
        >>> for corners in stable_frames:
        ...     estimator.add_frame(corners)
        >>> result = estimator.estimate(intrinsics)
    """

    def __init__(self, config: Optional[DocDetectConfig] = None):
        self.config = (config or DocDetectConfig.default()).multi_frame
        self._homographies: list[np.ndarray] = []
        self._cached: Optional[MultiFrameEstimate] = None
        self._cached_intrinsics: Optional[CameraIntrinsics] = None
        self._cache_valid = False

    @property
    def frame_count(self) -> int:
        return len(self._homographies)

    @property
    def min_frames(self) -> int:
        return self.config.min_frames

    def add_frame(self, corners: np.ndarray) -> bool:
        """
        Add one frame's corners [TL, TR, BR, BL].

        Returns:
            True if the frame was stored, False if its homography is degenerate.

        Raises:
            ValueError: If corners is not 4 points.
        """
        pts = as_corners(corners)
        homography = compute_homography(pts, UNIT_SQUARE)
        if homography is None:
            logger.debug("Skipping frame with degenerate corners")
            return False

        self._homographies.append(homography)
        self._cache_valid = False
        logger.debug(f"Added frame {len(self._homographies)}")
        return True

    def estimate(self, intrinsics: Optional[CameraIntrinsics] = None) -> Optional[MultiFrameEstimate]:
        """
        Estimate the aspect ratio from the accumulated frames.

        Args:
            intrinsics: Camera intrinsics. When None they are recovered by
                self-calibration.

        Returns:
            MultiFrameEstimate, or None with too few frames or a degenerate
            system.
        """
        if len(self._homographies) < self.min_frames:
            logger.debug(f"Insufficient frames: {len(self._homographies)} < {self.min_frames}")
            return None

        if self._cache_valid and self._cached_intrinsics == intrinsics:
            return self._cached

        if intrinsics is not None:
            result = self._estimate_with_intrinsics(intrinsics)
        else:
            result = self._estimate_self_calibrated()

        self._cached = result
        self._cached_intrinsics = intrinsics
        self._cache_valid = True
        return result

    def _plane_to_image(self) -> list[np.ndarray]:
        homographies = []
        for homography in self._homographies:
            try:
                homographies.append(np.linalg.inv(homography))
            except np.linalg.LinAlgError:
                logger.debug("Skipping non-invertible homography")
        return homographies

    def _estimate_with_intrinsics(self, intrinsics: CameraIntrinsics) -> Optional[MultiFrameEstimate]:
        try:
            k_inv = np.linalg.inv(intrinsics.matrix())
        except np.linalg.LinAlgError as e:
            logger.warning(f"Singular camera matrix: {e}")
            return None

        ratios = []
        for homography in self._plane_to_image():
            m = k_inv @ homography
            norm_r1 = float(np.linalg.norm(m[:, 0]))
            norm_r2 = float(np.linalg.norm(m[:, 1]))
            if norm_r1 > 0.0 and norm_r2 > 0.0:
                ratios.append(min(norm_r1, norm_r2) / max(norm_r1, norm_r2))

        if not ratios:
            return None

        # Median for robustness against outlier frames
        median = float(np.median(ratios))
        variance = float(np.mean([(r - median) ** 2 for r in ratios]))
        confidence = min(max(1.0 / (1.0 + variance * self.config.variance_scale), 0.0), 1.0)

        logger.debug(
            f"Intrinsics estimate: ratio={median:.4f}, confidence={confidence:.2f}, "
            f"frames={len(ratios)}, variance={variance:.6f}"
        )
        return MultiFrameEstimate(
            estimated_ratio=min(max(median, self.config.min_ratio), 1.0),
            confidence=confidence,
            frame_count=len(ratios),
        )

    def _estimate_self_calibrated(self) -> Optional[MultiFrameEstimate]:
        intrinsics = self.recover_intrinsics()
        if intrinsics is None:
            return None
        return self._estimate_with_intrinsics(intrinsics)

    def recover_intrinsics(self) -> Optional[CameraIntrinsics]:
        """
        Closed-form intrinsics from the accumulated homographies (Zhang).

        Returns:
            Recovered intrinsics, or None when the system is degenerate.
        """
        homographies = self._plane_to_image()
        if len(homographies) < self.min_frames:
            return None

        rows = []
        for h in homographies:
            rows.append(_constraint_row(h, 0, 1))
            rows.append(_constraint_row(h, 0, 0) - _constraint_row(h, 1, 1))

        try:
            _, _, vt = np.linalg.svd(np.vstack(rows))
        except np.linalg.LinAlgError as e:
            logger.debug(f"Self-calibration: SVD failed: {e}")
            return None

        b = vt[-1]
        eps = self.config.degenerate_epsilon

        # The unit null vector has B11 ~ 1/fx^2; rescale so the checks below are focal-length independent
        scale = max(abs(b[0]), abs(b[2]))
        if scale < eps:
            logger.debug("Self-calibration: degenerate conic (zero diagonal)")
            return None
        b11, b12, b22, b13, b23, b33 = b / scale

        denom = b11 * b22 - b12 * b12
        if abs(denom) < eps or abs(b11) < eps:
            logger.debug(f"Self-calibration: degenerate conic (denom={denom:.3e}, B11={b11:.3e})")
            return None

        v0 = (b12 * b13 - b11 * b23) / denom
        lam = b33 - (b13 * b13 + v0 * (b12 * b13 - b11 * b23)) / b11
        if lam / b11 <= 0.0 or lam * b11 / denom <= 0.0:
            logger.debug(
                f"Self-calibration: negative under sqrt (lambda={lam:.6f}, B11={b11:.6f}, denom={denom:.6f})"
            )
            return None

        fx = math.sqrt(lam / b11)
        fy = math.sqrt(lam * b11 / denom)
        skew = -b12 * fx * fx * fy / lam
        u0 = skew * v0 / fy - b13 * fx * fx / lam

        logger.debug(f"Self-calibration: fx={fx:.1f}, fy={fy:.1f}, cx={u0:.1f}, cy={v0:.1f}")
        return CameraIntrinsics(fx=fx, fy=fy, cx=u0, cy=v0)

    def reset(self) -> None:
        """Clear all accumulated frames. Call when tracking is lost."""
        count = len(self._homographies)
        self._homographies.clear()
        self._cached = None
        self._cached_intrinsics = None
        self._cache_valid = False
        logger.debug(f"Reset (cleared {count} homographies)")

    def release(self) -> None:
        """Free accumulated data on teardown."""
        self._homographies = []
        self._cached = None
        self._cached_intrinsics = None
        self._cache_valid = False
