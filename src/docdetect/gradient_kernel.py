"""
Directional-gradient accumulation kernels.

The DIRECTIONAL_GRADIENT strategy sums Sobel magnitudes along short tilted
lines: |Gy| along near-horizontal lines and |Gx| along near-vertical ones.
Coherent edges add up while texture and noise cancel out, which is a local
restricted Radon transform.

Two interchangeable kernels implement the same numeric contract:

- ``ReferenceDirectionalKernel``: numpy shifted-slice sums, always available.
- ``OpenCVDirectionalKernel``: ``cv2.filter2D`` with sparse line kernels,
  available when OpenCV runs with its optimized code paths.

Both return an int32 response where every pixel inside the kernel margin is
0 and every other pixel holds max over angles of the H and V line sums.
"""

import logging
import math
from dataclasses import dataclass
from typing import Protocol, Sequence

import cv2
import numpy as np

from src.docdetect.geometry import round_half_up

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OffsetTable:
    """
    Pixel offsets (dx, dy) of every tap along every tilted line.

    Attributes:
        horizontal: One (kernel_length, 2) int array per tilt angle, for
            accumulating |Gy| along near-horizontal lines.
        vertical: Same layout for accumulating |Gx| along near-vertical lines.
        margin_x: Largest |dx| over both tables.
        margin_y: Largest |dy| over both tables.
    """

    horizontal: tuple[np.ndarray, ...]
    vertical: tuple[np.ndarray, ...]
    margin_x: int
    margin_y: int


def build_offset_table(
    tilt_angles_deg: Sequence[float] = (-10.0, -5.0, 0.0, 5.0, 10.0),
    kernel_length: int = 21,
) -> OffsetTable:
    """
    Build tap offsets for tilted horizontal and vertical lines.

    For tap k the line parameter is t = k - kernel_length // 2. Horizontal
    lines use (round(t cos a), round(t sin a)); vertical lines use
    (round(-t sin a), round(t cos a)).
    """
    half = kernel_length // 2
    horizontal = []
    vertical = []
    margin_x = margin_y = 0

    for angle in tilt_angles_deg:
        rad = math.radians(angle)
        cos_a, sin_a = math.cos(rad), math.sin(rad)
        h_taps = np.zeros((kernel_length, 2), dtype=np.int32)
        v_taps = np.zeros((kernel_length, 2), dtype=np.int32)
        for k in range(kernel_length):
            t = float(k - half)
            h_taps[k] = (round_half_up(t * cos_a), round_half_up(t * sin_a))
            v_taps[k] = (round_half_up(-t * sin_a), round_half_up(t * cos_a))
        horizontal.append(h_taps)
        vertical.append(v_taps)
        margin_x = max(margin_x, int(np.abs(h_taps[:, 0]).max()), int(np.abs(v_taps[:, 0]).max()))
        margin_y = max(margin_y, int(np.abs(h_taps[:, 1]).max()), int(np.abs(v_taps[:, 1]).max()))

    return OffsetTable(
        horizontal=tuple(horizontal),
        vertical=tuple(vertical),
        margin_x=margin_x,
        margin_y=margin_y,
    )


class DirectionalKernel(Protocol):
    """Accumulates directional line sums of absolute Sobel gradients."""

    name: str

    def is_available(self) -> bool:
        ...

    def accumulate(
        self, abs_gy: np.ndarray, abs_gx: np.ndarray, offsets: OffsetTable
    ) -> np.ndarray:
        ...


class ReferenceDirectionalKernel:
    """Pure numpy kernel: one shifted slice add per tap."""

    name = "reference"

    def is_available(self) -> bool:
        return True

    def accumulate(
        self, abs_gy: np.ndarray, abs_gx: np.ndarray, offsets: OffsetTable
    ) -> np.ndarray:
        rows, cols = abs_gy.shape
        my, mx = offsets.margin_y, offsets.margin_x
        response = np.zeros((rows, cols), dtype=np.int32)
        if rows <= 2 * my or cols <= 2 * mx:
            return response

        gy = abs_gy.astype(np.int32)
        gx = abs_gx.astype(np.int32)
        inner = response[my:rows - my, mx:cols - mx]

        for taps, source in ((offsets.horizontal, gy), (offsets.vertical, gx)):
            for line in taps:
                acc = np.zeros_like(inner)
                for dx, dy in line:
                    acc += source[my + dy:rows - my + dy, mx + dx:cols - mx + dx]
                np.maximum(inner, acc, out=inner)

        return response


class OpenCVDirectionalKernel:
    """Kernel built on cv2.filter2D with one sparse line kernel per angle."""

    name = "opencv"

    def is_available(self) -> bool:
        return bool(cv2.useOptimized())

    def accumulate(
        self, abs_gy: np.ndarray, abs_gx: np.ndarray, offsets: OffsetTable
    ) -> np.ndarray:
        rows, cols = abs_gy.shape
        my, mx = offsets.margin_y, offsets.margin_x
        response = np.zeros((rows, cols), dtype=np.int32)
        if rows <= 2 * my or cols <= 2 * mx:
            return response

        gy = abs_gy.astype(np.float32)
        gx = abs_gx.astype(np.float32)
        best = np.zeros((rows, cols), dtype=np.float32)

        for taps, source in ((offsets.horizontal, gy), (offsets.vertical, gx)):
            for line in taps:
                kernel = _line_kernel(line, mx, my)
                summed = cv2.filter2D(
                    source, cv2.CV_32F, kernel, borderType=cv2.BORDER_CONSTANT
                )
                np.maximum(best, summed, out=best)

        # Line sums of 8-bit values are exact in float32.
        inner = np.rint(best[my:rows - my, mx:cols - mx]).astype(np.int32)
        response[my:rows - my, mx:cols - mx] = inner
        return response


def _line_kernel(line: np.ndarray, margin_x: int, margin_y: int) -> np.ndarray:
    """Sparse correlation kernel with a 1 at every (dx, dy) tap."""
    kernel = np.zeros((2 * margin_y + 1, 2 * margin_x + 1), dtype=np.float32)
    np.add.at(kernel, (line[:, 1] + margin_y, line[:, 0] + margin_x), 1.0)
    return kernel


def select_kernel(prefer_accelerated: bool = True) -> DirectionalKernel:
    """
    Pick the accumulation kernel once, at context construction.

    The OpenCV kernel is used when requested and available; otherwise the
    numpy reference kernel.
    """
    if prefer_accelerated:
        accelerated = OpenCVDirectionalKernel()
        if accelerated.is_available():
            logger.debug("Directional kernel: opencv")
            return accelerated
        logger.debug("OpenCV optimizations disabled, using reference kernel")
    return ReferenceDirectionalKernel()
