"""
Scratch-buffer pool for intermediate images in the detection hot path.

The pool is an arena of numpy buffers addressed by index. ``acquire`` hands
out a ``PoolHandle`` (slot index + generation tag) together with the buffer;
``release`` puts the slot back on a LIFO free list and bumps its generation,
so a stale handle can never reach a buffer that has been handed out again.

Not thread-safe: each detection thread owns its own pool.
"""

import logging
from typing import Optional

import numpy as np

from src.docdetect.types import PoolHandle

logger = logging.getLogger(__name__)


class ScratchPool:
    """
    Bounded arena of reusable numpy buffers.

    Args:
        capacity: Maximum number of idle buffers kept for reuse. Buffers
            released beyond this are dropped.

    Example:
        >>> pool = ScratchPool(capacity=4)
        >>> handle, buf = pool.acquire((480, 640), np.uint8)
        >>> buf[:] = 0
        >>> pool.release(handle)
    """

    def __init__(self, capacity: int = 8):
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.capacity = capacity
        self._buffers: list[Optional[np.ndarray]] = []
        self._generations: list[int] = []
        self._in_use: list[bool] = []
        self._free: list[int] = []
        self._retired: list[int] = []
        self._acquires = 0
        self._reuses = 0

    def acquire(self, shape: tuple[int, ...], dtype=np.uint8) -> tuple[PoolHandle, np.ndarray]:
        """
        Check out a buffer of the given shape and dtype.

        The most recently released slot is reused first. Its contents are
        undefined; the caller must write before reading.

        Returns:
            (handle, buffer) pair. The handle must be passed to release().
        """
        self._acquires += 1
        dtype = np.dtype(dtype)

        if self._free:
            index = self._free.pop()
            buffer = self._buffers[index]
            if buffer is None or buffer.shape != tuple(shape) or buffer.dtype != dtype:
                buffer = np.empty(shape, dtype=dtype)
                self._buffers[index] = buffer
            else:
                self._reuses += 1
        elif self._retired:
            index = self._retired.pop()
            buffer = np.empty(shape, dtype=dtype)
            self._buffers[index] = buffer
        else:
            index = len(self._buffers)
            buffer = np.empty(shape, dtype=dtype)
            self._buffers.append(buffer)
            self._generations.append(0)
            self._in_use.append(False)

        self._in_use[index] = True
        return PoolHandle(index=index, generation=self._generations[index]), buffer

    def get(self, handle: PoolHandle) -> np.ndarray:
        """Return the buffer for a live handle."""
        self._check_handle(handle)
        return self._buffers[handle.index]

    def release(self, handle: PoolHandle) -> None:
        """
        Return a buffer to the pool.

        Raises:
            ValueError: If the handle is unknown, stale or already released.
        """
        self._check_handle(handle)
        index = handle.index
        self._in_use[index] = False
        self._generations[index] += 1

        if len(self._free) < self.capacity:
            self._free.append(index)
        else:
            # Pool full: drop the buffer; the slot index is handed out again by acquire()
            self._buffers[index] = None
            self._retired.append(index)

    def clear(self) -> None:
        """Drop all idle buffers and reset counters. Live handles become stale."""
        self._buffers = []
        self._generations = []
        self._in_use = []
        self._free = []
        self._retired = []
        self._acquires = 0
        self._reuses = 0
        logger.debug("ScratchPool cleared")

    def _check_handle(self, handle: PoolHandle) -> None:
        if not 0 <= handle.index < len(self._buffers):
            raise ValueError(f"Unknown pool handle index {handle.index}")
        if self._generations[handle.index] != handle.generation:
            raise ValueError(
                f"Stale pool handle: generation {handle.generation}, "
                f"slot is at {self._generations[handle.index]}"
            )
        if not self._in_use[handle.index]:
            raise ValueError(f"Pool handle {handle.index} is not checked out")

    @property
    def size(self) -> int:
        """Number of idle buffers available for reuse."""
        return len(self._free)

    @property
    def slot_count(self) -> int:
        """Number of slots ever allocated; bounded by the peak of live checkouts."""
        return len(self._buffers)

    @property
    def total_acquires(self) -> int:
        return self._acquires

    @property
    def total_reuses(self) -> int:
        return self._reuses
