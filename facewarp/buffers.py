"""
Scratch buffer pool.

Frames are processed one at a time, so per-frame scratch arrays (patch
images, alpha planes) can be allocated once and reused. Buffers are keyed
by (name, shape, dtype); a request with a new shape allocates a new buffer
and keeps it for later frames.
"""

import logging
from typing import Dict, Tuple

import numpy as np
from numpy.typing import DTypeLike, NDArray

logger = logging.getLogger(__name__)


class BufferPool:
    """
    Arena of reusable numpy buffers.

    Example:
        pool = BufferPool()
        alpha = pool.acquire("patch_alpha", (720, 1280), np.float32)

    Buffers returned by acquire() are owned by the pool. Contents are
    undefined unless zero=True; a buffer is only valid until the next
    acquire() with the same key.
    """

    def __init__(self):
        self._buffers: Dict[Tuple[str, Tuple[int, ...], np.dtype], NDArray] = {}
        self.allocations = 0

    def acquire(
        self,
        name: str,
        shape: Tuple[int, ...],
        dtype: DTypeLike = np.uint8,
        zero: bool = False
    ) -> NDArray:
        """
        Get the buffer for (name, shape, dtype), allocating it on first use.

        Args:
            name: Buffer role, e.g. "patch_image"
            shape: Array shape
            dtype: Array dtype
            zero: Clear the buffer before returning it
        """
        key = (name, tuple(int(s) for s in shape), np.dtype(dtype))
        buffer = self._buffers.get(key)
        if buffer is None:
            buffer = np.zeros(key[1], dtype=key[2])
            self._buffers[key] = buffer
            self.allocations += 1
            logger.debug("Allocated %s buffer %s %s", name, key[1], key[2])
        elif zero:
            buffer.fill(0)
        return buffer

    def reserve(self, name: str, shape: Tuple[int, ...], dtype: DTypeLike = np.uint8) -> None:
        """Allocate a buffer ahead of the first frame."""
        self.acquire(name, shape, dtype)

    def clear(self) -> None:
        """Release all buffers."""
        self._buffers.clear()

    def __len__(self) -> int:
        return len(self._buffers)

    @property
    def nbytes(self) -> int:
        return sum(b.nbytes for b in self._buffers.values())
