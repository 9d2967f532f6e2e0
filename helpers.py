# helpers.py
# --------------------------------------------
# Buffer plumbing shared by every stage:
# - real_buffer / complex_buffer : the two concrete sample-buffer kinds
# - shared_len                   : overlapping prefix of an input/output pair
# - Scratch / Ramp               : grow-once work arrays reused across calls
# --------------------------------------------
from __future__ import annotations

from typing import Optional

import numpy as np
from numpy.typing import DTypeLike

_F32 = np.float32
_F64 = np.float64
_C64 = np.complex64

REAL = "real"
COMPLEX = "complex"


def real_buffer(n: int) -> np.ndarray:
    return np.zeros((n,), dtype=_F32)


def complex_buffer(n: int) -> np.ndarray:
    return np.zeros((n,), dtype=_C64)


def buffer_for(kind: Optional[str], n: int) -> np.ndarray:
    if kind == COMPLEX:
        return complex_buffer(n)
    return real_buffer(n)


def shared_len(x: np.ndarray, out: np.ndarray) -> int:
    """Number of samples a stage may touch: the prefix both buffers have."""
    return min(len(x), len(out))


class Scratch:
    """
    Work array that only grows. get(n) hands back a length-n view of the
    backing store; a new array is allocated only when n exceeds anything
    seen before, so a stage driven with a fixed block size allocates once.
    """
    def __init__(self, dtype: DTypeLike = _F64):
        self.dtype = np.dtype(dtype)
        self._buf = np.empty((0,), dtype=self.dtype)

    def get(self, n: int) -> np.ndarray:
        if self._buf.shape[0] < n:
            self._buf = np.empty((n,), dtype=self.dtype)
        return self._buf[:n]


class Ramp:
    """Cached 0, 1, 2, ... index vector (float64) for vectorized per-sample math."""
    def __init__(self):
        self._buf = np.empty((0,), dtype=_F64)

    def get(self, n: int) -> np.ndarray:
        if self._buf.shape[0] < n:
            self._buf = np.arange(n, dtype=_F64)
            self._buf.flags.writeable = False
        return self._buf[:n]
