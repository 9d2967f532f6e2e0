# windows.py
# --------------------------------------------
# Window tables for spectral analysis. A table depends only on (kind, width),
# is computed once at construction, and is read-only afterwards.
#
#   rectangular  1
#   triangular   linear ramp 0 -> 1 -> 0
#   welch        1 - ((i - m/2) / (m/2))^2
#   sine         sin(pi i / m)
#   hann         sin(pi i / m)^2
#   hamming      a0 - (1 - a0) cos(2 pi i / m),               a0 = 25/46
#   blackman     a0 - a1 cos(2 pi i / m) + a2 cos(4 pi i / m)  (exact Blackman)
#
# with m = N - 1, taken as 1 when N == 1.
# --------------------------------------------
from __future__ import annotations

from enum import Enum
from typing import Union

import numpy as np
from numpy.typing import NDArray

from filters import ConfigurationError, Processor, register_node

_F32 = np.float32


class WindowKind(str, Enum):
    RECTANGULAR = "rectangular"
    TRIANGULAR = "triangular"
    WELCH = "welch"
    SINE = "sine"
    HANN = "hann"
    HAMMING = "hamming"
    BLACKMAN = "blackman"


_HAMMING_A0 = 25.0 / 46.0
_BLACKMAN_A = (7938.0 / 18608.0, 9240.0 / 18608.0, 1430.0 / 18608.0)


def window_kind(kind: Union[str, WindowKind]) -> WindowKind:
    if isinstance(kind, WindowKind):
        return kind
    try:
        return WindowKind(str(kind).strip().lower())
    except ValueError:
        names = ", ".join(k.value for k in WindowKind)
        raise ConfigurationError(f"Unknown window '{kind}'. Available: {names}") from None


def make_window(kind: Union[str, WindowKind], width: int) -> NDArray[_F32]:
    kind = window_kind(kind)
    width = int(width)
    if width < 1:
        raise ConfigurationError(f"Window width must be >= 1, got {width}")

    i = np.arange(width, dtype=np.float64)
    m = float(width - 1) if width > 1 else 1.0

    if kind is WindowKind.RECTANGULAR:
        w = np.ones(width, dtype=np.float64)
    elif kind is WindowKind.TRIANGULAR:
        y = i * (2.0 / m)
        w = np.where(i < width / 2.0, y, 2.0 - y)
    elif kind is WindowKind.WELCH:
        half = m / 2.0
        w = 1.0 - ((i - half) / half) ** 2
    elif kind is WindowKind.SINE:
        w = np.sin(np.pi * i / m)
    elif kind is WindowKind.HANN:
        w = np.sin(np.pi * i / m) ** 2
    elif kind is WindowKind.HAMMING:
        w = _HAMMING_A0 - (1.0 - _HAMMING_A0) * np.cos(2.0 * np.pi * i / m)
    else:
        a0, a1, a2 = _BLACKMAN_A
        w = a0 - a1 * np.cos(2.0 * np.pi * i / m) + a2 * np.cos(4.0 * np.pi * i / m)

    table = w.astype(_F32)
    table.flags.writeable = False
    return table


@register_node("window", help="Taper by a window table. Params: width, kind (hann)")
class Window(Processor):
    """Element-wise multiply by a precomputed table; works on real or complex buffers."""
    input_kind = None
    output_kind = None

    def __init__(self, width: int, kind: Union[str, WindowKind] = WindowKind.HANN):
        self.kind = window_kind(kind)
        self.samples = make_window(self.kind, width)

    def __len__(self) -> int:
        return int(self.samples.shape[0])

    def as_array(self) -> NDArray[_F32]:
        return self.samples

    def process(self, x: np.ndarray, out: np.ndarray) -> None:
        n = min(len(x), len(out), len(self.samples))
        np.multiply(x[:n], self.samples[:n], out=out[:n])
