# convert.py
# --------------------------------------------
# Real <-> complex stages and the small complex-stream processors:
# - r2c       : x -> (x, 0)
# - c2r       : |z| (magnitude) or Re(z)
# - freqshift : mix with a running complex oscillator (phase carried across buffers)
# - fmdemod   : quadrature detector, arg(z[n] * conj(z[n-1]))
# --------------------------------------------
from __future__ import annotations

import math

import numpy as np

from filters import ConfigurationError, Processor, register_node
from helpers import COMPLEX, REAL, Ramp, Scratch, shared_len

_F64 = np.float64
_C64 = np.complex64
_TWO_PI = 2.0 * math.pi


@register_node("r2c", help="Real -> complex with zero imaginary part")
class RealToComplex(Processor):
    input_kind = REAL
    output_kind = COMPLEX

    def process(self, x: np.ndarray, out: np.ndarray) -> None:
        n = shared_len(x, out)
        np.copyto(out[:n], x[:n])


@register_node("c2r", help="Complex -> real. Params: mode (magnitude|real)")
class ComplexToReal(Processor):
    input_kind = COMPLEX
    output_kind = REAL
    MODES = ("magnitude", "real")

    def __init__(self, mode: str = "magnitude"):
        mode = str(mode).strip().lower()
        if mode not in self.MODES:
            raise ConfigurationError(f"Unknown complex->real mode '{mode}'. Use one of {self.MODES}")
        self.mode = mode

    def process(self, x: np.ndarray, out: np.ndarray) -> None:
        n = shared_len(x, out)
        if self.mode == "magnitude":
            np.abs(x[:n], out=out[:n])
        else:
            np.copyto(out[:n], x[:n].real)


@register_node("freqshift", help="Shift a complex stream by offset_hz. Params: offset_hz, sample_rate")
class FrequencyShift(Processor):
    """
    out[n] = x[n] * exp(j 2 pi f n / sr)
    The oscillator phase is kept in cycles, wrapped to [0, 1), and continues
    where the previous buffer stopped.
    """
    input_kind = COMPLEX
    output_kind = COMPLEX

    def __init__(self, offset_hz: float, sample_rate: float):
        sample_rate = float(sample_rate)
        if sample_rate <= 0.0:
            raise ConfigurationError("sample_rate must be positive")
        self.offset_hz = float(offset_hz)
        self.sample_rate = sample_rate
        self._inc = self.offset_hz / sample_rate
        self._phase = 0.0
        self._ramp = Ramp()
        self._ph = Scratch(_F64)
        self._osc = Scratch(_C64)

    def reset(self) -> None:
        self._phase = 0.0

    def process(self, x: np.ndarray, out: np.ndarray) -> None:
        n = shared_len(x, out)
        if n == 0:
            return
        ph = self._ph.get(n)
        np.multiply(self._ramp.get(n), self._inc, out=ph)
        ph += self._phase
        ph *= _TWO_PI
        osc = self._osc.get(n)
        np.cos(ph, out=osc.real)
        np.sin(ph, out=osc.imag)
        np.multiply(x[:n], osc, out=out[:n])
        self._phase = (self._phase + n * self._inc) % 1.0


@register_node("fmdemod", help="FM quadrature detector: phase step between consecutive complex samples")
class QuadratureDetector(Processor):
    input_kind = COMPLEX
    output_kind = REAL

    def __init__(self):
        self._last = 0j
        self._prev = Scratch(_C64)

    def reset(self) -> None:
        self._last = 0j

    def process(self, x: np.ndarray, out: np.ndarray) -> None:
        n = shared_len(x, out)
        if n == 0:
            return
        prev = self._prev.get(n)
        prev[0] = self._last
        prev[1:] = x[:n - 1]
        np.conjugate(prev, out=prev)
        np.multiply(x[:n], prev, out=prev)
        np.arctan2(prev.imag, prev.real, out=out[:n])
        self._last = complex(x[n - 1])
