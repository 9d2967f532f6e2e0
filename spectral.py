# spectral.py
# --------------------------------------------
# Windowed FFT stages and spectrum interpretation.
#
# The FFT primitive is scipy.fft, used unnormalized in both directions:
#   forward: norm="backward" (no scaling)
#   inverse: norm="forward"  (no scaling)
# so ifft(fft(x)) == N * x. Callers that need a round-trip amplitude match
# scale by 1/N themselves (e.g. a Gain(1/N) stage).
#
# Bin i of an N-point spectrum sits at (i mod N) * sr / N; bins at or above
# N/2 are the negative-frequency images and fold back to N - (i mod N).
# --------------------------------------------
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Union

import numpy as np
import scipy.fft as sfft
from numpy.typing import NDArray

from filters import ConfigurationError, Processor, register_node
from helpers import COMPLEX, shared_len
from windows import WindowKind, make_window, window_kind

log = logging.getLogger("dspkit.spectral")

_F32 = np.float32
_C64 = np.complex64


def _check_size(size: int) -> int:
    size = int(size)
    if size < 1:
        raise ConfigurationError(f"FFT size must be >= 1, got {size}")
    return size


@register_node("fft", help="Windowed forward FFT (unnormalized). Params: size, window (rectangular)")
class ForwardFFT(Processor):
    """
    Forward transform over a fixed, pre-planned size.

    Accepts a real or complex input. The first min(len(x), size) samples are
    windowed into an internal complex work buffer (zero-padded past that),
    transformed, and the first min(size, len(out)) bins are written to out.
    """
    input_kind = None
    output_kind = COMPLEX

    def __init__(self, size: int, window: Union[str, WindowKind] = WindowKind.RECTANGULAR):
        self.size = _check_size(size)
        self.window_kind = window_kind(window)
        self.window = make_window(self.window_kind, self.size)
        self._work = np.zeros((self.size,), dtype=_C64)
        self._spectrum = np.zeros((self.size,), dtype=_C64)
        log.debug("ForwardFFT size=%d window=%s", self.size, self.window_kind.value)

    def process(self, x: np.ndarray, out: np.ndarray) -> None:
        n = min(len(x), self.size)
        work = self._work
        np.multiply(x[:n], self.window[:n], out=work[:n])
        work[n:] = 0.0
        bins = sfft.fft(work, norm="backward")
        m = min(self.size, len(out))
        out[:m] = bins[:m]

    def process_real(self, frame: np.ndarray, sample_rate: float) -> "Spectrum":
        """Transform `frame` into the stage-owned buffer and tag it with sample_rate.

        The returned Spectrum views that buffer; it is overwritten by the next call.
        """
        self.process(frame, self._spectrum)
        return Spectrum(self._spectrum, sample_rate)


@register_node("ifft", help="Inverse FFT (unnormalized: result is N times the time signal). Params: size")
class InverseFFT(Processor):
    input_kind = COMPLEX
    output_kind = COMPLEX

    def __init__(self, size: int):
        self.size = _check_size(size)
        self._work = np.zeros((self.size,), dtype=_C64)

    def process(self, x: np.ndarray, out: np.ndarray) -> None:
        n = min(len(x), self.size)
        work = self._work
        work[:n] = x[:n]
        work[n:] = 0.0
        samples = sfft.ifft(work, norm="forward")
        m = min(self.size, len(out))
        out[:m] = samples[:m]


# ---------- Interpretation ----------
def bin_frequency(i: int, n: int, sample_rate: float) -> float:
    """Physical (folded, non-negative) frequency of bin i in an n-point spectrum."""
    if n < 1:
        raise ValueError("Spectrum length must be >= 1")
    k = int(i) % n
    if k >= n / 2.0:
        k = n - k
    return k * float(sample_rate) / n


def argmax_bin(buffer: np.ndarray) -> int:
    """Index of the largest magnitude; the first one wins on ties."""
    if len(buffer) == 0:
        raise ValueError("argmax of an empty buffer")
    return int(np.argmax(np.abs(buffer)))


def dominant_frequency(buffer: np.ndarray, sample_rate: float) -> float:
    return bin_frequency(argmax_bin(buffer), len(buffer), sample_rate)


def dbfs(sample: complex, reference: float) -> float:
    """20 log10(|sample| / reference). A silent sample is -inf; reference must be > 0."""
    if reference <= 0.0:
        raise ValueError(f"dBFS reference must be positive, got {reference}")
    with np.errstate(divide="ignore"):
        return float(20.0 * np.log10(np.abs(sample) / reference))


@dataclass
class Spectrum:
    """Complex frequency-domain buffer tagged with the sample rate that produced it."""

    data: NDArray[_C64]
    sample_rate: float

    def __len__(self) -> int:
        return len(self.data)

    def item_freq(self, i: int) -> float:
        n = len(self.data)
        return (int(i) % n) * float(self.sample_rate) / n

    def folded_freq(self, i: int) -> float:
        return bin_frequency(i, len(self.data), self.sample_rate)

    def freqs(self) -> NDArray[np.float64]:
        n = len(self.data)
        k = np.arange(n)
        k = np.where(k >= n / 2.0, n - k, k)
        return k * (float(self.sample_rate) / n)

    def argmax(self) -> int:
        return argmax_bin(self.data)

    def dominant_frequency(self) -> float:
        return dominant_frequency(self.data, self.sample_rate)

    def magnitude_db(self, out: np.ndarray, reference: float = 1.0) -> None:
        """Write per-bin dBFS into a real buffer (shared-prefix rule applies)."""
        if reference <= 0.0:
            raise ValueError(f"dBFS reference must be positive, got {reference}")
        n = shared_len(self.data, out)
        view = out[:n]
        np.abs(self.data[:n], out=view)
        view /= reference
        with np.errstate(divide="ignore"):
            np.log10(view, out=view)
        view *= 20.0

    def convolve(self, other: "Spectrum") -> "Spectrum":
        """Product of two spectra, i.e. circular convolution of their time signals."""
        if other.sample_rate != self.sample_rate:
            raise ValueError(f"Sample rate mismatch: {self.sample_rate} != {other.sample_rate}")
        n = min(len(self.data), len(other.data))
        return Spectrum(self.data[:n] * other.data[:n], self.sample_rate)

    def peak(self, reference: Optional[float] = None) -> "tuple[float, float]":
        """(dominant frequency, its level in dBFS). Reference defaults to the sum of magnitudes."""
        i = self.argmax()
        if reference is None:
            reference = float(np.sum(np.abs(self.data), dtype=np.float64))
        if reference <= 0.0:
            return self.folded_freq(i), float("-inf")
        return self.folded_freq(i), dbfs(self.data[i], reference)
