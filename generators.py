# generators.py
# --------------------------------------------
# Test-signal sources. One Generator class over a closed set of kinds,
# dispatched by a single switch in write():
#   sine, square, sawtooth, triangle  periodic, phase kept in cycles [0, 1)
#   noise                             Gaussian, explicit numpy Generator (seedable)
#   chirp                             linear sweep f0 -> f1 over sweep_time, then holds
#   impulse, step                     1 at n == 0 / 1 from n >= step_pos
# All kinds are infinite: write() always fills the whole buffer.
# --------------------------------------------
from __future__ import annotations

import math
from enum import Enum
from typing import Any, Optional, Union

import numpy as np

from filters import ConfigurationError, Source
from helpers import REAL, Ramp, Scratch

_F64 = np.float64
_TWO_PI = 2.0 * math.pi


class GeneratorKind(str, Enum):
    SINE = "sine"
    SQUARE = "square"
    SAWTOOTH = "sawtooth"
    TRIANGLE = "triangle"
    NOISE = "noise"
    CHIRP = "chirp"
    IMPULSE = "impulse"
    STEP = "step"


_PERIODIC = (GeneratorKind.SINE, GeneratorKind.SQUARE, GeneratorKind.SAWTOOTH, GeneratorKind.TRIANGLE)


def generator_kind(kind: Union[str, GeneratorKind]) -> GeneratorKind:
    if isinstance(kind, GeneratorKind):
        return kind
    try:
        return GeneratorKind(str(kind).strip().lower())
    except ValueError:
        names = "|".join(k.value for k in GeneratorKind)
        raise ConfigurationError(f"Unknown generator '{kind}'. Use one of {names}") from None


class Generator(Source):
    output_kind = REAL

    def __init__(
        self,
        kind: Union[str, GeneratorKind],
        sample_rate: float,
        freq: float = 440.0,
        amplitude: float = 1.0,
        *,
        end_freq: Optional[float] = None,
        sweep_time: float = 1.0,
        std: float = 1.0,
        step_pos: int = 0,
        rng: Optional[np.random.Generator] = None,
        seed: Optional[int] = None,
    ):
        self.kind = generator_kind(kind)
        self.sample_rate = float(sample_rate)
        if self.sample_rate <= 0.0:
            raise ConfigurationError(f"sample_rate must be positive, got {sample_rate}")
        self.freq = float(freq)
        self.amplitude = float(amplitude)
        self.end_freq = float(end_freq) if end_freq is not None else self.freq
        self.sweep_time = float(sweep_time)
        if self.kind is GeneratorKind.CHIRP and self.sweep_time <= 0.0:
            raise ConfigurationError("chirp sweep_time must be positive")
        self.std = float(std)
        self.step_pos = int(step_pos)
        self.rng = rng if rng is not None else np.random.default_rng(seed)

        self._inc = self.freq / self.sample_rate
        # first sample index whose time lies past the sweep; the chirp holds there
        self._chirp_stop = int(math.floor(self.sweep_time * self.sample_rate)) + 1
        self._phase = 0.0
        self._pos = 0
        self._ramp = Ramp()
        self._work = Scratch(_F64)
        self._chirp = Scratch(_F64)
        self._mask = Scratch(np.bool_)

    @classmethod
    def from_name(cls, name: str, sample_rate: float, **params: Any) -> "Generator":
        return cls(generator_kind(name), sample_rate, **params)

    def reset(self) -> None:
        self._phase = 0.0
        self._pos = 0

    def _phases(self, n: int) -> np.ndarray:
        ph = self._work.get(n)
        np.multiply(self._ramp.get(n), self._inc, out=ph)
        ph += self._phase
        np.mod(ph, 1.0, out=ph)
        self._phase = (self._phase + n * self._inc) % 1.0
        return ph

    def write(self, output: np.ndarray) -> int:
        n = len(output)
        if n == 0:
            return 0
        kind = self.kind

        if kind in _PERIODIC:
            ph = self._phases(n)
            if kind is GeneratorKind.SINE:
                ph *= _TWO_PI
                np.sin(ph, out=output)
            elif kind is GeneratorKind.SQUARE:
                mask = self._mask.get(n)
                np.greater_equal(ph, 0.5, out=mask)
                np.multiply(mask, -2.0, out=output)
                output += 1.0
            elif kind is GeneratorKind.SAWTOOTH:
                np.multiply(ph, 2.0, out=output)
                output -= 1.0
            else:
                ph -= 0.5
                np.abs(ph, out=ph)
                np.multiply(ph, -4.0, out=output)
                output += 1.0
            if self.amplitude != 1.0:
                output *= self.amplitude

        elif kind is GeneratorKind.NOISE:
            w = self._work.get(n)
            self.rng.standard_normal(out=w)
            np.multiply(w, self.std * self.amplitude, out=output)

        elif kind is GeneratorKind.CHIRP:
            t = self._work.get(n)
            np.add(self._ramp.get(n), self._pos, out=t)
            np.minimum(t, self._chirp_stop, out=t)
            t /= self.sample_rate
            c = (self.end_freq - self.freq) / self.sweep_time
            # phase(t) = (c/2 * t + f0) * t
            ph = self._chirp.get(n)
            np.multiply(t, 0.5 * c, out=ph)
            ph += self.freq
            ph *= t
            ph *= _TWO_PI
            np.sin(ph, out=output)
            if self.amplitude != 1.0:
                output *= self.amplitude

        elif kind is GeneratorKind.IMPULSE:
            output[:] = 0.0
            if self._pos == 0:
                output[0] = 1.0

        else:
            output[:] = 1.0
            k = min(max(self.step_pos - self._pos, 0), n)
            output[:k] = 0.0

        self._pos += n
        return n
