# =============================
# filters.py
# Node contracts (Source / Processor / Sink), the processor registry,
# and the stateful filters whose history must survive buffer boundaries.
# =============================
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional, Sequence, Tuple, Type, TypeVar, Union

import numpy as np
from scipy import signal

from helpers import REAL, Scratch, shared_len

log = logging.getLogger("dspkit.filters")

_F64 = np.float64


class ConfigurationError(ValueError):
    """A stage was asked to exist with parameters it cannot honour."""


# ---------- Node contracts ----------
class Source:
    """Produces samples on demand.
    write(output) -> count written; fewer than len(output) only at end of stream.
    """
    output_kind: Optional[str] = REAL

    def write(self, output: np.ndarray) -> int:
        raise NotImplementedError


class Processor:
    """Base class for streamable stages.
    process(x, out) -> None, over min(len(x), len(out)) samples; the rest of
    `out` is left untouched. input_kind/output_kind of None means "either"
    (output then follows the input kind).
    """
    input_kind: Optional[str] = REAL
    output_kind: Optional[str] = REAL

    def process(self, x: np.ndarray, out: np.ndarray) -> None:
        raise NotImplementedError

    def reset(self) -> None:
        return None

    @classmethod
    def from_params(cls, params: Dict[str, Any]) -> "Processor":
        return cls(**params)


class Sink:
    """Consumes a buffer for its side effect. consume(x) -> None"""
    input_kind: Optional[str] = REAL

    def consume(self, x: np.ndarray) -> None:
        raise NotImplementedError

    def close(self) -> None:
        return None


# ---------- Registry ----------
P = TypeVar("P", bound=Type[Processor])
_REGISTRY: Dict[str, Tuple[str, Type[Processor]]] = {}


def register_node(name: str, *, help: str) -> Callable[[P], P]:
    key = name.strip().lower()
    def _decorator(cls: P) -> P:
        if key in _REGISTRY:
            raise ValueError(f"Duplicate node name: {name}")
        _REGISTRY[key] = (help, cls)
        return cls
    return _decorator


def available_nodes() -> Dict[str, str]:
    return {k: v[0] for k, v in sorted(_REGISTRY.items())}


def build_node(name: str, **kwargs: Any) -> Processor:
    key = name.strip().lower()
    if key not in _REGISTRY:
        raise KeyError(f"Unknown node '{name}'. Available: {', '.join(available_nodes().keys()) or '(none)'}")
    _help, cls = _REGISTRY[key]
    node = cls.from_params(kwargs)
    log.debug("Built %s with %s", key, kwargs)
    return node


# ---------- Utilities ----------
def _coeffs(value: Union[str, Sequence[float], None], name: str) -> np.ndarray:
    """Accepts [b0, b1, b2] or the CLI form "b0,b1,b2"."""
    if value is None:
        raise ConfigurationError(f"Missing coefficient array '{name}'")
    if isinstance(value, str):
        try:
            value = [float(v) for v in value.split(",") if v.strip()]
        except ValueError as e:
            raise ConfigurationError(f"Bad coefficient list {name}={value!r}") from e
    arr = np.asarray(value, dtype=_F64).ravel()
    if arr.shape[0] != 3:
        raise ConfigurationError(f"Coefficient array '{name}' must have exactly 3 entries, got {arr.shape[0]}")
    return arr


# ---------- Filters ----------
@register_node("gain", help="Multiply by a constant (real or complex streams). Params: value (1.0)")
class Gain(Processor):
    input_kind = None
    output_kind = None

    def __init__(self, value: float = 1.0):
        self.value = float(value)

    def process(self, x: np.ndarray, out: np.ndarray) -> None:
        n = shared_len(x, out)
        np.multiply(x[:n], self.value, out=out[:n])


@register_node(
    "biquad",
    help="Direct-form biquad IIR. Params: b (b0,b1,b2), a (a0,a1,a2); or rc + t for a bilinear RC low-pass",
)
class Biquad(Processor):
    """
    y[n] = (b0*x[n] + b1*x[n-1] + b2*x[n-2] - a1*y[n-1] - a2*y[n-2]) / a0

    The recursion runs through scipy.signal.lfilter. Its zi vector is the
    filter history and is handed back in on the next call, so processing A
    then B gives exactly the output of processing A ++ B.
    """
    def __init__(self, b: Sequence[float], a: Sequence[float]):
        self.b = _coeffs(b, "b")
        self.a = _coeffs(a, "a")
        if self.a[0] == 0.0:
            raise ConfigurationError("Biquad a[0] must be non-zero")
        self._zi = np.zeros((2,), dtype=_F64)

    @classmethod
    def rc_lowpass(cls, rc: float, t_sample: float) -> "Biquad":
        """Bilinear transform of a first-order RC low-pass sampled every t_sample seconds."""
        if t_sample <= 0.0:
            raise ConfigurationError("t_sample must be positive")
        k = 2.0 * rc / t_sample
        return cls([1.0, 1.0, 0.0], [1.0 + k, 1.0 - k, 0.0])

    @classmethod
    def from_params(cls, params: Dict[str, Any]) -> "Biquad":
        if "rc" in params:
            return cls.rc_lowpass(float(params["rc"]), float(params.get("t", 1.0)))
        return cls(params.get("b"), params.get("a"))

    def reset(self) -> None:
        self._zi[:] = 0.0

    def process(self, x: np.ndarray, out: np.ndarray) -> None:
        n = shared_len(x, out)
        if n == 0:
            return
        y, self._zi = signal.lfilter(self.b, self.a, x[:n], zi=self._zi)
        out[:n] = y


@register_node("leaky", help="Leaky integrator / exponential smoother. Params: alpha (0.1), initial (0)")
class LeakyIntegrator(Processor):
    """
    y[n] = alpha * x[n] + (1 - alpha) * y[n-1],  y[-1] = initial
    The only state is the last output, carried as a float64 scalar.
    """
    def __init__(self, alpha: float = 0.1, initial: float = 0.0):
        alpha = float(alpha)
        if not 0.0 <= alpha <= 1.0:
            raise ConfigurationError(f"alpha must be within [0, 1], got {alpha}")
        self.alpha = alpha
        self.initial = float(initial)
        self.last_value = self.initial
        self._b = np.array([alpha], dtype=_F64)
        self._a = np.array([1.0, alpha - 1.0], dtype=_F64)
        self._zi = np.zeros((1,), dtype=_F64)

    def next_value(self, v: float) -> float:
        self.last_value = self.alpha * float(v) + (1.0 - self.alpha) * self.last_value
        return self.last_value

    def reset(self) -> None:
        self.last_value = self.initial

    def process(self, x: np.ndarray, out: np.ndarray) -> None:
        n = shared_len(x, out)
        if n == 0:
            return
        # transposed direct form: the single delay holds (1 - alpha) * y[-1]
        self._zi[0] = (1.0 - self.alpha) * self.last_value
        y, _ = signal.lfilter(self._b, self._a, x[:n], zi=self._zi)
        out[:n] = y
        self.last_value = float(y[-1])


@register_node("autocorr", help="Windowed, mean-removed autocorrelation normalized to lag 0. Params: window_size")
class AutoCorrelation(Processor):
    """
    ac[i] = (1/W) * sum_{j<W} (x[j] - mu) * (x[j+i] - mu),  i < min(L - W, len(out))
    then ac /= ac[0]. Computed fresh over each input buffer; no history.
    Only those computed lags are normalized; out[count:] is left untouched.

    A constant input has zero autocovariance at every lag; the computed lags
    are then written as 0.0 rather than dividing by zero.
    """
    def __init__(self, window_size: int):
        window_size = int(window_size)
        if window_size < 1:
            raise ConfigurationError(f"window_size must be >= 1, got {window_size}")
        self.window_size = window_size
        self._centered = Scratch(_F64)
        self._ac = Scratch(_F64)

    def process(self, x: np.ndarray, out: np.ndarray) -> None:
        L = len(x)
        W = self.window_size
        count = min(L - W, len(out))
        if count <= 0:
            return
        xc = self._centered.get(L)
        np.subtract(x, np.mean(x, dtype=_F64), out=xc)
        head = xc[:W]
        ac = self._ac.get(count)
        for i in range(count):
            ac[i] = np.dot(head, xc[i:i + W])
        ac /= W
        s0 = ac[0]
        if s0 <= 0.0:
            out[:count] = 0.0
            return
        np.divide(ac, s0, out=out[:count])
