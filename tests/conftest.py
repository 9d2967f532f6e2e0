"""Shared fixtures: in-memory sources/sinks and guarded output buffers."""

import numpy as np
import pytest

from filters import Sink, Source


class ArraySource(Source):
    """Finite source over a fixed array; short count at the end."""

    def __init__(self, data, output_kind="real"):
        self.data = np.asarray(data)
        self.output_kind = output_kind
        self.pos = 0

    def write(self, output):
        count = min(len(output), len(self.data) - self.pos)
        output[:count] = self.data[self.pos:self.pos + count]
        self.pos += count
        return count


class CollectSink(Sink):
    """Keeps a copy of everything consumed."""

    def __init__(self, input_kind="real"):
        self.input_kind = input_kind
        self.blocks = []

    def consume(self, x):
        self.blocks.append(np.array(x, copy=True))

    @property
    def samples(self):
        if not self.blocks:
            return np.zeros(0)
        return np.concatenate(self.blocks)


@pytest.fixture
def array_source():
    return ArraySource


@pytest.fixture
def collect_sink():
    return CollectSink


@pytest.fixture
def guarded():
    """
    Factory for an output view with sentinel samples on both sides:
    guarded(n, dtype) -> (backing, view) where view = backing[2:2 + n].
    """
    def _make(n, dtype=np.float32, fill=-7.0):
        backing = np.full(n + 4, fill, dtype=dtype)
        return backing, backing[2:2 + n]
    return _make


@pytest.fixture
def rng():
    return np.random.default_rng(1234)
