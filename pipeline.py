# pipeline.py
# --------------------------------------------
# Source -> Processor -> ... -> Sink wiring. Not a scheduler: the caller
# (a file loop, an audio callback, a test) drives it one block at a time.
# Every intermediate buffer is allocated here, once, at assembly time.
# --------------------------------------------
from __future__ import annotations

import logging
from typing import List, Optional, Sequence

import numpy as np

from filters import ConfigurationError, Processor, Sink, Source
from helpers import REAL, buffer_for

log = logging.getLogger("dspkit.pipeline")


class Pipeline:
    """
    Parameters
    ----------
    source:
        Where each block comes from.
    processors:
        Applied in order; stage i reads buffer i and writes buffer i + 1.
    sink:
        Optional consumer of the final buffer.
    block_size:
        Samples requested from the source per step.

    Assembly fails with ConfigurationError if a stage expects real input
    where the upstream stage produces complex samples (or the reverse).
    """

    def __init__(
        self,
        source: Source,
        processors: Sequence[Processor] = (),
        sink: Optional[Sink] = None,
        block_size: int = 1024,
    ):
        block_size = int(block_size)
        if block_size < 1:
            raise ConfigurationError(f"block_size must be >= 1, got {block_size}")
        self.source = source
        self.processors: List[Processor] = list(processors)
        self.sink = sink
        self.block_size = block_size
        self.blocks = 0

        kind = source.output_kind or REAL
        self._buffers: List[np.ndarray] = [buffer_for(kind, block_size)]
        for i, stage in enumerate(self.processors):
            if stage.input_kind is not None and stage.input_kind != kind:
                raise ConfigurationError(
                    f"Stage {i} ({type(stage).__name__}) expects {stage.input_kind} input "
                    f"but receives {kind} samples"
                )
            kind = stage.output_kind or kind
            self._buffers.append(buffer_for(kind, block_size))
        if sink is not None and sink.input_kind is not None and sink.input_kind != kind:
            raise ConfigurationError(f"Sink {type(sink).__name__} expects {sink.input_kind} input but receives {kind} samples")
        self.output_kind = kind
        log.debug("Pipeline: %s -> [%s] -> %s, block=%d",
                  type(source).__name__,
                  ", ".join(type(p).__name__ for p in self.processors),
                  type(sink).__name__ if sink is not None else "-",
                  block_size)

    @property
    def output(self) -> np.ndarray:
        """Last stage's buffer; valid until the next step()."""
        return self._buffers[-1]

    def step(self) -> int:
        count = self.source.write(self._buffers[0])
        if count <= 0:
            return 0
        bufs = self._buffers
        for i, stage in enumerate(self.processors):
            stage.process(bufs[i][:count], bufs[i + 1][:count])
        if self.sink is not None:
            self.sink.consume(bufs[-1][:count])
        self.blocks += 1
        return count

    def run(self, max_blocks: Optional[int] = None) -> int:
        """Step until the source comes up short (or max_blocks); returns samples processed.

        With an infinite source and no max_blocks this never returns.
        """
        total = 0
        done = 0
        while max_blocks is None or done < max_blocks:
            count = self.step()
            total += count
            done += 1
            if count < self.block_size:
                break
        return total
