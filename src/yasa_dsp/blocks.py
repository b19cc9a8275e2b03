from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable, Iterator, Sequence

import numpy as np

LOG = logging.getLogger(__name__)


def readonly_view(samples: np.ndarray | Sequence[complex] | Sequence[float]) -> np.ndarray:
    """Return a non-writeable view of ``samples`` (scalars become length-1 arrays).

    Items are counted along the first axis, so a 2-D array is a batch of
    fixed-size frames.
    """
    view = np.atleast_1d(np.asarray(samples)).view()
    view.flags.writeable = False
    return view


class Block(ABC):
    """Streaming stage driven by an external scheduler.

    Each call to :meth:`process` hands the block a read-only view of up to N
    items. The block returns whatever output it could produce and how many of
    the offered items it consumed. Anything it needs to remember between calls
    (oscillator phase, delay line, previous sample) is copied into its own
    state; the input view must not be retained.
    """

    name: str = "block"
    output_dtype: np.dtype = np.dtype(np.complex64)

    def __init__(self) -> None:
        self._finished = False

    def process(self, samples: np.ndarray) -> tuple[np.ndarray, int]:
        if self._finished:
            raise RuntimeError(f"{self.name}: process() called after finish().")
        view = readonly_view(samples)
        output, consumed = self._work(view)
        if not 0 <= consumed <= len(view):
            raise RuntimeError(
                f"{self.name}: consumed {consumed} of {len(view)} offered items."
            )
        return output, consumed

    def finish(self) -> np.ndarray:
        """Signal end-of-stream, drain internal buffers and mark the block finished."""
        if self._finished:
            return self.empty_output()
        tail = self._drain()
        self._finished = True
        LOG.debug("%s finished (%d drained items).", self.name, len(tail))
        return tail

    def reset(self) -> None:
        """Return to stream-start state."""
        self._finished = False
        self._reset_state()

    @property
    def finished(self) -> bool:
        return self._finished

    def empty_output(self) -> np.ndarray:
        return np.empty(0, dtype=self.output_dtype)

    @abstractmethod
    def _work(self, samples: np.ndarray) -> tuple[np.ndarray, int]:
        """Consume a read-only view and return ``(output, consumed)``."""

    def _drain(self) -> np.ndarray:
        return self.empty_output()

    def _reset_state(self) -> None:
        return


class BlockChain:
    """Synchronous driver that pushes sample blocks through a list of stages.

    Stages that consume less than they are offered keep the remainder in a
    per-stage carry buffer, which is prepended to their next input.
    """

    def __init__(self, blocks: Sequence[Block]):
        if not blocks:
            raise ValueError("BlockChain needs at least one block.")
        self.blocks: list[Block] = list(blocks)
        self._pending: list[np.ndarray | None] = [None] * len(self.blocks)
        self._finished = False

    def process(self, samples: np.ndarray) -> np.ndarray:
        if self._finished:
            raise RuntimeError("BlockChain.process() called after finish().")
        data = np.atleast_1d(np.asarray(samples))
        for index, block in enumerate(self.blocks):
            data = self._feed(index, block, data)
        return data

    def finish(self) -> np.ndarray:
        """Propagate end-of-stream through every stage in order."""
        if self._finished:
            return self.blocks[-1].empty_output()
        data: np.ndarray | None = None
        for index, block in enumerate(self.blocks):
            parts: list[np.ndarray] = []
            if data is not None and len(data):
                parts.append(self._feed(index, block, data))
            leftover = self._pending[index]
            if leftover is not None and len(leftover):
                LOG.debug(
                    "%s: %d unconsumed items left at end-of-stream.",
                    block.name,
                    len(leftover),
                )
            self._pending[index] = None
            parts.append(block.finish())
            data = _concat(parts, block)
        self._finished = True
        assert data is not None
        return data

    def run(self, source: Iterable[np.ndarray]) -> Iterator[np.ndarray]:
        """Drive the chain from ``source`` and finish it when the source is exhausted."""
        for samples in source:
            out = self.process(samples)
            if len(out):
                yield out
        tail = self.finish()
        if len(tail):
            yield tail

    def reset(self) -> None:
        for block in self.blocks:
            block.reset()
        self._pending = [None] * len(self.blocks)
        self._finished = False

    @property
    def finished(self) -> bool:
        return self._finished

    def _feed(self, index: int, block: Block, data: np.ndarray) -> np.ndarray:
        pending = self._pending[index]
        if pending is not None and len(pending):
            data = np.concatenate((pending, data))
        outputs: list[np.ndarray] = []
        cursor = 0
        while cursor < len(data):
            output, consumed = block.process(data[cursor:])
            outputs.append(output)
            if consumed == 0:
                break
            cursor += consumed
        remainder = data[cursor:]
        self._pending[index] = remainder.copy() if len(remainder) else None
        return _concat(outputs, block)


def _concat(parts: list[np.ndarray], block: Block) -> np.ndarray:
    parts = [part for part in parts if len(part)]
    if not parts:
        return block.empty_output()
    if len(parts) == 1:
        return parts[0]
    return np.concatenate(parts)


__all__ = ["Block", "BlockChain", "readonly_view"]
