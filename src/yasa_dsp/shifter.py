from __future__ import annotations

import cmath
import logging
import math
import threading

import numpy as np

from .blocks import Block

LOG = logging.getLogger(__name__)

DEFAULT_RENORMALIZE_INTERVAL = 512


def phase_increment(offset_hz: float, sample_rate: float) -> complex:
    """Unit phasor that rotates a stream down by ``offset_hz`` each sample."""
    return cmath.exp(-1j * 2.0 * math.pi * offset_hz / sample_rate)


class FrequencyShifter(Block):
    """Numerically-controlled oscillator mixing a complex stream by a fixed offset.

    Output sample ``i`` is ``input[i] * phasor[i]`` where ``phasor[0]`` is
    ``1+0j`` and every following phasor is the previous one times the
    increment. A tone at ``f`` leaves the shifter at ``f - offset_hz``.

    The running phasor is forced back to unit magnitude every
    ``renormalize_interval`` samples, counted across calls, so the sequence of
    phasors does not depend on how the stream is split into blocks.

    :meth:`set_offset` may be called from another thread. The new offset is
    held as a pending update and applied at the start of the next block; the
    phase of the oscillator carries over unchanged.
    """

    name = "frequency_shift"
    output_dtype = np.dtype(np.complex64)

    def __init__(
        self,
        offset_hz: float,
        sample_rate: float,
        *,
        renormalize_interval: int = DEFAULT_RENORMALIZE_INTERVAL,
    ):
        super().__init__()
        if sample_rate <= 0:
            raise ValueError("sample_rate must be positive")
        if not math.isfinite(offset_hz):
            raise ValueError("offset_hz must be finite")
        if int(renormalize_interval) != renormalize_interval or renormalize_interval <= 0:
            raise ValueError("renormalize_interval must be a positive integer")
        self.sample_rate = float(sample_rate)
        self.renormalize_interval = int(renormalize_interval)
        self._lock = threading.Lock()
        self._pending_offset: float | None = None
        self._offset_hz = float(offset_hz)
        self._increment = phase_increment(self._offset_hz, self.sample_rate)
        self._phasor = complex(1.0, 0.0)
        self._since_renorm = 0

    @property
    def offset_hz(self) -> float:
        return self._offset_hz

    @property
    def phasor(self) -> complex:
        """Phasor that will multiply the next input sample."""
        return self._phasor

    def set_offset(self, offset_hz: float) -> None:
        """Request a retune; takes effect on the next block boundary."""
        if not math.isfinite(offset_hz):
            raise ValueError("offset_hz must be finite")
        with self._lock:
            self._pending_offset = float(offset_hz)

    def _apply_pending(self) -> None:
        with self._lock:
            pending = self._pending_offset
            self._pending_offset = None
        if pending is None or pending == self._offset_hz:
            return
        LOG.debug("Shifter retuned %.1f Hz -> %.1f Hz.", self._offset_hz, pending)
        self._offset_hz = pending
        self._increment = phase_increment(pending, self.sample_rate)

    def _work(self, samples: np.ndarray) -> tuple[np.ndarray, int]:
        self._apply_pending()
        count = len(samples)
        if count == 0:
            return self.empty_output(), 0
        phasors = self._advance(count)
        mixed = samples.astype(np.complex128) * phasors
        return mixed.astype(np.complex64), count

    def _advance(self, count: int) -> np.ndarray:
        phasors = np.empty(count, dtype=np.complex128)
        increment = self._increment
        interval = self.renormalize_interval
        pos = 0
        while pos < count:
            take = min(count - pos, interval - self._since_renorm)
            segment = np.full(take, increment, dtype=np.complex128)
            segment[0] = self._phasor
            np.cumprod(segment, out=segment)
            phasors[pos : pos + take] = segment
            self._phasor = complex(segment[-1] * increment)
            self._since_renorm += take
            if self._since_renorm >= interval:
                self._phasor /= abs(self._phasor)
                self._since_renorm = 0
            pos += take
        return phasors

    def _reset_state(self) -> None:
        self._apply_pending()
        self._phasor = complex(1.0, 0.0)
        self._since_renorm = 0


__all__ = ["DEFAULT_RENORMALIZE_INTERVAL", "FrequencyShifter", "phase_increment"]
