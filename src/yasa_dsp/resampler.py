from __future__ import annotations

import logging
import math

import numpy as np

from .blocks import Block
from .firdes import multirate_taps, reduce_ratio

LOG = logging.getLogger(__name__)

# Outputs computed per vectorized pass; bounds the (outputs x taps-per-phase) gather.
_OUTPUT_CHUNK = 8192


class RationalResampler(Block):
    """Polyphase resampler changing the rate by ``interp/decim``.

    Equivalent to inserting ``interp - 1`` zeros between input samples,
    filtering with ``taps`` and keeping every ``decim``-th sample, but only the
    filter phases that land on kept samples are evaluated.

    Output ``m`` sits at upsampled index ``m * decim``; it uses input samples
    ``q, q-1, ...`` with ``q = m * decim // interp`` weighted by taps of phase
    ``m * decim % interp``. The last ``taps_per_phase - 1`` inputs are kept as
    a delay line (zeros at stream start), so output is independent of how the
    input is split. After ``N`` inputs exactly ``ceil(N * interp / decim)``
    outputs have been produced.
    """

    name = "rational_resampler"

    def __init__(
        self,
        interp: int,
        decim: int,
        taps: np.ndarray | None = None,
        *,
        complex_input: bool = True,
    ):
        super().__init__()
        requested = (interp, decim)
        self.interp, self.decim = reduce_ratio(interp, decim)
        if (self.interp, self.decim) != tuple(requested):
            LOG.debug(
                "Reduced resampling ratio %d/%d to %d/%d.",
                requested[0],
                requested[1],
                self.interp,
                self.decim,
            )
        if taps is None:
            taps = multirate_taps(self.interp, self.decim)
        taps_arr = np.array(taps, dtype=np.float64).reshape(-1)
        if taps_arr.size == 0:
            raise ValueError("Resampler taps must not be empty.")
        if not np.all(np.isfinite(taps_arr)):
            raise ValueError("Resampler taps must be finite.")
        taps_arr.flags.writeable = False
        self.taps = taps_arr
        self.output_dtype = np.dtype(np.complex64 if complex_input else np.float32)
        self.taps_per_phase = math.ceil(taps_arr.size / self.interp)
        padded = np.zeros(self.taps_per_phase * self.interp, dtype=np.float64)
        padded[: taps_arr.size] = taps_arr
        # _phases[p, k] = taps[p + k * interp]
        self._phases = padded.reshape(self.taps_per_phase, self.interp).T.copy()
        self._history = np.zeros(self.taps_per_phase - 1, dtype=self.output_dtype)
        self._inputs = 0
        self._next_output = 0
        LOG.info(
            "Resampler %d/%d with %d taps (%d per phase).",
            self.interp,
            self.decim,
            taps_arr.size,
            self.taps_per_phase,
        )

    @property
    def ratio(self) -> float:
        return self.interp / self.decim

    @property
    def delay(self) -> float:
        """Group delay of the filter expressed in output samples."""
        return (self.taps.size - 1) / 2.0 / self.decim

    def output_length(self, count: int) -> int:
        """Number of outputs the next ``count`` input samples will produce."""
        if count < 0:
            raise ValueError("count must be non-negative")
        total = self._inputs + count
        end = -(-total * self.interp // self.decim)
        return max(0, end - self._next_output)

    def _work(self, samples: np.ndarray) -> tuple[np.ndarray, int]:
        count = len(samples)
        if count == 0:
            return self.empty_output(), 0
        data = samples.astype(self.output_dtype, copy=False)
        buffer = np.concatenate((self._history, data))
        total = self._inputs + count
        end = -(-total * self.interp // self.decim)
        produced = end - self._next_output

        out = np.empty(max(produced, 0), dtype=self.output_dtype)
        # buffer[0] holds absolute input index ``base``.
        base = self._inputs - (self.taps_per_phase - 1)
        lags = np.arange(self.taps_per_phase)
        for start in range(0, out.size, _OUTPUT_CHUNK):
            m = np.arange(
                self._next_output + start,
                self._next_output + min(start + _OUTPUT_CHUNK, out.size),
                dtype=np.int64,
            )
            upsampled = m * self.decim
            newest = upsampled // self.interp - base
            phase = upsampled % self.interp
            window = buffer[newest[:, None] - lags[None, :]]
            out[start : start + m.size] = np.sum(window * self._phases[phase], axis=1)

        keep = self.taps_per_phase - 1
        self._history = buffer[buffer.size - keep :].copy() if keep else buffer[:0].copy()
        self._inputs = total
        self._next_output = end
        self._rebase()
        return out, count

    def _rebase(self) -> None:
        # Input index n*decim lines up with output index n*interp; shift both
        # counters by whole periods so they stay small on long streams.
        periods = self._inputs // self.decim
        if periods:
            self._inputs -= periods * self.decim
            self._next_output -= periods * self.interp

    def _reset_state(self) -> None:
        self._history = np.zeros(self.taps_per_phase - 1, dtype=self.output_dtype)
        self._inputs = 0
        self._next_output = 0


__all__ = ["RationalResampler"]
