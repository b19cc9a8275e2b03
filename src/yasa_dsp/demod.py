from __future__ import annotations

import math

import numpy as np
from scipy.signal import lfilter

from .blocks import Block


class QuadratureDemod(Block):
    """Arctangent quadrature FM detector.

    Each output is ``angle(x[n] * conj(x[n-1]))`` in ``(-pi, pi]`` times
    ``gain``. The previous sample starts as ``0+0j``, so the first output of a
    stream is 0.0. Products that are zero or non-finite also yield 0.0.
    """

    name = "quadrature_demod"
    output_dtype = np.dtype(np.float32)

    def __init__(self, gain: float = 1.0):
        super().__init__()
        if not math.isfinite(gain):
            raise ValueError("gain must be finite")
        self.gain = float(gain)
        self._prev = np.complex128(0.0)

    def _work(self, samples: np.ndarray) -> tuple[np.ndarray, int]:
        count = len(samples)
        if count == 0:
            return self.empty_output(), 0
        current = samples.astype(np.complex128)
        prevs = np.concatenate(([self._prev], current[:-1]))
        prod = current * np.conj(prevs)
        valid = np.isfinite(prod) & (prod != 0)
        angles = np.zeros(count, dtype=np.float64)
        angles[valid] = np.angle(prod[valid])
        angles[angles <= -math.pi] = math.pi
        self._prev = current[-1]
        if self.gain != 1.0:
            angles *= self.gain
        return angles.astype(np.float32), count

    def _reset_state(self) -> None:
        self._prev = np.complex128(0.0)


class DeemphasisFilter(Block):
    """Single-pole de-emphasis filter expressed in discrete time."""

    name = "deemphasis"
    output_dtype = np.dtype(np.float32)

    def __init__(self, tau_us: float, sample_rate: float):
        super().__init__()
        if tau_us <= 0:
            raise ValueError("tau_us must be positive")
        if sample_rate <= 0:
            raise ValueError("sample_rate must be positive")
        self.tau_us = tau_us
        self.sample_rate = sample_rate
        tau_sec = max(tau_us * 1e-6, 1e-6)
        self.alpha = math.exp(-1.0 / (sample_rate * tau_sec))
        self._b = np.array([1.0 - self.alpha], dtype=np.float64)
        self._a = np.array([1.0, -self.alpha], dtype=np.float64)
        self._state = 0.0

    def _work(self, samples: np.ndarray) -> tuple[np.ndarray, int]:
        if len(samples) == 0:
            return self.empty_output(), 0
        audio, zf = lfilter(
            self._b,
            self._a,
            samples.astype(np.float64),
            zi=np.array([self._state], dtype=np.float64),
        )
        self._state = float(np.asarray(zf)[0])
        return np.asarray(audio, dtype=np.float32), len(samples)

    def _reset_state(self) -> None:
        self._state = 0.0


__all__ = ["DeemphasisFilter", "QuadratureDemod"]
