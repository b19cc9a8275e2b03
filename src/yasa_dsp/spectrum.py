from __future__ import annotations

import logging

import numpy as np
from scipy import fft as sp_fft

from .blocks import Block
from .power import DEFAULT_BLOCK_SIZE, DEFAULT_REFERENCE, lin2power_db

LOG = logging.getLogger(__name__)


def _fft_dispatch(
    samples: np.ndarray,
    nfft: int,
    fft_workers: int | None,
) -> np.ndarray:
    if fft_workers and fft_workers > 1:
        try:
            return np.asarray(sp_fft.fft(samples, n=nfft, axis=-1, workers=fft_workers))
        except TypeError:
            return np.asarray(sp_fft.fft(samples, n=nfft, axis=-1))
    return np.asarray(sp_fft.fft(samples, n=nfft, axis=-1))


class PowerSpectrum(Block):
    """Frame a complex stream into FFTs and emit one row of bins per frame.

    Only whole frames are consumed; a trailing partial frame is left to the
    caller (the chain carries it into the next call). Rows are shifted so DC
    sits at ``nfft // 2`` when ``shift`` is set. With ``as_db`` the bins are
    converted with :func:`lin2power_db`, otherwise complex bins are emitted.
    """

    name = "power_spectrum"

    def __init__(
        self,
        nfft: int = DEFAULT_BLOCK_SIZE,
        *,
        shift: bool = True,
        window: str | None = None,
        as_db: bool = True,
        reference: float = DEFAULT_REFERENCE,
        fft_workers: int | None = None,
    ):
        super().__init__()
        if nfft <= 0:
            raise ValueError("nfft must be positive")
        if window not in (None, "hann"):
            raise ValueError(f"Unsupported window '{window}'.")
        self.nfft = int(nfft)
        self.shift = shift
        self.as_db = as_db
        self.reference = reference
        self.fft_workers = fft_workers if fft_workers and fft_workers > 1 else None
        self.window = np.hanning(self.nfft) if window == "hann" else None
        self.output_dtype = np.dtype(np.float32 if as_db else np.complex64)

    def frequencies(self, sample_rate: float) -> np.ndarray:
        """Bin centre frequencies (Hz, baseband) matching the emitted rows."""
        freqs = sp_fft.fftfreq(self.nfft, d=1.0 / sample_rate)
        if self.shift:
            freqs = sp_fft.fftshift(freqs)
        return np.asarray(freqs, dtype=np.float64)

    def empty_output(self) -> np.ndarray:
        return np.empty((0, self.nfft), dtype=self.output_dtype)

    def _work(self, samples: np.ndarray) -> tuple[np.ndarray, int]:
        frames = len(samples) // self.nfft
        if frames == 0:
            return self.empty_output(), 0
        consumed = frames * self.nfft
        matrix = np.asarray(samples[:consumed], dtype=np.complex128).reshape(frames, self.nfft)
        if self.window is not None:
            matrix = matrix * self.window
        spectrum = _fft_dispatch(matrix, self.nfft, self.fft_workers)
        if self.shift:
            spectrum = np.asarray(sp_fft.fftshift(spectrum, axes=-1))
        if self.as_db:
            rows = lin2power_db(spectrum, self.reference)
        else:
            rows = spectrum.astype(np.complex64)
        LOG.debug("Computed %d spectrum frame(s) of %d bins.", frames, self.nfft)
        return rows, consumed


__all__ = ["PowerSpectrum"]
