from __future__ import annotations

import logging
from collections.abc import Iterator
from pathlib import Path

import numpy as np
import soundfile as sf

LOG = logging.getLogger(__name__)

_IQ_ORDERS = {"iq", "qi", "iq_inv", "qi_inv"}


class WavIQSource:
    """Stream complex64 blocks from a stereo I/Q WAV recording."""

    def __init__(self, path: Path, block_size: int = 65_536, iq_order: str = "iq"):
        if block_size <= 0:
            raise ValueError("block_size must be positive")
        if iq_order not in _IQ_ORDERS:
            raise ValueError(f"Unsupported iq_order '{iq_order}'")
        self.path = Path(path)
        self.block_size = block_size
        self.iq_order = iq_order
        self._file: sf.SoundFile | None = None

    def __enter__(self) -> WavIQSource:
        self._file = sf.SoundFile(self.path, mode="r")
        if self._file.channels != 2:
            channels = self._file.channels
            self.close()
            raise ValueError(f"{self.path} has {channels} channel(s); I/Q needs 2.")
        LOG.info(
            "Opened %s: %d Hz, %d frames, %s.",
            self.path,
            self._file.samplerate,
            self._file.frames,
            self._file.subtype,
        )
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    @property
    def sample_rate(self) -> float:
        if self._file is None:
            raise RuntimeError("WavIQSource has not been entered.")
        return float(self._file.samplerate)

    def __iter__(self) -> Iterator[np.ndarray]:
        if self._file is None:
            raise RuntimeError("WavIQSource has not been entered.")
        for frames in self._file.blocks(
            blocksize=self.block_size,
            dtype="float32",
            always_2d=True,
        ):
            if frames.size == 0:
                break
            yield self._to_complex(frames)

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None

    def _to_complex(self, frames: np.ndarray) -> np.ndarray:
        if self.iq_order.startswith("iq"):
            i, q = frames[:, 0], frames[:, 1]
        else:
            q, i = frames[:, 0], frames[:, 1]
        if self.iq_order.endswith("_inv"):
            q = -q
        iq = i.astype(np.float32, copy=False) + 1j * q.astype(np.float32, copy=False)
        return iq.astype(np.complex64, copy=False)


class WavAudioSink:
    """Write mono float32 audio blocks to a WAV file."""

    def __init__(self, path: Path, sample_rate: float, subtype: str = "FLOAT"):
        if sample_rate <= 0:
            raise ValueError("sample_rate must be positive")
        self.path = Path(path)
        self.sample_rate = float(sample_rate)
        self.peak = 0.0
        self.frames_written = 0
        self._file: sf.SoundFile | None = sf.SoundFile(
            self.path,
            mode="w",
            samplerate=max(1, int(round(self.sample_rate))),
            channels=1,
            subtype=subtype,
            format="WAV",
        )

    def __enter__(self) -> WavAudioSink:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __call__(self, samples: np.ndarray) -> None:
        self.write(samples)

    def write(self, samples: np.ndarray) -> None:
        if self._file is None:
            raise RuntimeError("WavAudioSink has already been closed.")
        audio = np.asarray(samples, dtype=np.float32).reshape(-1)
        if audio.size == 0:
            return
        peak = float(np.max(np.abs(audio)))
        if peak > self.peak:
            self.peak = peak
        self._file.write(audio)
        self.frames_written += audio.size

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None
            LOG.debug("Wrote %d audio frames to %s.", self.frames_written, self.path)


__all__ = ["WavAudioSink", "WavIQSource"]
