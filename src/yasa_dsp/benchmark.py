from __future__ import annotations

import dataclasses
import logging
import math
import sys
import tempfile
import time
from pathlib import Path

import numpy as np
import soundfile as sf

from .receiver import FMReceiver, ReceiverConfig, plan_receiver
from .wavio import WavAudioSink, WavIQSource

LOG = logging.getLogger(__name__)


def _generate_synthetic_fm(
    path: Path,
    sample_rate: float,
    seconds: float,
    carrier_offset: float,
    *,
    tone_hz: float = 1_000.0,
    deviation_hz: float = 5_000.0,
    amplitude: float = 0.7,
    noise_std: float = 0.02,
) -> None:
    total_samples = int(round(sample_rate * seconds))
    if total_samples <= 0:
        raise ValueError("Benchmark duration is too short to generate samples.")
    t = np.arange(total_samples, dtype=np.float64) / sample_rate
    audio = np.sin(2.0 * math.pi * tone_hz * t)
    phase = 2.0 * math.pi * carrier_offset * t + 2.0 * math.pi * deviation_hz * np.cumsum(audio) / sample_rate
    rng = np.random.default_rng(42)
    noise = rng.normal(scale=noise_std, size=(total_samples, 2))
    i = amplitude * np.cos(phase) + noise[:, 0]
    q = amplitude * np.sin(phase) + noise[:, 1]
    iq = np.clip(np.column_stack((i, q)).astype(np.float32), -0.999, 0.999)
    sf.write(path, iq, int(sample_rate), format="WAV", subtype="PCM_16")


def run_benchmark(
    *,
    seconds: float = 2.0,
    sample_rate: float = 1_000_000.0,
    block_size: int = 65_536,
    config: ReceiverConfig | None = None,
) -> int:
    if seconds <= 0:
        raise ValueError("Benchmark duration must be positive.")
    if sample_rate <= 0:
        raise ValueError("Benchmark sample rate must be positive.")
    config = dataclasses.replace(config or ReceiverConfig(), sample_rate=sample_rate)
    plan = plan_receiver(config)

    with tempfile.TemporaryDirectory() as tmpdir:
        tmpdir_path = Path(tmpdir)
        input_path = tmpdir_path / "benchmark_iq.wav"
        output_path = tmpdir_path / "benchmark_audio.wav"
        # The receiver expects the station one IF offset below the capture centre.
        _generate_synthetic_fm(
            input_path,
            sample_rate=sample_rate,
            seconds=seconds,
            carrier_offset=-plan.freq_offset,
        )
        LOG.info(
            "Running benchmark: %.2f s at %.2f MS/s, channel %d/%d, audio %d Hz.",
            seconds,
            sample_rate / 1e6,
            plan.interp,
            plan.decim,
            plan.audio_rate,
        )

        with WavIQSource(input_path, block_size=block_size) as source, WavAudioSink(
            output_path, plan.audio_rate
        ) as sink:
            receiver = FMReceiver(config, sink, source=source)
            start = time.perf_counter()
            receiver.run()
            elapsed = time.perf_counter() - start
            frames = sink.frames_written
            peak = sink.peak

    realtime = seconds / elapsed if elapsed > 0 else float("inf")
    peak_dbfs = 20.0 * math.log10(max(peak, 1e-6))
    LOG.info(
        "Benchmark processed %.0f IQ samples in %.2f s (%.2f× realtime).",
        sample_rate * seconds,
        elapsed,
        realtime,
    )
    LOG.info("Wrote %d audio frames; audio peak %.2f dBFS.", frames, peak_dbfs)
    return 0


__all__ = ["run_benchmark"]


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    sys.exit(run_benchmark())
