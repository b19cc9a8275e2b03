from __future__ import annotations

import contextlib
import logging
import math
import queue
import threading
from collections.abc import Callable, Iterable, Iterator, Sequence
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

import numpy as np

from .blocks import Block, BlockChain
from .demod import DeemphasisFilter, QuadratureDemod
from .firdes import lowpass_hz, reduce_ratio
from .power import DEFAULT_BLOCK_SIZE, AggregatorConfig, PowerAggregator, PowerReading
from .resampler import RationalResampler
from .shifter import DEFAULT_RENORMALIZE_INTERVAL, FrequencyShifter
from .spectrum import PowerSpectrum

LOG = logging.getLogger(__name__)

IF_OFFSET_FRACTION = 0.25
MAX_AUDIO_MULT = 5
AUDIO_MULT_HEADROOM_HZ = 100e3
# How often an idle worker re-checks the stop flag.
_QUEUE_POLL_S = 0.1


@runtime_checkable
class TunableSource(Protocol):
    """Anything whose centre frequency can be changed while streaming."""

    def set_frequency(self, frequency_hz: float) -> None: ...


AudioSink = Callable[[np.ndarray], None]


@dataclass
class ReceiverConfig:
    sample_rate: float = 1_000_000.0
    frequency: float = 100_000_000.0
    audio_rates: Sequence[int] = (48_000,)
    audio_cutoff_hz: float = 2_000.0
    audio_transition_hz: float = 10_000.0
    audio_ripple: float = 0.1
    deemph_us: float | None = None
    renormalize_interval: int = DEFAULT_RENORMALIZE_INTERVAL
    queue_depth: int = 8
    stop_timeout: float = 10.0


@dataclass(frozen=True)
class ReceiverPlan:
    """Rates and ratios chosen for one receiver configuration."""

    sample_rate: float
    freq_offset: float
    audio_rate: int
    audio_mult: int
    interp: int
    decim: int

    @property
    def channel_rate(self) -> float:
        return float(self.audio_rate * self.audio_mult)


def select_audio_rate(sample_rate: float, supported: Sequence[int]) -> int:
    """Pick the supported audio rate sharing the largest common divisor with ``sample_rate``."""
    if not supported:
        raise ValueError("No supported audio rates were given.")
    rate = int(round(sample_rate))
    for candidate in supported:
        if int(candidate) != candidate or candidate <= 0:
            raise ValueError(f"Audio rate must be a positive integer, got {candidate!r}")
    return int(sorted(supported, key=lambda a: -math.gcd(int(a), rate))[0])


def audio_multiplier(audio_rate: int, freq_offset: float) -> int:
    """Largest channel-rate multiple of ``audio_rate`` that fits the IF headroom."""
    mult = MAX_AUDIO_MULT
    while mult > 0 and mult * audio_rate > freq_offset + AUDIO_MULT_HEADROOM_HZ:
        mult -= 1
    if mult == 0:
        raise ValueError(
            f"Sample rate too low: audio rate {audio_rate} Hz exceeds the IF headroom "
            f"({freq_offset + AUDIO_MULT_HEADROOM_HZ:.0f} Hz)."
        )
    return mult


def plan_receiver(config: ReceiverConfig) -> ReceiverPlan:
    if config.sample_rate <= 0:
        raise ValueError("sample_rate must be positive")
    if int(config.sample_rate) != config.sample_rate:
        raise ValueError("sample_rate must be a whole number of Hz for rational resampling")
    freq_offset = config.sample_rate * IF_OFFSET_FRACTION
    audio_rate = select_audio_rate(config.sample_rate, config.audio_rates)
    LOG.info("Selected audio rate %d Hz from supported %s.", audio_rate, list(config.audio_rates))
    audio_mult = audio_multiplier(audio_rate, freq_offset)
    interp, decim = reduce_ratio(audio_rate * audio_mult, int(config.sample_rate))
    LOG.info("Audio mult %d, channel resampler %d/%d.", audio_mult, interp, decim)
    return ReceiverPlan(
        sample_rate=float(config.sample_rate),
        freq_offset=freq_offset,
        audio_rate=audio_rate,
        audio_mult=audio_mult,
        interp=interp,
        decim=decim,
    )


def build_fm_chain(plan: ReceiverPlan, config: ReceiverConfig) -> tuple[BlockChain, FrequencyShifter]:
    """Shifter -> channel resampler -> FM detector -> [de-emphasis] -> audio decimator.

    The source is tuned ``freq_offset`` above the station, which therefore sits
    at ``-freq_offset`` in the capture; the shifter brings it to DC.
    """
    shifter = FrequencyShifter(
        -plan.freq_offset,
        plan.sample_rate,
        renormalize_interval=config.renormalize_interval,
    )
    blocks: list[Block] = [
        shifter,
        RationalResampler(plan.interp, plan.decim),
        QuadratureDemod(),
    ]
    if config.deemph_us:
        blocks.append(DeemphasisFilter(config.deemph_us, plan.channel_rate))
    LOG.info(
        "Audio filter cutoff %.0f Hz, transition %.0f Hz at %.0f Hz.",
        config.audio_cutoff_hz,
        config.audio_transition_hz,
        plan.channel_rate,
    )
    audio_taps = lowpass_hz(
        plan.channel_rate,
        config.audio_cutoff_hz,
        config.audio_transition_hz,
        config.audio_ripple,
    )
    blocks.append(RationalResampler(1, plan.audio_mult, audio_taps, complex_input=False))
    return BlockChain(blocks), shifter


def build_spectrum_chain(
    nfft: int = DEFAULT_BLOCK_SIZE,
    config: AggregatorConfig | None = None,
    *,
    aggregate: bool = True,
    on_reading: Callable[[PowerReading], None] | None = None,
    fft_workers: int | None = None,
) -> BlockChain:
    """FFT framing followed, when ``aggregate`` is set, by a power aggregator."""
    blocks: list[Block] = [PowerSpectrum(nfft, fft_workers=fft_workers)]
    if aggregate:
        config = config or AggregatorConfig()
        if config.block_size != nfft:
            raise ValueError(
                f"Aggregator block size {config.block_size} does not match FFT size {nfft}."
            )
        blocks.append(PowerAggregator(config, on_reading=on_reading))
    return BlockChain(blocks)


class FMReceiver:
    """Run the FM chain on a worker thread between a sample source and an audio sink.

    Samples come either from ``source`` (an iterable of complex blocks) or,
    when no source is given, from :meth:`submit`. :meth:`tune_to` retunes the
    tunable source; :meth:`set_offset` retunes the shifter at the next block
    boundary. :meth:`stop` lets the in-flight block finish, drains the chain
    and hands the tail to the sink; :meth:`wait` instead lets a finite source
    run to its end.
    """

    def __init__(
        self,
        config: ReceiverConfig,
        sink: AudioSink,
        *,
        source: Iterable[np.ndarray] | None = None,
        tuner: TunableSource | None = None,
    ):
        self.config = config
        self.plan = plan_receiver(config)
        self.sink = sink
        self.source = source
        self.tuner = tuner
        self.frequency = config.frequency
        self._chain: BlockChain | None = None
        self._shifter: FrequencyShifter | None = None
        self._queue: queue.Queue[np.ndarray | None] = queue.Queue(maxsize=max(1, config.queue_depth))
        self._stop = threading.Event()
        self._worker: threading.Thread | None = None
        self._error: BaseException | None = None

    @property
    def running(self) -> bool:
        return self._worker is not None and self._worker.is_alive()

    @property
    def audio_rate(self) -> int:
        return self.plan.audio_rate

    @property
    def chain(self) -> BlockChain | None:
        """Chain of the current or most recent session."""
        return self._chain

    def start(self, frequency: float | None = None) -> None:
        if self._worker is not None:
            if self._worker.is_alive():
                raise RuntimeError("FMReceiver is already running.")
            raise RuntimeError("FMReceiver session has not been stopped; call stop() first.")
        if frequency is not None:
            self.frequency = frequency
        self._chain, self._shifter = build_fm_chain(self.plan, self.config)
        self._stop.clear()
        self._error = None
        # Fresh queue per session so blocks left by a failed session are not replayed.
        self._queue = queue.Queue(maxsize=max(1, self.config.queue_depth))
        self._tune_source(self.frequency)
        self._worker = threading.Thread(
            target=self._run, args=(self._queue,), name="FMReceiver", daemon=True
        )
        self._worker.start()

    def submit(self, samples: np.ndarray, timeout: float | None = None) -> None:
        """Queue a block for the worker (only when constructed without a source)."""
        if self.source is not None:
            raise RuntimeError("FMReceiver reads from its source; submit() is unavailable.")
        if not self.running:
            raise RuntimeError("FMReceiver is not running.")
        self._queue.put(np.array(samples, dtype=np.complex64, copy=True), timeout=timeout)

    def tune_to(self, frequency: float) -> None:
        if not self.running:
            raise RuntimeError("FMReceiver is not running.")
        LOG.info("Tune to: %.0f Hz", frequency)
        self._tune_source(frequency)
        self.frequency = frequency

    def set_offset(self, offset_hz: float) -> None:
        """Move the shifter's mixing offset; applied at the next block boundary."""
        if self._shifter is None:
            raise RuntimeError("FMReceiver has not been started.")
        self._shifter.set_offset(offset_hz)

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the worker has drained its source; True once it has exited."""
        worker = self._worker
        if worker is None:
            return True
        worker.join(timeout=timeout)
        return not worker.is_alive()

    def stop(self) -> None:
        worker = self._worker
        if worker is None:
            return
        self._stop.set()
        if self.source is None and worker.is_alive():
            with contextlib.suppress(queue.Full):
                self._queue.put(None, timeout=self.config.stop_timeout)
        worker.join(timeout=self.config.stop_timeout)
        if worker.is_alive():
            raise RuntimeError(
                f"FMReceiver worker did not stop within {self.config.stop_timeout:.1f} s; "
                "call stop() again once the sink is unblocked."
            )
        self._worker = None
        if self._error is not None:
            raise RuntimeError("FMReceiver worker failed") from self._error

    def run(self) -> None:
        """Process the whole source synchronously on the calling thread."""
        if self.source is None:
            raise RuntimeError("FMReceiver.run() needs a source.")
        if self._worker is not None:
            raise RuntimeError("FMReceiver is already running.")
        self._chain, self._shifter = build_fm_chain(self.plan, self.config)
        self._tune_source(self.frequency)
        self._pump(self.source)

    def _tune_source(self, frequency: float) -> None:
        if self.tuner is not None:
            self.tuner.set_frequency(frequency + self.plan.freq_offset)

    def _run(self, pending: queue.Queue[np.ndarray | None]) -> None:
        try:
            blocks = self.source if self.source is not None else self._drain_queue(pending)
            self._pump(blocks)
        except Exception as exc:
            LOG.error("FMReceiver worker failed: %s", exc)
            self._error = exc

    def _pump(self, blocks: Iterable[np.ndarray]) -> None:
        chain = self._chain
        assert chain is not None
        for samples in blocks:
            audio = chain.process(samples)
            if audio.size:
                self.sink(audio)
            if self._stop.is_set() and self.source is not None:
                break
        tail = chain.finish()
        if tail.size:
            self.sink(tail)
        LOG.info("FMReceiver drained.")

    def _drain_queue(self, pending: queue.Queue[np.ndarray | None]) -> Iterator[np.ndarray]:
        while True:
            try:
                item = pending.get(timeout=_QUEUE_POLL_S)
            except queue.Empty:
                # Stop requested and nothing left: the sentinel may not have fit.
                if self._stop.is_set():
                    return
                continue
            if item is None:
                return
            yield item


__all__ = [
    "AudioSink",
    "FMReceiver",
    "ReceiverConfig",
    "ReceiverPlan",
    "TunableSource",
    "audio_multiplier",
    "build_fm_chain",
    "build_spectrum_chain",
    "plan_receiver",
    "select_audio_rate",
]
