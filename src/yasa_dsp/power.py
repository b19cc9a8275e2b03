from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

import numpy as np

from .blocks import Block

LOG = logging.getLogger(__name__)

# Full-scale magnitude of 8-bit SDR samples.
DEFAULT_REFERENCE = 127.0
DEFAULT_BLOCK_SIZE = 4096
DEFAULT_WINDOW = 1000
DEFAULT_THRESHOLD_DB = -40.0


class AggregationPolicy(str, Enum):
    MEAN = "mean"
    PEAK = "peak"


def lin2power_db(values: np.ndarray, reference: float = DEFAULT_REFERENCE) -> np.ndarray:
    """Convert magnitudes to dB relative to ``reference`` (``20*log10(|x|/ref)``).

    Zero magnitudes map to ``-inf``; callers filter non-finite values.
    """
    if reference <= 0:
        raise ValueError("reference must be positive")
    magnitude = np.abs(np.asarray(values)).astype(np.float64)
    with np.errstate(divide="ignore", invalid="ignore"):
        power = 20.0 * np.log10(magnitude / reference)
    return power.astype(np.float32)


@dataclass
class AggregatorConfig:
    """Settings for :class:`PowerAggregator`.

    ``bin_start``/``bin_stop`` select a half-open range of bins (defaults to the
    whole block). ``exclude_dc`` drops the DC bin, which sits at
    ``block_size // 2`` for shifted spectra and at 0 otherwise.
    ``threshold_db`` only applies to the peak policy; ``None`` disables it.
    """

    block_size: int = DEFAULT_BLOCK_SIZE
    policy: AggregationPolicy = AggregationPolicy.MEAN
    window: int = DEFAULT_WINDOW
    bin_start: int | None = None
    bin_stop: int | None = None
    exclude_dc: bool = False
    shifted: bool = True
    reference: float = DEFAULT_REFERENCE
    threshold_db: float | None = DEFAULT_THRESHOLD_DB
    report_partial: bool = False

    def validate(self) -> None:
        self.policy = AggregationPolicy(self.policy)
        if self.block_size <= 0:
            raise ValueError("block_size must be positive")
        if self.window <= 0:
            raise ValueError("window must be positive")
        if self.reference <= 0:
            raise ValueError("reference must be positive")
        start, stop = self.bin_range
        if not 0 <= start < stop <= self.block_size:
            raise ValueError(
                f"bin range [{start}, {stop}) does not fit a block of {self.block_size}"
            )

    @property
    def bin_range(self) -> tuple[int, int]:
        start = 0 if self.bin_start is None else self.bin_start
        stop = self.block_size if self.bin_stop is None else self.bin_stop
        return start, stop

    @property
    def dc_index(self) -> int:
        return self.block_size // 2 if self.shifted else 0


@dataclass(frozen=True)
class PowerReading:
    value_db: float
    observations: int
    policy: AggregationPolicy


class PowerAggregator(Block):
    """Turn fixed-size spectrum blocks into scalar power readings.

    Complex blocks are converted with :func:`lin2power_db`; real blocks are
    taken to be in dB already. Blocks whose length differs from
    ``config.block_size`` are discarded, which happens while a pipeline is
    starting or stopping. A 2-D input is a batch of blocks, one per row.

    With the ``MEAN`` policy each block contributes the average of its finite,
    selected bins and a reading is emitted once ``window`` blocks have been
    accumulated. With ``PEAK`` each block yields its largest finite bin,
    emitted only above ``threshold_db``. Blocks without any finite selected
    bin contribute nothing.
    """

    name = "power_aggregator"
    output_dtype = np.dtype(np.float32)

    def __init__(
        self,
        config: AggregatorConfig | None = None,
        *,
        on_reading: Callable[[PowerReading], None] | None = None,
    ):
        super().__init__()
        self.config = config or AggregatorConfig()
        self.config.validate()
        self.on_reading = on_reading
        self._mask = self._build_mask()
        self._total = 0.0
        self._count = 0
        self.discarded_blocks = 0
        self.empty_blocks = 0
        self.last_reading: PowerReading | None = None

    @property
    def pending_observations(self) -> int:
        return self._count

    def measure(self, block: np.ndarray) -> float | None:
        """Block-level scalar for the configured policy, or ``None`` for no reading."""
        values = self._selected_powers(block)
        if values.size == 0:
            return None
        if self.config.policy is AggregationPolicy.PEAK:
            return float(np.max(values))
        return float(np.mean(values))

    def push(self, block: np.ndarray) -> PowerReading | None:
        """Feed one block; returns a reading when one is due."""
        block = np.asarray(block)
        if block.ndim != 1 or block.size != self.config.block_size:
            self.discarded_blocks += 1
            LOG.debug(
                "Discarding block of %d values (expected %d).",
                block.size,
                self.config.block_size,
            )
            return None
        value = self.measure(block)
        if value is None:
            self.empty_blocks += 1
            return None
        if self.config.policy is AggregationPolicy.PEAK:
            threshold = self.config.threshold_db
            if threshold is not None and value <= threshold:
                return None
            return self._emit(PowerReading(value, 1, AggregationPolicy.PEAK))
        self._total += value
        self._count += 1
        if self._count < self.config.window:
            return None
        return self._flush_window()

    def flush(self) -> PowerReading | None:
        """Report the partial window if enabled, then clear the accumulator."""
        if self._count == 0:
            return None
        if not self.config.report_partial:
            LOG.debug("Dropping partial window of %d observations.", self._count)
            self._total = 0.0
            self._count = 0
            return None
        return self._flush_window()

    def _work(self, samples: np.ndarray) -> tuple[np.ndarray, int]:
        if len(samples) == 0:
            return self.empty_output(), 0
        blocks = samples if samples.ndim == 2 else (samples,)
        values = []
        for block in blocks:
            reading = self.push(block)
            if reading is not None:
                values.append(reading.value_db)
        return np.asarray(values, dtype=np.float32), len(samples)

    def _drain(self) -> np.ndarray:
        reading = self.flush()
        if reading is None:
            return self.empty_output()
        return np.asarray([reading.value_db], dtype=np.float32)

    def _reset_state(self) -> None:
        self._total = 0.0
        self._count = 0
        self.discarded_blocks = 0
        self.empty_blocks = 0
        self.last_reading = None

    def _flush_window(self) -> PowerReading:
        reading = PowerReading(self._total / self._count, self._count, AggregationPolicy.MEAN)
        self._total = 0.0
        self._count = 0
        return self._emit(reading)

    def _emit(self, reading: PowerReading) -> PowerReading:
        self.last_reading = reading
        LOG.info("Power: %.2f dB (%d observations).", reading.value_db, reading.observations)
        if self.on_reading is not None:
            self.on_reading(reading)
        return reading

    def _selected_powers(self, block: np.ndarray) -> np.ndarray:
        block = np.asarray(block)
        if np.iscomplexobj(block):
            powers = lin2power_db(block, self.config.reference).astype(np.float64)
        else:
            powers = block.astype(np.float64)
        if powers.size != self._mask.size:
            return np.empty(0, dtype=np.float64)
        selected = powers[self._mask]
        return selected[np.isfinite(selected)]

    def _build_mask(self) -> np.ndarray:
        mask = np.zeros(self.config.block_size, dtype=bool)
        start, stop = self.config.bin_range
        mask[start:stop] = True
        if self.config.exclude_dc:
            mask[self.config.dc_index] = False
        return mask


__all__ = [
    "AggregationPolicy",
    "AggregatorConfig",
    "PowerAggregator",
    "PowerReading",
    "lin2power_db",
]
