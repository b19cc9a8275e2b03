"""Reader for the CSV output of ``rtl_power``, ``hackrf_sweep`` and ``soapy_power``.

Each row holds one hop of a sweep::

    date, time, freq_low, freq_high, freq_step, num_samples, dB, dB, ...

Consecutive rows with increasing ``freq_low`` form one sweep; the next sweep
starts when ``freq_low`` drops back.
"""

from __future__ import annotations

import csv
import io
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time
from pathlib import Path

import numpy as np

LOG = logging.getLogger(__name__)


@dataclass
class SweepRecord:
    date: date
    time: time
    freq_low: int
    freq_high: int
    freq_step: float
    num_samples: int
    samples: list[float] = field(default_factory=list)


def parse_record(fields: list[str]) -> SweepRecord:
    cells = [cell.strip() for cell in fields]
    if len(cells) < 6:
        raise ValueError(f"Sweep row needs at least 6 fields, got {len(cells)}")
    return SweepRecord(
        date=datetime.strptime(cells[0], "%Y-%m-%d").date(),
        time=_parse_time(cells[1]),
        freq_low=int(cells[2]),
        freq_high=int(cells[3]),
        freq_step=float(cells[4]),
        num_samples=int(cells[5]),
        samples=[float(cell) for cell in cells[6:] if cell],
    )


def _parse_time(text: str) -> time:
    fmt = "%H:%M:%S.%f" if "." in text else "%H:%M:%S"
    return datetime.strptime(text, fmt).time()


@dataclass
class SweepFrame:
    records: list[SweepRecord]
    freq_low: int
    freq_high: int
    freq_step: float
    sweep_steps: int

    @classmethod
    def from_string(cls, data: str) -> SweepFrame:
        records: list[SweepRecord] = []
        for line_no, row in enumerate(csv.reader(io.StringIO(data)), start=1):
            if not row or not any(cell.strip() for cell in row):
                continue
            try:
                records.append(parse_record(row))
            except ValueError as exc:
                LOG.debug("Skipping sweep row %d: %s", line_no, exc)
        return cls.from_records(records)

    @classmethod
    def from_path(cls, path: Path) -> SweepFrame:
        return cls.from_string(Path(path).read_text(encoding="utf-8"))

    @classmethod
    def from_records(cls, records: list[SweepRecord]) -> SweepFrame:
        if not records:
            return cls(records=[], freq_low=0, freq_high=0, freq_step=0.0, sweep_steps=0)
        first = records[0]
        steps = 1
        for record in records[1:]:
            if record.freq_low <= first.freq_low:
                break
            steps += 1
        last = records[steps - 1]
        return cls(
            records=records,
            freq_low=first.freq_low,
            freq_high=last.freq_high,
            freq_step=first.freq_step,
            sweep_steps=steps,
        )

    @property
    def sweeps(self) -> int:
        """Number of complete sweeps held."""
        if self.sweep_steps == 0:
            return 0
        return len(self.records) // self.sweep_steps

    def power_matrix(self) -> np.ndarray:
        """Power in dB with one row per complete sweep, hops concatenated."""
        rows = []
        for index in range(self.sweeps):
            hops = self.records[index * self.sweep_steps : (index + 1) * self.sweep_steps]
            rows.append(np.concatenate([np.asarray(hop.samples, dtype=np.float32) for hop in hops]))
        if not rows:
            return np.empty((0, 0), dtype=np.float32)
        width = min(row.size for row in rows)
        return np.stack([row[:width] for row in rows])


__all__ = ["SweepFrame", "SweepRecord", "parse_record"]
