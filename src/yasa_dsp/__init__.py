"""Streaming DSP blocks for FM audio and spectral power measurement."""

from __future__ import annotations

from .blocks import Block, BlockChain
from .demod import DeemphasisFilter, QuadratureDemod
from .firdes import FilterDesignError, kaiser_lowpass, lowpass_hz, multirate_taps
from .power import AggregationPolicy, AggregatorConfig, PowerAggregator, PowerReading, lin2power_db
from .receiver import FMReceiver, ReceiverConfig, build_fm_chain, build_spectrum_chain, plan_receiver
from .resampler import RationalResampler
from .shifter import FrequencyShifter
from .spectrum import PowerSpectrum
from .sweep import SweepFrame, SweepRecord
from .wavio import WavAudioSink, WavIQSource

__version__ = "0.1.0"

__all__ = [
    "AggregationPolicy",
    "AggregatorConfig",
    "Block",
    "BlockChain",
    "DeemphasisFilter",
    "FMReceiver",
    "FilterDesignError",
    "FrequencyShifter",
    "PowerAggregator",
    "PowerReading",
    "PowerSpectrum",
    "QuadratureDemod",
    "RationalResampler",
    "ReceiverConfig",
    "SweepFrame",
    "SweepRecord",
    "WavAudioSink",
    "WavIQSource",
    "__version__",
    "build_fm_chain",
    "build_spectrum_chain",
    "kaiser_lowpass",
    "lin2power_db",
    "lowpass_hz",
    "multirate_taps",
    "plan_receiver",
]
