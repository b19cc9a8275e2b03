from __future__ import annotations

import logging
import math

import numpy as np
from scipy.signal import firwin, freqz, kaiser_beta, kaiserord

LOG = logging.getLogger(__name__)

DEFAULT_MAX_TAPS = 65_537
RESAMPLER_FRACTIONAL_BW = 0.4
RESAMPLER_ATTENUATION_DB = 60.0


class FilterDesignError(ValueError):
    """Raised when low-pass parameters cannot produce a usable filter."""


def ripple_to_attenuation_db(ripple: float) -> float:
    """Stop-band attenuation in dB for a maximum linear ripple."""
    return -20.0 * math.log10(ripple)


def kaiser_lowpass(
    cutoff: float,
    transition: float,
    ripple: float,
    *,
    gain: float = 1.0,
    max_taps: int = DEFAULT_MAX_TAPS,
) -> np.ndarray:
    """Design a Kaiser-windowed low-pass FIR filter.

    ``cutoff`` and ``transition`` are normalized to the sample rate
    (cycles/sample); ``cutoff`` is the middle of the transition band, so the
    stop band starts at ``cutoff + transition / 2``, which must lie below
    Nyquist. ``ripple`` is the maximum linear ripple and sets the stop-band
    attenuation to ``-20*log10(ripple)`` dB.

    The Kaiser tap estimate is checked against the designed response and
    lengthened until the stop band meets the attenuation. The returned taps
    are read-only and sum to ``gain``.
    """
    _validate_lowpass(cutoff, transition, ripple)
    if gain <= 0 or not math.isfinite(gain):
        raise FilterDesignError("gain must be a positive finite number")
    attenuation = ripple_to_attenuation_db(ripple)
    edge = cutoff + transition / 2.0
    design_attenuation = attenuation
    numtaps = 0

    while True:
        # Kaiser's estimate can fall short (notably when cutoff < transition/2);
        # retry with a stricter design target until the real stop band passes.
        estimate, _ = kaiserord(design_attenuation, 2.0 * transition)
        numtaps = max(int(estimate), 3, numtaps + 2) | 1
        if numtaps > max_taps:
            raise FilterDesignError(
                f"Low-pass (cutoff={cutoff:g}, transition={transition:g}, "
                f"attenuation={attenuation:.1f} dB) needs more than {max_taps} taps."
            )
        beta = kaiser_beta(design_attenuation)
        taps = firwin(numtaps, cutoff, window=("kaiser", beta), fs=1.0)
        taps = np.asarray(taps, dtype=np.float64)
        measured = stopband_attenuation_db(taps, edge)
        if measured >= attenuation:
            break
        design_attenuation += 2.0

    taps *= gain / np.sum(taps)
    taps.flags.writeable = False
    LOG.debug(
        "Designed %d-tap low-pass: cutoff %.5f, transition %.5f, stop band %.1f dB (target %.1f dB).",
        taps.size,
        cutoff,
        transition,
        measured,
        attenuation,
    )
    return taps


def lowpass_hz(
    sample_rate: float,
    cutoff_hz: float,
    transition_hz: float,
    ripple: float,
    *,
    gain: float = 1.0,
) -> np.ndarray:
    """Convenience wrapper taking absolute frequencies in Hz."""
    if sample_rate <= 0:
        raise FilterDesignError("sample_rate must be positive")
    return kaiser_lowpass(
        cutoff_hz / sample_rate,
        transition_hz / sample_rate,
        ripple,
        gain=gain,
    )


def multirate_taps(
    interp: int,
    decim: int,
    *,
    fractional_bw: float = RESAMPLER_FRACTIONAL_BW,
    attenuation_db: float = RESAMPLER_ATTENUATION_DB,
) -> np.ndarray:
    """Anti-imaging/anti-aliasing filter for an ``interp/decim`` resampler.

    The filter runs at the upsampled rate and keeps ``fractional_bw`` of the
    lower of the input and output Nyquist bands. Gain is ``interp`` so that
    zero-stuffed samples come out at their original amplitude.
    """
    interp, decim = reduce_ratio(interp, decim)
    if not 0.0 < fractional_bw < 0.5:
        raise FilterDesignError("fractional_bw must be in (0, 0.5)")
    if attenuation_db <= 0:
        raise FilterDesignError("attenuation_db must be positive")
    if interp == 1 and decim == 1:
        taps = np.ones(1, dtype=np.float64)
        taps.flags.writeable = False
        return taps
    halfband = 0.5
    rate = interp / decim
    if rate >= 1.0:
        transition = halfband - fractional_bw
        cutoff = halfband - transition / 2.0
    else:
        transition = rate * (halfband - fractional_bw)
        cutoff = rate * halfband - transition / 2.0
    ripple = 10.0 ** (-attenuation_db / 20.0)
    return kaiser_lowpass(cutoff / interp, transition / interp, ripple, gain=float(interp))


def stopband_attenuation_db(taps: np.ndarray, edge: float, *, points: int = 4096) -> float:
    """Worst-case attenuation (dB, relative to DC gain) from ``edge`` to Nyquist."""
    if not 0.0 <= edge < 0.5:
        raise ValueError("edge must be within [0, 0.5)")
    taps = np.asarray(taps, dtype=np.float64)
    if taps.size == 0:
        raise ValueError("taps must not be empty")
    freqs = np.linspace(edge, 0.5, points)
    _, response = freqz(taps, worN=freqs, fs=1.0)
    peak = float(np.max(np.abs(response)))
    dc_gain = abs(float(np.sum(taps)))
    return 20.0 * math.log10(dc_gain / max(peak, 1e-300))


def reduce_ratio(interp: int, decim: int) -> tuple[int, int]:
    """Validate a resampling ratio and reduce it to lowest terms."""
    for label, value in (("interp", interp), ("decim", decim)):
        if isinstance(value, bool) or int(value) != value or value <= 0:
            raise ValueError(f"{label} must be a positive integer, got {value!r}")
    interp = int(interp)
    decim = int(decim)
    common = math.gcd(interp, decim)
    return interp // common, decim // common


def _validate_lowpass(cutoff: float, transition: float, ripple: float) -> None:
    if not all(math.isfinite(v) for v in (cutoff, transition, ripple)):
        raise FilterDesignError("filter parameters must be finite")
    if not 0.0 < cutoff < 0.5:
        raise FilterDesignError(f"cutoff must be in (0, 0.5), got {cutoff:g}")
    if transition <= 0.0:
        raise FilterDesignError(f"transition must be positive, got {transition:g}")
    if cutoff + transition / 2.0 >= 0.5:
        raise FilterDesignError(
            f"cutoff + transition/2 = {cutoff + transition / 2.0:g} reaches Nyquist (0.5)"
        )
    if not 0.0 < ripple < 1.0:
        raise FilterDesignError(f"ripple must be in (0, 1), got {ripple:g}")


__all__ = [
    "FilterDesignError",
    "kaiser_lowpass",
    "lowpass_hz",
    "multirate_taps",
    "reduce_ratio",
    "ripple_to_attenuation_db",
    "stopband_attenuation_db",
]
