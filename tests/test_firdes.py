from __future__ import annotations

import numpy as np
import pytest
from scipy.signal import freqz

from yasa_dsp.firdes import (
    FilterDesignError,
    kaiser_lowpass,
    lowpass_hz,
    multirate_taps,
    reduce_ratio,
    ripple_to_attenuation_db,
    stopband_attenuation_db,
)


def _response_db(taps: np.ndarray, freqs: np.ndarray) -> np.ndarray:
    _, response = freqz(taps, worN=freqs, fs=1.0)
    return 20.0 * np.log10(np.abs(response) / abs(np.sum(taps)))


def test_lowpass_is_odd_symmetric_and_unity_gain():
    taps = kaiser_lowpass(0.1, 0.05, 0.001)
    assert taps.size % 2 == 1
    np.testing.assert_allclose(taps, taps[::-1], atol=1e-15)
    assert np.sum(taps) == pytest.approx(1.0)
    assert not taps.flags.writeable


def test_lowpass_meets_stopband_attenuation():
    taps = kaiser_lowpass(0.1, 0.05, 0.001)
    stopband = np.linspace(0.125, 0.5, 2_000)
    assert np.max(_response_db(taps, stopband)) <= -60.0 + 0.05
    passband = np.linspace(0.0, 0.07, 200)
    assert np.max(np.abs(_response_db(taps, passband))) < 0.05


def test_lowpass_rejects_a_stopband_tone():
    taps = kaiser_lowpass(0.1, 0.05, 0.001)
    n = np.arange(4_000)
    tone = np.cos(2.0 * np.pi * 0.3 * n)
    filtered = np.convolve(tone, taps, mode="valid")
    assert np.max(np.abs(filtered)) <= 1.001e-3


def test_stricter_designs_need_more_taps():
    base = kaiser_lowpass(0.1, 0.05, 0.01)
    narrower = kaiser_lowpass(0.1, 0.01, 0.01)
    deeper = kaiser_lowpass(0.1, 0.05, 0.0001)
    assert narrower.size > base.size
    assert deeper.size > base.size


def test_narrow_cutoff_with_wide_transition_still_meets_target():
    # Audio filter of the FM receiver: 2 kHz cutoff, 10 kHz transition at 240 kHz.
    taps = lowpass_hz(240_000.0, 2_000.0, 10_000.0, 0.1)
    assert stopband_attenuation_db(taps, 7_000.0 / 240_000.0) >= 19.9
    assert np.sum(taps) == pytest.approx(1.0)


def test_gain_scales_taps():
    taps = kaiser_lowpass(0.2, 0.05, 0.01, gain=3.0)
    assert np.sum(taps) == pytest.approx(3.0)


@pytest.mark.parametrize(
    ("cutoff", "transition", "ripple"),
    [
        (0.45, 0.2, 0.01),  # stop band edge beyond Nyquist
        (0.4, 0.2, 0.01),  # edge exactly at Nyquist
        (0.0, 0.1, 0.01),
        (0.1, 0.0, 0.01),
        (0.1, -0.1, 0.01),
        (0.1, 0.05, 0.0),
        (0.1, 0.05, 1.0),
        (float("nan"), 0.05, 0.01),
    ],
)
def test_invalid_lowpass_parameters_are_rejected(cutoff, transition, ripple):
    with pytest.raises(FilterDesignError):
        kaiser_lowpass(cutoff, transition, ripple)


def test_filter_design_error_is_value_error():
    with pytest.raises(ValueError):
        lowpass_hz(48_000.0, 20_000.0, 10_000.0, 0.01)


def test_tap_budget_is_enforced():
    with pytest.raises(FilterDesignError, match="taps"):
        kaiser_lowpass(0.1, 1e-4, 1e-6, max_taps=1_001)


def test_ripple_to_attenuation():
    assert ripple_to_attenuation_db(0.1) == pytest.approx(20.0)
    assert ripple_to_attenuation_db(0.001) == pytest.approx(60.0)


def test_multirate_taps_gain_matches_interpolation():
    taps = multirate_taps(6, 25)
    assert np.sum(taps) == pytest.approx(6.0)
    # Output Nyquist (0.12 of the input rate) sits at 0.02 of the upsampled rate.
    assert stopband_attenuation_db(taps, 0.02) >= 59.9


def test_multirate_identity_is_single_tap():
    taps = multirate_taps(4, 4)
    np.testing.assert_array_equal(taps, [1.0])


def test_reduce_ratio():
    assert reduce_ratio(240_000, 1_000_000) == (6, 25)
    assert reduce_ratio(3, 3) == (1, 1)
    for bad in [(0, 1), (1, -2), (True, 2), (1.5, 2)]:
        with pytest.raises(ValueError):
            reduce_ratio(*bad)


def test_stopband_attenuation_validates_inputs():
    with pytest.raises(ValueError):
        stopband_attenuation_db(np.ones(3), 0.5)
    with pytest.raises(ValueError):
        stopband_attenuation_db(np.empty(0), 0.1)
