from __future__ import annotations

import math

import numpy as np
import pytest
from conftest import block_splits, generate_tone_iq, resampling_ratios, split_blocks
from hypothesis import given, settings

from yasa_dsp.resampler import RationalResampler


def _reference(samples: np.ndarray, interp: int, decim: int, taps: np.ndarray) -> np.ndarray:
    """Zero-stuff, filter, keep every ``decim``-th sample."""
    upsampled = np.zeros(samples.size * interp, dtype=np.complex128)
    upsampled[::interp] = samples
    filtered = np.convolve(upsampled, taps)[: upsampled.size]
    return filtered[::decim]


def _run(resampler: RationalResampler, blocks) -> np.ndarray:
    outputs = []
    for block in blocks:
        out, consumed = resampler.process(block)
        assert consumed == len(block)
        outputs.append(out)
    return np.concatenate(outputs)


def test_output_count_matches_rate_across_calls():
    resampler = RationalResampler(3, 2)
    samples = np.ones(1_000, dtype=np.complex64)
    out = _run(resampler, split_blocks(samples, [7, 13, 1, 400, 99]))
    assert out.size == math.ceil(1_000 * 3 / 2)
    assert abs(out.size - 1_000 * 3 // 2) <= 1


def test_matches_upsample_filter_decimate(rng):
    samples = (rng.standard_normal(3_000) + 1j * rng.standard_normal(3_000)).astype(np.complex64)
    resampler = RationalResampler(6, 25)
    out = _run(resampler, split_blocks(samples, [1_024, 1_024]))
    expected = _reference(samples.astype(np.complex128), 6, 25, resampler.taps)
    assert out.size == expected.size
    np.testing.assert_allclose(out, expected, atol=1e-4)


def test_real_input_produces_float32(rng):
    taps = np.array([0.25, 0.5, 0.25])
    samples = rng.standard_normal(500).astype(np.float32)
    resampler = RationalResampler(1, 5, taps, complex_input=False)
    out = _run(resampler, [samples])
    assert out.dtype == np.float32
    expected = np.convolve(samples.astype(np.float64), taps)[: samples.size][::5]
    np.testing.assert_allclose(out, expected, atol=1e-6)


def test_single_sample_blocks_are_handled():
    samples = np.arange(1, 101, dtype=np.float32)
    resampler = RationalResampler(1, 5, np.ones(3), complex_input=False)
    pieces = [resampler.process(samples[i : i + 1])[0] for i in range(samples.size)]
    assert sum(piece.size for piece in pieces) == 20
    assert sum(1 for piece in pieces if piece.size == 0) == 80
    out = np.concatenate(pieces)
    expected = np.convolve(samples, np.ones(3))[: samples.size][::5]
    np.testing.assert_allclose(out, expected)


def test_tone_survives_downsampling():
    tone = generate_tone_iq(1_000.0, 48_000.0, 24_000)
    resampler = RationalResampler(1, 2)
    out = _run(resampler, split_blocks(tone, [4_096] * 6))
    settled = out[resampler.taps.size // resampler.decim + 1 :]
    np.testing.assert_allclose(np.abs(settled), 1.0, atol=0.01)


def test_ratio_is_reduced():
    resampler = RationalResampler(240_000, 1_000_000)
    assert (resampler.interp, resampler.decim) == (6, 25)
    assert resampler.ratio == pytest.approx(0.24)


def test_output_length_predicts_next_call():
    resampler = RationalResampler(6, 25)
    for size in [10, 3, 100, 1]:
        expected = resampler.output_length(size)
        out, _ = resampler.process(np.ones(size, dtype=np.complex64))
        assert out.size == expected


def test_finish_emits_nothing_and_blocks_further_input():
    resampler = RationalResampler(2, 3)
    resampler.process(np.ones(10, dtype=np.complex64))
    tail = resampler.finish()
    assert tail.size == 0
    with pytest.raises(RuntimeError):
        resampler.process(np.ones(1, dtype=np.complex64))


def test_reset_restarts_stream():
    samples = np.arange(50, dtype=np.complex64)
    resampler = RationalResampler(3, 4)
    first = _run(resampler, [samples])
    resampler.reset()
    second = _run(resampler, [samples])
    np.testing.assert_array_equal(first, second)


@pytest.mark.parametrize(
    ("interp", "decim", "taps"),
    [
        (0, 1, None),
        (1, 0, None),
        (2, 3, np.empty(0)),
        (2, 3, np.array([1.0, np.nan])),
    ],
)
def test_invalid_configuration_raises(interp, decim, taps):
    with pytest.raises(ValueError):
        RationalResampler(interp, decim, taps)


@settings(max_examples=30, deadline=None)
@given(ratio=resampling_ratios(), sizes=block_splits(max_block=300))
def test_split_invariance_property(ratio, sizes):
    interp, decim = ratio
    samples = np.sin(0.05 * np.arange(1_200)).astype(np.float32)
    taps = np.hanning(9)
    whole = _run(RationalResampler(interp, decim, taps, complex_input=False), [samples])
    pieces = _run(
        RationalResampler(interp, decim, taps, complex_input=False),
        split_blocks(samples, sizes),
    )
    np.testing.assert_allclose(pieces, whole, atol=1e-6)
    assert whole.size == math.ceil(samples.size * ratio[0] / ratio[1])
