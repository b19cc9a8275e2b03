# ruff: noqa: NPY002
"""
Shared pytest fixtures and configuration for yasa-dsp tests.

Provides synthetic IQ generation, recording fixtures and hypothesis strategies.
"""

import sys
from pathlib import Path

import numpy as np
import pytest
import soundfile as sf
from hypothesis import strategies as st

# Add src to path for tests
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


# ============================================================================
# Synthetic IQ Data Generation
# ============================================================================


def generate_tone_iq(
    freq_offset: float,
    sample_rate: float,
    n_samples: int,
    amplitude: float = 1.0,
) -> np.ndarray:
    """Clean complex tone at ``freq_offset`` Hz (positive or negative)."""
    n = np.arange(n_samples, dtype=np.float64)
    return (amplitude * np.exp(1j * 2.0 * np.pi * freq_offset * n / sample_rate)).astype(np.complex64)


def generate_fm_iq(
    carrier_offset: float,
    sample_rate: float,
    n_samples: int,
    audio_freq: float = 1_000.0,
    deviation: float = 5_000.0,
    amplitude: float = 0.7,
    noise_std: float = 0.0,
) -> np.ndarray:
    """
    Frequency-modulated carrier with a single audio tone.

    Args:
        carrier_offset: Carrier position relative to the capture centre in Hz
        sample_rate: Sample rate in Hz
        n_samples: Number of samples
        audio_freq: Modulating tone in Hz
        deviation: Peak frequency deviation in Hz
        amplitude: Carrier amplitude
        noise_std: Standard deviation of added complex noise

    Returns:
        Complex IQ samples as numpy array
    """
    t = np.arange(n_samples, dtype=np.float64) / sample_rate
    audio = np.sin(2.0 * np.pi * audio_freq * t)
    phase = 2.0 * np.pi * carrier_offset * t + 2.0 * np.pi * deviation * np.cumsum(audio) / sample_rate
    iq = amplitude * np.exp(1j * phase)
    if noise_std:
        rng = np.random.default_rng(7)
        iq = iq + noise_std * (rng.standard_normal(n_samples) + 1j * rng.standard_normal(n_samples))
    return iq.astype(np.complex64)


def split_blocks(samples: np.ndarray, sizes) -> list[np.ndarray]:
    """Cut ``samples`` into consecutive blocks of the given sizes (the rest is the last block)."""
    blocks = []
    cursor = 0
    for size in sizes:
        if cursor >= samples.size:
            break
        blocks.append(samples[cursor : cursor + size])
        cursor += size
    if cursor < samples.size:
        blocks.append(samples[cursor:])
    return blocks


@pytest.fixture
def rng():
    return np.random.default_rng(1234)


@pytest.fixture
def synthetic_iq(rng):
    """100k samples of random complex IQ data."""
    return (rng.standard_normal(100_000) + 1j * rng.standard_normal(100_000)).astype(np.complex64)


@pytest.fixture
def synthetic_fm_wav(tmp_path):
    """
    Write a stereo I/Q WAV with an FM station one IF offset below centre.

    Returns (path, sample_rate).
    """
    sample_rate = 1_000_000
    iq = generate_fm_iq(-250_000.0, float(sample_rate), 100_000, noise_std=0.01)
    path = tmp_path / "synthetic_fm.wav"
    interleaved = np.stack([iq.real, iq.imag], axis=1)
    sf.write(path, interleaved, sample_rate, subtype="PCM_16")
    return path, sample_rate


# ============================================================================
# Hypothesis Strategies for Property-Based Testing
# ============================================================================


@st.composite
def iq_samples(draw, min_size=1, max_size=2000, max_amplitude=10.0):
    """
    Hypothesis strategy for generating complex IQ samples.

    Args:
        min_size: Minimum number of samples
        max_size: Maximum number of samples
        max_amplitude: Maximum amplitude for real/imag parts

    Returns:
        Complex numpy array of IQ samples
    """
    size = draw(st.integers(min_value=min_size, max_value=max_size))
    parts = st.floats(
        min_value=-max_amplitude,
        max_value=max_amplitude,
        allow_nan=False,
        allow_infinity=False,
        width=32,
    )
    real = draw(st.lists(parts, min_size=size, max_size=size))
    imag = draw(st.lists(parts, min_size=size, max_size=size))
    return (np.array(real, dtype=np.float32) + 1j * np.array(imag, dtype=np.float32)).astype(np.complex64)


@st.composite
def block_splits(draw, max_blocks=12, max_block=700):
    """Sizes used to cut a stream into blocks (zero-length blocks included)."""
    return draw(
        st.lists(st.integers(min_value=0, max_value=max_block), min_size=1, max_size=max_blocks)
    )


@st.composite
def resampling_ratios(draw):
    """Small interpolation/decimation pairs."""
    interp = draw(st.integers(min_value=1, max_value=7))
    decim = draw(st.integers(min_value=1, max_value=7))
    return interp, decim


# ============================================================================
# Temporary Directory Management
# ============================================================================


@pytest.fixture(autouse=True)
def change_test_dir(tmp_path, monkeypatch):
    """
    Automatically change to temp directory for each test.
    Helps prevent test pollution of project directory.
    """
    monkeypatch.chdir(tmp_path)
    return tmp_path


# ============================================================================
# Pytest Configuration Hooks
# ============================================================================


def pytest_configure(config):
    """Configure pytest with custom markers and settings."""
    config.addinivalue_line(
        "markers", "integration: mark test as integration test (may be slow)"
    )
    config.addinivalue_line("markers", "slow: mark test as slow")


def pytest_collection_modifyitems(config, items):
    """
    Modify test collection to add automatic markers based on test names/locations.
    """
    for item in items:
        # Auto-mark slow tests
        if "integration" in str(item.fspath) or "slow" in item.name.lower():
            item.add_marker(pytest.mark.slow)
