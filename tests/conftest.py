"""
Pytest fixtures for masterscope tests.

Signals are synthesized on the fly (sines, click trains, noise) so the
tests need no audio files.
"""
import numpy as np
import pytest

from masterscope.dsp_engine.resource_pool import ResourcePool


SR = 44100


@pytest.fixture
def sample_rate():
    """Standard sample rate for tests."""
    return SR


@pytest.fixture
def pool():
    """Isolated resource pool, cleared after each test."""
    p = ResourcePool()
    yield p
    p.clear()


@pytest.fixture
def rng():
    return np.random.default_rng(1234)


@pytest.fixture
def make_sine():
    """Factory: make_sine(freq, duration, sr=SR, amplitude=0.5)."""

    def _sine(freq, duration, sr=SR, amplitude=0.5):
        t = np.arange(int(sr * duration)) / sr
        return amplitude * np.sin(2 * np.pi * freq * t)

    return _sine


@pytest.fixture
def make_clicks():
    """Factory: 1 kHz bursts of 220 samples at the given sample positions."""

    def _clicks(positions, total_samples, sr=SR, amplitude=0.8, length=220):
        out = np.zeros(total_samples)
        burst = amplitude * np.sin(2 * np.pi * 1000.0 * np.arange(length) / sr)
        for p in positions:
            out[p:p + length] = burst[: max(0, min(length, total_samples - p))]
        return out

    return _clicks
