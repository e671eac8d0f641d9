"""
Tests for tempo detection and tempo drift.
"""
import numpy as np
import pytest

from masterscope.dsp.analysis.tempo import (
    beat_stability,
    detect_tempo,
    onset_envelope,
    tempo_drift,
)
from masterscope.dsp.analysis.tempo import _drift_from_envelope

BEAT = 22050  # 120 BPM at 44.1 kHz


@pytest.fixture
def click_track(make_clicks, sample_rate):
    """16 clicks at 120 BPM in 9 s."""
    positions = [BEAT * (k + 1) for k in range(16)]
    return make_clicks(positions, 9 * sample_rate)


class TestDetectTempo:
    def test_click_track_120_bpm(self, click_track, sample_rate):
        result = detect_tempo(click_track, sample_rate)
        assert result.primary_bpm == 120
        assert result.confidence == 100
        assert result.beat_stability > 70
        assert 1 <= len(result.candidates) <= 3

    def test_half_tempo_is_flagged(self, click_track, sample_rate):
        result = detect_tempo(click_track, sample_rate)
        assert any(c.bpm == 60 for c in result.candidates)
        assert result.half_double_ambiguity is True

    def test_stereo_input_uses_downmix(self, click_track, sample_rate):
        result = detect_tempo(np.stack([click_track, click_track]), sample_rate)
        assert result.primary_bpm == 120

    def test_short_signal(self, make_sine, sample_rate):
        result = detect_tempo(make_sine(440, 0.5), sample_rate)
        assert result.primary_bpm is None
        assert result.candidates == []

    def test_silence(self, sample_rate):
        result = detect_tempo(np.zeros(3 * sample_rate), sample_rate)
        assert result.primary_bpm is None
        assert result.confidence == 0


class TestEnvelope:
    def test_normalized(self, click_track, sample_rate):
        env = onset_envelope(click_track, sample_rate)
        assert env.max() == pytest.approx(1.0)
        assert env.min() >= 0.0

    def test_beat_stability_regular(self):
        env = np.zeros(500)
        env[50::50] = 1.0
        assert beat_stability(env, 120.0, 100.0) == 100

    def test_beat_stability_jittered(self):
        env = np.zeros(300)
        env[[50, 105, 150, 205]] = 1.0
        assert beat_stability(env, 120.0, 100.0) == 90

    def test_beat_stability_needs_three_peaks(self):
        env = np.zeros(300)
        env[[50, 100]] = 1.0
        assert beat_stability(env, 120.0, 100.0) == 0


class TestTempoDrift:
    def test_steady_click_track(self, click_track, sample_rate):
        result = tempo_drift(click_track, sample_rate, 120)
        assert result.drift_index == pytest.approx(0.0)
        assert result.note is None

    def test_no_tempo(self, click_track, sample_rate):
        result = tempo_drift(click_track, sample_rate, None)
        assert result.drift_index == 0.0
        assert result.note is None

    def test_humanized_intervals(self):
        env = np.zeros(400)
        env[[50, 105, 150, 205, 250]] = 1.0
        result = _drift_from_envelope(env, 120.0, 100.0)
        assert result.drift_index == pytest.approx(10.0)
        assert result.note == "Tempo varies slightly; likely live or humanized"

    def test_unstable_intervals(self):
        env = np.zeros(400)
        env[[50, 90, 150, 190, 250]] = 1.0
        result = _drift_from_envelope(env, 120.0, 100.0)
        assert result.drift_index == pytest.approx(20.0)
        assert result.note.startswith("Tempo fluctuates significantly")
