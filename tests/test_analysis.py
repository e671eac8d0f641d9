"""
End-to-end tests for the track report.
"""
import json
import logging

import numpy as np
import pytest

from masterscope import AnalysisConfig, analyze_track
from masterscope.dsp.analysis.musical import compute_musical_features


@pytest.fixture
def stereo_mix(make_sine, make_clicks, rng, sample_rate):
    """5 s of tone, clicks and a little noise, slightly wider on the right."""
    tone = make_sine(440, 5.0, amplitude=0.3)
    clicks = make_clicks([22050 * (k + 1) for k in range(9)], 5 * sample_rate, amplitude=0.5)
    left = tone + clicks + 0.01 * rng.standard_normal(tone.shape[0])
    right = tone + clicks + 0.02 * rng.standard_normal(tone.shape[0])
    return np.stack([left, right])


class TestAnalyzeTrack:
    def test_report_fields(self, stereo_mix, sample_rate, pool):
        report = analyze_track(stereo_mix, sample_rate, pool=pool)
        assert report.channels == 2
        assert report.sample_rate == sample_rate
        assert report.duration_sec == pytest.approx(5.0)
        assert report.loudness.integrated_lufs is not None
        assert report.dynamics.peak_dbfs is not None
        assert report.stereo.correlation > 0.9
        assert report.spectral.spectral_centroid_hz is not None
        assert report.harmonics.fundamental_hz is not None
        assert set(report.streaming.platforms) == {"Spotify", "Apple Music", "YouTube", "Tidal"}

    def test_report_is_json_serializable(self, stereo_mix, sample_rate, pool):
        payload = analyze_track(stereo_mix, sample_rate, pool=pool).to_dict()
        decoded = json.loads(json.dumps(payload))
        assert decoded["channels"] == 2
        assert "crest_by_band" in decoded["spectral"]
        assert "platforms" in decoded["streaming"]

    def test_mono_track(self, make_sine, sample_rate, pool):
        report = analyze_track(make_sine(440, 2.0), sample_rate, pool=pool)
        assert report.channels == 1
        assert report.stereo.correlation is None

    def test_radix2_config(self, stereo_mix, sample_rate):
        report = analyze_track(stereo_mix, sample_rate, AnalysisConfig(fft_backend="radix2"))
        assert report.spectral.spectral_centroid_hz is not None

    def test_logs_progress(self, make_sine, sample_rate, pool, caplog):
        with caplog.at_level(logging.INFO, logger="masterscope_dsp"):
            analyze_track(make_sine(440, 1.0), sample_rate, pool=pool)
        assert "[ANALYSIS]" in caplog.text

    def test_invalid_sample_rate(self, make_sine):
        with pytest.raises(ValueError):
            analyze_track(make_sine(440, 1.0), 0)


class TestMusicalFeatures:
    def test_click_track(self, make_clicks, sample_rate, pool):
        x = make_clicks([22050 * (k + 1) for k in range(16)], 9 * sample_rate)
        features = compute_musical_features(x, sample_rate, pool=pool)
        assert features.bpm_primary == 120
        assert features.tempo_drift_index == pytest.approx(0.0)

    def test_silence(self, sample_rate, pool):
        features = compute_musical_features(np.zeros(3 * sample_rate), sample_rate, pool=pool)
        assert features.bpm_primary is None
        assert features.key_primary is None
        assert features.key_stability_pct is None
