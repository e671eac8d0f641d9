"""
Tests for dynamics analysis.

Covers levels, clipping, silence trimming, transient detection and the
heuristic preservation/compression scores.
"""
import numpy as np
import pytest

from masterscope.dsp.analysis.dynamics import (
    analyze_clipping,
    analyze_dynamics,
    dynamic_preservation,
    estimate_compression,
    transient_sharpness,
    transient_spacing,
)

CLICK_SPACING = 22050
CLICK_OFFSET = 11025


def _click_positions(count):
    return [CLICK_OFFSET + CLICK_SPACING * k for k in range(count)]


class TestLevels:
    def test_sine_crest_factor(self, make_sine, sample_rate):
        """A near full-scale sine has a ~3 dB crest factor and no clipping."""
        result = analyze_dynamics(make_sine(1000, 1.0, amplitude=0.99), sample_rate)
        assert result.crest_factor_db == pytest.approx(3.01, abs=0.5)
        assert result.peak_dbfs == pytest.approx(-0.087, abs=0.05)
        assert result.has_clipping is False
        assert result.clip_event_count == 0

    def test_dc_offset(self, make_sine, sample_rate):
        x = make_sine(1000, 1.0) + 0.1
        assert analyze_dynamics(x, sample_rate).dc_offset == pytest.approx(0.1, abs=1e-3)

    def test_silence_is_unmeasurable(self, sample_rate):
        result = analyze_dynamics(np.zeros((2, sample_rate)), sample_rate)
        assert result.peak_dbfs is None
        assert result.rms_dbfs is None
        assert result.crest_factor_db is None
        assert result.dynamic_range_db == 0.0
        assert result.silence_at_start_ms == 1000
        assert result.silence_at_end_ms == 1000

    def test_empty_input(self, sample_rate):
        result = analyze_dynamics(np.zeros((2, 0)), sample_rate)
        assert result.peak_dbfs is None
        assert result.transient_times == []
        assert result.compression_estimate.compression_character is None

    def test_mismatched_channels(self, sample_rate):
        with pytest.raises(ValueError):
            analyze_dynamics([np.zeros(10), np.zeros(11)], sample_rate)

    def test_input_not_modified(self, make_sine, sample_rate):
        x = np.stack([make_sine(440, 0.5), make_sine(660, 0.5)])
        before = x.copy()
        analyze_dynamics(x, sample_rate)
        np.testing.assert_array_equal(x, before)

    def test_repeatable(self, make_sine, sample_rate):
        x = make_sine(440, 1.0) + 0.3 * make_sine(3000, 1.0)
        assert analyze_dynamics(x, sample_rate) == analyze_dynamics(x, sample_rate)


class TestSilence:
    def test_leading_and_trailing_silence(self, make_sine, sample_rate):
        x = np.concatenate([np.zeros(sample_rate // 2), make_sine(1000, 1.0), np.zeros(sample_rate // 4)])
        result = analyze_dynamics(x, sample_rate)
        assert result.silence_at_start_ms == 500
        assert result.silence_at_end_ms == 250


class TestClipping:
    def test_clip_events(self):
        """Events are contiguous runs, ordered worst-first by duration."""
        sr = 1000
        x = np.zeros((1, 60000))
        x[0, 100:110] = 1.0
        x[0, 500:530] = -1.0
        x[0, 1000:1005] = 1.0

        stats = analyze_clipping(x, sr)
        assert stats.has_clipping
        assert stats.clipped_sample_count == 45
        assert stats.clip_event_count == 3
        assert stats.clip_density_per_minute == pytest.approx(3.0)
        assert stats.worst_clip_timestamps == pytest.approx([0.5, 0.1, 1.0])

    def test_events_counted_per_channel(self):
        x = np.zeros((2, 1000))
        x[:, 10:20] = 1.0
        stats = analyze_clipping(x, 1000)
        assert stats.clip_event_count == 2
        assert stats.clipped_sample_count == 20

    def test_hard_clipped_sine(self, make_sine, sample_rate):
        x = np.clip(make_sine(1000, 1.0, amplitude=1.5), -1.0, 1.0)
        result = analyze_dynamics(x, sample_rate)
        assert result.has_clipping
        assert result.clip_event_count > 100
        assert len(result.worst_clip_timestamps) == 5


class TestTransients:
    """Onset detection on a regular click train."""

    def test_click_train(self, make_clicks, sample_rate):
        positions = _click_positions(8)
        x = make_clicks(positions, 4 * sample_rate)
        result = analyze_dynamics(x, sample_rate)

        assert len(result.transient_times) == 8
        for detected, p in zip(result.transient_times, positions):
            assert abs(detected - p / sample_rate) < 0.02
        assert result.transient_density == pytest.approx(120.0)
        assert result.transient_timing_character == "robotic"
        assert result.transient_spacing_cv < 0.08


class TestHeuristics:
    def test_preservation_excellent(self):
        score, note = dynamic_preservation(12.0, 12.0, False, 6.0)
        assert score == 100.0
        assert note == "Excellent dynamic preservation"

    def test_preservation_good(self):
        score, note = dynamic_preservation(6.0, 6.0, False, 4.0)
        assert score == pytest.approx(80.0)
        assert note == "Good dynamics, moderate processing"

    def test_preservation_heavy(self):
        score, note = dynamic_preservation(4.0, 3.0, True, 2.0)
        assert score == pytest.approx(41.0)
        assert note == "Heavily compressed/limited"

    def test_preservation_clamped(self):
        score, _ = dynamic_preservation(0.0, 0.0, True, 0.0)
        assert score == 0.0

    def test_spacing_labels(self):
        assert transient_spacing([0.0, 1.0, 2.0, 3.0]) == (0.0, "robotic")
        assert transient_spacing([0.0, 1.0]) == (0.0, "natural")
        cv, character = transient_spacing([0.0, 1.0, 2.5, 3.0])
        assert cv == pytest.approx(0.408, abs=1e-3)
        assert character == "loose"

    def test_compression_brickwall(self):
        est = estimate_compression(dynamic_range_db=4.0, crest_db=4.0, clip_density_per_minute=12.0)
        assert est.compression_character == "brickwall"
        assert est.estimated_ratio == 20
        assert est.estimated_threshold_db == -1.0
        assert est.confidence == "high"
        assert estimate_compression(4.0, 4.0, 5.0).confidence == "medium"

    def test_compression_heavy(self):
        est = estimate_compression(dynamic_range_db=7.0, crest_db=6.0, clip_density_per_minute=0.0)
        assert est.compression_character == "heavy"
        assert est.estimated_ratio == 3

    def test_compression_moderate(self):
        low = estimate_compression(dynamic_range_db=10.0, crest_db=9.0, clip_density_per_minute=0.0)
        assert low.compression_character == "moderate"
        assert low.estimated_ratio == 2
        assert low.confidence == "low"
        medium = estimate_compression(dynamic_range_db=10.0, crest_db=7.5, clip_density_per_minute=0.0)
        assert medium.confidence == "medium"

    def test_compression_light_and_none(self):
        assert estimate_compression(20.0, 12.0, 0.0).compression_character == "light"
        none = estimate_compression(20.0, 15.0, 0.0)
        assert none.compression_character is None
        assert none.estimated_ratio is None

    def test_sharpness_needs_two_onsets(self, sample_rate):
        sharp = transient_sharpness(np.zeros(1000), sample_rate, [100], [0.01])
        assert sharp.attack_steepness_score == 50
        assert sharp.spacing_uniformity_score == 100
        assert sharp.avg_attack_ms is None
        assert sharp.avg_decay_ms is None

    def test_sharpness_on_clicks(self, make_clicks, sample_rate):
        positions = _click_positions(8)
        x = make_clicks(positions, 4 * sample_rate)
        result = analyze_dynamics(x, sample_rate)
        assert result.transient_sharpness.spacing_uniformity_score > 90
