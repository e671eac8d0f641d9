"""
Tests for streaming loudness-normalization projections.
"""
import pytest

from masterscope.dsp.analysis.streaming import (
    PLATFORM_TARGETS,
    loudness_recommendation,
    normalize_for_platform,
    simulate_streaming,
)


class TestNormalization:
    def test_loud_master_is_attenuated(self):
        spotify = normalize_for_platform("Spotify", -8.0, -0.5)
        assert spotify.gain_change_db == pytest.approx(-6.0)
        assert spotify.projected_true_peak_dbtp == pytest.approx(-6.5)
        assert spotify.risk_flags == ["Attenuated by 6.0 dB"]
        assert spotify.limiter_ceiling_suggestion is None

    def test_quiet_master_may_clip(self):
        """Positive gain pushes the true peak over the platform limit."""
        spotify = normalize_for_platform("Spotify", -20.0, -2.0)
        assert spotify.gain_change_db == pytest.approx(6.0)
        assert spotify.projected_true_peak_dbtp == pytest.approx(4.0)
        assert spotify.risk_flags == [
            "May clip post-normalization (TP 4.0 dBTP > -1 dBTP)",
            "Likely to clip or distort",
        ]
        assert spotify.limiter_ceiling_suggestion == pytest.approx(-7.0)

    def test_apple_reference(self):
        apple = normalize_for_platform("Apple Music", -20.0, -2.0)
        assert apple.reference_lufs == -16.0
        assert apple.gain_change_db == pytest.approx(4.0)


class TestSimulation:
    def test_all_platforms(self):
        sim = simulate_streaming(-9.0, -1.0)
        assert set(sim.platforms) == set(PLATFORM_TARGETS)
        assert sim.recommendation.startswith("Very competitive")

    def test_unknown_loudness(self):
        sim = simulate_streaming(None, -1.0)
        assert sim.platforms == {}
        assert sim.recommendation is None

    @pytest.mark.parametrize(
        "lufs,prefix",
        [(-10.0, "Competitive"), (-14.0, "Balanced"), (-18.0, "Dynamic"), (-23.0, "Dynamic")],
    )
    def test_recommendation_boundaries(self, lufs, prefix):
        assert loudness_recommendation(lufs).startswith(prefix)
