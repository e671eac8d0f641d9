"""One-call track report.

Runs every analyzer once over the same decoded buffers and returns a
`TrackReport`. Analyzers are independent: a degenerate result from one
(too short, silent) never prevents the others from running.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

from masterscope.config import AnalysisConfig
from masterscope.dsp.analysis.dynamics import DynamicsResult, analyze_dynamics
from masterscope.dsp.analysis.harmonics import HarmonicDistortionResult, analyze_harmonics
from masterscope.dsp.analysis.musical import MusicalFeatures, compute_musical_features
from masterscope.dsp.analysis.spectral import SpectralResult, analyze_spectral
from masterscope.dsp.analysis.stereo import StereoResult, analyze_stereo
from masterscope.dsp.analysis.streaming import StreamingSimulation, simulate_streaming
from masterscope.dsp_engine.channels import ChannelsLike, as_channels
from masterscope.dsp_engine.loudness import LoudnessStats, measure_loudness
from masterscope.dsp_engine.resource_pool import ResourcePool, pool_for_config

logger = logging.getLogger("masterscope_dsp")


@dataclass(frozen=True)
class TrackReport:
    sample_rate: int
    channels: int
    duration_sec: float
    loudness: LoudnessStats
    dynamics: DynamicsResult
    stereo: StereoResult
    spectral: SpectralResult
    harmonics: HarmonicDistortionResult
    musical: MusicalFeatures
    streaming: StreamingSimulation

    def to_dict(self) -> Dict[str, Any]:
        """Plain nested dict, ready for JSON encoding."""
        return asdict(self)


def analyze_track(
    channels: ChannelsLike,
    sample_rate: int,
    config: Optional[AnalysisConfig] = None,
    pool: Optional[ResourcePool] = None,
) -> TrackReport:
    x = as_channels(channels, sample_rate)
    pool = pool or pool_for_config(config)
    sr = int(sample_rate)
    logger.info("[ANALYSIS] Analyzing %d channel(s), %d samples at %d Hz", x.shape[0], x.shape[1], sr)

    loudness = measure_loudness(x, sr)
    report = TrackReport(
        sample_rate=sr,
        channels=int(x.shape[0]),
        duration_sec=x.shape[1] / float(sr),
        loudness=loudness,
        dynamics=analyze_dynamics(x, sr, config, pool),
        stereo=analyze_stereo(x, sr, config, pool),
        spectral=analyze_spectral(x, sr, config, pool),
        harmonics=analyze_harmonics(x, sr, config, pool),
        musical=compute_musical_features(x, sr, config, pool),
        streaming=simulate_streaming(loudness.integrated_lufs, loudness.true_peak_dbtp),
    )
    logger.info(
        "[ANALYSIS] Done: lufs=%s tp=%s dBTP crest=%s dB",
        loudness.integrated_lufs,
        loudness.true_peak_dbtp,
        report.dynamics.crest_factor_db,
    )
    return report
