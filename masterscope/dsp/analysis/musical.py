"""Tempo and key bundled into one musical-features record."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from masterscope.config import AnalysisConfig
from masterscope.dsp.analysis.tempo import BPMCandidate, detect_tempo_mono, tempo_drift_mono
from masterscope.dsp.analysis.tonality import KeyCandidate, detect_key_mono, key_stability_mono
from masterscope.dsp_engine.channels import ChannelsLike, as_channels, downmix_mono
from masterscope.dsp_engine.resource_pool import ResourcePool, pool_for_config

logger = logging.getLogger("masterscope_dsp.analysis.musical")


@dataclass(frozen=True)
class MusicalFeatures:
    bpm_primary: Optional[int] = None
    bpm_confidence: int = 0
    bpm_candidates: List[BPMCandidate] = field(default_factory=list)
    half_double_ambiguity: bool = False
    beat_stability_score: int = 0
    key_primary: Optional[str] = None
    key_confidence: int = 0
    key_candidates: List[KeyCandidate] = field(default_factory=list)
    tonalness_score: int = 0
    tempo_drift_index: float = 0.0
    tempo_drift_note: Optional[str] = None
    key_stability_pct: Optional[int] = None
    key_stability_note: Optional[str] = None


def compute_musical_features(
    channels: ChannelsLike,
    sample_rate: int,
    config: Optional[AnalysisConfig] = None,
    pool: Optional[ResourcePool] = None,
) -> MusicalFeatures:
    pool = pool or pool_for_config(config)
    x = as_channels(channels, sample_rate)
    mono = downmix_mono(x)
    sr = int(sample_rate)

    tempo = detect_tempo_mono(mono, sr)
    key = detect_key_mono(mono, sr, config, pool)
    drift = tempo_drift_mono(mono, sr, tempo.primary_bpm)
    stability = key_stability_mono(mono, sr, key.primary_key, config, pool)

    logger.info("[MUSICAL] bpm=%s key=%s", tempo.primary_bpm, key.primary_key)
    return MusicalFeatures(
        bpm_primary=tempo.primary_bpm,
        bpm_confidence=tempo.confidence,
        bpm_candidates=tempo.candidates,
        half_double_ambiguity=tempo.half_double_ambiguity,
        beat_stability_score=tempo.beat_stability,
        key_primary=key.primary_key,
        key_confidence=key.confidence,
        key_candidates=key.candidates,
        tonalness_score=key.tonalness_score,
        tempo_drift_index=drift.drift_index,
        tempo_drift_note=drift.note,
        key_stability_pct=stability.stability_pct,
        key_stability_note=stability.note,
    )
