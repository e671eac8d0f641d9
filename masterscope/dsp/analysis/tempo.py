"""Tempo (BPM) detection and tempo drift.

An onset envelope (half-wave rectified RMS difference, 23 ms windows
every 10 ms) is autocorrelated over the lags for 40-200 BPM. The
strongest autocorrelation peaks become BPM candidates.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np

from masterscope.config import AnalysisConfig
from masterscope.dsp_engine.channels import ChannelsLike, as_channels, downmix_mono
from masterscope.dsp_engine.levels import clamp, round_int
from masterscope.dsp_engine.resource_pool import ResourcePool

logger = logging.getLogger("masterscope_dsp.analysis.tempo")

MIN_BPM = 40.0
MAX_BPM = 200.0
MIN_ENVELOPE_FRAMES = 100


@dataclass(frozen=True)
class BPMCandidate:
    bpm: int
    confidence: int


@dataclass(frozen=True)
class TempoResult:
    primary_bpm: Optional[int] = None
    confidence: int = 0
    candidates: List[BPMCandidate] = field(default_factory=list)
    half_double_ambiguity: bool = False
    beat_stability: int = 0


@dataclass(frozen=True)
class TempoDriftResult:
    drift_index: float = 0.0
    note: Optional[str] = None


def onset_envelope(mono: np.ndarray, sr: int) -> np.ndarray:
    """Rectified frame-to-frame RMS increase, normalized to a peak of 1."""

    hop = sr // 100
    window = int(sr * 0.023)
    if hop <= 0 or window <= 0:
        return np.zeros(0)
    count = (mono.shape[0] - window) // hop
    if count <= 0:
        return np.zeros(0)

    frames = np.lib.stride_tricks.sliding_window_view(mono * mono, window)[: count * hop : hop]
    energy = np.sqrt(frames.mean(axis=1))
    env = np.maximum(0.0, np.diff(energy, prepend=0.0))
    peak = float(env.max())
    if peak > 0:
        env = env / peak
    return env


def _autocorrelation(env: np.ndarray, min_lag: int, max_lag: int) -> np.ndarray:
    n = env.shape[0]
    out = np.zeros(max_lag - min_lag + 1)
    for lag in range(min_lag, max_lag + 1):
        if n - lag > 0:
            out[lag - min_lag] = float(np.dot(env[: n - lag], env[lag:])) / (n - lag)
    return out


def _local_maxima(x: np.ndarray, threshold: Optional[float] = None) -> np.ndarray:
    """Indices of strict local maxima (optionally above a threshold)."""

    if x.shape[0] < 3:
        return np.zeros(0, dtype=np.int64)
    mid = x[1:-1]
    mask = (mid > x[:-2]) & (mid > x[2:])
    if threshold is not None:
        mask &= mid > threshold
    return np.flatnonzero(mask) + 1


def beat_stability(env: np.ndarray, bpm: float, frame_rate: float) -> int:
    """0-100 agreement of onset intervals with the expected beat interval."""

    expected = 60.0 * frame_rate / bpm
    peaks = _local_maxima(env, 0.3)
    if peaks.shape[0] < 3:
        return 0
    deviation = (np.diff(peaks) - expected) / expected
    return int(clamp(round_int(100.0 * (1.0 - math.sqrt(float(np.mean(deviation * deviation))))), 0, 100))


def _drift_from_envelope(env: np.ndarray, bpm: float, frame_rate: float) -> TempoDriftResult:
    peaks = _local_maxima(env, 0.2)
    if peaks.shape[0] < 4:
        return TempoDriftResult()

    expected = 60.0 * frame_rate / bpm
    intervals = np.diff(peaks).astype(np.float64)
    relevant = intervals[(intervals > expected * 0.5) & (intervals < expected * 2.0)]
    if relevant.shape[0] < 3:
        return TempoDriftResult()

    drift = float(relevant.std()) / expected * 100.0
    note = None
    if drift > 15:
        note = "Tempo fluctuates significantly; likely live performance or tempo changes"
    elif drift > 5:
        note = "Tempo varies slightly; likely live or humanized"
    return TempoDriftResult(drift_index=drift, note=note)


def detect_tempo_mono(mono: np.ndarray, sr: int) -> TempoResult:
    env = onset_envelope(mono, sr)
    if env.shape[0] < MIN_ENVELOPE_FRAMES:
        logger.info("[TEMPO] Onset envelope too short (%d frames)", env.shape[0])
        return TempoResult()

    hop = sr // 100
    frame_rate = sr / hop
    min_lag = int(math.floor(60.0 / MAX_BPM * frame_rate))
    max_lag = int(math.floor(60.0 / MIN_BPM * frame_rate))
    autocorr = _autocorrelation(env, min_lag, max_lag)

    peaks = _local_maxima(autocorr)
    order = peaks[np.argsort(-autocorr[peaks], kind="stable")]

    raw: List[BPMCandidate] = []
    for idx in order[:5]:
        bpm = 60.0 * frame_rate / (int(idx) + min_lag)
        if MIN_BPM <= bpm <= MAX_BPM:
            raw.append(BPMCandidate(round_int(bpm), round_int(float(autocorr[idx]) * 100.0)))

    max_conf = max([c.confidence for c in raw] + [1])
    candidates = [BPMCandidate(c.bpm, round_int(c.confidence / max_conf * 100.0)) for c in raw]
    candidates.sort(key=lambda c: -c.confidence)

    if not candidates:
        return TempoResult()

    primary = candidates[0].bpm
    ambiguity = any(abs(c.bpm - primary * 2) < 5 or abs(c.bpm - primary / 2) < 3 for c in candidates)
    stability = beat_stability(env, primary, frame_rate)
    logger.debug("[TEMPO] primary=%d bpm candidates=%s stability=%d", primary, [c.bpm for c in candidates], stability)

    return TempoResult(
        primary_bpm=primary,
        confidence=candidates[0].confidence,
        candidates=candidates[:3],
        half_double_ambiguity=ambiguity,
        beat_stability=stability,
    )


def tempo_drift_mono(mono: np.ndarray, sr: int, bpm: Optional[float]) -> TempoDriftResult:
    if not bpm or bpm <= 0:
        return TempoDriftResult()
    return _drift_from_envelope(onset_envelope(mono, sr), bpm, sr / (sr // 100) if sr >= 100 else 1.0)


def detect_tempo(
    channels: ChannelsLike,
    sample_rate: int,
    config: Optional[AnalysisConfig] = None,
    pool: Optional[ResourcePool] = None,
) -> TempoResult:
    """BPM candidates, ambiguity flag and beat stability of the downmix.

    The onset envelope comes from sliding RMS windows with no FFT, so
    `config` and `pool` are accepted for the common analyzer signature
    and do not change the result.
    """

    x = as_channels(channels, sample_rate)
    return detect_tempo_mono(downmix_mono(x), int(sample_rate))


def tempo_drift(
    channels: ChannelsLike,
    sample_rate: int,
    bpm: Optional[float],
    config: Optional[AnalysisConfig] = None,
) -> TempoDriftResult:
    """Spread of onset intervals around the beat interval, in percent.

    `config` is accepted for the common analyzer signature only.
    """

    x = as_channels(channels, sample_rate)
    return tempo_drift_mono(downmix_mono(x), int(sample_rate), bpm)
