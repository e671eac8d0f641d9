"""Dynamics analysis: levels, clipping, transients and compression hints.

Everything except clipping and silence runs on the mono downmix. The
heuristic scores at the bottom (preservation, spacing, compression and
transient sharpness) use fixed, calibrated thresholds; they are meant to
describe a master, not to be precise physical measurements.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import List, Literal, Optional, Sequence, Tuple

import numpy as np

from masterscope.config import DEFAULT_CONFIG, AnalysisConfig
from masterscope.dsp_engine.channels import ChannelsLike, as_channels, downmix_mono
from masterscope.dsp_engine.levels import (
    clamp,
    db_array,
    db_from_linear,
    finite_or_none,
    round_half_up,
    round_int,
    sliding_frames,
    upper_median,
)
from masterscope.dsp_engine.resource_pool import ResourcePool

logger = logging.getLogger("masterscope_dsp.analysis.dynamics")

TimingCharacter = Literal["robotic", "tight", "natural", "loose"]
CompressionCharacter = Literal["light", "moderate", "heavy", "brickwall"]
Confidence = Literal["low", "medium", "high"]

ENVELOPE_FLOOR_DB = -100.0
RMS_GATE = 0.0001


@dataclass(frozen=True)
class ClippingStats:
    has_clipping: bool
    clipped_sample_count: int
    clip_event_count: int
    clip_density_per_minute: float
    worst_clip_timestamps: List[float]


@dataclass(frozen=True)
class CompressionEstimate:
    estimated_ratio: Optional[int]
    estimated_threshold_db: Optional[float]
    compression_character: Optional[CompressionCharacter]
    confidence: Confidence


@dataclass(frozen=True)
class TransientSharpness:
    attack_steepness_score: int
    spacing_uniformity_score: int
    avg_attack_ms: Optional[float]
    avg_decay_ms: Optional[int]


@dataclass(frozen=True)
class DynamicsResult:
    peak_dbfs: Optional[float]
    rms_dbfs: Optional[float]
    crest_factor_db: Optional[float]
    dynamic_range_db: float
    dc_offset: float
    has_clipping: bool
    silence_at_start_ms: int
    silence_at_end_ms: int
    clipped_sample_count: int
    clip_event_count: int
    clip_density_per_minute: float
    worst_clip_timestamps: List[float]
    transient_density: float
    microdynamic_contrast: float
    attack_speed_index: float
    release_tail_ms: float
    dynamic_preservation_score: float
    dynamic_preservation_note: str
    transient_spacing_cv: float
    transient_timing_character: TimingCharacter
    compression_estimate: CompressionEstimate
    transient_sharpness: TransientSharpness
    transient_times: List[float] = field(default_factory=list)


def _percentile_range_db(mono: np.ndarray, peak: float) -> float:
    """dB distance between the 95th and 10th percentile of |x| (>= 0)."""

    n = mono.shape[0]
    step = max(1, n // 10000)
    values = np.abs(mono[::step])
    values = np.sort(values[values > RMS_GATE])
    if values.size:
        p10 = float(values[int(math.floor(values.size * 0.10))])
        p95 = float(values[int(math.floor(values.size * 0.95))])
    else:
        p10, p95 = RMS_GATE, peak
    dr = db_from_linear(p95) - db_from_linear(p10)
    if not math.isfinite(dr) or dr < 0.0:
        return 0.0
    return dr


def _silence_samples(x: np.ndarray, threshold: float) -> Tuple[int, int]:
    n = x.shape[1]
    loud = np.flatnonzero(np.max(np.abs(x), axis=0) > threshold)
    if loud.size == 0:
        return n, n
    return int(loud[0]), int(n - 1 - loud[-1])


def analyze_clipping(x: np.ndarray, sr: int, threshold: float = 0.9999) -> ClippingStats:
    """Count clipped samples and contiguous clip events per channel."""

    clipped_total = 0
    events: List[Tuple[float, float]] = []
    for ch in x:
        clipped = np.abs(ch) >= threshold
        clipped_total += int(np.count_nonzero(clipped))
        edges = np.diff(np.concatenate(([0], clipped.astype(np.int8), [0])))
        starts = np.flatnonzero(edges == 1)
        ends = np.flatnonzero(edges == -1)
        events.extend((s / sr, (e - s) / sr) for s, e in zip(starts, ends))

    duration_min = x.shape[1] / sr / 60.0
    density = len(events) / duration_min if duration_min > 0 else 0.0
    worst = sorted(events, key=lambda ev: -ev[1])[:5]
    return ClippingStats(
        has_clipping=clipped_total > 0,
        clipped_sample_count=clipped_total,
        clip_event_count=len(events),
        clip_density_per_minute=density,
        worst_clip_timestamps=[float(start) for start, _ in worst],
    )


def detect_transients(mono: np.ndarray, sr: int, min_gap_ms: float = 50.0) -> Tuple[List[int], int]:
    """Return (sample positions, hop) of energy-derivative onsets."""

    window = int(sr * 0.01)
    hop = window // 2
    if hop <= 0:
        return [], 0
    energies = sliding_frames(mono * mono, window, hop).mean(axis=1)
    if energies.shape[0] < 2:
        return [], hop

    derivs = np.maximum(0.0, np.diff(energies))
    threshold = float(derivs.mean() + 2.0 * derivs.std())
    min_gap = int(sr * (min_gap_ms / 1000.0) / hop)

    positions: List[int] = []
    last = -min_gap
    for i in np.flatnonzero(derivs > threshold):
        if i - last >= min_gap:
            positions.append(int(i) * hop)
            last = int(i)
    return positions, hop


def microdynamic_contrast(mono: np.ndarray, sr: int) -> float:
    """Median crest factor of 100 ms windows that carry signal."""

    window = int(sr * 0.1)
    hop = window // 2
    if hop <= 0:
        return 0.0
    sq = sliding_frames(mono * mono, window, hop)
    if sq.shape[0] == 0:
        return 0.0
    rms = np.sqrt(sq.mean(axis=1))
    peak = sliding_frames(np.abs(mono), window, hop).max(axis=1)
    keep = (rms > RMS_GATE) & (peak > 0)
    crest = db_array(peak[keep]) - db_array(rms[keep])
    crest = crest[np.isfinite(crest) & (crest > 0)]
    return upper_median(crest)


def _rms_envelope_db(mono: np.ndarray, sr: int) -> Tuple[np.ndarray, float]:
    """10 ms / 50 % hop RMS envelope in dB and its hop in ms."""

    window = int(sr * 0.01)
    hop = window // 2
    if hop <= 0:
        return np.zeros(0), 0.0
    rms = np.sqrt(sliding_frames(mono * mono, window, hop).mean(axis=1))
    env = np.full(rms.shape, ENVELOPE_FLOOR_DB)
    loud = rms > RMS_GATE
    env[loud] = db_array(rms[loud])
    return env, hop / sr * 1000.0


def attack_speed_index(env: np.ndarray, hop_ms: float) -> float:
    if env.shape[0] < 2 or hop_ms <= 0:
        return 0.0
    slopes = np.diff(env) / hop_ms
    return upper_median(slopes[slopes > 0.1])


def release_tail_ms(env: np.ndarray, hop_ms: float) -> float:
    """Median time for envelope peaks above -40 dB to fall by 10 dB."""

    if env.shape[0] < 3 or hop_ms <= 0:
        return 0.0
    mid = env[1:-1]
    peaks = np.flatnonzero((mid > env[:-2]) & (mid > env[2:]) & (mid > -40.0)) + 1
    max_steps = int(math.ceil(2000.0 / hop_ms))

    decays: List[float] = []
    for i in peaks:
        tail = env[i + 1 : i + 1 + max_steps]
        below = np.flatnonzero(tail <= env[i] - 10.0)
        if below.size:
            decay = (int(below[0]) + 1) * hop_ms
            if 0.0 < decay < 2000.0:
                decays.append(decay)
    return upper_median(decays)


def dynamic_preservation(
    crest_db: float,
    dynamic_range_db: float,
    has_clipping: bool,
    micro_contrast: float,
) -> Tuple[float, str]:
    score = 100.0
    if crest_db < 6:
        score -= (6 - crest_db) * 8
    elif crest_db < 10:
        score -= (10 - crest_db) * 3

    if dynamic_range_db < 6:
        score -= (6 - dynamic_range_db) * 6
    elif dynamic_range_db < 10:
        score -= (10 - dynamic_range_db) * 2

    if micro_contrast < 4:
        score -= (4 - micro_contrast) * 5

    if has_clipping:
        score -= 15

    score = clamp(score, 0.0, 100.0)
    if score >= 85:
        note = "Excellent dynamic preservation"
    elif score >= 70:
        note = "Good dynamics, moderate processing"
    elif score >= 50:
        note = "Compressed, reduced dynamics"
    else:
        note = "Heavily compressed/limited"
    return score, note


def transient_spacing(times: Sequence[float]) -> Tuple[float, TimingCharacter]:
    """Coefficient of variation of inter-onset intervals and its label."""

    if len(times) < 3:
        return 0.0, "natural"
    intervals = np.diff(np.asarray(times, dtype=np.float64))
    mean = float(intervals.mean())
    if mean <= 0:
        return 0.0, "natural"
    cv = float(intervals.std()) / mean

    if cv < 0.08:
        character: TimingCharacter = "robotic"
    elif cv < 0.18:
        character = "tight"
    elif cv < 0.40:
        character = "natural"
    else:
        character = "loose"
    return cv, character


def estimate_compression(
    dynamic_range_db: float,
    crest_db: float,
    clip_density_per_minute: float,
) -> CompressionEstimate:
    if crest_db < 5 and dynamic_range_db < 5:
        return CompressionEstimate(
            20, -1.0, "brickwall", "high" if clip_density_per_minute > 10 else "medium"
        )
    if crest_db < 7 and dynamic_range_db < 8:
        return CompressionEstimate(round_int(20 / max(crest_db, 1.0)), -6.0, "heavy", "medium")
    if crest_db < 10 and dynamic_range_db < 12:
        return CompressionEstimate(
            round_int(15 / max(crest_db, 1.0)), -12.0, "moderate", "medium" if crest_db < 8 else "low"
        )
    if crest_db < 14:
        return CompressionEstimate(2, -18.0, "light", "low")
    return CompressionEstimate(None, None, None, "low")


def _window_rms(x: np.ndarray) -> float:
    return float(np.sqrt(np.mean(x * x)))


def transient_sharpness(mono: np.ndarray, sr: int, positions: Sequence[int], times: Sequence[float]) -> TransientSharpness:
    """Attack steepness, decay time and spacing uniformity of onsets."""

    if len(positions) < 2:
        return TransientSharpness(50, 100, None, None)

    n = mono.shape[0]
    window = int(sr * 0.02)
    pre = window // 4
    slopes: List[float] = []
    decays: List[float] = []

    for idx in positions:
        if idx + window >= n or idx < window or pre <= 0:
            continue

        pre_rms = _window_rms(mono[idx - pre : idx])
        post_rms = _window_rms(mono[idx : idx + pre])
        if pre_rms > RMS_GATE and post_rms > RMS_GATE:
            slope = (db_from_linear(post_rms) - db_from_linear(pre_rms)) / (pre / sr * 1000.0)
            if slope > 0.1:
                slopes.append(slope)

        peak = float(np.max(np.abs(mono[idx : idx + window])))
        if peak > 0.01:
            tail = np.abs(mono[idx + window : min(n, idx + 10 * window)])
            below = np.flatnonzero(tail <= peak * 0.316)
            if below.size:
                decay_ms = (window + int(below[0])) / sr * 1000.0
                if 1.0 < decay_ms < 500.0:
                    decays.append(decay_ms)

    steepness = 50.0
    avg_attack: Optional[float] = None
    if slopes:
        median_slope = upper_median(slopes)
        steepness = clamp(median_slope * 50.0, 0.0, 100.0)
        avg_attack = round_half_up(10.0 / max(median_slope, 0.1), 1)

    avg_decay = round_int(upper_median(decays)) if decays else None
    cv, _ = transient_spacing(times)
    uniformity = clamp((1.0 - cv * 2.0) * 100.0, 0.0, 100.0)

    return TransientSharpness(
        attack_steepness_score=round_int(steepness),
        spacing_uniformity_score=round_int(uniformity),
        avg_attack_ms=avg_attack,
        avg_decay_ms=avg_decay,
    )


def _empty_result() -> DynamicsResult:
    return DynamicsResult(
        peak_dbfs=None,
        rms_dbfs=None,
        crest_factor_db=None,
        dynamic_range_db=0.0,
        dc_offset=0.0,
        has_clipping=False,
        silence_at_start_ms=0,
        silence_at_end_ms=0,
        clipped_sample_count=0,
        clip_event_count=0,
        clip_density_per_minute=0.0,
        worst_clip_timestamps=[],
        transient_density=0.0,
        microdynamic_contrast=0.0,
        attack_speed_index=0.0,
        release_tail_ms=0.0,
        dynamic_preservation_score=0.0,
        dynamic_preservation_note="Heavily compressed/limited",
        transient_spacing_cv=0.0,
        transient_timing_character="natural",
        compression_estimate=CompressionEstimate(None, None, None, "low"),
        transient_sharpness=TransientSharpness(50, 100, None, None),
    )


def analyze_dynamics(
    channels: ChannelsLike,
    sample_rate: int,
    config: Optional[AnalysisConfig] = None,
    pool: Optional[ResourcePool] = None,
) -> DynamicsResult:
    """Peak/RMS/crest, clipping, silence, transients and compression hints.

    Works on whole-signal arrays and sliding views only, so `pool` is
    accepted for the common analyzer signature and left untouched.
    """

    config = config or DEFAULT_CONFIG
    x = as_channels(channels, sample_rate)
    sr = int(sample_rate)
    n = x.shape[1]
    if n == 0 or x.shape[0] == 0:
        logger.info("[DYNAMICS] Empty input, returning defaults")
        return _empty_result()

    mono = downmix_mono(x)
    peak = float(np.max(np.abs(mono)))
    rms = float(np.sqrt(np.mean(mono * mono)))
    peak_db = db_from_linear(peak)
    rms_db = db_from_linear(rms)
    crest = peak_db - rms_db if math.isfinite(peak_db) and math.isfinite(rms_db) else float("nan")
    dr = _percentile_range_db(mono, peak)

    lead, tail = _silence_samples(x, config.silence_threshold)
    clipping = analyze_clipping(x, sr, config.clip_threshold)

    positions, _ = detect_transients(mono, sr, config.transient_min_gap_ms)
    times = [p / sr for p in positions]
    duration_min = n / sr / 60.0
    density = len(times) / duration_min if duration_min > 0 else 0.0

    micro = microdynamic_contrast(mono, sr)
    env, hop_ms = _rms_envelope_db(mono, sr)
    attack = attack_speed_index(env, hop_ms)
    release = release_tail_ms(env, hop_ms)

    score, note = dynamic_preservation(crest, dr, clipping.has_clipping, micro)
    cv, character = transient_spacing(times)
    compression = estimate_compression(dr, crest, clipping.clip_density_per_minute)
    sharpness = transient_sharpness(mono, sr, positions, times)

    logger.debug(
        "[DYNAMICS] peak=%.2f dBFS rms=%.2f dBFS crest=%.2f dB dr=%.2f dB transients=%d clip_events=%d",
        peak_db,
        rms_db,
        crest,
        dr,
        len(times),
        clipping.clip_event_count,
    )

    return DynamicsResult(
        peak_dbfs=finite_or_none(peak_db),
        rms_dbfs=finite_or_none(rms_db),
        crest_factor_db=finite_or_none(crest),
        dynamic_range_db=dr,
        dc_offset=float(np.mean(mono)),
        has_clipping=clipping.has_clipping,
        silence_at_start_ms=round_int(lead / sr * 1000.0),
        silence_at_end_ms=round_int(tail / sr * 1000.0),
        clipped_sample_count=clipping.clipped_sample_count,
        clip_event_count=clipping.clip_event_count,
        clip_density_per_minute=clipping.clip_density_per_minute,
        worst_clip_timestamps=clipping.worst_clip_timestamps,
        transient_density=density,
        microdynamic_contrast=micro,
        attack_speed_index=attack,
        release_tail_ms=release,
        dynamic_preservation_score=score,
        dynamic_preservation_note=note,
        transient_spacing_cv=cv,
        transient_timing_character=character,
        compression_estimate=compression,
        transient_sharpness=sharpness,
        transient_times=times,
    )
