"""Stereo field analysis.

Mid/side balance, L/R correlation (global, windowed and energy
weighted), band-limited width, spectral asymmetry between channels and
the level change caused by folding the mix down to mono. Only the first
two channels are considered; mono input yields an all-None result.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import numpy as np

from masterscope.config import DEFAULT_CONFIG, AnalysisConfig
from masterscope.dsp_engine.channels import ChannelsLike, as_channels, mid_side
from masterscope.dsp_engine.fft import frame_magnitudes
from masterscope.dsp_engine.filters import design_band
from masterscope.dsp_engine.levels import (
    clamp,
    db_array,
    db_from_linear,
    finite_or_none,
    pearson_correlation,
    rms,
    sliding_frames,
)
from masterscope.dsp_engine.resource_pool import ResourcePool, default_pool, iterate_frames, pool_for_config

logger = logging.getLogger("masterscope_dsp.analysis.stereo")

ENERGY_GATE = 0.01
ASYMMETRY_NOTE_HZ = 200.0

BAND_LOW = (20.0, 150.0)
BAND_PRESENCE = (2000.0, 6000.0)
BAND_AIR = (10000.0, 20000.0)


@dataclass(frozen=True)
class StereoResult:
    mid_energy_db: Optional[float] = None
    side_energy_db: Optional[float] = None
    stereo_width_pct: Optional[float] = None
    correlation: Optional[float] = None
    sub_bass_mono_compatible: Optional[bool] = None
    balance_db: Optional[float] = None
    correlation_mean: Optional[float] = None
    correlation_worst_1pct: Optional[float] = None
    worst_correlation_timestamps: List[float] = field(default_factory=list)
    low_band_width_pct: Optional[float] = None
    presence_band_width_pct: Optional[float] = None
    air_band_width_pct: Optional[float] = None
    mono_loudness_diff_db: Optional[float] = None
    worst_cancellation_timestamps: List[float] = field(default_factory=list)
    low_end_phase_issues: Optional[bool] = None
    correlation_energy_weighted: Optional[float] = None
    spectral_asymmetry_hz: Optional[float] = None
    spectral_asymmetry_note: Optional[str] = None


def width_pct(left: np.ndarray, right: np.ndarray) -> float:
    """100 * side RMS / mid RMS, clamped to [0, 300]."""

    mid, side = mid_side(left, right)
    mid_rms = rms(mid)
    side_rms = rms(side)
    if mid_rms <= 0:
        return 0.0
    return clamp(side_rms / mid_rms * 100.0, 0.0, 300.0)


def band_width_pct(left: np.ndarray, right: np.ndarray, sr: int, low_hz: float, high_hz: float) -> float:
    band = design_band(low_hz, high_hz, sr)
    filtered = band.process(np.stack([left, right], axis=0))
    return width_pct(filtered[0], filtered[1])


def _windowed_correlation(left: np.ndarray, right: np.ndarray, window: int, hop: int) -> Tuple[np.ndarray, np.ndarray]:
    """Per-window Pearson correlation and per-window RMS over both channels."""

    lw = sliding_frames(left, window, hop)
    rw = sliding_frames(right, window, hop)
    if lw.shape[0] == 0:
        return np.zeros(0), np.zeros(0)

    mean_l = lw.mean(axis=1)
    mean_r = rw.mean(axis=1)
    sum_ll = np.einsum("ij,ij->i", lw, lw)
    sum_rr = np.einsum("ij,ij->i", rw, rw)
    sum_lr = np.einsum("ij,ij->i", lw, rw)

    cov = sum_lr / window - mean_l * mean_r
    var_l = sum_ll / window - mean_l * mean_l
    var_r = sum_rr / window - mean_r * mean_r
    ok = (var_l > 0) & (var_r > 0)
    corr = np.zeros(lw.shape[0])
    corr[ok] = cov[ok] / np.sqrt(var_l[ok] * var_r[ok])

    energy_rms = np.sqrt((sum_ll + sum_rr) / (2.0 * window))
    return corr, energy_rms


def time_resolved_correlation(left: np.ndarray, right: np.ndarray, sr: int) -> Tuple[float, float, List[float]]:
    """(mean, worst 1 %, timestamps of the 5 lowest) over 200 ms windows."""

    window = int(sr * 0.2)
    hop = window // 2
    if hop <= 0:
        return 0.0, 0.0, []
    corr, _ = _windowed_correlation(left, right, window, hop)
    if corr.shape[0] == 0:
        return 0.0, 0.0, []

    order = np.argsort(corr, kind="stable")
    worst_idx = max(1, int(math.floor(corr.shape[0] * 0.01)))
    worst = float(corr[order[worst_idx - 1]])
    times = [float(i * hop / sr) for i in order[:5]]
    return float(corr.mean()), worst, times


def energy_weighted_correlation(left: np.ndarray, right: np.ndarray, sr: int) -> float:
    """Windowed correlation averaged with RMS weights, ignoring quiet windows."""

    window = int(sr * 0.2)
    hop = window // 2
    if hop <= 0:
        return 0.0
    corr, energy = _windowed_correlation(left, right, window, hop)
    keep = energy >= ENERGY_GATE
    total = float(energy[keep].sum())
    if total <= 0:
        return 0.0
    return float(np.dot(corr[keep], energy[keep]) / total)


def _power_centroid(mags: np.ndarray, freq_resolution: float) -> float:
    power = mags[1:] ** 2
    total = float(power.sum())
    if total <= 0:
        return 0.0
    freqs = np.arange(1, mags.shape[0]) * freq_resolution
    return float(np.dot(power, freqs) / total)


def spectral_asymmetry(
    left: np.ndarray,
    right: np.ndarray,
    sr: int,
    fft_size: int = 4096,
    num_frames: int = 20,
    pool: Optional[ResourcePool] = None,
    backend: Optional[str] = None,
) -> Tuple[float, Optional[str]]:
    """Mean right-minus-left spectral centroid in Hz, with a note when large."""

    pool = pool or default_pool()
    if left.shape[0] < fft_size:
        return 0.0, None

    real = pool.acquire(fft_size)
    imag = pool.acquire(fft_size)
    freq_resolution = sr / fft_size
    total_l = 0.0
    total_r = 0.0
    valid = 0
    frames_l = iterate_frames(left, fft_size, max_frames=num_frames, pool=pool)
    frames_r = iterate_frames(right, fft_size, max_frames=num_frames, pool=pool)
    try:
        for fl, fr in zip(frames_l, frames_r):
            centroid_l = _power_centroid(frame_magnitudes(fl.frame, real, imag, backend), freq_resolution)
            centroid_r = _power_centroid(frame_magnitudes(fr.frame, real, imag, backend), freq_resolution)
            if centroid_l > 0 and centroid_r > 0:
                total_l += centroid_l
                total_r += centroid_r
                valid += 1
    finally:
        frames_l.close()
        frames_r.close()
        pool.release(real)
        pool.release(imag)

    if valid == 0:
        return 0.0, None

    asymmetry = (total_r - total_l) / valid
    note = None
    if abs(asymmetry) > ASYMMETRY_NOTE_HZ:
        if asymmetry > 0:
            note = "Right channel brighter than left; may cause headphone fatigue"
        else:
            note = "Left channel brighter than right; may cause headphone fatigue"
    return asymmetry, note


def mono_downmix_impact(left: np.ndarray, right: np.ndarray, sr: int) -> Tuple[float, List[float]]:
    """Level change in dB when summing to mono, plus the 5 worst 500 ms windows."""

    n = left.shape[0]
    stereo_rms = math.sqrt(float(np.dot(left, left) + np.dot(right, right)) / (2 * n))
    mono = 0.5 * (left + right)
    diff = db_from_linear(rms(mono)) - db_from_linear(stereo_rms)

    window = int(sr * 0.5)
    hop = window // 2
    if hop <= 0:
        return diff, []
    sq_stereo = sliding_frames(left * left + right * right, window, hop).sum(axis=1)
    sq_mono = sliding_frames(mono * mono, window, hop).sum(axis=1)
    if sq_stereo.shape[0] == 0:
        return diff, []

    with np.errstate(invalid="ignore"):
        diffs = db_array(np.sqrt(sq_mono / window)) - db_array(np.sqrt(sq_stereo / (2 * window)))
    finite = np.flatnonzero(np.isfinite(diffs))
    order = finite[np.argsort(diffs[finite], kind="stable")]
    return diff, [float(i * hop / sr) for i in order[:5]]


def analyze_stereo(
    channels: ChannelsLike,
    sample_rate: int,
    config: Optional[AnalysisConfig] = None,
    pool: Optional[ResourcePool] = None,
) -> StereoResult:
    """Stereo image metrics for the first two channels."""

    config = config or DEFAULT_CONFIG
    pool = pool or pool_for_config(config)
    x = as_channels(channels, sample_rate)
    sr = int(sample_rate)
    if x.shape[0] < 2 or x.shape[1] == 0:
        logger.info("[STEREO] Fewer than two channels, skipping stereo analysis")
        return StereoResult()

    left, right = x[0], x[1]
    mid, side = mid_side(left, right)
    mid_rms = rms(mid)
    side_rms = rms(side)
    width = clamp(side_rms / mid_rms * 100.0, 0.0, 300.0) if mid_rms > 0 and side_rms > 0 else 0.0
    corr = pearson_correlation(left, right)

    low = design_band(20.0, 120.0, sr).process(np.stack([left, right], axis=0))
    sub_corr = pearson_correlation(low[0], low[1])

    rms_l = rms(left)
    rms_r = rms(right)
    balance = db_from_linear(rms_r) - db_from_linear(rms_l) if rms_l > 0 and rms_r > 0 else 0.0

    corr_mean, corr_worst, corr_times = time_resolved_correlation(left, right, sr)
    mono_diff, cancel_times = mono_downmix_impact(left, right, sr)
    asymmetry, asymmetry_note = spectral_asymmetry(
        left, right, sr, config.fft_size_spectral, pool=pool, backend=config.fft_backend
    )

    result = StereoResult(
        mid_energy_db=finite_or_none(db_from_linear(mid_rms)),
        side_energy_db=finite_or_none(db_from_linear(side_rms)),
        stereo_width_pct=width,
        correlation=corr,
        sub_bass_mono_compatible=sub_corr > 0.8,
        balance_db=balance,
        correlation_mean=corr_mean,
        correlation_worst_1pct=corr_worst,
        worst_correlation_timestamps=corr_times,
        low_band_width_pct=band_width_pct(left, right, sr, *BAND_LOW),
        presence_band_width_pct=band_width_pct(left, right, sr, *BAND_PRESENCE),
        air_band_width_pct=band_width_pct(left, right, sr, *BAND_AIR),
        mono_loudness_diff_db=finite_or_none(mono_diff),
        worst_cancellation_timestamps=cancel_times,
        low_end_phase_issues=sub_corr < 0.5,
        correlation_energy_weighted=energy_weighted_correlation(left, right, sr),
        spectral_asymmetry_hz=asymmetry,
        spectral_asymmetry_note=asymmetry_note,
    )
    logger.debug(
        "[STEREO] width=%.1f%% corr=%.3f sub_corr=%.3f balance=%.2f dB",
        width,
        corr,
        sub_corr,
        balance,
    )
    return result
