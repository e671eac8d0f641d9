"""Spectral balance analysis on the mono downmix.

Two views of the spectrum are combined here:

- an averaged 4096-point magnitude spectrum over up to 30 frames spread
  across the track (centroid, rolloff, tilt, flatness, harshness and
  sibilance indices, plus A-weighted variants), and
- time-domain band levels from the one-pole filter bank (band RMS,
  band ratios and crest factor per band).

The bright/dark status is a small additive score over tilt, harshness
and centroid; its thresholds are calibrated constants.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, Literal, Optional, Tuple

import numpy as np

from masterscope.config import DEFAULT_CONFIG, AnalysisConfig
from masterscope.dsp_engine.channels import ChannelsLike, as_channels, downmix_mono
from masterscope.dsp_engine.fft import frame_magnitudes
from masterscope.dsp_engine.filters import bandpass
from masterscope.dsp_engine.levels import db_from_linear, finite_or_none, linear_regression_slope, rms
from masterscope.dsp_engine.resource_pool import ResourcePool, default_pool, iterate_frames, pool_for_config

logger = logging.getLogger("masterscope_dsp.analysis.spectral")

BalanceStatus = Literal["bright", "balanced", "dark"]

MAX_FRAMES = 30
ROLLOFF_FRACTION = 0.85

CREST_BANDS: Dict[str, Tuple[float, float]] = {
    "sub": (20.0, 80.0),
    "bass": (80.0, 250.0),
    "low_mid": (250.0, 500.0),
    "mid": (500.0, 2000.0),
    "presence": (2000.0, 6000.0),
    "brilliance": (6000.0, 20000.0),
}


@dataclass(frozen=True)
class SpectralResult:
    high_freq_energy_8k_16k_db: Optional[float]
    sibilance_energy_4k_10k_db: Optional[float]
    sub_bass_energy_20_80_db: Optional[float]
    bass_to_mid_ratio_db: Optional[float]
    mid_to_high_ratio_db: Optional[float]
    spectral_centroid_hz: Optional[float] = None
    spectral_rolloff_hz: Optional[float] = None
    spectral_tilt_db_per_octave: Optional[float] = None
    spectral_tilt_weighted_db_per_octave: Optional[float] = None
    spectral_flatness: Optional[float] = None
    harshness_index: float = 0.0
    sibilance_index: float = 0.0
    harshness_index_weighted: float = 0.0
    sibilance_index_weighted: float = 0.0
    crest_by_band: Dict[str, float] = field(default_factory=dict)
    spectral_balance_status: BalanceStatus = "balanced"
    spectral_balance_note: Optional[str] = None


def a_weighting_db(freq: np.ndarray) -> np.ndarray:
    """IEC 61672 A-weighting in dB; -80 dB below 20 Hz."""

    f = np.asarray(freq, dtype=np.float64)
    f2 = f * f
    num = (12194.0 ** 2) * f2 * f2
    den = (
        (f2 + 20.6 ** 2)
        * np.sqrt((f2 + 107.7 ** 2) * (f2 + 737.9 ** 2))
        * (f2 + 12194.0 ** 2)
    )
    out = np.full(f.shape, -80.0)
    ok = (f >= 20.0) & (den > 0)
    out[ok] = 20.0 * np.log10(num[ok] / den[ok]) + 2.0
    return out


def energy_in_band(mags: np.ndarray, low_hz: float, high_hz: float, freq_resolution: float) -> float:
    """Sum of squared magnitudes over the inclusive bin range of a band."""

    lo = int(math.floor(low_hz / freq_resolution))
    hi = min(mags.shape[0] - 1, int(math.floor(high_hz / freq_resolution)))
    if hi < lo:
        return 0.0
    band = mags[lo : hi + 1]
    return float(np.dot(band, band))


def _band_ratio(num: float, total: float) -> float:
    return num / total * 100.0 if total > 0 else 0.0


def harshness_index(mags: np.ndarray, freq_resolution: float) -> float:
    return _band_ratio(
        energy_in_band(mags, 2000.0, 5000.0, freq_resolution),
        energy_in_band(mags, 100.0, 10000.0, freq_resolution),
    )


def sibilance_index(mags: np.ndarray, freq_resolution: float) -> float:
    return _band_ratio(
        energy_in_band(mags, 5000.0, 10000.0, freq_resolution),
        energy_in_band(mags, 100.0, 15000.0, freq_resolution),
    )


def _weighted_power(mags: np.ndarray, freq_resolution: float) -> Tuple[np.ndarray, np.ndarray]:
    freqs = np.arange(1, mags.shape[0]) * freq_resolution
    weighted = mags[1:] * 10.0 ** (a_weighting_db(freqs) / 20.0)
    return freqs, weighted * weighted


def _weighted_ratio(mags: np.ndarray, freq_resolution: float, band: Tuple[float, float], ref: Tuple[float, float]) -> float:
    freqs, power = _weighted_power(mags, freq_resolution)
    in_band = (freqs >= band[0]) & (freqs <= band[1])
    in_ref = (freqs >= ref[0]) & (freqs <= ref[1])
    return _band_ratio(float(power[in_band].sum()), float(power[in_ref].sum()))


def harshness_index_weighted(mags: np.ndarray, freq_resolution: float) -> float:
    return _weighted_ratio(mags, freq_resolution, (2000.0, 5000.0), (100.0, 10000.0))


def sibilance_index_weighted(mags: np.ndarray, freq_resolution: float) -> float:
    return _weighted_ratio(mags, freq_resolution, (5000.0, 10000.0), (100.0, 15000.0))


def spectral_tilt(mags: np.ndarray, freq_resolution: float, weighted: bool = False) -> float:
    """Regression slope of level (dB) against log2 frequency, 100 Hz-10 kHz."""

    lo = max(1, int(math.floor(100.0 / freq_resolution)))
    hi = min(mags.shape[0] - 1, int(math.floor(10000.0 / freq_resolution)))
    if hi <= lo:
        return 0.0

    bins = np.arange(lo, hi + 1)
    freqs = bins * freq_resolution
    band = mags[lo : hi + 1]
    keep = (freqs >= 100.0) & (band > 0)
    if np.count_nonzero(keep) < 2:
        return 0.0

    freqs = freqs[keep]
    band = band[keep]
    if weighted:
        band = band * 10.0 ** (a_weighting_db(freqs) / 20.0)
    level_db = 20.0 * np.log10(band + 1e-10)
    return linear_regression_slope(np.log2(freqs), level_db)


def spectral_flatness(mags: np.ndarray) -> float:
    """Geometric over arithmetic mean of the positive non-DC bins."""

    values = mags[1:]
    values = values[values > 0]
    if values.size == 0:
        return 0.0
    total = float(values.sum())
    if total == 0:
        return 0.0
    return float(np.exp(np.mean(np.log(values))) / (total / values.size))


def spectral_balance_status(tilt: float, harshness: float, centroid: float) -> Tuple[BalanceStatus, Optional[str]]:
    score = 0
    if tilt > 0:
        score += 2
    elif tilt > -2:
        score += 1
    elif tilt < -5:
        score -= 1
    elif tilt < -7:
        score -= 2

    if harshness > 35:
        score += 1
    elif harshness < 15:
        score -= 1

    if centroid > 4000:
        score += 1
    elif centroid < 1200:
        score -= 1

    if score >= 2:
        return "bright", "Brighter than typical; may fatigue on extended listening"
    if score <= -2:
        return "dark", "Darker than typical; may lack presence or clarity"
    return "balanced", None


def band_rms_db(mono: np.ndarray, low_hz: float, high_hz: float, sr: int) -> float:
    return db_from_linear(rms(bandpass(mono, low_hz, high_hz, sr)))


def band_crest_db(mono: np.ndarray, low_hz: float, high_hz: float, sr: int) -> float:
    filtered = bandpass(mono, low_hz, high_hz, sr)
    level = rms(filtered)
    peak = float(np.max(np.abs(filtered))) if filtered.size else 0.0
    if level < 0.0001 or peak < 0.0001:
        return 0.0
    return db_from_linear(peak) - db_from_linear(level)


def average_spectrum(
    mono: np.ndarray,
    sr: int,
    fft_size: int = 4096,
    pool: Optional[ResourcePool] = None,
    backend: Optional[str] = None,
) -> Tuple[Optional[np.ndarray], float, float]:
    """Averaged magnitudes plus mean power-weighted centroid and rolloff.

    Returns (None, 0, 0) when the signal is shorter than one frame.
    """

    pool = pool or default_pool()
    if mono.shape[0] < fft_size:
        return None, 0.0, 0.0

    freq_resolution = sr / fft_size
    freqs = np.arange(fft_size // 2) * freq_resolution
    avg = np.zeros(fft_size // 2)
    total_centroid = 0.0
    total_rolloff = 0.0
    valid = 0

    real = pool.acquire(fft_size)
    imag = pool.acquire(fft_size)
    try:
        for frame in iterate_frames(mono, fft_size, max_frames=MAX_FRAMES, pool=pool):
            mags = frame_magnitudes(frame.frame, real, imag, backend)
            avg += mags
            power = mags * mags
            total = float(power.sum())
            if total <= 0:
                continue
            total_centroid += float(np.dot(power, freqs)) / total
            cumulative = np.cumsum(power)
            k = int(np.searchsorted(cumulative, ROLLOFF_FRACTION * total))
            total_rolloff += min(k, fft_size // 2 - 1) * freq_resolution
            valid += 1
    finally:
        pool.release(real)
        pool.release(imag)

    avg /= valid or 1
    if valid == 0:
        return avg, 0.0, 0.0
    return avg, total_centroid / valid, total_rolloff / valid


def analyze_spectral(
    channels: ChannelsLike,
    sample_rate: int,
    config: Optional[AnalysisConfig] = None,
    pool: Optional[ResourcePool] = None,
) -> SpectralResult:
    """Spectral balance and band-level metrics of the mono downmix."""

    config = config or DEFAULT_CONFIG
    pool = pool or pool_for_config(config)
    x = as_channels(channels, sample_rate)
    sr = int(sample_rate)
    mono = downmix_mono(x)
    if mono.shape[0] == 0:
        logger.info("[SPECTRAL] Empty input, returning defaults")
        return SpectralResult(None, None, None, None, None)

    bass = band_rms_db(mono, 80.0, 250.0, sr)
    mid = band_rms_db(mono, 250.0, 2000.0, sr)
    high = band_rms_db(mono, 2000.0, 8000.0, sr)
    crest = {name: band_crest_db(mono, lo, hi, sr) for name, (lo, hi) in CREST_BANDS.items()}

    levels = dict(
        high_freq_energy_8k_16k_db=finite_or_none(band_rms_db(mono, 8000.0, 16000.0, sr)),
        sibilance_energy_4k_10k_db=finite_or_none(band_rms_db(mono, 4000.0, 10000.0, sr)),
        sub_bass_energy_20_80_db=finite_or_none(band_rms_db(mono, 20.0, 80.0, sr)),
        bass_to_mid_ratio_db=finite_or_none(bass - mid),
        mid_to_high_ratio_db=finite_or_none(mid - high),
        crest_by_band=crest,
    )

    fft_size = config.fft_size_spectral
    mags, centroid, rolloff = average_spectrum(mono, sr, fft_size, pool=pool, backend=config.fft_backend)
    if mags is None:
        logger.info("[SPECTRAL] Signal shorter than %d samples, spectral features unavailable", fft_size)
        return SpectralResult(**levels)

    freq_resolution = sr / fft_size
    tilt = spectral_tilt(mags, freq_resolution)
    harsh = harshness_index(mags, freq_resolution)
    status, note = spectral_balance_status(tilt, harsh, centroid)

    logger.debug(
        "[SPECTRAL] centroid=%.0f Hz rolloff=%.0f Hz tilt=%.2f dB/oct harshness=%.1f status=%s",
        centroid,
        rolloff,
        tilt,
        harsh,
        status,
    )

    return SpectralResult(
        spectral_centroid_hz=centroid,
        spectral_rolloff_hz=rolloff,
        spectral_tilt_db_per_octave=tilt,
        spectral_tilt_weighted_db_per_octave=spectral_tilt(mags, freq_resolution, weighted=True),
        spectral_flatness=spectral_flatness(mags),
        harshness_index=harsh,
        sibilance_index=sibilance_index(mags, freq_resolution),
        harshness_index_weighted=harshness_index_weighted(mags, freq_resolution),
        sibilance_index_weighted=sibilance_index_weighted(mags, freq_resolution),
        spectral_balance_status=status,
        spectral_balance_note=note,
        **levels,
    )
