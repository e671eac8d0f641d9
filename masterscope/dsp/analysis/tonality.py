"""Musical key detection from a chromagram.

Krumhansl-Kessler profiles are correlated against all twelve rotations
of the track's pitch-class energy distribution. `key_stability` repeats
the estimate on 2 s windows and reports how often it agrees with the
track-level key.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from functools import lru_cache
from typing import List, Optional, Tuple

import numpy as np

from masterscope.config import DEFAULT_CONFIG, AnalysisConfig
from masterscope.dsp_engine.channels import ChannelsLike, as_channels, downmix_mono
from masterscope.dsp_engine.fft import frame_magnitudes
from masterscope.dsp_engine.levels import clamp, pearson_correlation, round_int
from masterscope.dsp_engine.resource_pool import ResourcePool, default_pool, iterate_frames, pool_for_config

logger = logging.getLogger("masterscope_dsp.analysis.tonality")

KEY_NAMES = ["C", "C#", "D", "D#", "E", "F", "F#", "G", "G#", "A", "A#", "B"]

MAJOR_PROFILE = np.array([6.35, 2.23, 3.48, 2.33, 4.38, 4.09, 2.52, 5.19, 2.39, 3.66, 2.29, 2.88])
MINOR_PROFILE = np.array([6.33, 2.68, 3.52, 5.38, 2.60, 3.53, 2.54, 4.75, 3.98, 2.69, 3.34, 3.17])

CHROMA_MIN_HZ = 65.0
CHROMA_MAX_HZ = 5000.0


@dataclass(frozen=True)
class KeyCandidate:
    key: str
    confidence: int


@dataclass(frozen=True)
class KeyResult:
    primary_key: Optional[str] = None
    confidence: int = 0
    candidates: List[KeyCandidate] = field(default_factory=list)
    tonalness_score: int = 0


@dataclass(frozen=True)
class KeyStabilityResult:
    stability_pct: Optional[int] = None
    note: Optional[str] = None


@lru_cache(maxsize=16)
def _pitch_class_map(sample_rate: int, fft_size: int) -> Tuple[np.ndarray, np.ndarray]:
    """(bin indices, pitch classes) for bins inside the chroma range."""

    freqs = np.arange(1, fft_size // 2) * (sample_rate / fft_size)
    keep = (freqs >= CHROMA_MIN_HZ) & (freqs <= CHROMA_MAX_HZ)
    bins = np.flatnonzero(keep) + 1
    midi = 12.0 * np.log2(freqs[keep] / 440.0) + 69.0
    classes = np.floor(midi + 0.5).astype(np.int64) % 12
    return bins, classes


def chromagram(
    mono: np.ndarray,
    sr: int,
    fft_size: int = 4096,
    hop_fraction: float = 0.5,
    pool: Optional[ResourcePool] = None,
    backend: Optional[str] = None,
) -> np.ndarray:
    """12-bin squared-magnitude pitch-class profile, normalized to sum 1."""

    pool = pool or default_pool()
    bins, classes = _pitch_class_map(int(sr), fft_size)
    chroma = np.zeros(12)
    hop = max(1, int(fft_size * hop_fraction))

    real = pool.acquire(fft_size)
    imag = pool.acquire(fft_size)
    try:
        for frame in iterate_frames(mono, fft_size, hop_size=hop, pool=pool):
            mags = frame_magnitudes(frame.frame, real, imag, backend)
            chroma += np.bincount(classes, weights=mags[bins] ** 2, minlength=12)
    finally:
        pool.release(real)
        pool.release(imag)

    total = float(chroma.sum())
    if total > 0:
        chroma /= total
    return chroma


def key_scores(chroma: np.ndarray) -> List[Tuple[str, float]]:
    """Correlation of every major/minor key with the chromagram."""

    scores: List[Tuple[str, float]] = []
    for i, name in enumerate(KEY_NAMES):
        rotated = np.roll(chroma, -i)
        scores.append((f"{name} Major", pearson_correlation(rotated, MAJOR_PROFILE)))
        scores.append((f"{name} Minor", pearson_correlation(rotated, MINOR_PROFILE)))
    return scores


def best_key(chroma: np.ndarray) -> Optional[str]:
    if not chroma.any():
        return None
    best_name, best_score = None, -np.inf
    for name, score in key_scores(chroma):
        if score > best_score:
            best_name, best_score = name, score
    return best_name


def detect_key_mono(
    mono: np.ndarray,
    sr: int,
    config: Optional[AnalysisConfig] = None,
    pool: Optional[ResourcePool] = None,
) -> KeyResult:
    config = config or DEFAULT_CONFIG
    pool = pool or pool_for_config(config)
    chroma = chromagram(mono, sr, config.fft_size_spectral, config.hop_fraction, pool, config.fft_backend)
    if not chroma.any():
        logger.info("[KEY] No tonal energy found, key undetermined")
        return KeyResult()

    scores = sorted(key_scores(chroma), key=lambda ks: -ks[1])
    max_score = scores[0][1]
    min_score = scores[-1][1]
    spread = (max_score - min_score) or 1.0
    candidates = [KeyCandidate(name, round_int((score - min_score) / spread * 100.0)) for name, score in scores[:3]]
    tonalness = int(clamp(round_int((max_score + 1.0) * 50.0), 0, 100))

    logger.debug("[KEY] primary=%s corr=%.3f tonalness=%d", candidates[0].key, max_score, tonalness)
    return KeyResult(
        primary_key=candidates[0].key,
        confidence=candidates[0].confidence,
        candidates=candidates,
        tonalness_score=tonalness,
    )


def key_stability_mono(
    mono: np.ndarray,
    sr: int,
    primary_key: Optional[str],
    config: Optional[AnalysisConfig] = None,
    pool: Optional[ResourcePool] = None,
) -> KeyStabilityResult:
    if primary_key is None:
        return KeyStabilityResult()

    config = config or DEFAULT_CONFIG
    pool = pool or pool_for_config(config)
    window = int(sr * 2)
    hop = int(sr)
    num_windows = (mono.shape[0] - window) // hop if hop > 0 else 0
    if num_windows < 2:
        return KeyStabilityResult(100, "Key center stable")

    agree = 0
    for w in range(num_windows):
        segment = mono[w * hop : w * hop + window]
        chroma = chromagram(segment, sr, config.fft_size_spectral, config.hop_fraction, pool, config.fft_backend)
        if best_key(chroma) == primary_key:
            agree += 1

    pct = round_int(agree / num_windows * 100.0)
    if pct >= 80:
        note = "Key center stable throughout"
    elif pct >= 50:
        note = "Some key variations; may contain modulations"
    else:
        note = "Frequent key changes or ambiguous tonality"
    return KeyStabilityResult(pct, note)


def detect_key(
    channels: ChannelsLike,
    sample_rate: int,
    config: Optional[AnalysisConfig] = None,
    pool: Optional[ResourcePool] = None,
) -> KeyResult:
    """Primary key, top-3 candidates and tonalness of the downmix."""

    x = as_channels(channels, sample_rate)
    return detect_key_mono(downmix_mono(x), int(sample_rate), config, pool)


def key_stability(
    channels: ChannelsLike,
    sample_rate: int,
    primary_key: Optional[str],
    config: Optional[AnalysisConfig] = None,
    pool: Optional[ResourcePool] = None,
) -> KeyStabilityResult:
    """Share of 2 s windows whose own best key matches `primary_key`."""

    x = as_channels(channels, sample_rate)
    return key_stability_mono(downmix_mono(x), int(sample_rate), primary_key, config, pool)
