"""Harmonic distortion estimate (THD) and distortion character.

Looks at up to ten consecutive 4096-sample frames, takes the strongest
bin between 50 Hz and 2 kHz as the fundamental and measures harmonics
2-5 around its integer multiples. Works best on material with a clear
tonal centre; dense mixes produce a rough, relative figure.
"""

from __future__ import annotations

import itertools
import logging
import math
from dataclasses import dataclass, field
from typing import List, Literal, Optional, Tuple

import numpy as np

from masterscope.config import DEFAULT_CONFIG, AnalysisConfig
from masterscope.dsp_engine.channels import ChannelsLike, as_channels, downmix_mono
from masterscope.dsp_engine.fft import frame_magnitudes
from masterscope.dsp_engine.levels import round_half_up, round_int
from masterscope.dsp_engine.resource_pool import ResourcePool, iterate_frames, pool_for_config

logger = logging.getLogger("masterscope_dsp.analysis.harmonics")

DistortionCharacter = Literal["clean", "warm", "gritty", "clipped"]

MAX_FRAMES = 10
NUM_HARMONICS = 5
MIN_FUNDAMENTAL = 0.001


@dataclass(frozen=True)
class HarmonicDistortionResult:
    thd_percent: Optional[float] = None
    dominant_harmonics: List[int] = field(default_factory=list)
    distortion_character: Optional[DistortionCharacter] = None
    fundamental_hz: Optional[int] = None


def find_fundamental(mags: np.ndarray, freq_per_bin: float) -> Optional[Tuple[int, float]]:
    """(bin, magnitude) of the strongest bin in 50 Hz-2 kHz, or None."""

    lo = int(math.ceil(50.0 / freq_per_bin))
    hi = min(int(math.floor(2000.0 / freq_per_bin)), mags.shape[0] - 1)
    if hi < lo:
        return None
    idx = lo + int(np.argmax(mags[lo : hi + 1]))
    mag = float(mags[idx])
    if mag < MIN_FUNDAMENTAL:
        return None
    return idx, mag


def harmonic_magnitudes(mags: np.ndarray, fundamental_bin: int) -> List[float]:
    """Peak magnitude within +-2 bins of each harmonic 2..5."""

    out: List[float] = []
    last = mags.shape[0] - 1
    for h in range(2, NUM_HARMONICS + 1):
        target = round_int(fundamental_bin * h)
        if target >= last:
            out.append(0.0)
            continue
        out.append(float(np.max(mags[max(0, target - 2) : min(last, target + 2) + 1])))
    return out


def classify_distortion(thd: float, dominant: List[int]) -> DistortionCharacter:
    if thd < 0.5:
        return "clean"
    if thd < 2:
        return "warm" if (2 in dominant or 4 in dominant) else "clean"
    if thd < 10:
        return "gritty" if (3 in dominant or 5 in dominant) else "warm"
    return "clipped"


def analyze_harmonics(
    channels: ChannelsLike,
    sample_rate: int,
    config: Optional[AnalysisConfig] = None,
    pool: Optional[ResourcePool] = None,
) -> HarmonicDistortionResult:
    """Average THD over up to ten frames and classify its character."""

    config = config or DEFAULT_CONFIG
    pool = pool or pool_for_config(config)
    x = as_channels(channels, sample_rate)
    mono = downmix_mono(x)
    fft_size = config.fft_size_spectral
    if mono.shape[0] // fft_size < 1:
        logger.info("[HARMONICS] Signal shorter than one %d-sample frame", fft_size)
        return HarmonicDistortionResult()

    freq_per_bin = sample_rate / fft_size
    total_thd = 0.0
    total_fundamental = 0.0
    valid = 0
    counts = [0] * (NUM_HARMONICS - 1)

    real = pool.acquire(fft_size)
    imag = pool.acquire(fft_size)
    frames = iterate_frames(mono, fft_size, hop_size=fft_size, pool=pool)
    try:
        for frame in itertools.islice(frames, MAX_FRAMES):
            mags = frame_magnitudes(frame.frame, real, imag, config.fft_backend)
            found = find_fundamental(mags, freq_per_bin)
            if found is None:
                continue
            fbin, fmag = found
            harmonics = harmonic_magnitudes(mags, fbin)
            for i, h in enumerate(harmonics):
                if h > fmag * 0.01:
                    counts[i] += 1
            frame_thd = math.sqrt(sum(h * h for h in harmonics)) / fmag * 100.0
            if math.isfinite(frame_thd):
                total_thd += frame_thd
                total_fundamental += fbin * freq_per_bin
                valid += 1
    finally:
        frames.close()
        pool.release(real)
        pool.release(imag)

    if valid == 0:
        return HarmonicDistortionResult()

    thd = total_thd / valid
    dominant = [i + 2 for i, c in enumerate(counts) if c > valid * 0.5]
    character = classify_distortion(thd, dominant)
    logger.debug("[HARMONICS] thd=%.2f%% dominant=%s character=%s", thd, dominant, character)

    return HarmonicDistortionResult(
        thd_percent=round_half_up(thd, 2),
        dominant_harmonics=dominant,
        distortion_character=character,
        fundamental_hz=round_int(total_fundamental / valid),
    )
