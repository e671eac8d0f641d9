"""Streaming platform loudness-normalization simulation.

Given a track's integrated loudness and true peak, project what each
platform's normalization does to it: the gain it applies, where the
true peak lands afterwards and whether that risks clipping.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

# name -> (reference LUFS, true-peak limit dBTP)
PLATFORM_TARGETS: Dict[str, Tuple[float, float]] = {
    "Spotify": (-14.0, -1.0),
    "Apple Music": (-16.0, -1.0),
    "YouTube": (-14.0, -1.0),
    "Tidal": (-14.0, -1.0),
}


@dataclass(frozen=True)
class PlatformNormalization:
    platform: str
    reference_lufs: float
    gain_change_db: float
    projected_true_peak_dbtp: float
    risk_flags: List[str] = field(default_factory=list)
    limiter_ceiling_suggestion: Optional[float] = None


@dataclass(frozen=True)
class StreamingSimulation:
    platforms: Dict[str, PlatformNormalization]
    recommendation: Optional[str]


def normalize_for_platform(platform: str, integrated_lufs: float, true_peak_dbtp: float) -> PlatformNormalization:
    target_lufs, tp_limit = PLATFORM_TARGETS[platform]
    gain = target_lufs - integrated_lufs
    projected = true_peak_dbtp + gain

    flags: List[str] = []
    if gain < -1:
        flags.append(f"Attenuated by {abs(gain):.1f} dB")
    if projected > tp_limit:
        flags.append(f"May clip post-normalization (TP {projected:.1f} dBTP > {tp_limit:g} dBTP)")
    if projected > 0:
        flags.append("Likely to clip or distort")

    ceiling = tp_limit - gain if projected > tp_limit else None
    return PlatformNormalization(
        platform=platform,
        reference_lufs=target_lufs,
        gain_change_db=gain,
        projected_true_peak_dbtp=projected,
        risk_flags=flags,
        limiter_ceiling_suggestion=ceiling,
    )


def loudness_recommendation(integrated_lufs: float) -> str:
    if integrated_lufs > -10:
        return "Very competitive loudness. May sacrifice dynamics for loudness. Consider backing off for more dynamic range."
    if integrated_lufs > -14:
        return "Competitive loudness. Good for EDM/Pop. Will be attenuated on most platforms."
    if integrated_lufs > -18:
        return "Balanced loudness. Preserves dynamics while remaining competitive."
    return "Dynamic master. Good for acoustic/classical genres. May sound quieter in playlists."


def simulate_streaming(integrated_lufs: Optional[float], true_peak_dbtp: Optional[float]) -> StreamingSimulation:
    """Per-platform projection; empty when loudness or true peak is unknown."""

    if integrated_lufs is None or true_peak_dbtp is None:
        return StreamingSimulation(platforms={}, recommendation=None)
    platforms = {
        name: normalize_for_platform(name, integrated_lufs, true_peak_dbtp) for name in PLATFORM_TARGETS
    }
    return StreamingSimulation(platforms=platforms, recommendation=loudness_recommendation(integrated_lufs))
