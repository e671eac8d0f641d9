"""Integrated loudness and true peak for the track report.

pyloudnorm provides the BS.1770 integrated loudness; the primary true
peak comes from 4x polyphase resampling with SciPy. When that value is
unusable the ITU fallback in `true_peak` takes over.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

import numpy as np
import pyloudnorm as pyln
from scipy.signal import resample_poly

from masterscope.dsp_engine.channels import ChannelsLike, as_channels
from masterscope.dsp_engine.levels import db_from_linear, finite_or_none
from masterscope.dsp_engine.true_peak import TruePeakSource, sample_peak, verify_true_peak

logger = logging.getLogger("masterscope_dsp.engine.loudness")


@dataclass(frozen=True)
class LoudnessStats:
  integrated_lufs: Optional[float]
  true_peak_dbtp: Optional[float]
  sample_peak_dbfs: Optional[float]
  true_peak_source: TruePeakSource
  warning: Optional[str] = None


@lru_cache(maxsize=64)
def _meter_for_sr(sr: int) -> pyln.Meter:
  return pyln.Meter(sr)


def integrated_loudness(x: np.ndarray, sr: int) -> Optional[float]:
  """Integrated LUFS of a [channels, samples] array, None when undefined."""
  if x.shape[1] == 0:
    return None
  data = x[0] if x.shape[0] == 1 else x.T
  try:
    lufs = float(_meter_for_sr(int(sr)).integrated_loudness(data))
  except ValueError as exc:
    # pyloudnorm rejects clips shorter than one 400 ms gating block
    logger.info("[LOUDNESS] Integrated loudness unavailable: %s", exc)
    return None
  return finite_or_none(lufs)


def oversampled_peak(x: np.ndarray) -> float:
  """Linear peak after 4x polyphase upsampling of each channel."""
  peak = 0.0
  for ch in x:
    if ch.shape[0] == 0:
      continue
    up = resample_poly(ch, 4, 1)
    peak = max(peak, float(np.max(np.abs(up))))
  return peak


def measure_loudness(channels: ChannelsLike, sample_rate: int) -> LoudnessStats:
  x = as_channels(channels, sample_rate)
  lufs = integrated_loudness(x, sample_rate)
  tp = verify_true_peak(oversampled_peak(x), list(x))

  return LoudnessStats(
    integrated_lufs=lufs,
    true_peak_dbtp=finite_or_none(db_from_linear(tp.true_peak)),
    sample_peak_dbfs=finite_or_none(db_from_linear(sample_peak(list(x)))),
    true_peak_source=tp.source,
    warning=tp.warning,
  )
