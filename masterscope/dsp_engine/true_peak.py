"""ITU-R BS.1770-4 true-peak estimation (Annex 2).

A 4x polyphase FIR interpolator: the 48-tap reference filter is split
into four 12-tap phases and every phase is run over the signal, so
inter-sample overshoots between two samples are caught. Used as the
fallback when the primary loudness measurement hands back a true-peak
value that is unusable (NaN, inf or <= 0).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Literal, Optional, Sequence

import numpy as np

logger = logging.getLogger("masterscope_dsp.engine.true_peak")

TruePeakSource = Literal["external", "fallback"]

FILTER_TAPS = 12

_PHASE_0 = np.array([
  0.0017089843750, 0.0109863281250, -0.0196533203125, 0.0332031250000,
  -0.0594482421875, 0.1373291015625, 0.9721679687500, -0.1022949218750,
  0.0476074218750, -0.0266113281250, 0.0148925781250, -0.0083007812500,
])
_PHASE_1 = np.array([
  -0.0291748046875, 0.0292968750000, -0.0517578125000, 0.0891113281250,
  -0.1665039062500, 0.4650878906250, 0.7797851562500, -0.2003173828125,
  0.1015625000000, -0.0582275390625, 0.0330810546875, -0.0189208984375,
])

# Phases 2 and 3 are time-reversed copies of 1 and 0.
PHASE_COEFFS = (_PHASE_0, _PHASE_1, _PHASE_1[::-1].copy(), _PHASE_0[::-1].copy())


@dataclass(frozen=True)
class TruePeakResult:
  true_peak: float
  source: TruePeakSource
  warning: Optional[str] = None


def true_peak_mono(samples: np.ndarray) -> float:
  """Linear true peak of one channel; sample peak below 12 samples."""
  x = np.asarray(samples, dtype=np.float64)
  if x.shape[0] == 0:
    return 0.0
  if x.shape[0] < FILTER_TAPS:
    return float(np.max(np.abs(x)))

  peak = 0.0
  for coeffs in PHASE_COEFFS:
    y = np.convolve(x, coeffs, mode="valid")
    peak = max(peak, float(np.max(np.abs(y))))
  return peak


def true_peak_multichannel(channels: Sequence[np.ndarray]) -> float:
  peak = 0.0
  for ch in channels:
    peak = max(peak, true_peak_mono(ch))
  return peak


def sample_peak(channels: Sequence[np.ndarray]) -> float:
  peak = 0.0
  for ch in channels:
    ch = np.asarray(ch)
    if ch.shape[0]:
      peak = max(peak, float(np.max(np.abs(ch))))
  return peak


def verify_true_peak(measured: Optional[float], channels: Sequence[np.ndarray]) -> TruePeakResult:
  """Keep a valid externally measured true peak, otherwise recompute it."""
  if measured is not None and np.isfinite(measured) and measured > 0:
    return TruePeakResult(true_peak=float(measured), source="external")

  fallback = true_peak_multichannel(channels)
  warning = f"true-peak measurement returned invalid value ({measured}), using ITU-R BS.1770-4 fallback"
  logger.warning("[TRUE_PEAK] %s", warning)
  return TruePeakResult(true_peak=fallback, source="fallback", warning=warning)
