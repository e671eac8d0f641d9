"""One-pole filter bank built on SciPy.

These are gentle (6 dB/oct) filters used to isolate rough
frequency bands for measurement, not for processing audio. Each filter
starts from a zero state, so the first few milliseconds of the output
contain the usual one-pole settling transient.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Optional

import numpy as np
from scipy.signal import lfilter

BandKind = Literal["lowpass", "highpass", "bandpass"]


def _pole(fc: float, fs: float) -> float:
  if fs <= 0:
    raise ValueError("sample rate must be positive")
  return float(np.exp(-2.0 * np.pi * fc / fs))


def one_pole_lp(x: np.ndarray, fc: float, fs: float, out: Optional[np.ndarray] = None) -> np.ndarray:
  """y[n] = (1 - a) x[n] + a y[n-1] with a = exp(-2 pi fc / fs)."""
  a = _pole(fc, fs)
  y = lfilter([1.0 - a], [1.0, -a], np.asarray(x, dtype=np.float64), axis=-1)
  if out is not None:
    out[...] = y
    return out
  return y


def one_pole_hp(x: np.ndarray, fc: float, fs: float, out: Optional[np.ndarray] = None) -> np.ndarray:
  """Complement of the one-pole low-pass: x - lp(x)."""
  x = np.asarray(x, dtype=np.float64)
  y = x - one_pole_lp(x, fc, fs)
  if out is not None:
    out[...] = y
    return out
  return y


def bandpass(x: np.ndarray, low_hz: float, high_hz: float, fs: float, out: Optional[np.ndarray] = None) -> np.ndarray:
  """High-pass at `low_hz` followed by low-pass at `high_hz`."""
  return one_pole_lp(one_pole_hp(x, low_hz, fs), high_hz, fs, out=out)


@dataclass(frozen=True)
class BandFilter:
  """A named measurement band.

  `process` works on [samples] or [channels, samples] input, filtering
  each channel independently along the last axis.
  """

  kind: BandKind
  sample_rate: int
  low_hz: float = 0.0
  high_hz: float = 0.0

  def process(self, x: np.ndarray) -> np.ndarray:
    if self.kind == "lowpass":
      return one_pole_lp(x, self.high_hz, self.sample_rate)
    if self.kind == "highpass":
      return one_pole_hp(x, self.low_hz, self.sample_rate)
    return bandpass(x, self.low_hz, self.high_hz, self.sample_rate)


def design_band(low_hz: float, high_hz: float, sr: int) -> BandFilter:
  if low_hz >= high_hz:
    raise ValueError("band lower edge must be below its upper edge")
  return BandFilter("bandpass", int(sr), float(low_hz), float(high_hz))
