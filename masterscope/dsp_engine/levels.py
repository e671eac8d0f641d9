"""Level and statistics helpers shared by every analyzer.

Amplitude dB follows the usual `20 * log10(x)` convention but returns
-inf for silent or invalid input so callers can tell "no signal" apart
from a very quiet one. Result records convert non-finite values to None
through `finite_or_none` before publishing.
"""
from __future__ import annotations

import math
from typing import Optional, Sequence

import numpy as np


def db_from_linear(value: float) -> float:
  """Linear amplitude to dB; -inf for <= 0 or non-finite input."""
  value = float(value)
  if not math.isfinite(value) or value <= 0.0:
    return float("-inf")
  return 20.0 * math.log10(value)


def db_array(x: np.ndarray) -> np.ndarray:
  """Vectorized `db_from_linear`."""
  x = np.asarray(x, dtype=np.float64)
  out = np.full(x.shape, -np.inf)
  ok = np.isfinite(x) & (x > 0.0)
  out[ok] = 20.0 * np.log10(x[ok])
  return out


def clamp(value: float, lo: float, hi: float) -> float:
  return float(min(hi, max(lo, value)))


def round_half_up(value: float, ndigits: int = 0) -> float:
  """Round .5 towards +inf, unlike Python's banker's rounding."""
  scale = 10.0 ** ndigits
  return math.floor(value * scale + 0.5) / scale


def round_int(value: float) -> int:
  return int(math.floor(value + 0.5))


def finite_or_none(value: Optional[float], ndigits: Optional[int] = None) -> Optional[float]:
  if value is None:
    return None
  value = float(value)
  if not math.isfinite(value):
    return None
  if ndigits is not None:
    return round_half_up(value, ndigits)
  return value


def rms(x: np.ndarray) -> float:
  x = np.asarray(x, dtype=np.float64)
  if x.size == 0:
    return 0.0
  return float(np.sqrt(np.mean(x * x)))


def window_count(n: int, window: int, hop: int) -> int:
  """Number of windows starting at 0, hop, 2*hop, ... with start + window < n."""
  if window <= 0 or hop <= 0 or n <= window:
    return 0
  return (n - window - 1) // hop + 1


def sliding_frames(x: np.ndarray, window: int, hop: int) -> np.ndarray:
  """Strided `[frames, window]` view over `x`, see `window_count`."""
  count = window_count(x.shape[-1], window, hop)
  if count == 0:
    return np.zeros((0, max(window, 0)), dtype=x.dtype)
  view = np.lib.stride_tricks.sliding_window_view(x, window)
  return view[: count * hop : hop]


def upper_median(values: Sequence[float]) -> float:
  """Element at `len // 2` of the sorted values (0.0 when empty)."""
  if len(values) == 0:
    return 0.0
  ordered = np.sort(np.asarray(values, dtype=np.float64))
  return float(ordered[len(ordered) // 2])


def pearson_correlation(a: np.ndarray, b: np.ndarray) -> float:
  """Normalized covariance of two equal-length signals.

  Returns 0.0 when either input has zero variance.
  """
  a = np.asarray(a, dtype=np.float64)
  b = np.asarray(b, dtype=np.float64)
  n = a.shape[0]
  if n == 0:
    return 0.0
  mean_a = a.mean()
  mean_b = b.mean()
  cov = float(np.dot(a, b) / n - mean_a * mean_b)
  var_a = float(np.dot(a, a) / n - mean_a * mean_a)
  var_b = float(np.dot(b, b) / n - mean_b * mean_b)
  if var_a <= 0.0 or var_b <= 0.0:
    return 0.0
  return cov / math.sqrt(var_a * var_b)


def linear_regression_slope(x: np.ndarray, y: np.ndarray) -> float:
  """Least-squares slope of y against x; 0.0 when undefined."""
  x = np.asarray(x, dtype=np.float64)
  y = np.asarray(y, dtype=np.float64)
  n = x.shape[0]
  if n < 2:
    return 0.0
  denom = n * float(np.dot(x, x)) - float(x.sum()) ** 2
  if denom == 0.0:
    return 0.0
  return (n * float(np.dot(x, y)) - float(x.sum()) * float(y.sum())) / denom
