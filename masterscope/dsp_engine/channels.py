"""Channel layout helpers: validation, mono downmix and mid/side.

Analyzers accept either a `[channels, samples]` array, a sequence of
equal-length 1-D channel arrays, or a bare 1-D array for mono material.
Input buffers are never modified; everything here returns new arrays.
"""
from __future__ import annotations

from typing import Sequence, Tuple, Union

import numpy as np

ChannelsLike = Union[np.ndarray, Sequence[np.ndarray]]


def as_channels(channels: ChannelsLike, sample_rate: int) -> np.ndarray:
  """Validate input and return a float64 `[channels, samples]` array."""
  if int(sample_rate) <= 0:
    raise ValueError("sample_rate must be a positive integer")

  if isinstance(channels, np.ndarray):
    arr = channels
  else:
    chans = [np.asarray(ch) for ch in channels]
    if any(ch.ndim != 1 for ch in chans):
      raise ValueError("each channel must be a 1-D sample array")
    lengths = {ch.shape[0] for ch in chans}
    if len(lengths) > 1:
      raise ValueError("all channels must have the same length")
    if not chans:
      return np.zeros((0, 0), dtype=np.float64)
    arr = np.stack(chans, axis=0)

  if arr.ndim == 1:
    arr = arr[np.newaxis, :]
  if arr.ndim != 2:
    raise ValueError("audio must be [samples] or [channels, samples]")
  return np.asarray(arr, dtype=np.float64)


def downmix_mono(x: np.ndarray) -> np.ndarray:
  """Arithmetic mean across channels at each index."""
  if x.shape[0] == 0:
    return np.zeros(0, dtype=np.float64)
  if x.shape[0] == 1:
    return x[0]
  return x.mean(axis=0)


def mid_side(left: np.ndarray, right: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
  """Return (mid, side) with mid = 0.5(L+R), side = 0.5(L-R)."""
  if left.shape != right.shape:
    raise ValueError("mid/side conversion expects equal-length channels")
  mid = 0.5 * (left + right)
  side = 0.5 * (left - right)
  return mid, side
