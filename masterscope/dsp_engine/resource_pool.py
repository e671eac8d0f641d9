"""Reusable scratch buffers, cached window tables and frame iteration.

Frame-based analyzers touch the same handful of sizes thousands of
times per track. `BufferPool` hands out power-of-two float32 buffers
and takes them back zeroed; `WindowCache` computes each window table
once and shares it read-only. Both live on a `ResourcePool` that can be
injected per caller, with `default_pool()` as the process-wide one.
"""
from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, List, NamedTuple, Optional, Tuple, TypeVar

import numpy as np

from masterscope.config import DEFAULT_CONFIG, AnalysisConfig
from masterscope.dsp_engine.fft import is_power_of_two, next_power_of_two

T = TypeVar("T")


@dataclass(frozen=True)
class PoolStats:
  total_acquired: int
  total_released: int
  pooled_buffers: int
  hit_rate: float


class BufferPool:
  """Size-classed free-lists of float32 buffers."""

  def __init__(self, max_per_size: int = 8, max_poolable_size: int = 262144) -> None:
    self.max_per_size = int(max_per_size)
    self.max_poolable_size = int(max_poolable_size)
    self._free: Dict[int, List[np.ndarray]] = {}
    self._lock = threading.Lock()
    self._acquired = 0
    self._released = 0
    self._hits = 0

  def acquire(self, min_size: int) -> np.ndarray:
    """Return a zeroed buffer of the next power of two >= `min_size`."""
    size = next_power_of_two(max(1, int(min_size)))
    with self._lock:
      self._acquired += 1
      free = self._free.get(size)
      if free:
        self._hits += 1
        return free.pop()
    return np.zeros(size, dtype=np.float32)

  def release(self, buffer: np.ndarray) -> None:
    size = buffer.shape[0]
    if not is_power_of_two(size) or size > self.max_poolable_size:
      return
    with self._lock:
      self._released += 1
      free = self._free.setdefault(size, [])
      if len(free) < self.max_per_size:
        buffer.fill(0.0)
        free.append(buffer)

  def clear(self) -> None:
    with self._lock:
      self._free.clear()
      self._acquired = 0
      self._released = 0
      self._hits = 0

  def stats(self) -> PoolStats:
    with self._lock:
      pooled = sum(len(v) for v in self._free.values())
      hit_rate = self._hits / self._acquired if self._acquired else 0.0
      return PoolStats(
        total_acquired=self._acquired,
        total_released=self._released,
        pooled_buffers=pooled,
        hit_rate=hit_rate,
      )


class WindowCache:
  """Read-only window tables keyed by (kind, size)."""

  def __init__(self) -> None:
    self._tables: Dict[Tuple[str, int], np.ndarray] = {}
    self._lock = threading.Lock()

  def _get(self, kind: str, size: int, build: Callable[[int], np.ndarray]) -> np.ndarray:
    key = (kind, int(size))
    with self._lock:
      table = self._tables.get(key)
      if table is None:
        table = build(int(size)).astype(np.float32)
        table.flags.writeable = False
        self._tables[key] = table
      return table

  def hann(self, size: int) -> np.ndarray:
    return self._get("hann", size, _hann)

  def blackman_harris(self, size: int) -> np.ndarray:
    return self._get("blackman_harris", size, _blackman_harris)

  def clear(self) -> None:
    with self._lock:
      self._tables.clear()

  def __len__(self) -> int:
    return len(self._tables)


def _hann(size: int) -> np.ndarray:
  if size <= 1:
    return np.ones(max(size, 0))
  i = np.arange(size)
  return 0.5 * (1.0 - np.cos(2.0 * np.pi * i / (size - 1)))


def _blackman_harris(size: int) -> np.ndarray:
  if size <= 1:
    return np.ones(max(size, 0))
  a0, a1, a2, a3 = 0.35875, 0.48829, 0.14128, 0.01168
  x = 2.0 * np.pi * np.arange(size) / (size - 1)
  return a0 - a1 * np.cos(x) + a2 * np.cos(2 * x) - a3 * np.cos(3 * x)


class ResourcePool:
  """Buffers plus window tables; one per process or one per worker."""

  def __init__(self, max_per_size: int = 8, max_poolable_size: int = 262144) -> None:
    self.buffers = BufferPool(max_per_size, max_poolable_size)
    self.windows = WindowCache()

  @classmethod
  def from_config(cls, config) -> "ResourcePool":
    return cls(config.pool_max_per_size, config.pool_max_poolable_size)

  def acquire(self, min_size: int) -> np.ndarray:
    return self.buffers.acquire(min_size)

  def release(self, buffer: np.ndarray) -> None:
    self.buffers.release(buffer)

  def hann(self, size: int) -> np.ndarray:
    return self.windows.hann(size)

  def clear(self) -> None:
    self.buffers.clear()
    self.windows.clear()


_default_pool: Optional[ResourcePool] = None
_default_lock = threading.Lock()
_config_pools: Dict[Tuple[int, int], ResourcePool] = {}


def default_pool() -> ResourcePool:
  global _default_pool
  with _default_lock:
    if _default_pool is None:
      _default_pool = ResourcePool()
    return _default_pool


def pool_for_config(config: Optional[AnalysisConfig] = None) -> ResourcePool:
  """Shared pool honouring the pool limits of `config`.

  Default limits map to `default_pool()`; any other pair of limits gets
  its own process-wide pool, created on first use.
  """
  config = config or DEFAULT_CONFIG
  key = (config.pool_max_per_size, config.pool_max_poolable_size)
  if key == (DEFAULT_CONFIG.pool_max_per_size, DEFAULT_CONFIG.pool_max_poolable_size):
    return default_pool()
  with _default_lock:
    pool = _config_pools.get(key)
    if pool is None:
      pool = _config_pools[key] = ResourcePool.from_config(config)
    return pool


class Frame(NamedTuple):
  frame: np.ndarray
  index: int
  position: int


def _plan_frames(
  total: int,
  frame_size: int,
  hop_size: Optional[int],
  max_frames: Optional[int],
) -> Tuple[int, int]:
  """Return (num_frames, hop) for a signal of `total` samples."""
  if frame_size <= 0 or total < frame_size:
    return 0, 0
  hop = hop_size if hop_size else max(1, frame_size // 2)
  possible = (total - frame_size) // hop + 1
  if max_frames and max_frames < possible:
    return max_frames, (total - frame_size) // max_frames
  return possible, hop


def _frame_size(frame_size: Optional[int], config: Optional[AnalysisConfig]) -> int:
  if frame_size:
    return int(frame_size)
  return (config or DEFAULT_CONFIG).frame_size


def count_frames(
  sample_count: int,
  frame_size: Optional[int] = None,
  hop_size: Optional[int] = None,
  max_frames: Optional[int] = None,
  config: Optional[AnalysisConfig] = None,
) -> int:
  return _plan_frames(sample_count, _frame_size(frame_size, config), hop_size, max_frames)[0]


def iterate_frames(
  samples: np.ndarray,
  frame_size: Optional[int] = None,
  hop_size: Optional[int] = None,
  max_frames: Optional[int] = None,
  apply_window: bool = True,
  pool: Optional[ResourcePool] = None,
  config: Optional[AnalysisConfig] = None,
) -> Iterator[Frame]:
  """Yield (optionally Hann-windowed) frames of `samples`.

  The yielded `frame` array is one pooled buffer overwritten on every
  step; copy it if it must outlive the step. The buffer goes back to
  the pool when the generator is exhausted or closed.

  `frame_size` defaults to `config.frame_size` and `pool` to the pool
  for `config`. With `max_frames` smaller than the number of possible
  frames, the hop is widened so the frames spread evenly over the whole
  signal.
  """
  pool = pool or pool_for_config(config)
  frame_size = _frame_size(frame_size, config)
  num_frames, hop = _plan_frames(samples.shape[0], frame_size, hop_size, max_frames)
  if num_frames == 0:
    return

  window = pool.hann(frame_size) if apply_window else None
  buffer = pool.acquire(frame_size)
  frame = buffer[:frame_size]
  try:
    for i in range(num_frames):
      position = i * hop
      if position + frame_size > samples.shape[0]:
        break
      chunk = samples[position:position + frame_size]
      if window is not None:
        np.multiply(chunk, window, out=frame, casting="unsafe")
      else:
        frame[:] = chunk
      yield Frame(frame, i, position)
  finally:
    pool.release(buffer)


def process_frames(
  samples: np.ndarray,
  processor: Callable[[np.ndarray, int, int], T],
  frame_size: Optional[int] = None,
  hop_size: Optional[int] = None,
  max_frames: Optional[int] = None,
  apply_window: bool = True,
  pool: Optional[ResourcePool] = None,
  config: Optional[AnalysisConfig] = None,
) -> List[T]:
  """Run `processor(frame, index, position)` on every frame."""
  return [
    processor(f.frame, f.index, f.position)
    for f in iterate_frames(samples, frame_size, hop_size, max_frames, apply_window, pool, config)
  ]
