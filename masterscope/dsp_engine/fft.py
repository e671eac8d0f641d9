"""Radix-2 FFT used by every frame-based analyzer.

The transform works in place on a pair of real/imaginary float arrays,
which is how the analyzers hold pooled scratch buffers. Two backends
compute the same transform:

- "numpy": `numpy.fft.fft` (pocketfft), the default.
- "radix2": an iterative Cooley-Tukey implementation vectorized per
  stage; useful as a reference and when comparing numerics.
"""
from __future__ import annotations

import logging
from functools import lru_cache
from typing import Optional

import numpy as np

from masterscope.config import DEFAULT_CONFIG

logger = logging.getLogger("masterscope_dsp.engine.fft")

_BACKENDS = ("numpy", "radix2")


def is_power_of_two(n: int) -> bool:
  return n > 0 and (n & (n - 1)) == 0


def next_power_of_two(n: int) -> int:
  if n <= 1:
    return 1
  return 1 << (int(n) - 1).bit_length()


@lru_cache(maxsize=32)
def _bit_reverse_indices(n: int) -> np.ndarray:
  bits = n.bit_length() - 1
  idx = np.arange(n, dtype=np.int64)
  rev = np.zeros(n, dtype=np.int64)
  for b in range(bits):
    rev |= ((idx >> b) & 1) << (bits - 1 - b)
  return rev


@lru_cache(maxsize=64)
def _twiddles(size: int) -> np.ndarray:
  half = size // 2
  return np.exp(-2j * np.pi * np.arange(half) / size)


def _radix2(z: np.ndarray) -> np.ndarray:
  n = z.shape[0]
  z = z[_bit_reverse_indices(n)]
  size = 2
  while size <= n:
    half = size // 2
    blocks = z.reshape(-1, size)
    even = blocks[:, :half].copy()
    odd = blocks[:, half:] * _twiddles(size)
    blocks[:, :half] = even + odd
    blocks[:, half:] = even - odd
    size *= 2
  return z


def _resolve_backend(backend: Optional[str]) -> str:
  name = backend or DEFAULT_CONFIG.fft_backend
  if name not in _BACKENDS:
    logger.warning("[FFT] Unknown backend %r, using radix2", name)
    return "radix2"
  return name


def _check_size(real: np.ndarray, imag: np.ndarray) -> int:
  n = real.shape[0]
  if imag.shape[0] != n:
    raise ValueError("real and imaginary parts must have the same length")
  if n > 1 and not is_power_of_two(n):
    raise ValueError(f"FFT size must be a power of two, got {n}")
  return n


def fft(real: np.ndarray, imag: np.ndarray, backend: Optional[str] = None) -> None:
  """Forward transform of `real + j*imag`, written back into both arrays."""
  if _check_size(real, imag) <= 1:
    return

  z = np.asarray(real, dtype=np.float64) + 1j * np.asarray(imag, dtype=np.float64)
  if _resolve_backend(backend) == "numpy":
    out = np.fft.fft(z)
  else:
    out = _radix2(z)
  real[:] = out.real
  imag[:] = out.imag


def ifft(real: np.ndarray, imag: np.ndarray, backend: Optional[str] = None) -> None:
  """Inverse transform via conjugate -> forward -> conjugate, scaled by 1/n."""
  n = _check_size(real, imag)
  if n <= 1:
    return
  np.negative(imag, out=imag)
  fft(real, imag, backend=backend)
  np.negative(imag, out=imag)
  real /= n
  imag /= n


def magnitudes(real: np.ndarray, imag: np.ndarray) -> np.ndarray:
  """Magnitudes of bins [0, n/2)."""
  half = real.shape[0] // 2
  re = np.asarray(real[:half], dtype=np.float64)
  im = np.asarray(imag[:half], dtype=np.float64)
  return np.sqrt(re * re + im * im)


def frame_magnitudes(
  frame: np.ndarray,
  real: np.ndarray,
  imag: np.ndarray,
  backend: Optional[str] = None,
) -> np.ndarray:
  """Transform one real frame using caller-owned scratch buffers.

  `real` and `imag` must be at least as long as the power-of-two
  `frame`; only their first `len(frame)` entries are touched.
  """
  n = frame.shape[0]
  re = real[:n]
  im = imag[:n]
  re[:] = frame
  im.fill(0.0)
  fft(re, im, backend=backend)
  return magnitudes(re, im)


def magnitude_spectrum(signal: np.ndarray, backend: Optional[str] = None) -> np.ndarray:
  """Zero-pad a real signal to a power of two and return n/2 magnitudes."""
  signal = np.asarray(signal, dtype=np.float64)
  n = next_power_of_two(signal.shape[0])
  real = np.zeros(n, dtype=np.float64)
  real[: signal.shape[0]] = signal
  imag = np.zeros(n, dtype=np.float64)
  fft(real, imag, backend=backend)
  return magnitudes(real, imag)
