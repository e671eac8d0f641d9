"""Low-level DSP building blocks for masterscope.

FFT and window tables, pooled scratch buffers and frame iteration,
the one-pole filter bank, level helpers, true-peak estimation and the
loudness adapter. Analyzers in `masterscope.dsp.analysis` build on
these.
"""
from .fft import fft, ifft, magnitude_spectrum
from .resource_pool import BufferPool, ResourcePool, WindowCache, default_pool, iterate_frames, pool_for_config
from .true_peak import TruePeakResult, true_peak_mono, true_peak_multichannel, verify_true_peak

__all__ = [
  "fft",
  "ifft",
  "magnitude_spectrum",
  "BufferPool",
  "ResourcePool",
  "WindowCache",
  "default_pool",
  "iterate_frames",
  "pool_for_config",
  "TruePeakResult",
  "true_peak_mono",
  "true_peak_multichannel",
  "verify_true_peak",
]
