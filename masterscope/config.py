"""Analysis settings.

All analyzers take an optional `AnalysisConfig`; when omitted they use
the defaults below. Deployments can override any field through
`MASTERSCOPE_*` environment variables via `AnalysisConfig.from_env()`.
"""

from __future__ import annotations

import os
from typing import Any, Dict, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

FFTBackend = Literal["numpy", "radix2"]


def _is_power_of_two(n: int) -> bool:
    return n > 0 and (n & (n - 1)) == 0


class AnalysisConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    fft_size_spectral: int = 4096
    frame_size: int = 2048
    hop_fraction: float = Field(0.5, gt=0.0, le=1.0)
    clip_threshold: float = Field(0.9999, gt=0.0, le=1.0)
    silence_threshold: float = Field(0.001, ge=0.0)
    transient_min_gap_ms: float = Field(50.0, gt=0.0)
    pool_max_per_size: int = Field(8, ge=0)
    pool_max_poolable_size: int = 262144
    fft_backend: FFTBackend = "numpy"

    @field_validator("fft_size_spectral", "frame_size", "pool_max_poolable_size")
    @classmethod
    def _power_of_two(cls, v: int) -> int:
        if not _is_power_of_two(v):
            raise ValueError(f"{v} is not a power of two")
        return v

    @classmethod
    def from_env(cls, prefix: str = "MASTERSCOPE_") -> "AnalysisConfig":
        """Build a config from environment variables.

        Field names map to upper-case variables, e.g.
        MASTERSCOPE_FFT_BACKEND=radix2 or MASTERSCOPE_CLIP_THRESHOLD=0.999.
        Unset variables keep their defaults.
        """

        overrides: Dict[str, Any] = {}
        for name in cls.model_fields:
            raw = os.getenv(prefix + name.upper())
            if raw is not None and raw.strip() != "":
                overrides[name] = raw.strip()
        return cls(**overrides)


DEFAULT_CONFIG = AnalysisConfig()
