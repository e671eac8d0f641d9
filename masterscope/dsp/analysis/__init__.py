"""Track analyzers.

Each analyzer takes decoded channel buffers plus a sample rate and
returns a frozen dataclass of measurements. None marks a value that
could not be computed for the given input.
"""
from .dynamics import DynamicsResult, analyze_dynamics
from .harmonics import HarmonicDistortionResult, analyze_harmonics
from .musical import MusicalFeatures, compute_musical_features
from .spectral import SpectralResult, analyze_spectral
from .stereo import StereoResult, analyze_stereo
from .streaming import StreamingSimulation, simulate_streaming
from .tempo import TempoResult, detect_tempo, tempo_drift
from .tonality import KeyResult, detect_key, key_stability

__all__ = [
    "DynamicsResult",
    "analyze_dynamics",
    "HarmonicDistortionResult",
    "analyze_harmonics",
    "MusicalFeatures",
    "compute_musical_features",
    "SpectralResult",
    "analyze_spectral",
    "StereoResult",
    "analyze_stereo",
    "StreamingSimulation",
    "simulate_streaming",
    "TempoResult",
    "detect_tempo",
    "tempo_drift",
    "KeyResult",
    "detect_key",
    "key_stability",
]
