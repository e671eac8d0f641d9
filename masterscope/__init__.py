"""masterscope: objective measurements for mastered audio."""
from masterscope.analysis import TrackReport, analyze_track
from masterscope.config import AnalysisConfig

__all__ = ["AnalysisConfig", "TrackReport", "analyze_track"]
