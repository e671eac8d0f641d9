"""High-level analysis namespace.

Groups the track analyzers (dynamics, stereo, spectral, harmonics,
tempo, key) built on `masterscope.dsp_engine`.
"""
