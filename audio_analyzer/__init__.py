"""Offline track analyzer.

Extracts tempo, musical key, loudness metrics and a perceptually smoothed
spectrum from a single audio file. The heavy lifting is split between
in-process DSP (``dsp_engine``) and two external Essentia extractors
driven as subprocesses (``extractors``).
"""

from .analysis import TrackAnalysisData, analyze_file, run_full_analysis

__all__ = ["TrackAnalysisData", "analyze_file", "run_full_analysis"]
