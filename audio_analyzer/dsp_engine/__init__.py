"""In-process DSP for the analyzer.

Preprocessing chains feeding the external extractors, the streaming
loudness meter and the display spectrum.
"""
from .loudness import LoudnessMeter, LoudnessResult, measure_buffer_loudness, measure_loudness
from .prep import (
  crop_to_loudest_window,
  downmix_and_encode,
  key_filter,
  normalize,
  tempo_filter,
)
from .spectrum import SMOOTHING_PRESETS, SpectrumCurves, SpectrumEstimator, prepare_spectrum_window

__all__ = [
  "LoudnessMeter",
  "LoudnessResult",
  "measure_buffer_loudness",
  "measure_loudness",
  "crop_to_loudest_window",
  "downmix_and_encode",
  "key_filter",
  "normalize",
  "tempo_filter",
  "SMOOTHING_PRESETS",
  "SpectrumCurves",
  "SpectrumEstimator",
  "prepare_spectrum_window",
]
