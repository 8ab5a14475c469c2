"""Pydantic response models for the HTTP service.

They mirror :class:`audio_analyzer.analysis.TrackAnalysisData` and
:class:`audio_analyzer.dsp_engine.spectrum.SpectrumCurves` so the OpenAPI
schema documents every field the service returns.
"""

from typing import Dict, List, Optional

from pydantic import BaseModel


class SpectrumResponse(BaseModel):
    frequencies: List[float]
    avg_mid_db: List[float]
    avg_side_db: List[float]
    avg_stereo_db: List[float]
    max_mid_db: List[float]
    max_side_db: List[float]
    max_stereo_db: List[float]
    smoothing_factor: float


class AnalysisResponse(BaseModel):
    filename: Optional[str] = None
    duration_s: float
    formatted_duration: str

    bpm: float
    bpm_confidence: float

    musical_key: str
    key_confidence: float
    camelot_key: str

    integrated_lufs: float
    short_term_max_lufs: float
    momentary_max_lufs: float
    loudness_range: float
    average_dynamics_plr: float
    true_peak_max: float

    time_audio_loading_ms: float
    time_loudness_ms: float
    time_bpm_prep_ms: float
    time_bpm_tool_ms: float
    time_key_prep_ms: float
    time_key_tool_ms: float
    time_spectrum_ms: float
    time_total_ms: float

    spectrum: Optional[SpectrumResponse] = None


class SmoothingPresetsResponse(BaseModel):
    presets: Dict[str, float]
    default: float


class HealthResponse(BaseModel):
    status: str
