"""Track analysis orchestration.

``analyze_file`` fans the three feature extractors (loudness, tempo, key)
out onto a thread pool, waits for all of them and merges their results
into one :class:`TrackAnalysisData`. Each worker decodes the file on its
own, so no buffer is shared between threads; the only shared inputs are
the path, the extractor binaries and a random token used to name temp
files.
"""
from __future__ import annotations

import logging
import secrets
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple, TypeVar, Union

from .decoding import open_reader
from .dsp_engine.loudness import NOT_MEASURED, LoudnessResult, measure_loudness
from .dsp_engine.spectrum import DEFAULT_SMOOTHING, SpectrumCurves, SpectrumEstimator, prepare_spectrum_window
from .extractors.camelot import UNKNOWN
from .extractors.invoker import ToolInvoker, prepare_tool
from .extractors.key import KeyResult, estimate_key
from .extractors.tempo import TempoResult, estimate_tempo
from .settings import AnalyzerSettings, load_settings

logger = logging.getLogger("audio_analyzer.analysis")

PathLike = Union[str, Path]
T = TypeVar("T")


@dataclass
class TrackAnalysisData:
    duration_s: float = 0.0

    bpm: float = 0.0
    bpm_confidence: float = 0.0

    musical_key: str = UNKNOWN
    key_confidence: float = 0.0
    camelot_key: str = UNKNOWN

    integrated_lufs: float = NOT_MEASURED
    short_term_max_lufs: float = NOT_MEASURED
    momentary_max_lufs: float = NOT_MEASURED
    loudness_range: float = 0.0
    average_dynamics_plr: float = 0.0
    true_peak_max: float = NOT_MEASURED

    # elapsed times, milliseconds
    time_audio_loading_ms: float = 0.0
    time_loudness_ms: float = 0.0
    time_bpm_prep_ms: float = 0.0
    time_bpm_tool_ms: float = 0.0
    time_key_prep_ms: float = 0.0
    time_key_tool_ms: float = 0.0
    time_spectrum_ms: float = 0.0
    time_total_ms: float = 0.0

    @property
    def formatted_duration(self) -> str:
        """``MM:SS``"""
        if self.duration_s <= 0:
            return "00:00"
        total = int(self.duration_s)
        return f"{total // 60:02d}:{total % 60:02d}"

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["formatted_duration"] = self.formatted_duration
        return data


def _join(future: "Future[T]", default: Callable[[], T], label: str) -> T:
    try:
        return future.result()
    except Exception:
        logger.exception("[ANALYSIS] %s task failed, keeping defaults", label)
        return default()


def _prepare_tools(settings: AnalyzerSettings) -> None:
    prepare_tool(settings.bpm_tool_path, settings.bpm_payload_path)
    prepare_tool(settings.key_tool_path, settings.key_payload_path)


def analyze_file(
    path: PathLike,
    settings: Optional[AnalyzerSettings] = None,
    invoker: Optional[ToolInvoker] = None,
) -> TrackAnalysisData:
    """Measure loudness, tempo and key of ``path``.

    Blocks until all three analyses finish. Never raises for a bad file or
    a failing extractor; features that could not be measured keep their
    defaults ("Unknown", 0 or -100).
    """

    settings = settings or load_settings()
    invoker = invoker or ToolInvoker(timeout=settings.tool_timeout_s)
    data = TrackAnalysisData()
    t_global = time.perf_counter()

    _prepare_tools(settings)

    t_load = time.perf_counter()
    reader = open_reader(path)
    if reader is None:
        logger.warning("[ANALYSIS] Could not decode %s", path)
        return data
    with reader:
        data.duration_s = reader.duration_s
    data.time_audio_loading_ms = (time.perf_counter() - t_load) * 1000.0

    unique_id = secrets.token_hex(8)
    work_dir = settings.work_dir

    with ThreadPoolExecutor(max_workers=3, thread_name_prefix="analysis") as pool:
        loudness_task = pool.submit(measure_loudness, path)
        tempo_task = pool.submit(estimate_tempo, path, settings.bpm_tool_path, unique_id, work_dir, invoker)
        key_task = pool.submit(estimate_key, path, settings.key_tool_path, unique_id, work_dir, invoker)

        loudness = _join(loudness_task, LoudnessResult, "loudness")
        tempo = _join(tempo_task, TempoResult, "tempo")
        key = _join(key_task, KeyResult, "key")

    data.integrated_lufs = loudness.integrated_lufs
    data.short_term_max_lufs = loudness.short_term_max_lufs
    data.momentary_max_lufs = loudness.momentary_max_lufs
    data.loudness_range = loudness.loudness_range
    data.true_peak_max = loudness.true_peak_max_db
    data.average_dynamics_plr = loudness.dynamics_plr
    data.time_loudness_ms = loudness.elapsed_ms

    data.bpm = tempo.bpm
    data.bpm_confidence = tempo.confidence
    data.time_bpm_prep_ms = tempo.prep_ms
    data.time_bpm_tool_ms = tempo.tool_ms

    data.musical_key = key.musical_key
    data.key_confidence = key.confidence
    data.camelot_key = key.camelot
    data.time_key_prep_ms = key.prep_ms
    data.time_key_tool_ms = key.tool_ms

    data.time_total_ms = (time.perf_counter() - t_global) * 1000.0
    return data


def run_full_analysis(
    path: PathLike,
    smoothing_factor: float = DEFAULT_SMOOTHING,
    settings: Optional[AnalyzerSettings] = None,
    invoker: Optional[ToolInvoker] = None,
) -> Tuple[TrackAnalysisData, Optional[SpectrumCurves]]:
    """Feature analysis followed by the display spectrum of a representative window."""

    t_start = time.perf_counter()
    data = analyze_file(path, settings=settings, invoker=invoker)

    t_spectrum = time.perf_counter()
    curves: Optional[SpectrumCurves] = None
    try:
        window = prepare_spectrum_window(path)
        if window is not None:
            buffer, sr = window
            curves = SpectrumEstimator(smoothing_factor=smoothing_factor).analyze(buffer, sr)
    except Exception:
        logger.exception("[ANALYSIS] spectrum stage failed, returning features only")
        curves = None
    data.time_spectrum_ms = (time.perf_counter() - t_spectrum) * 1000.0
    data.time_total_ms = (time.perf_counter() - t_start) * 1000.0

    logger.info(
        "[ANALYSIS] %s done in %.0f ms (load=%.0f loudness=%.0f bpm=%.0f+%.0f key=%.0f+%.0f spectrum=%.0f)",
        Path(path).name,
        data.time_total_ms,
        data.time_audio_loading_ms,
        data.time_loudness_ms,
        data.time_bpm_prep_ms,
        data.time_bpm_tool_ms,
        data.time_key_prep_ms,
        data.time_key_tool_ms,
        data.time_spectrum_ms,
    )
    return data, curves
