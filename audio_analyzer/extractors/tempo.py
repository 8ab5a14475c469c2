"""Tempo detection through Essentia's multifeature rhythm extractor.

The track is normalised, reduced to its kick/bass and hi-hat bands,
cropped to the loudest 30 seconds and handed to the extractor as a mono
16-bit WAV. The extractor prints its findings to stdout.
"""
from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from ..decoding import load_buffer
from ..dsp_engine.prep import crop_to_loudest_window, downmix_and_encode, normalize, tempo_filter
from .artifacts import artifact_path, temp_artifacts
from .invoker import OutputMode, ToolInvoker
from .output import ToolOutput

logger = logging.getLogger("audio_analyzer.tempo")

TEMPO_WINDOW_SECONDS = 30.0
NORMALIZE_TARGET_DB = -6.0
MIN_BPM = 70.0
MAX_BPM = 190.0

PathLike = Union[str, Path]


@dataclass
class TempoResult:
    bpm: float = 0.0
    confidence: float = 0.0
    prep_ms: float = 0.0
    tool_ms: float = 0.0


def clamp_confidence(value: float) -> float:
    """Clamp to [0, 100]; NaN counts as no confidence."""

    if math.isnan(value):
        return 0.0
    return min(max(value, 0.0), 100.0)


def tempo_confidence(raw: float) -> float:
    """Map the extractor's confidence to 0-100: ``sqrt(raw / 5) * 100``."""

    return clamp_confidence(math.sqrt(max(raw / 5.0, 0.0)) * 100.0)


def fold_tempo(bpm: float) -> float:
    """Fold a detected tempo into [70, 190] by octaves and round it.

    0 (or anything non-positive / non-finite) means undetermined and maps to 0.
    """

    if not math.isfinite(bpm) or bpm <= 0.0:
        return 0.0
    while bpm < MIN_BPM:
        bpm *= 2.0
    while bpm > MAX_BPM:
        bpm /= 2.0
    return float(math.floor(bpm + 0.5))


def interpret_tempo_output(output: ToolOutput) -> TempoResult:
    result = TempoResult()
    if not output.is_object:
        return result

    bpm = output.get_number("bpm")
    raw_conf = output.get_number("ticks detection confidence")
    if raw_conf is None:
        raw_conf = output.get_number("confidence")

    result.confidence = tempo_confidence(raw_conf or 0.0)
    result.bpm = fold_tempo(bpm or 0.0)
    return result


def estimate_tempo(
    audio_path: PathLike,
    tool_path: PathLike,
    unique_id: str,
    work_dir: PathLike,
    invoker: Optional[ToolInvoker] = None,
) -> TempoResult:
    """Detect the tempo of ``audio_path``.

    Temp files are named from ``unique_id`` and always removed before
    returning. Any failure leaves the result at bpm 0 / confidence 0.
    """

    invoker = invoker or ToolInvoker()

    loaded = load_buffer(audio_path)
    if loaded is None:
        return TempoResult()
    buffer, sr = loaded

    wav_path = artifact_path(work_dir, "bpm", unique_id, ".wav")
    out_path = artifact_path(work_dir, "bpm_out", unique_id, ".txt")

    with temp_artifacts(wav_path, out_path):
        t_start = time.perf_counter()
        buffer = normalize(buffer, NORMALIZE_TARGET_DB)
        buffer = tempo_filter(buffer, sr)
        buffer = crop_to_loudest_window(buffer, sr, TEMPO_WINDOW_SECONDS)
        saved = downmix_and_encode(buffer, sr, wav_path)
        prep_ms = (time.perf_counter() - t_start) * 1000.0

        if not saved:
            return TempoResult(prep_ms=prep_ms)

        t_start = time.perf_counter()
        output = invoker.invoke(tool_path, wav_path, out_path, OutputMode.STDOUT)
        tool_ms = (time.perf_counter() - t_start) * 1000.0

    if output is None:
        logger.warning("[TEMPO] No usable extractor output for %s", Path(audio_path).name)
        return TempoResult(prep_ms=prep_ms, tool_ms=tool_ms)

    result = interpret_tempo_output(output)
    result.prep_ms = prep_ms
    result.tool_ms = tool_ms
    logger.info("[TEMPO] %s: %.0f BPM (confidence %.1f%%)", Path(audio_path).name, result.bpm, result.confidence)
    return result
