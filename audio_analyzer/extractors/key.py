"""Key detection through Essentia's streaming key extractor.

The harmonic range is emphasised (low-shelf lift, 150 Hz - 5 kHz band),
the loudest minute is kept, and the extractor writes a JSON document that
may carry the fields either under ``tonal`` or at the top level.
"""
from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple, Union

from ..decoding import load_buffer
from ..dsp_engine.prep import crop_to_loudest_window, downmix_and_encode, key_filter, normalize
from .artifacts import artifact_path, temp_artifacts
from .camelot import UNKNOWN, camelot_code
from .invoker import OutputMode, ToolInvoker
from .output import ToolOutput
from .tempo import NORMALIZE_TARGET_DB, clamp_confidence

logger = logging.getLogger("audio_analyzer.key")

KEY_WINDOW_SECONDS = 60.0

PathLike = Union[str, Path]


@dataclass
class KeyResult:
    musical_key: str = UNKNOWN
    confidence: float = 0.0
    camelot: str = UNKNOWN
    prep_ms: float = 0.0
    tool_ms: float = 0.0


def key_confidence(strength: float) -> float:
    return clamp_confidence(math.sqrt(max(strength, 0.0)) * 100.0)


def _extract_fields(output: ToolOutput) -> Tuple[str, str, float]:
    tonal = output.get_object("tonal")
    if tonal is not None:
        key = tonal.get_str("key") or ""
        scale = tonal.get_str("key_scale") or tonal.get_str("scale") or ""
        strength = tonal.get_number("key_strength")
    else:
        key = output.get_str("key") or ""
        scale = output.get_str("key_scale") or output.get_str("scale") or ""
        strength = output.get_number("key_strength")
        if strength is None:
            strength = output.get_number("strength")
    return key, scale, strength or 0.0


def interpret_key_output(output: ToolOutput) -> KeyResult:
    result = KeyResult()
    if not output.is_object:
        return result

    key, scale, strength = _extract_fields(output)
    if not key:
        return result

    key = key[:1].upper() + key[1:]
    if scale:
        scale = scale[:1].upper() + scale[1:].lower()

    result.musical_key = f"{key} {scale}"
    result.camelot = camelot_code(key, scale)
    result.confidence = key_confidence(strength)
    return result


def estimate_key(
    audio_path: PathLike,
    tool_path: PathLike,
    unique_id: str,
    work_dir: PathLike,
    invoker: Optional[ToolInvoker] = None,
) -> KeyResult:
    """Detect the musical key of ``audio_path``; defaults to "Unknown" on any failure."""

    invoker = invoker or ToolInvoker()

    loaded = load_buffer(audio_path)
    if loaded is None:
        return KeyResult()
    buffer, sr = loaded

    wav_path = artifact_path(work_dir, "key", unique_id, ".wav")
    out_path = artifact_path(work_dir, "key_out", unique_id, ".json")

    with temp_artifacts(wav_path, out_path):
        t_start = time.perf_counter()
        buffer = normalize(buffer, NORMALIZE_TARGET_DB)
        buffer = key_filter(buffer, sr)
        buffer = crop_to_loudest_window(buffer, sr, KEY_WINDOW_SECONDS)
        saved = downmix_and_encode(buffer, sr, wav_path)
        prep_ms = (time.perf_counter() - t_start) * 1000.0

        if not saved:
            return KeyResult(prep_ms=prep_ms)

        t_start = time.perf_counter()
        output = invoker.invoke(tool_path, wav_path, out_path, OutputMode.OUTPUT_FILE)
        tool_ms = (time.perf_counter() - t_start) * 1000.0

    if output is None:
        logger.warning("[KEY] No usable extractor output for %s", Path(audio_path).name)
        return KeyResult(prep_ms=prep_ms, tool_ms=tool_ms)

    result = interpret_key_output(output)
    result.prep_ms = prep_ms
    result.tool_ms = tool_ms
    logger.info("[KEY] %s: %s / %s (confidence %.1f%%)", Path(audio_path).name, result.musical_key, result.camelot, result.confidence)
    return result
