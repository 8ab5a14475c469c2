"""Preprocessing shared by the tempo, key and spectrum analysis.

All helpers take float buffers shaped ``[channels, frames]`` (1-D input is
treated as a single channel) and return a new array; the caller's buffer
is never modified.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Tuple, Union

import numpy as np
import soundfile as sf
from pedalboard import LowShelfFilter, Pedalboard

from .biquad_eq import apply_eq_stack

logger = logging.getLogger("audio_analyzer.prep")

SILENCE_THRESHOLD = 0.001
CROP_STEP_SECONDS = 0.5
BAND_SUM_GAIN = 0.707

KEY_SHELF_HZ = 300.0
KEY_SHELF_GAIN = 2.0
KEY_SHELF_Q = 1.0


def _as_channels(x: np.ndarray) -> np.ndarray:
  x = np.asarray(x, dtype=np.float32)
  if x.ndim == 1:
    return x[np.newaxis, :]
  if x.ndim != 2:
    raise ValueError("Expected [frames] or [channels, frames] audio")
  return x


def normalize(x: np.ndarray, target_db: float = -6.0) -> np.ndarray:
  """Scale so the absolute peak sits at ``target_db`` dBFS.

  Near-silent buffers (peak below 0.001) are returned unchanged.
  """
  buf = _as_channels(x)
  if buf.size == 0:
    return buf.copy()

  magnitude = float(np.max(np.abs(buf)))
  if magnitude < SILENCE_THRESHOLD:
    return buf.copy()

  current_db = 20.0 * np.log10(magnitude)
  gain = 10.0 ** ((target_db - current_db) / 20.0)
  return (buf * gain).astype(np.float32)


def window_rms_scores(x: np.ndarray, sr: float, window_seconds: float) -> Tuple[np.ndarray, np.ndarray]:
  """Score every half-second-aligned window by its summed per-channel RMS.

  Returns ``(starts, scores)``; both are empty when the buffer is not
  longer than the window.
  """
  buf = _as_channels(x)
  total = buf.shape[1]
  window = int(window_seconds * sr)
  step = max(int(sr * CROP_STEP_SECONDS), 1)

  if window <= 0 or total <= window:
    return np.zeros(0, dtype=np.int64), np.zeros(0, dtype=np.float64)

  starts = np.arange(0, total - window, step, dtype=np.int64)
  power = np.square(buf.astype(np.float64))
  cumulative = np.concatenate([np.zeros((buf.shape[0], 1)), np.cumsum(power, axis=1)], axis=1)
  sums = cumulative[:, starts + window] - cumulative[:, starts]
  rms = np.sqrt(np.maximum(sums, 0.0) / window)
  return starts, rms.sum(axis=0)


def crop_to_loudest_window(x: np.ndarray, sr: float, window_seconds: float) -> np.ndarray:
  """Keep only the loudest ``window_seconds`` of audio.

  Candidates start every half second; the earliest of equally loud
  windows wins.
  """
  buf = _as_channels(x)
  starts, scores = window_rms_scores(buf, sr, window_seconds)
  if starts.size == 0:
    return buf.copy()

  window = int(window_seconds * sr)
  best = int(starts[int(np.argmax(scores))])
  logger.debug("[PREP] Loudest %.1fs window starts at %.2fs", window_seconds, best / float(sr))
  return buf[:, best : best + window].copy()


def tempo_filter(x: np.ndarray, sr: int) -> np.ndarray:
  """Split into a 40-1000 Hz band and an 8 kHz+ band and sum them back.

  The kick/bass band carries the beat, the top band the hats; the sum is
  pulled down by 0.707 so recombination does not clip.
  """
  buf = _as_channels(x)
  if buf.shape[1] == 0:
    return buf.copy()

  low_band = apply_eq_stack(buf, sr, (("highpass", 40.0), ("lowpass", 1000.0)))
  high_band = apply_eq_stack(buf, sr, (("highpass", 8000.0),))
  return ((low_band + high_band) * BAND_SUM_GAIN).astype(np.float32)


def key_filter(x: np.ndarray, sr: int) -> np.ndarray:
  """Emphasise the harmonic range: low-shelf boost, then 150 Hz HP, 5 kHz LP."""
  buf = _as_channels(x)
  if buf.shape[1] == 0:
    return buf.copy()

  shelf = Pedalboard([
    LowShelfFilter(
      cutoff_frequency_hz=KEY_SHELF_HZ,
      gain_db=float(20.0 * np.log10(KEY_SHELF_GAIN)),
      q=KEY_SHELF_Q,
    )
  ])
  boosted = np.asarray(shelf(np.ascontiguousarray(buf), sample_rate=float(sr)), dtype=np.float32)
  return apply_eq_stack(boosted, sr, (("highpass", 150.0), ("lowpass", 5000.0)))


def downmix(x: np.ndarray) -> np.ndarray:
  """Average all channels into one."""
  buf = _as_channels(x)
  if buf.shape[0] == 1:
    return buf[0].copy()
  return buf.mean(axis=0).astype(np.float32)


def downmix_and_encode(x: np.ndarray, sr: int, path: Union[str, Path]) -> bool:
  """Write a mono 16-bit WAV of ``x`` to ``path``, replacing any existing file."""
  target = Path(path)
  try:
    target.unlink(missing_ok=True)
    mono = np.clip(downmix(x), -1.0, 1.0)
    sf.write(str(target), mono, int(sr), subtype="PCM_16", format="WAV")
  except (OSError, RuntimeError, ValueError) as exc:
    logger.warning("[PREP] Could not write %s: %s", target, exc)
    return False
  return True
