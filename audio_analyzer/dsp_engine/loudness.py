"""Streaming EBU R128 loudness measurement.

The file is pushed through the meter in fixed-size blocks, the way a
realtime meter would see it, so momentary and short-term maxima reflect
what a loudness meter shows while the track plays. K-weighting uses
pyloudnorm's BS.1770 filter definitions; gating, loudness range and the
oversampled true peak follow EBU Tech 3341/3342.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Union

import numpy as np
from pyloudnorm.iirfilter import IIRfilter
from scipy.signal import firwin, lfilter

from ..decoding import open_reader

logger = logging.getLogger("audio_analyzer.loudness")

BLOCK_SIZE = 4096
NOT_MEASURED = -100.0
NO_READING = -1000.0

_ABSOLUTE_GATE_LUFS = -70.0
_INTEGRATED_RELATIVE_GATE_LU = -10.0
_LRA_RELATIVE_GATE_LU = -20.0
_TRUE_PEAK_OVERSAMPLING = 4
_TRUE_PEAK_TAPS = 49
_TRUE_PEAK_FLOOR = 1e-6


@dataclass
class LoudnessResult:
  integrated_lufs: float = NOT_MEASURED
  short_term_max_lufs: float = NOT_MEASURED
  momentary_max_lufs: float = NOT_MEASURED
  loudness_range: float = 0.0
  true_peak_max_db: float = NOT_MEASURED
  dynamics_plr: float = 0.0
  elapsed_ms: float = 0.0


def _energy_to_lufs(energy: float) -> float:
  if energy <= 0.0:
    return float("-inf")
  return float(-0.691 + 10.0 * np.log10(energy))


def _lufs_to_energy(lufs: float) -> float:
  return float(10.0 ** ((lufs + 0.691) / 10.0))


def _channel_weight(index: int) -> float:
  # BS.1770 surround weighting for Ls / Rs in a 5-channel layout
  return 1.41 if index in (3, 4) else 1.0


class _KWeighting:
  """Stateful two-stage K-weighting filter for one channel."""

  def __init__(self, sr: int) -> None:
    self._stages: List[IIRfilter] = [
      IIRfilter(4.0, 1.0 / np.sqrt(2.0), 1500.0, sr, "high_shelf"),
      IIRfilter(0.0, 0.5, 38.0, sr, "high_pass"),
    ]
    self._coeffs = [(np.asarray(f.b, dtype=np.float64), np.asarray(f.a, dtype=np.float64), float(f.passband_gain)) for f in self._stages]
    self._state = [np.zeros(max(len(a), len(b)) - 1) for b, a, _ in self._coeffs]

  def process(self, x: np.ndarray) -> np.ndarray:
    y = x.astype(np.float64)
    for idx, (b, a, gain) in enumerate(self._coeffs):
      y, self._state[idx] = lfilter(b, a, y, zi=self._state[idx])
      y = gain * y
    return y


class LoudnessMeter:
  """Incremental loudness meter for an interleaved-by-block signal."""

  def __init__(self, sr: int, channels: int) -> None:
    if sr <= 0 or channels <= 0:
      raise ValueError("LoudnessMeter needs a positive sample rate and channel count")

    self.sr = int(sr)
    self.channels = int(channels)
    self._filters = [_KWeighting(self.sr) for _ in range(self.channels)]
    self._weights = np.array([_channel_weight(c) for c in range(self.channels)], dtype=np.float64)

    self._samples_100ms = max(int(round(self.sr / 10.0)), 1)
    self._momentary_len = 4 * self._samples_100ms
    self._short_term_len = 30 * self._samples_100ms

    self._history = np.zeros(self._short_term_len, dtype=np.float64)
    self._pending = np.zeros(0, dtype=np.float64)
    self._sub_block_sums: List[float] = []

    self._peaks = np.zeros(self.channels, dtype=np.float64)
    self._interp = firwin(_TRUE_PEAK_TAPS, 1.0 / _TRUE_PEAK_OVERSAMPLING) * _TRUE_PEAK_OVERSAMPLING
    self._interp_state = np.zeros((self.channels, _TRUE_PEAK_TAPS - 1), dtype=np.float64)

  def add_frames(self, block: np.ndarray) -> None:
    """Feed a ``[channels, frames]`` block."""
    block = np.asarray(block)
    if block.ndim == 1:
      block = block[np.newaxis, :]
    if block.shape[0] != self.channels:
      raise ValueError(f"Expected {self.channels} channels, got {block.shape[0]}")
    if block.shape[1] == 0:
      return

    energy = np.zeros(block.shape[1], dtype=np.float64)
    for ch in range(self.channels):
      weighted = self._filters[ch].process(block[ch])
      energy += self._weights[ch] * np.square(weighted)

    self._history = np.concatenate([self._history, energy])[-self._short_term_len:]

    pending = np.concatenate([self._pending, energy])
    full = (pending.size // self._samples_100ms) * self._samples_100ms
    if full:
      chunks = pending[:full].reshape(-1, self._samples_100ms)
      self._sub_block_sums.extend(chunks.sum(axis=1).tolist())
    self._pending = pending[full:]

    self._update_true_peak(block)

  def _update_true_peak(self, block: np.ndarray) -> None:
    # zero-stuffed 4x upsampling; the interpolation filter state runs across blocks
    data = block.astype(np.float64)
    stuffed = np.zeros(data.shape[1] * _TRUE_PEAK_OVERSAMPLING, dtype=np.float64)
    for ch in range(self.channels):
      stuffed[::_TRUE_PEAK_OVERSAMPLING] = data[ch]
      oversampled, self._interp_state[ch] = lfilter(self._interp, 1.0, stuffed, zi=self._interp_state[ch])
      peak = max(float(np.max(np.abs(oversampled))), float(np.max(np.abs(data[ch]))))
      if peak > self._peaks[ch]:
        self._peaks[ch] = peak

  def momentary(self) -> float:
    return _energy_to_lufs(float(np.mean(self._history[-self._momentary_len:])))

  def short_term(self) -> float:
    return _energy_to_lufs(float(np.mean(self._history)))

  def _block_energies(self, sub_blocks: int, hop: int) -> np.ndarray:
    sums = np.asarray(self._sub_block_sums, dtype=np.float64)
    if sums.size < sub_blocks:
      return np.zeros(0, dtype=np.float64)
    windows = np.convolve(sums, np.ones(sub_blocks), mode="valid")[::hop]
    return windows / float(sub_blocks * self._samples_100ms)

  def integrated(self) -> float:
    """Gated programme loudness; ``-inf`` when nothing passes the gates."""
    blocks = self._block_energies(4, 1)
    gated = blocks[blocks >= _lufs_to_energy(_ABSOLUTE_GATE_LUFS)]
    if gated.size == 0:
      return float("-inf")

    relative = float(np.mean(gated)) * 10.0 ** (_INTEGRATED_RELATIVE_GATE_LU / 10.0)
    final = gated[gated >= relative]
    if final.size == 0:
      return float("-inf")
    return _energy_to_lufs(float(np.mean(final)))

  def loudness_range(self) -> float:
    blocks = self._block_energies(30, 10)
    gated = blocks[blocks >= _lufs_to_energy(_ABSOLUTE_GATE_LUFS)]
    if gated.size == 0:
      return 0.0

    relative = float(np.mean(gated)) * 10.0 ** (_LRA_RELATIVE_GATE_LU / 10.0)
    final = np.sort(gated[gated >= relative])
    if final.size == 0:
      return 0.0

    last = final.size - 1
    low = final[int(last * 0.10 + 0.5)]
    high = final[int(last * 0.95 + 0.5)]
    return float(10.0 * np.log10(high / low))

  def true_peak(self, channel: int) -> float:
    """Linear true peak of ``channel`` seen so far."""
    return float(self._peaks[channel])


def measure_buffer_loudness(x: np.ndarray, sr: int, block_size: int = BLOCK_SIZE) -> LoudnessResult:
  """Run an in-memory ``[channels, frames]`` buffer through the meter."""
  buf = np.asarray(x, dtype=np.float32)
  if buf.ndim == 1:
    buf = buf[np.newaxis, :]

  def blocks():
    for start in range(0, buf.shape[1], block_size):
      yield buf[:, start : start + block_size]

  return _run_meter(blocks(), sr, buf.shape[0])


def measure_loudness(path: Union[str, Path], block_size: int = BLOCK_SIZE) -> LoudnessResult:
  """Measure a file, decoding it block by block.

  Returns an all-default result when the file cannot be decoded.
  """
  t_start = time.perf_counter()
  reader = open_reader(path)
  if reader is None:
    return LoudnessResult()

  with reader:
    def blocks():
      position = 0
      while position < reader.num_frames:
        frames = min(block_size, reader.num_frames - position)
        yield reader.read(position, frames)
        position += frames

    result = _run_meter(blocks(), reader.sample_rate, reader.num_channels)

  result.elapsed_ms = (time.perf_counter() - t_start) * 1000.0
  logger.info(
    "[LOUDNESS] %s: I=%.2f LUFS S.max=%.2f M.max=%.2f LRA=%.2f TP=%.2f dB (%.0f ms)",
    Path(path).name,
    result.integrated_lufs,
    result.short_term_max_lufs,
    result.momentary_max_lufs,
    result.loudness_range,
    result.true_peak_max_db,
    result.elapsed_ms,
  )
  return result


def _run_meter(blocks, sr: int, channels: int) -> LoudnessResult:
  result = LoudnessResult()
  try:
    meter = LoudnessMeter(sr, channels)
  except ValueError as exc:
    logger.warning("[LOUDNESS] Meter unavailable: %s", exc)
    return result

  max_momentary = NO_READING
  max_short_term = NO_READING

  for block in blocks:
    meter.add_frames(block)
    max_momentary = max(max_momentary, meter.momentary())
    max_short_term = max(max_short_term, meter.short_term())

  integrated = meter.integrated()
  if np.isfinite(integrated):
    result.integrated_lufs = integrated
  result.loudness_range = meter.loudness_range()

  if max_momentary > NO_READING + 100.0:
    result.momentary_max_lufs = float(max_momentary)
  if max_short_term > NO_READING + 100.0:
    result.short_term_max_lufs = float(max_short_term)

  max_peak = max(meter.true_peak(ch) for ch in range(channels))
  if max_peak > _TRUE_PEAK_FLOOR:
    result.true_peak_max_db = float(20.0 * np.log10(max_peak))

  if result.integrated_lufs > NOT_MEASURED and result.true_peak_max_db > NOT_MEASURED:
    result.dynamics_plr = result.true_peak_max_db - result.integrated_lufs

  return result
