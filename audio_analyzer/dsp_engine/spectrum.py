"""Long-term mid/side spectrum for display.

A single FFT pass over the loudest 20 seconds collects average and peak
magnitudes for mid, side and total (stereo power). Smoothing and the dB
conversion run as a separate stage so a new smoothing factor can be
applied without touching the FFT data again.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import librosa
import numpy as np
from scipy.signal import get_window

from ..decoding import open_reader
from .prep import crop_to_loudest_window

logger = logging.getLogger("audio_analyzer.spectrum")

FFT_ORDER = 14
SPECTRUM_WINDOW_SECONDS = 20.0
DEFAULT_SMOOTHING = 0.3
TILT_SLOPE_DB = 4.5
WINDOW_CORRECTION = 2.0
DB_FLOOR = -100.0

_MIN_MAGNITUDE = 1e-9
_MIN_BANDWIDTH_HZ = 10.0
_FRAMES_PER_BATCH = 32

# octave-fraction labels offered to the user
SMOOTHING_PRESETS: Dict[str, float] = {
    "RAW": 0.0,
    "1/48 OCT": 0.02,
    "1/24 OCT": 0.04,
    "1/12 OCT": 0.08,
    "1/6 OCT": 0.15,
    "1/3 OCT": 0.3,
    "1/2 OCT": 0.5,
    "1 OCT": 0.8,
}


@dataclass
class SpectrumCurves:
    frequencies: np.ndarray
    avg_mid_db: np.ndarray
    avg_side_db: np.ndarray
    avg_stereo_db: np.ndarray
    max_mid_db: np.ndarray
    max_side_db: np.ndarray
    max_stereo_db: np.ndarray
    smoothing_factor: float = DEFAULT_SMOOTHING

    def to_dict(self) -> Dict[str, object]:
        out: Dict[str, object] = {}
        for key, value in asdict(self).items():
            out[key] = value.tolist() if isinstance(value, np.ndarray) else value
        return out


@dataclass
class _RawSpectrum:
    avg_mid: np.ndarray
    avg_side: np.ndarray
    avg_stereo: np.ndarray
    max_mid: np.ndarray
    max_side: np.ndarray
    max_stereo: np.ndarray
    block_count: int = 0

    def arrays(self) -> List[np.ndarray]:
        return [self.avg_mid, self.avg_side, self.avg_stereo, self.max_mid, self.max_side, self.max_stereo]


def smoothing_radii(size: int, sr: float, fft_size: int, factor: float) -> np.ndarray:
    """Averaging radius (in bins) for every bin, before edge limiting."""

    bins = np.arange(size, dtype=np.float64)
    freq = bins * sr / fft_size
    bandwidth = np.maximum(freq * factor, _MIN_BANDWIDTH_HZ)
    radius = np.floor(bandwidth / sr * fft_size * 0.5).astype(np.int64)
    return np.maximum(radius, 1)


def _box_pass(data: np.ndarray, radii: np.ndarray) -> np.ndarray:
    size = data.size
    idx = np.arange(size)
    effective = np.minimum(radii, np.minimum(idx, size - 1 - idx))
    cumulative = np.concatenate([[0.0], np.cumsum(data, dtype=np.float64)])
    total = cumulative[idx + effective + 1] - cumulative[idx - effective]
    return total / (2 * effective + 1)


def smooth_magnitudes(data: np.ndarray, sr: float, fft_size: int, factor: float) -> np.ndarray:
    """Two passes of a frequency-proportional moving average.

    Each bin averages ``±radius`` neighbours, with the radius shrunk near
    both ends so the window never leaves the array. A factor of 0 (or
    anything up to 0.001) returns the data unchanged.
    """

    values = np.asarray(data, dtype=np.float64)
    if values.size == 0 or sr <= 0 or factor <= 0.001:
        return values.copy()

    radii = smoothing_radii(values.size, sr, fft_size, factor)
    return _box_pass(_box_pass(values, radii), radii)


def magnitude_to_db(mag: np.ndarray, sr: float, fft_size: int, slope: float = TILT_SLOPE_DB) -> np.ndarray:
    """Convert FFT magnitudes to display dB with a +slope dB/octave tilt around 1 kHz.

    Levels are floored at ``DB_FLOOR`` before the tilt and the 3 dB offset.
    """

    values = np.maximum(np.asarray(mag, dtype=np.float64), _MIN_MAGNITUDE) / fft_size
    db = librosa.amplitude_to_db(values, ref=1.0, amin=10.0 ** (DB_FLOOR / 20.0), top_db=None)
    freq = np.arange(values.size, dtype=np.float64) * sr / fft_size
    tilt = slope * np.log2(np.clip(freq, 20.0, 20000.0) / 1000.0)
    return db + tilt + 3.0


class SpectrumEstimator:
    """Computes the mid/side/stereo spectrum curves for one buffer."""

    def __init__(self, fft_order: int = FFT_ORDER, smoothing_factor: float = DEFAULT_SMOOTHING, slope: float = TILT_SLOPE_DB) -> None:
        self.fft_size = 1 << int(fft_order)
        self.hop_size = self.fft_size // 4
        self.smoothing_factor = float(smoothing_factor)
        self.slope = float(slope)
        self.sample_rate = 0.0
        self._window = get_window("hann", self.fft_size, fftbins=False)
        self._window *= self.fft_size / self._window.sum()
        self._raw: Optional[_RawSpectrum] = None
        self.curves: Optional[SpectrumCurves] = None

    @property
    def num_bins(self) -> int:
        return self.fft_size // 2

    def analyze(self, buffer: np.ndarray, sr: float) -> Optional[SpectrumCurves]:
        """Run the FFT pass over ``buffer`` ([channels, frames]) and smooth it.

        Returns ``None`` (keeping any previous curves) when the buffer is
        empty or shorter than one analysis frame.
        """

        if sr <= 0:
            return None
        audio = np.asarray(buffer, dtype=np.float32)
        if audio.ndim == 1:
            audio = audio[np.newaxis, :]
        if audio.shape[-1] == 0:
            return None

        self.sample_rate = float(sr)
        audio = crop_to_loudest_window(audio, sr, SPECTRUM_WINDOW_SECONDS)

        raw = self._accumulate(audio)
        if raw is None:
            logger.info("[SPECTRUM] Buffer shorter than one %d-point frame, nothing to do", self.fft_size)
            return None

        self._raw = raw
        logger.debug("[SPECTRUM] %d frames analysed at %.0f Hz", raw.block_count, sr)
        return self.reprocess_smoothing()

    def _accumulate(self, audio: np.ndarray) -> Optional[_RawSpectrum]:
        left = audio[0].astype(np.float64)
        right = audio[1].astype(np.float64) if audio.shape[0] > 1 else left
        mid = (left + right) * 0.5
        side = (left - right) * 0.5

        n = mid.size
        starts = np.arange(0, n - self.fft_size, self.hop_size)
        if starts.size == 0:
            return None

        bins = self.num_bins
        acc_mid = np.zeros(bins)
        acc_side = np.zeros(bins)
        acc_stereo = np.zeros(bins)
        max_mid = np.full(bins, _MIN_MAGNITUDE)
        max_side = np.full(bins, _MIN_MAGNITUDE)
        max_stereo = np.full(bins, _MIN_MAGNITUDE)

        offsets = np.arange(self.fft_size)
        for batch_start in range(0, starts.size, _FRAMES_PER_BATCH):
            batch = starts[batch_start : batch_start + _FRAMES_PER_BATCH]
            index = batch[:, np.newaxis] + offsets[np.newaxis, :]

            mid_mag = np.abs(np.fft.rfft(mid[index] * self._window, axis=1))[:, :bins] * WINDOW_CORRECTION
            side_mag = np.abs(np.fft.rfft(side[index] * self._window, axis=1))[:, :bins] * WINDOW_CORRECTION
            mid_mag[:, 0] = 0.0
            side_mag[:, 0] = 0.0

            mid_power = np.square(mid_mag)
            side_power = np.square(side_mag)
            stereo_power = mid_power + side_power

            acc_mid += mid_power.sum(axis=0)
            acc_side += side_power.sum(axis=0)
            acc_stereo += stereo_power.sum(axis=0)

            max_mid = np.maximum(max_mid, mid_mag.max(axis=0))
            max_side = np.maximum(max_side, side_mag.max(axis=0))
            max_stereo = np.maximum(max_stereo, np.sqrt(stereo_power).max(axis=0))

        count = int(starts.size)
        return _RawSpectrum(
            avg_mid=np.sqrt(acc_mid / count),
            avg_side=np.sqrt(acc_side / count),
            avg_stereo=np.sqrt(acc_stereo / count),
            max_mid=max_mid,
            max_side=max_side,
            max_stereo=max_stereo,
            block_count=count,
        )

    def set_smoothing(self, factor: float) -> Optional[SpectrumCurves]:
        """Change the smoothing factor and rebuild the curves from cached FFT data."""

        if abs(self.smoothing_factor - factor) < 0.001:
            return self.curves
        self.smoothing_factor = float(factor)
        return self.reprocess_smoothing()

    def reprocess_smoothing(self) -> Optional[SpectrumCurves]:
        if self._raw is None:
            return None

        sr, fft = self.sample_rate, self.fft_size
        curves = [
            magnitude_to_db(smooth_magnitudes(arr, sr, fft, self.smoothing_factor), sr, fft, self.slope)
            for arr in self._raw.arrays()
        ]
        freqs = librosa.fft_frequencies(sr=sr, n_fft=fft)[: self.num_bins]

        self.curves = SpectrumCurves(freqs, *curves, smoothing_factor=self.smoothing_factor)
        return self.curves


def prepare_spectrum_window(
    path: Union[str, Path],
    target_seconds: float = 30.0,
    scan_stride: int = 5,
) -> Optional[Tuple[np.ndarray, int]]:
    """Decode a representative window of ``path`` for spectrum analysis.

    Rather than decoding the whole file, 1-second probes are read every
    ``scan_stride`` seconds and the window starting at the loudest probe
    is returned.
    """

    reader = open_reader(path)
    if reader is None:
        return None

    with reader:
        sr = reader.sample_rate
        total = reader.num_frames
        window = min(int(target_seconds * sr), total)
        step = max(sr, 1)

        best_start = 0
        max_rms = -1.0
        for start in range(0, total - window, step * scan_stride):
            probe = reader.read(start, step)
            rms = float(np.sqrt(np.mean(np.square(probe[0], dtype=np.float64))))
            if reader.num_channels > 1:
                rms = (rms + float(np.sqrt(np.mean(np.square(probe[1], dtype=np.float64))))) * 0.5
            if rms > max_rms:
                max_rms = rms
                best_start = start

        return reader.read(best_start, window), sr
