"""Second-order IIR filters built on SciPy.

Designs the resonant high-pass / low-pass sections used by the analysis
preprocessing chains. Coefficients follow the bilinear-transform
(prewarped) cookbook form, so a section at Q = 1/sqrt(2) is a 2nd order
Butterworth, and are applied with ``sosfilt`` per channel.

Constraints:
- Cutoffs are clamped inside (1 Hz, 0.99 * Nyquist)
- Q is kept strictly positive
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Tuple

import numpy as np
from scipy.signal import sosfilt

FilterType = Literal["highpass", "lowpass"]

BUTTERWORTH_Q = 1.0 / np.sqrt(2.0)

_SAMPLE_RATE_FALLBACK = 44100


@dataclass
class BiquadFilter:
    """Container for a single biquad section.

    We store coefficients in sos form so we can easily chain
    multiple sections with `sosfilt`.
    """

    sos: np.ndarray  # shape (1, 6)

    def process(self, x: np.ndarray) -> np.ndarray:
        """Apply the filter to a mono or multi-channel signal.

        Args:
            x: np.ndarray [channels, samples] or [samples]
        """

        if x.ndim == 1:
            return np.asarray(sosfilt(self.sos, x.astype(np.float64)), dtype=np.float32)

        # every channel starts from a cleared filter state
        y = np.empty(x.shape, dtype=np.float32)
        for ch in range(x.shape[0]):
            y[ch] = sosfilt(self.sos, x[ch].astype(np.float64))
        return y


def _clamp_freq(freq: float, sr: int) -> float:
    nyq = sr * 0.5
    return float(np.clip(freq, 1.0, nyq * 0.99))


def design_biquad(
    ftype: FilterType,
    freq: float,
    sr: int,
    q: float = BUTTERWORTH_Q,
) -> BiquadFilter:
    """Design a single resonant high-pass or low-pass section."""

    if sr <= 0:
        sr = _SAMPLE_RATE_FALLBACK

    freq = _clamp_freq(freq, sr)
    q = max(float(q), 1e-3)

    w0 = 2.0 * np.pi * freq / sr
    cos_w0 = np.cos(w0)
    alpha = np.sin(w0) / (2.0 * q)

    if ftype == "highpass":
        b = np.array([(1.0 + cos_w0) / 2.0, -(1.0 + cos_w0), (1.0 + cos_w0) / 2.0])
    elif ftype == "lowpass":
        b = np.array([(1.0 - cos_w0) / 2.0, 1.0 - cos_w0, (1.0 - cos_w0) / 2.0])
    else:
        raise ValueError(f"Unsupported filter type: {ftype}")

    a = np.array([1.0 + alpha, -2.0 * cos_w0, 1.0 - alpha])
    sos = np.concatenate([b / a[0], a / a[0]])[np.newaxis, :]
    return BiquadFilter(sos=sos.astype(np.float64))


def apply_eq_stack(
    x: np.ndarray,
    sr: int,
    bands: Tuple[Tuple[FilterType, float], ...],
) -> np.ndarray:
    """Apply a cascade of biquad filters.

    Args:
        x: mono or multi-channel signal
        sr: sample rate
        bands: tuple of (type, freq), applied in order
    """

    y = x.astype(np.float32)
    for ftype, freq in bands:
        filt = design_biquad(ftype, freq, sr)
        y = filt.process(y)
    return y
