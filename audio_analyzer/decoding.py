"""Audio decoding via soundfile.

Every analysis task opens the file on its own; decoding is cheap next to
the analysis itself and it keeps buffers private to each worker thread.
Buffers are always returned as float32 ``[channels, frames]``.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Tuple, Union

import numpy as np
import soundfile as sf

logger = logging.getLogger("audio_analyzer.decoding")

PathLike = Union[str, Path]


class AudioReader:
    """Random-access block reader over a single audio file."""

    def __init__(self, handle: sf.SoundFile) -> None:
        self._handle = handle

    @property
    def sample_rate(self) -> int:
        return int(self._handle.samplerate)

    @property
    def num_channels(self) -> int:
        return int(self._handle.channels)

    @property
    def num_frames(self) -> int:
        return int(self._handle.frames)

    @property
    def duration_s(self) -> float:
        if self.sample_rate <= 0:
            return 0.0
        return self.num_frames / float(self.sample_rate)

    def read(self, start: int, frames: int) -> np.ndarray:
        """Read ``frames`` frames starting at ``start``.

        Reads past the end are zero-padded so callers always get the block
        size they asked for.
        """

        out = np.zeros((self.num_channels, max(frames, 0)), dtype=np.float32)
        if frames <= 0 or start >= self.num_frames:
            return out

        self._handle.seek(max(start, 0))
        block = self._handle.read(frames, dtype="float32", always_2d=True)
        out[:, : block.shape[0]] = block.T
        return out

    def read_all(self) -> np.ndarray:
        return self.read(0, self.num_frames)

    def close(self) -> None:
        self._handle.close()

    def __enter__(self) -> "AudioReader":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def open_reader(path: PathLike) -> Optional[AudioReader]:
    """Open ``path`` for reading, or return ``None`` if it cannot be decoded."""

    try:
        handle = sf.SoundFile(str(path), mode="r")
    except (RuntimeError, OSError) as exc:
        logger.warning("[DECODE] Cannot open %s: %s", path, exc)
        return None

    if handle.samplerate <= 0 or handle.channels <= 0:
        handle.close()
        logger.warning("[DECODE] %s has no usable audio stream", path)
        return None

    return AudioReader(handle)


def load_buffer(path: PathLike) -> Optional[Tuple[np.ndarray, int]]:
    """Decode the whole file into memory as ``(buffer, sample_rate)``."""

    reader = open_reader(path)
    if reader is None:
        return None

    with reader:
        try:
            return reader.read_all(), reader.sample_rate
        except (RuntimeError, OSError) as exc:
            logger.warning("[DECODE] Failed reading %s: %s", path, exc)
            return None
