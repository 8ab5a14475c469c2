"""Scoped temp files for extractor runs."""
from __future__ import annotations

import contextlib
import logging
from pathlib import Path
from typing import Iterator, Tuple, Union

logger = logging.getLogger("audio_analyzer.extractors.artifacts")


@contextlib.contextmanager
def temp_artifacts(*paths: Union[str, Path]) -> Iterator[Tuple[Path, ...]]:
    """Yield ``paths`` and delete whichever of them exist on exit, however it happens."""

    resolved = tuple(Path(p) for p in paths)
    try:
        yield resolved
    finally:
        for path in resolved:
            try:
                path.unlink(missing_ok=True)
            except OSError as exc:
                logger.warning("[TOOLS] Could not delete %s: %s", path, exc)


def artifact_path(work_dir: Union[str, Path], stem: str, unique_id: str, suffix: str) -> Path:
    """``<work_dir>/temp_<stem>_<unique_id><suffix>``"""

    return Path(work_dir) / f"temp_{stem}_{unique_id}{suffix}"
