"""Runtime configuration for the analyzer.

Everything is read from environment variables so the same code runs on a
workstation, in a container or behind the HTTP service without a config
file. Defaults mirror what the desktop build used.
"""
from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger("audio_analyzer.settings")

_PACKAGE_DIR = Path(__file__).resolve().parent
_EXE_SUFFIX = ".exe" if os.name == "nt" else ""

BPM_TOOL_NAME = f"essentia_bpm{_EXE_SUFFIX}"
KEY_TOOL_NAME = f"essentia_key{_EXE_SUFFIX}"
BPM_PAYLOAD_NAME = f"essentia_streaming_rhythmextractor_multifeature{_EXE_SUFFIX}"
KEY_PAYLOAD_NAME = f"essentia_streaming_key{_EXE_SUFFIX}"

DEFAULT_TOOL_TIMEOUT_S = 20.0


@dataclass(frozen=True)
class AnalyzerSettings:
    home_dir: Path
    tool_source_dir: Path
    work_dir: Path
    tool_timeout_s: float = DEFAULT_TOOL_TIMEOUT_S
    log_level: str = "INFO"

    @property
    def tools_dir(self) -> Path:
        return self.home_dir / "tools"

    @property
    def bpm_tool_path(self) -> Path:
        return self.tools_dir / BPM_TOOL_NAME

    @property
    def key_tool_path(self) -> Path:
        return self.tools_dir / KEY_TOOL_NAME

    @property
    def bpm_payload_path(self) -> Path:
        return self.tool_source_dir / BPM_PAYLOAD_NAME

    @property
    def key_payload_path(self) -> Path:
        return self.tool_source_dir / KEY_PAYLOAD_NAME


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("[CONFIG] %s=%r is not a number, using %.1f", name, raw, default)
        return default
    if value <= 0:
        logger.warning("[CONFIG] %s must be positive, using %.1f", name, default)
        return default
    return value


def load_settings() -> AnalyzerSettings:
    """Build settings from the current environment."""

    home = Path(os.getenv("AUDIO_ANALYZER_HOME") or Path.home() / ".audio_analyzer").expanduser()
    source = Path(os.getenv("AUDIO_ANALYZER_TOOL_SOURCE") or _PACKAGE_DIR / "extractors" / "bin").expanduser()
    work = Path(os.getenv("AUDIO_ANALYZER_WORK_DIR") or tempfile.gettempdir()).expanduser()

    return AnalyzerSettings(
        home_dir=home,
        tool_source_dir=source,
        work_dir=work,
        tool_timeout_s=_env_float("AUDIO_ANALYZER_TOOL_TIMEOUT", DEFAULT_TOOL_TIMEOUT_S),
        log_level=(os.getenv("AUDIO_ANALYZER_LOG_LEVEL") or "INFO").upper(),
    )


_logging_configured = False


def configure_logging(settings: AnalyzerSettings | None = None) -> None:
    """Install a basic handler for the ``audio_analyzer`` logger tree once."""

    global _logging_configured
    if _logging_configured:
        return

    level_name = (settings or load_settings()).log_level
    level = getattr(logging, level_name, logging.INFO)
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    root = logging.getLogger("audio_analyzer")
    root.addHandler(handler)
    root.setLevel(level)
    _logging_configured = True
