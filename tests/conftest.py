from pathlib import Path
from typing import Callable, List, Optional, Sequence

import numpy as np
import pytest
import soundfile as sf

from audio_analyzer.extractors.invoker import ProcessOutcome
from audio_analyzer.settings import AnalyzerSettings


class FakeRunner:
    """Stands in for the extractor subprocess.

    Returns ``stdout``/``returncode`` for every call and, when the tool is
    invoked with an output path, writes ``file_content`` there. ``None``
    as ``returncode`` simulates a tool that could not run at all.
    """

    def __init__(
        self,
        stdout: str = "",
        returncode: Optional[int] = 0,
        file_content: Optional[str] = None,
        on_call: Optional[Callable[[Sequence[str]], None]] = None,
    ) -> None:
        self.stdout = stdout
        self.returncode = returncode
        self.file_content = file_content
        self.on_call = on_call
        self.calls: List[List[str]] = []

    def run(self, args: Sequence[str], timeout: float) -> Optional[ProcessOutcome]:
        self.calls.append(list(args))
        if self.on_call is not None:
            self.on_call(args)
        if self.returncode is None:
            return None
        if len(args) > 2 and self.file_content is not None:
            Path(args[2]).write_text(self.file_content)
        return ProcessOutcome(returncode=self.returncode, stdout=self.stdout)


@pytest.fixture
def fake_runner():
    return FakeRunner


@pytest.fixture
def make_sine():
    def _make(freq: float, seconds: float, sr: int, amplitude: float = 0.5, channels: int = 1) -> np.ndarray:
        t = np.arange(int(seconds * sr)) / float(sr)
        mono = (amplitude * np.sin(2.0 * np.pi * freq * t)).astype(np.float32)
        return np.tile(mono, (channels, 1))

    return _make


@pytest.fixture
def write_wav(tmp_path):
    def _write(name: str, buffer: np.ndarray, sr: int, subtype: str = "FLOAT") -> Path:
        path = tmp_path / name
        sf.write(str(path), np.asarray(buffer).T, sr, subtype=subtype)
        return path

    return _write


@pytest.fixture
def settings(tmp_path) -> AnalyzerSettings:
    home = tmp_path / "home"
    work = tmp_path / "work"
    source = tmp_path / "bundled"
    for directory in (home, work, source):
        directory.mkdir()
    return AnalyzerSettings(home_dir=home, tool_source_dir=source, work_dir=work, tool_timeout_s=5.0)


@pytest.fixture
def install_tools(settings):
    """Place dummy extractor binaries where the analyzer expects them."""

    def _install() -> None:
        settings.tools_dir.mkdir(parents=True, exist_ok=True)
        for path in (settings.bpm_tool_path, settings.key_tool_path):
            path.write_bytes(b"#!/bin/sh\n")
            path.chmod(0o755)

    return _install
