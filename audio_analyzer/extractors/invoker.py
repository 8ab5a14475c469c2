"""Running the Essentia extractor binaries.

The binaries ship with the package (or live wherever
``AUDIO_ANALYZER_TOOL_SOURCE`` points) and are copied to a writable tools
directory before first use. Each run is a blocking subprocess call with a
hard timeout; a failed, missing or hung tool never raises, it just yields
no result.
"""
from __future__ import annotations

import enum
import logging
import os
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol, Sequence, Set, Union

from ..settings import DEFAULT_TOOL_TIMEOUT_S
from .output import ToolOutput, parse_output

logger = logging.getLogger("audio_analyzer.extractors.invoker")

PathLike = Union[str, Path]


class OutputMode(enum.Enum):
    """Where a tool delivers its result."""

    STDOUT = "stdout"  # tool <input>
    OUTPUT_FILE = "output_file"  # tool <input> <output>


@dataclass
class ProcessOutcome:
    returncode: int
    stdout: str


class ProcessRunner(Protocol):
    def run(self, args: Sequence[str], timeout: float) -> Optional[ProcessOutcome]:
        """Run ``args`` to completion; ``None`` if it could not start or timed out."""


class SubprocessRunner:
    """Default runner backed by :func:`subprocess.run`."""

    def run(self, args: Sequence[str], timeout: float) -> Optional[ProcessOutcome]:
        try:
            proc = subprocess.run(
                list(args),
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired:
            logger.warning("[TOOLS] %s timed out after %.0fs", Path(args[0]).name, timeout)
            return None
        except OSError as exc:
            logger.warning("[TOOLS] Could not start %s: %s", args[0], exc)
            return None

        if proc.returncode != 0:
            logger.warning(
                "[TOOLS] %s exited with %d: %s",
                Path(args[0]).name,
                proc.returncode,
                proc.stderr.decode(errors="ignore")[:2000],
            )
        return ProcessOutcome(returncode=proc.returncode, stdout=proc.stdout.decode(errors="ignore"))


def ensure_tool(target: PathLike, payload: bytes) -> bool:
    """Materialise ``payload`` at ``target`` unless a same-sized file is already there.

    Only the byte size is compared, so an existing binary is reused without
    reading it back. The payload is written to a sibling temp file and
    renamed over ``target``, so a concurrent caller sees either the old
    file or the complete new one.
    """

    path = Path(target)
    staged: Optional[Path] = None
    try:
        if path.is_file() and path.stat().st_size == len(payload):
            return True

        path.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(prefix=f".{path.name}.", dir=path.parent, delete=False) as tmp:
            staged = Path(tmp.name)
            tmp.write(payload)
        staged.chmod(0o755)
        os.replace(staged, path)
    except OSError as exc:
        logger.warning("[TOOLS] Could not extract %s: %s", path, exc)
        if staged is not None:
            staged.unlink(missing_ok=True)
        return False

    logger.info("[TOOLS] Extracted %s (%d bytes)", path, len(payload))
    return True


_prepared: Set[Path] = set()


def prepare_tool(target: PathLike, source: PathLike) -> bool:
    """Copy the bundled tool at ``source`` to ``target`` once per process."""

    path = Path(target)
    if path in _prepared and path.is_file():
        return True

    source_path = Path(source)
    try:
        if path.is_file() and path.stat().st_size == source_path.stat().st_size:
            _prepared.add(path)
            return True
        payload = source_path.read_bytes()
    except OSError as exc:
        logger.warning("[TOOLS] Bundled tool %s unavailable: %s", source_path, exc)
        return path.is_file()

    ok = ensure_tool(path, payload)
    if ok:
        _prepared.add(path)
    return ok


class ToolInvoker:
    """Runs one extractor and parses whatever it produced."""

    def __init__(self, runner: Optional[ProcessRunner] = None, timeout: float = DEFAULT_TOOL_TIMEOUT_S) -> None:
        self.runner: ProcessRunner = runner or SubprocessRunner()
        self.timeout = float(timeout)

    def invoke(
        self,
        tool: PathLike,
        input_path: PathLike,
        output_path: PathLike,
        mode: OutputMode,
    ) -> Optional[ToolOutput]:
        tool_path = Path(tool)
        if not tool_path.is_file():
            logger.warning("[TOOLS] %s is missing, skipping", tool_path)
            return None

        out_path = Path(output_path)
        try:
            out_path.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("[TOOLS] Could not remove stale output %s: %s", out_path, exc)

        args = [str(tool_path), str(input_path)]
        if mode is OutputMode.OUTPUT_FILE:
            args.append(str(out_path))

        outcome = self.runner.run(args, self.timeout)
        if outcome is None or outcome.returncode != 0:
            return None

        if mode is OutputMode.STDOUT:
            if outcome.stdout.strip():
                return parse_output(outcome.stdout, json_expected=False)
            logger.warning("[TOOLS] %s printed nothing", tool_path.name)
            return None

        if out_path.is_file():
            try:
                content = out_path.read_text(errors="ignore")
            except OSError as exc:
                logger.warning("[TOOLS] Could not read %s: %s", out_path, exc)
                return None
            return parse_output(content, json_expected=True)

        logger.warning("[TOOLS] %s did not write %s", tool_path.name, out_path)
        return None
