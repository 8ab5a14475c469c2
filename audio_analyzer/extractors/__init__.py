"""External Essentia extractors (tempo and key).

Each estimator prepares a mono WAV, runs its binary as a subprocess via
:class:`~audio_analyzer.extractors.invoker.ToolInvoker` and turns the
loosely structured output into a typed result.
"""
from .camelot import CAMELOT_WHEEL, camelot_code
from .invoker import OutputMode, ProcessOutcome, SubprocessRunner, ToolInvoker, ensure_tool, prepare_tool
from .key import KeyResult, estimate_key
from .output import ToolOutput, parse_output
from .tempo import TempoResult, estimate_tempo, fold_tempo

__all__ = [
    "CAMELOT_WHEEL",
    "camelot_code",
    "OutputMode",
    "ProcessOutcome",
    "SubprocessRunner",
    "ToolInvoker",
    "ensure_tool",
    "prepare_tool",
    "KeyResult",
    "estimate_key",
    "ToolOutput",
    "parse_output",
    "TempoResult",
    "estimate_tempo",
    "fold_tempo",
]
