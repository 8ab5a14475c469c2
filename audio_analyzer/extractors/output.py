"""Parsed output of the Essentia extractors.

The key extractor writes a JSON document; the rhythm extractor prints an
indented ``name: value`` dump to stdout that only looks like JSON. Both end
up in a :class:`ToolOutput`, which wraps the parsed tree and exposes typed,
fallible accessors instead of ad-hoc dict probing.
"""
from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

logger = logging.getLogger("audio_analyzer.extractors.output")

_SKIP_PREFIXES = ("#", "-", "{", "}")
_NUMERIC_CHARS = frozenset("0123456789.-+eE")
_LEADING_NUMBER = re.compile(r"^[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?")

PathKey = Union[str, int]


@dataclass(frozen=True)
class ToolOutput:
    """A node of the parsed tree: object, array, string or number."""

    value: Any

    @property
    def is_object(self) -> bool:
        return isinstance(self.value, dict)

    @property
    def is_array(self) -> bool:
        return isinstance(self.value, list)

    def has(self, key: str) -> bool:
        return self.is_object and key in self.value

    def get(self, *path: PathKey) -> Optional["ToolOutput"]:
        """Walk ``path`` (object keys / array indices), or ``None`` if it breaks."""

        node = self.value
        for part in path:
            if isinstance(node, dict) and isinstance(part, str) and part in node:
                node = node[part]
            elif isinstance(node, list) and isinstance(part, int) and -len(node) <= part < len(node):
                node = node[part]
            else:
                return None
        return ToolOutput(node)

    def get_object(self, *path: PathKey) -> Optional["ToolOutput"]:
        node = self.get(*path)
        if node is None or not node.is_object:
            return None
        return node

    def get_str(self, *path: PathKey) -> Optional[str]:
        """String form of a scalar at ``path``; numbers are rendered as text."""

        node = self.get(*path)
        if node is None or isinstance(node.value, (dict, list)) or node.value is None:
            return None
        if isinstance(node.value, bool):
            return "true" if node.value else "false"
        if isinstance(node.value, float) and node.value.is_integer():
            return str(int(node.value))
        return str(node.value)

    def get_number(self, *path: PathKey) -> Optional[float]:
        """Numeric value at ``path``; numeric strings are converted."""

        node = self.get(*path)
        if node is None:
            return None
        value = node.value
        if isinstance(value, bool):
            return float(value)
        if isinstance(value, (int, float)):
            return float(value)
        if isinstance(value, str):
            match = _LEADING_NUMBER.match(value.strip())
            return float(match.group(0)) if match else None
        return None


def _to_number(text: str) -> float:
    match = _LEADING_NUMBER.match(text)
    return float(match.group(0)) if match else 0.0


def _parse_lines(text: str) -> Dict[str, Any]:
    values: Dict[str, Any] = {}

    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or line.startswith(_SKIP_PREFIXES):
            continue

        colon = line.find(":")
        if colon <= 0:
            continue

        key = line[:colon].strip()
        value = line[colon + 1 :].strip()
        if value.startswith("["):
            continue

        key = key.replace('"', "").replace("'", "")
        value = value.replace('"', "").replace("'", "").replace(",", "")

        if set(value) <= _NUMERIC_CHARS:
            values[key] = _to_number(value)
        else:
            values[key] = value

    return values


def parse_output(text: str, json_expected: bool) -> ToolOutput:
    """Parse extractor output.

    When JSON is expected and the text looks like a JSON document it is
    decoded strictly; anything else (including malformed JSON) goes
    through the line-oriented ``name: value`` parser and yields a flat
    object.
    """

    if json_expected:
        trimmed = text.strip()
        if trimmed.startswith(("{", "[")):
            try:
                return ToolOutput(json.loads(trimmed))
            except json.JSONDecodeError as exc:
                logger.warning("[TOOLS] Malformed JSON output, falling back to line parser: %s", exc)

    return ToolOutput(_parse_lines(text))
