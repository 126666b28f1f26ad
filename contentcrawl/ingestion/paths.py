"""Small path-expression evaluator for JSON payloads.

Expressions are dot-separated keys with optional ``[n]`` indices, for example
``data.articles[0].title`` or ``items``. An empty expression selects the root.
"""

import re
from typing import Any, List, Union

from ..errors import ConfigError

_SEGMENT_RE = re.compile(r"([^.\[\]]+)|\[(-?\d+)\]")

PathStep = Union[str, int]


def compile_path(path: str) -> List[PathStep]:
    """Split a path expression into key and index steps."""
    if not path:
        return []
    steps: List[PathStep] = []
    position = 0
    while position < len(path):
        if path[position] == ".":
            position += 1
            continue
        match = _SEGMENT_RE.match(path, position)
        if not match:
            raise ConfigError(f"Invalid path expression: {path!r}")
        key, index = match.groups()
        steps.append(int(index) if index is not None else key)
        position = match.end()
    return steps


def extract_path(data: Any, path: str, default: Any = None) -> Any:
    """Evaluate a path expression against nested dicts and lists."""
    current = data
    for step in compile_path(path):
        if isinstance(step, int):
            if not isinstance(current, list):
                return default
            try:
                current = current[step]
            except IndexError:
                return default
        else:
            if isinstance(current, dict) and step in current:
                current = current[step]
            elif isinstance(current, list) and step.isdigit() and int(step) < len(current):
                current = current[int(step)]
            else:
                return default
    return current
