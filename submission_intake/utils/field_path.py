"""Field path addressing for nested extraction output.

A field path addresses one value in a tree of dicts, lists and scalars:
``.`` separates object keys and ``[n]`` selects a list index, e.g.
``locations[0].buildings[1].riskAddress``. Paths are tokenized once into
typed segments; ``get_by_path`` and ``set_by_path`` walk those segments.
"""

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, List, Sequence, Tuple, Union

from submission_intake.core.exceptions import FieldPathError


@dataclass(frozen=True)
class KeySegment:
    key: str

    def __str__(self) -> str:
        return self.key


@dataclass(frozen=True)
class IndexSegment:
    index: int

    def __str__(self) -> str:
        return f"[{self.index}]"


Segment = Union[KeySegment, IndexSegment]

_TOKEN = re.compile(r"(?P<key>[^.\[\]]+)|\[(?P<index>\d+)\]|(?P<dot>\.)")


@lru_cache(maxsize=4096)
def parse_path(path: str) -> Tuple[Segment, ...]:
    """Tokenize ``path`` into key and index segments.

    Raises:
        FieldPathError: On empty paths, empty keys or unterminated indices
    """
    if not path:
        raise FieldPathError("Field path is empty")

    segments: List[Segment] = []
    position = 0
    expect_key = True  # at start and after a dot

    while position < len(path):
        match = _TOKEN.match(path, position)
        if match is None:
            raise FieldPathError(f"Malformed field path {path!r} at offset {position}")

        if match.group("key") is not None:
            if not expect_key:
                raise FieldPathError(f"Missing '.' before key in {path!r} at offset {position}")
            segments.append(KeySegment(match.group("key")))
            expect_key = False
        elif match.group("index") is not None:
            if expect_key:
                raise FieldPathError(f"Index without a preceding key in {path!r}")
            segments.append(IndexSegment(int(match.group("index"))))
        else:
            if expect_key:
                raise FieldPathError(f"Empty key in {path!r} at offset {position}")
            expect_key = True

        position = match.end()

    if expect_key:
        raise FieldPathError(f"Field path {path!r} ends with '.'")
    return tuple(segments)


def format_path(segments: Sequence[Segment]) -> str:
    """Inverse of ``parse_path``."""
    parts: List[str] = []
    for segment in segments:
        if isinstance(segment, IndexSegment):
            parts.append(str(segment))
        else:
            parts.append(f".{segment.key}" if parts else segment.key)
    return "".join(parts)


def join_key(prefix: str, key: str) -> str:
    return f"{prefix}.{key}" if prefix else key


def join_index(prefix: str, index: int) -> str:
    return f"{prefix}[{index}]"


def get_by_path(data: Any, path: str, default: Any = None) -> Any:
    """Read the value at ``path``, or ``default`` when any step is missing."""
    current = data
    for segment in parse_path(path):
        if isinstance(segment, IndexSegment):
            if not isinstance(current, list) or segment.index >= len(current):
                return default
            current = current[segment.index]
        else:
            if not isinstance(current, dict) or segment.key not in current:
                return default
            current = current[segment.key]
    return current


def set_by_path(data: dict, path: str, value: Any) -> dict:
    """Write ``value`` at ``path``, creating intermediate containers.

    Missing objects become dicts and missing lists become lists; lists are
    padded with empty dicts up to the needed index.

    Raises:
        FieldPathError: If the path would descend through a scalar, or a key
            is applied to a list (or an index to a dict)
    """
    segments = parse_path(path)
    if not isinstance(data, dict) or not isinstance(segments[0], KeySegment):
        raise FieldPathError(f"Field path {path!r} must start at an object key")

    current: Any = data
    for position, segment in enumerate(segments):
        is_last = position == len(segments) - 1
        following = None if is_last else segments[position + 1]

        if isinstance(segment, KeySegment):
            if not isinstance(current, dict):
                raise FieldPathError(f"Cannot apply key {segment.key!r} to a non-object in {path!r}")
            if is_last:
                current[segment.key] = value
                return data
            current = _descend(current, segment.key, following, path)
        else:
            if not isinstance(current, list):
                raise FieldPathError(f"Cannot apply index {segment.index} to a non-list in {path!r}")
            while len(current) <= segment.index:
                current.append({})
            if is_last:
                current[segment.index] = value
                return data
            current = _descend(current, segment.index, following, path)

    return data


def _descend(container: Any, slot: Union[str, int], following: Segment, path: str) -> Any:
    wants_list = isinstance(following, IndexSegment)
    child = container.get(slot) if isinstance(container, dict) else container[slot]

    if child is None or (wants_list and child == {}):
        child = [] if wants_list else {}
        container[slot] = child
    elif wants_list and not isinstance(child, list):
        raise FieldPathError(f"Expected a list at {slot!r} in {path!r}")
    elif not wants_list and not isinstance(child, dict):
        raise FieldPathError(f"Expected an object at {slot!r} in {path!r}")
    return child
