"""Declarative field schema.

The schema is a JSON tree: leaves are type names (``string``, ``number``,
``date``, ``boolean``), plain objects nest fields, and
``{"type": "array", "items": {...}}`` describes one instance of a repeated
group. The schema is loaded once and shared read-only; flattening expands
each array with the canonical ``[0]`` template index.
"""

import copy
import json
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from submission_intake.core.exceptions import ConfigurationError
from submission_intake.utils.field_path import join_index, join_key
from submission_intake.utils.logging import get_logger

LOGGER = get_logger(__name__)

DEFAULT_SCHEMA_PATH = Path(__file__).resolve().parents[2] / "data" / "field_schema.json"

TOP_LEVEL_SECTIONS = ("submission", "locations", "coverage", "lossHistory")

# Keys allowed on a leaf written as an object, e.g. {"type": "date", "format": "YYYY-MM-DD"}
LEAF_DESCRIPTOR_KEYS = {"type", "format", "description", "enum"}


@dataclass(frozen=True)
class FieldSpec:
    """One addressable schema leaf."""

    path: str
    name: str
    field_type: str = "string"


def is_array_node(node: Any) -> bool:
    return isinstance(node, dict) and node.get("type") == "array" and "items" in node


def is_leaf_node(node: Any) -> bool:
    if isinstance(node, str):
        return True
    return (
        isinstance(node, dict)
        and isinstance(node.get("type"), str)
        and node["type"] != "array"
        and set(node) <= LEAF_DESCRIPTOR_KEYS
    )


def leaf_type(node: Any) -> str:
    return node if isinstance(node, str) else str(node.get("type", "string"))


class FieldSchema:
    """Immutable view over a parsed schema tree."""

    def __init__(self, tree: Dict[str, Any]):
        if not isinstance(tree, dict) or not tree:
            raise ConfigurationError("Field schema must be a non-empty JSON object")
        self._tree = copy.deepcopy(tree)
        self._fields: Tuple[FieldSpec, ...] = tuple(_flatten(self._tree, ""))

    @property
    def tree(self) -> Dict[str, Any]:
        """A copy of the schema tree; callers cannot mutate the shared schema."""
        return copy.deepcopy(self._tree)

    def flatten(self) -> List[FieldSpec]:
        """Ordered leaf fields with ``[0]`` template paths."""
        return list(self._fields)

    def expected_shape(self) -> Dict[str, Any]:
        """Empty output shape: one template instance per array, null leaves."""
        return _shape(self._tree)

    def __len__(self) -> int:
        return len(self._fields)


def _flatten(node: Any, prefix: str) -> List[FieldSpec]:
    specs: List[FieldSpec] = []
    for key, child in node.items():
        path = join_key(prefix, key)
        if is_array_node(child):
            item_path = join_index(path, 0)
            items = child["items"]
            if is_leaf_node(items):
                specs.append(FieldSpec(path=item_path, name=key, field_type=leaf_type(items)))
            else:
                specs.extend(_flatten(items, item_path))
        elif is_leaf_node(child):
            specs.append(FieldSpec(path=path, name=key, field_type=leaf_type(child)))
        elif isinstance(child, dict):
            specs.extend(_flatten(child, path))
        else:
            LOGGER.warning(f"Ignoring unsupported schema node at {path}: {child!r}")
    return specs


def _shape(node: Any) -> Any:
    if is_array_node(node):
        items = node["items"]
        return [None if is_leaf_node(items) else _shape(items)]
    if is_leaf_node(node):
        return None
    return {key: _shape(child) for key, child in node.items()}


@lru_cache(maxsize=8)
def load_field_schema(path: Optional[str] = None) -> FieldSchema:
    """Load and cache the schema file (defaults to the bundled schema)."""
    schema_path = Path(path) if path else DEFAULT_SCHEMA_PATH
    try:
        with open(schema_path, "r", encoding="utf-8") as f:
            tree = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Cannot load field schema from {schema_path}: {e}", e) from e

    schema = FieldSchema(tree)
    missing = [s for s in TOP_LEVEL_SECTIONS if s not in tree]
    if missing:
        LOGGER.warning(f"Field schema is missing sections: {missing}")
    LOGGER.info(f"Loaded field schema with {len(schema)} fields from {schema_path}")
    return schema
