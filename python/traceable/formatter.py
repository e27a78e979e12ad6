"""
Bounded rendering of arbitrary values into tag-sized representations.

Dispatch order, first match wins:

1. objects implementing :class:`TraceRenderable` render themselves;
2. sequences (list, tuple, set, frozenset) are capped at
   ``max_array_values`` elements, the last slot reporting ``...(<removed>)``;
3. mappings are capped at ``max_hash_keys`` keys, with a ``___`` trailer
   reporting ``...(<removed>)``;
4. strings longer than ``max_string_length`` are cut and suffixed ``...``;
5. anything else passes through unchanged.

Containers nested deeper than ``max_depth``, or containing themselves, are
replaced by ``...(depth)`` and ``...(cycle)``.
"""

from __future__ import annotations

import itertools
import logging
from collections.abc import Mapping
from typing import Any, Dict, FrozenSet, Optional, Protocol, Sequence, runtime_checkable

from .config import Config, get_config
from .errors import ArityMismatchError

logger = logging.getLogger("traceable.formatter")

TRUNCATION_KEY = "___"
DEPTH_MARKER = "...(depth)"
CYCLE_MARKER = "...(cycle)"

_SEQUENCE_TYPES = (list, tuple, set, frozenset)


@runtime_checkable
class TraceRenderable(Protocol):
    """Capability for types that render their own trace representation."""

    def __trace__(self) -> Any: ...


class ValueFormatter:
    """Formats values against the limits of one :class:`Config`."""

    def __init__(self, config: Optional[Config] = None):
        config = config or get_config()
        self.max_string_length = config.max_string_length
        self.max_array_values = config.max_array_values
        self.max_hash_keys = config.max_hash_keys
        self.max_depth = config.max_depth

    def format(self, value: Any) -> Any:
        try:
            return self._format(value, 0, frozenset())
        except Exception as exc:
            return _unformattable(value, exc)

    def _format(self, value: Any, depth: int, seen: FrozenSet[int]) -> Any:
        if isinstance(value, TraceRenderable):
            try:
                return value.__trace__()
            except Exception as exc:
                return _unformattable(value, exc)
        if isinstance(value, _SEQUENCE_TYPES):
            if depth >= self.max_depth:
                return DEPTH_MARKER
            if id(value) in seen:
                return CYCLE_MARKER
            return self._format_sequence(value, depth, seen | {id(value)})
        if isinstance(value, Mapping):
            if depth >= self.max_depth:
                return DEPTH_MARKER
            if id(value) in seen:
                return CYCLE_MARKER
            return self._format_mapping(value, depth, seen | {id(value)})
        if isinstance(value, str):
            return self.format_string(value)
        return value

    def format_string(self, value: str) -> str:
        if len(value) > self.max_string_length:
            return value[: self.max_string_length] + "..."
        return value

    def _format_sequence(self, values, depth: int, seen: FrozenSet[int]) -> list:
        limit = self.max_array_values
        size = len(values)
        if size > limit:
            kept = [self._format(v, depth + 1, seen) for v in itertools.islice(values, limit - 1)]
            kept.append(f"...({size - (limit - 1)})")
            return kept
        return [self._format(v, depth + 1, seen) for v in values]

    def _format_mapping(self, values: Mapping, depth: int, seen: FrozenSet[int]) -> dict:
        limit = self.max_hash_keys
        size = len(values)
        if size > limit:
            result = {
                key: self._format(value, depth + 1, seen)
                for key, value in itertools.islice(values.items(), limit - 1)
            }
            result[TRUNCATION_KEY] = f"...({size - (limit - 1)})"
            return result
        return {key: self._format(value, depth + 1, seen) for key, value in values.items()}


def _unformattable(value: Any, exc: Exception) -> str:
    logger.warning("EXCEPTION formatting %s for trace: %s", type(value).__name__, exc, exc_info=True)
    return f"<unformattable {type(value).__name__}>"


def format_value(value: Any) -> Any:
    """Format *value* using the limits of the current config."""
    return ValueFormatter().format(value)


def format_tags(tags: Mapping[str, Any]) -> Dict[str, Any]:
    """Format every value of a tag map, leaving keys unchanged."""
    formatter = ValueFormatter()
    return {key: formatter.format(value) for key, value in tags.items()}


def args_to_tags(names: Sequence[str], values: Sequence[Any]) -> Dict[str, Any]:
    """Zip parameter names with argument values into a formatted tag map.

    Raises :class:`ArityMismatchError` when the lengths differ.
    """
    if len(names) != len(values):
        raise ArityMismatchError(
            f"{len(names)} parameter names but {len(values)} values"
        )
    formatter = ValueFormatter()
    return {name: formatter.format(value) for name, value in zip(names, values)}


__all__ = [
    "TraceRenderable",
    "ValueFormatter",
    "format_value",
    "format_tags",
    "args_to_tags",
    "TRUNCATION_KEY",
]
