"""
Pluggable destinations for trace entries.

A sink receives ``(level, tags)`` where ``tags`` is the flat, already
formatted tag map of one entry (always containing ``message``). Sinks may
raise; the tracer catches and reports sink failures without propagating
them.
"""

from __future__ import annotations

import json
import logging
import os
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .utils import get_trace_dir


class Level(str, Enum):
    """The five standard trace levels."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"
    FATAL = "fatal"


_JSON_KEY_TYPES = (str, int, float, bool, type(None))

_LOGGING_LEVELS = {
    Level.DEBUG: logging.DEBUG,
    Level.INFO: logging.INFO,
    Level.WARN: logging.WARNING,
    Level.ERROR: logging.ERROR,
    Level.FATAL: logging.CRITICAL,
}


class TraceSink(ABC):
    """Pluggable sink for trace entries."""

    @abstractmethod
    def emit(self, level: Level, tags: Dict[str, Any]) -> None:
        """Deliver a single entry."""

    def flush(self) -> None:
        """Optional flush."""


class NullSink(TraceSink):
    """Drop-all sink used when tracing is disabled."""

    def emit(self, level: Level, tags: Dict[str, Any]) -> None:
        pass


class LoggingSink(TraceSink):
    """Forward entries to a standard library logger.

    The record message is the JSON rendering of the tag map; the map itself
    is attached to the record as ``record.tags`` for structured handlers.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger("traceable.trace")

    def emit(self, level: Level, tags: Dict[str, Any]) -> None:
        log_level = _LOGGING_LEVELS[Level(level)]
        if not self.logger.isEnabledFor(log_level):
            return
        self.logger.log(
            log_level, "%s", json.dumps(_string_keys(tags), default=str), extra={"tags": tags}
        )


class JsonLinesFileSink(TraceSink):
    """Append entries as JSON-lines to a file in the trace directory.

    File naming: ``<date>_<pid>.jsonl``, one file per process. The file is
    opened on the first entry.
    """

    def __init__(self, trace_dir: Optional[Path] = None):
        self.trace_dir = Path(trace_dir) if trace_dir is not None else get_trace_dir()
        self.trace_dir.mkdir(parents=True, exist_ok=True)
        self._file = None
        self.path: Optional[Path] = None

    def _ensure_file(self) -> None:
        if self._file is None:
            today = datetime.now(timezone.utc).strftime("%Y%m%d")
            self.path = self.trace_dir / f"{today}_{os.getpid()}.jsonl"
            self._file = open(self.path, "a", encoding="utf-8")

    def emit(self, level: Level, tags: Dict[str, Any]) -> None:
        self._ensure_file()
        assert self._file is not None
        record = {"level": Level(level).value, "timestamp": _utc_iso(), **tags}
        self._file.write(json.dumps(_string_keys(record), default=str) + "\n")

    def flush(self) -> None:
        if self._file is not None:
            self._file.flush()

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None


class MemorySink(TraceSink):
    """Keep entries in memory, in emission order."""

    def __init__(self) -> None:
        self.entries: List[Tuple[Level, Dict[str, Any]]] = []

    def emit(self, level: Level, tags: Dict[str, Any]) -> None:
        self.entries.append((Level(level), dict(tags)))

    @property
    def levels(self) -> List[Level]:
        return [level for level, _ in self.entries]

    @property
    def tags(self) -> List[Dict[str, Any]]:
        return [tags for _, tags in self.entries]

    def clear(self) -> None:
        self.entries.clear()


def _utc_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _string_keys(value: Any) -> Any:
    """Copy *value* with mapping keys JSON cannot encode turned into strings."""
    if isinstance(value, dict):
        return {
            key if isinstance(key, _JSON_KEY_TYPES) else str(key): _string_keys(item)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [_string_keys(item) for item in value]
    return value


__all__ = [
    "Level",
    "TraceSink",
    "NullSink",
    "LoggingSink",
    "JsonLinesFileSink",
    "MemorySink",
]
