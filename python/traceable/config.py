"""
Process configuration for tracers and the value formatter.

A :class:`Config` is immutable. The process config is built once, either
explicitly with :func:`set_config` at start-up or lazily from the
environment on first use. :func:`configured` overrides it for the current
execution context only, which is how tests change limits or sinks without
touching shared state.
"""

from __future__ import annotations

import contextlib
import contextvars
import dataclasses
import logging
import os
import threading
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Iterator, Mapping, Optional, Union

from .errors import ConfigError
from .sinks import JsonLinesFileSink, LoggingSink, NullSink, TraceSink

logger = logging.getLogger("traceable.config")

MAX_STRING_LENGTH = 5000
MAX_ARRAY_VALUES = 30
MAX_HASH_KEYS = 30
MAX_DEPTH = 16

TagValue = Union[Any, Callable[[], Any]]

# ---------------------------------------------------------------------------
# Environment configuration
# ---------------------------------------------------------------------------


def _env_bool(key: str, default: str) -> bool:
    return os.environ.get(key, default).lower() in ("1", "true", "yes")


def _env_int(key: str, default: int) -> int:
    raw = os.environ.get(key)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{key} must be an integer, got {raw!r}") from None


def _sink_from_env() -> TraceSink:
    if not _env_bool("TRACEABLE_ENABLED", "true"):
        logger.debug("Tracing disabled (TRACEABLE_ENABLED != true)")
        return NullSink()
    name = os.environ.get("TRACEABLE_SINK", "logging").lower()
    if name == "logging":
        return LoggingSink()
    if name == "jsonl":
        sink = JsonLinesFileSink()
        logger.info("Tracing to JSON-lines files in %s", sink.trace_dir)
        return sink
    if name == "null":
        return NullSink()
    raise ConfigError(
        f"unsupported TRACEABLE_SINK '{name}'. Expected one of: jsonl, logging, null"
    )


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Config:
    """Immutable tracer configuration.

    ``default_tags`` values may be zero-argument callables; they are invoked
    each time a root tracer is created.
    """

    sink: TraceSink = field(default_factory=LoggingSink)
    default_tags: Mapping[str, TagValue] = field(default_factory=dict)
    max_string_length: int = MAX_STRING_LENGTH
    max_array_values: int = MAX_ARRAY_VALUES
    max_hash_keys: int = MAX_HASH_KEYS
    max_depth: int = MAX_DEPTH

    def __post_init__(self) -> None:
        for name in ("max_string_length", "max_array_values", "max_hash_keys", "max_depth"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 1:
                raise ConfigError(f"{name} must be a positive integer, got {value!r}")
        if not isinstance(self.sink, TraceSink):
            raise ConfigError(f"sink must be a TraceSink, got {type(self.sink).__name__}")
        object.__setattr__(self, "default_tags", MappingProxyType(dict(self.default_tags)))

    @classmethod
    def from_env(cls, **overrides: Any) -> "Config":
        """Build a config from ``TRACEABLE_*`` environment variables."""
        values: dict = {
            "max_string_length": _env_int("TRACEABLE_MAX_STRING_LENGTH", MAX_STRING_LENGTH),
            "max_array_values": _env_int("TRACEABLE_MAX_ARRAY_VALUES", MAX_ARRAY_VALUES),
            "max_hash_keys": _env_int("TRACEABLE_MAX_HASH_KEYS", MAX_HASH_KEYS),
            "max_depth": _env_int("TRACEABLE_MAX_DEPTH", MAX_DEPTH),
        }
        values.update(overrides)
        if "sink" not in values:
            values["sink"] = _sink_from_env()
        return cls(**values)

    def replace(self, **changes: Any) -> "Config":
        return dataclasses.replace(self, **changes)

    def resolve_default_tags(self) -> dict:
        """Evaluate default tags, calling any deferred producers now."""
        return {
            key: value() if callable(value) else value
            for key, value in self.default_tags.items()
        }


# ---------------------------------------------------------------------------
# Process config lifecycle
# ---------------------------------------------------------------------------

_config: Optional[Config] = None
_config_lock = threading.Lock()
_scoped: contextvars.ContextVar[Optional[Config]] = contextvars.ContextVar(
    "traceable_config", default=None
)


def get_config() -> Config:
    """Return the config in effect for the current execution context."""
    scoped = _scoped.get()
    if scoped is not None:
        return scoped
    return _process_config()


def _process_config() -> Config:
    global _config
    if _config is None:
        with _config_lock:
            if _config is None:
                try:
                    _config = Config.from_env()
                except (ConfigError, OSError) as exc:
                    # fail open
                    logger.warning("Invalid TRACEABLE_* environment, using defaults: %s", exc)
                    _config = Config()
    return _config


def set_config(config: Config) -> None:
    """Install the process config. Call once at start-up."""
    global _config
    with _config_lock:
        _config = config


def configure(**changes: Any) -> Config:
    """Install a copy of the process config with *changes* applied."""
    config = _process_config().replace(**changes)
    set_config(config)
    return config


@contextlib.contextmanager
def configured(**changes: Any) -> Iterator[Config]:
    """Override the config for the current execution context only."""
    config = get_config().replace(**changes)
    token = _scoped.set(config)
    try:
        yield config
    finally:
        _scoped.reset(token)


__all__ = [
    "Config",
    "MAX_STRING_LENGTH",
    "MAX_ARRAY_VALUES",
    "MAX_HASH_KEYS",
    "MAX_DEPTH",
    "get_config",
    "set_config",
    "configure",
    "configured",
]
