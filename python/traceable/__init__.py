"""
Traceable — hierarchical, tagged log entries for runtime diagnostics.

Every entry carries the tags of the tracer that emitted it, including a
``trace`` id shared by all tracers descending from one root, so log
aggregation can regroup a call chain.

Quick-start::

    from traceable import Tracer, traced

    tracer = Tracer(tags={"job": "nightly"})
    with tracer.scope("sync accounts"):
        tracer.info("fetched", count=12)
"""

from .config import Config, configure, configured, get_config, set_config
from .context import ContextStack, run_isolated
from .errors import (
    ArityMismatchError,
    ConfigError,
    InvalidParentError,
    TraceableError,
)
from .formatter import TraceRenderable, ValueFormatter, args_to_tags, format_value
from .sinks import (
    JsonLinesFileSink,
    Level,
    LoggingSink,
    MemorySink,
    NullSink,
    TraceSink,
)
from .mixin import Traceable, trace, traced
from .tracer import Scope, TraceProvider, Tracer

__all__ = [
    "Config",
    "configure",
    "configured",
    "get_config",
    "set_config",
    "ContextStack",
    "run_isolated",
    "TraceableError",
    "InvalidParentError",
    "ArityMismatchError",
    "ConfigError",
    "TraceRenderable",
    "ValueFormatter",
    "args_to_tags",
    "format_value",
    "Level",
    "TraceSink",
    "NullSink",
    "LoggingSink",
    "JsonLinesFileSink",
    "MemorySink",
    "Traceable",
    "trace",
    "traced",
    "Tracer",
    "Scope",
    "TraceProvider",
]
