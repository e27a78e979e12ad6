"""
Tracers: tagged, leveled log emission with inherited context.

Every tracer owns a flat tag map. A root tracer (one with no resolvable
parent) starts from the configured default tags plus a fresh ``trace`` id;
a child copies its parent's tags, so every entry descending from one root
carries the same ``trace`` value.

Scoped blocks push the tracer onto the context stack so that tracers
created further down the call chain pick it up as their default parent::

    tracer = Tracer()
    with tracer.scope("load records", source="db") as tags:
        ...  # START/END (or EXCEPTION) entries are emitted around this
"""

from __future__ import annotations

import logging
import time
import traceback
import uuid
from types import MappingProxyType, TracebackType
from typing import (
    Any,
    Callable,
    Dict,
    Mapping,
    Optional,
    Protocol,
    Type,
    TypeVar,
    Union,
    runtime_checkable,
)

from .config import get_config
from .context import ContextStack
from .errors import InvalidParentError
from .formatter import format_tags
from .sinks import Level, TraceSink

logger = logging.getLogger("traceable.tracer")

T = TypeVar("T")

TRACE_KEY = "trace"


@runtime_checkable
class TraceProvider(Protocol):
    """Anything that can hand out its own tracer."""

    def local_tracer(self) -> "Tracer": ...


ParentLike = Union["Tracer", TraceProvider, None]


class Tracer:
    """Emits log entries carrying an inherited set of tags.

    Parameters
    ----------
    parent:
        A :class:`Tracer`, an object exposing ``local_tracer()``, or ``None``
        to use the innermost tracer of the current scope (if any).
    tags:
        Tags merged over the inherited ones. Values are formatted.
    sink:
        Destination for entries; defaults to the parent's sink, or the
        configured sink for a root tracer.
    """

    def __init__(
        self,
        parent: ParentLike = None,
        tags: Optional[Mapping[str, Any]] = None,
        sink: Optional[TraceSink] = None,
    ):
        self.parent: Optional[Tracer] = _resolve_parent(parent)
        if sink is not None:
            self.sink = sink
        elif self.parent is not None:
            self.sink = self.parent.sink
        else:
            self.sink = get_config().sink

        if self.parent is not None:
            merged = dict(self.parent.tags)
        else:
            merged = get_config().resolve_default_tags()
            merged[TRACE_KEY] = str(uuid.uuid4())
        if tags:
            merged.update(format_tags(tags))
        self._tags = merged

    @property
    def tags(self) -> Mapping[str, Any]:
        """Read-only view of this tracer's tags."""
        return MappingProxyType(self._tags)

    @property
    def trace_id(self) -> str:
        return self._tags[TRACE_KEY]

    @staticmethod
    def default_parent() -> Optional["Tracer"]:
        return ContextStack.top()

    def __repr__(self) -> str:
        return f"<Tracer trace={self._tags.get(TRACE_KEY)!r}>"

    # -- emission --

    def make_tags(self, message: Any, tags: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        final = dict(self._tags)
        final["message"] = message
        if tags:
            final.update(tags)
        return final

    def emit(self, level: Union[Level, str], message: Any, /, **tags: Any) -> None:
        """Send one entry to the sink. Sink failures never propagate."""
        self._emit_tags(Level(level), self.make_tags(message, format_tags(tags)))

    def _emit_tags(self, level: Level, tags: Dict[str, Any]) -> None:
        try:
            self.sink.emit(level, tags)
        except Exception as exc:
            logger.warning("EXCEPTION in trace: %s", exc, exc_info=True)

    def debug(self, message: Any, /, **tags: Any) -> None:
        self.emit(Level.DEBUG, message, **tags)

    def info(self, message: Any, /, **tags: Any) -> None:
        self.emit(Level.INFO, message, **tags)

    def warn(self, message: Any, /, **tags: Any) -> None:
        self.emit(Level.WARN, message, **tags)

    warning = warn

    def error(self, message: Any, /, **tags: Any) -> None:
        self.emit(Level.ERROR, message, **tags)

    def fatal(self, message: Any, /, **tags: Any) -> None:
        self.emit(Level.FATAL, message, **tags)

    # -- scoped blocks --

    def scope(self, label: str, /, **tags: Any) -> "Scope":
        """Context manager logging entry, exit and exceptions of a block."""
        return Scope(self, label, format_tags(tags))

    def run_scoped(self, label: str, body: Callable[[Dict[str, Any]], T], /, **tags: Any) -> T:
        """Run ``body(tags)`` inside :meth:`scope` and return its result."""
        with self.scope(label, **tags) as snapshot:
            return body(snapshot)


class Scope:
    """One scoped block of a tracer.

    Entering emits ``START: <label>`` and pushes the tracer onto the context
    stack. Leaving pops it on every path and emits either ``END: <label>``
    or an ``EXCEPTION`` entry; exceptions are always re-raised unchanged.
    Only the scope where an exception is first seen records its backtrace,
    outer scopes log it as propagated from that origin.
    *tags* must already be formatted.
    """

    def __init__(self, tracer: Tracer, label: str, tags: Mapping[str, Any]):
        self.tracer = tracer
        self.label = label
        self.tags = dict(tags)
        self._start: Optional[float] = None

    def __enter__(self) -> Dict[str, Any]:
        self.tracer._emit_tags(
            Level.INFO,
            self.tracer.make_tags(f"START: {self.label}", {"enter": True, **self.tags}),
        )
        self._start = time.monotonic()
        ContextStack.push(self.tracer)
        ContextStack.prune_origins()
        return dict(self.tags)

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        try:
            elapsed = time.monotonic() - self._start
            if exc is None:
                self.tracer._emit_tags(
                    Level.INFO,
                    self.tracer.make_tags(
                        f"END: {self.label}",
                        {"exit": True, "elapsed": elapsed, **self.tags},
                    ),
                )
            elif isinstance(exc, Exception):
                self._log_exception(exc, tb, elapsed)
        finally:
            ContextStack.prune_origins(exc)
            ContextStack.pop()

    def _log_exception(self, exc: Exception, tb: Optional[TracebackType], elapsed: float) -> None:
        kind = type(exc).__name__
        extra: Dict[str, Any] = {"exception": True, "elapsed": elapsed, "class": kind}
        origin = ContextStack.origin_of(exc)
        if origin is None:
            ContextStack.mark_origin(exc, self.label)
            message = f"EXCEPTION: {self.label} => {kind}, {exc}"
            extra["backtrace"] = "".join(traceback.format_exception(type(exc), exc, tb))
        else:
            message = f"EXCEPTION: {self.label} => {kind} [propagated from {origin}]"
        extra.update(self.tags)
        self.tracer._emit_tags(Level.WARN, self.tracer.make_tags(message, extra))


def _resolve_parent(parent: Any) -> Optional[Tracer]:
    if parent is None:
        return Tracer.default_parent()
    if isinstance(parent, Tracer):
        return parent
    if isinstance(parent, TraceProvider):
        return parent.local_tracer()
    raise InvalidParentError(f"{parent!r} ({type(parent).__name__})")


__all__ = ["Tracer", "Scope", "TraceProvider", "TRACE_KEY"]
