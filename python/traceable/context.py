"""
Per-execution-unit stack of active tracers.

The stack lives in a ``contextvars.ContextVar`` holding an immutable tuple
of frames. Each frame records the unit that pushed it (the running asyncio
task, or the thread outside a task). Only frames owned by the current unit
are visible, so a new thread or a task spawned inside a scope starts with
an empty stack even though it received a copy of the spawner's context.

The frames of one unit share an exception-origin table mapping
``id(exc) -> (exc, label)``. It is pruned at every scope boundary down to
the exceptions still in flight, and dropped with the unit's bottom frame.
"""

from __future__ import annotations

import asyncio
import contextvars
import sys
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, Optional, Set, Tuple, TypeVar

if TYPE_CHECKING:
    from .tracer import Tracer

T = TypeVar("T")


@dataclass(frozen=True)
class _Frame:
    tracer: "Tracer"
    unit: object
    origins: Dict[int, Tuple[BaseException, str]]


_stack: contextvars.ContextVar[Tuple[_Frame, ...]] = contextvars.ContextVar(
    "traceable_stack", default=()
)


def _current_unit() -> object:
    try:
        task = asyncio.current_task()
    except RuntimeError:
        task = None
    return task if task is not None else threading.current_thread()


def _local_frames() -> Tuple[_Frame, ...]:
    frames = _stack.get()
    unit = _current_unit()
    start = len(frames)
    while start > 0 and frames[start - 1].unit is unit:
        start -= 1
    return frames[start:]


def _in_flight(excs: Iterable[Optional[BaseException]]) -> Set[int]:
    """Ids of *excs*, the exception being handled, and their contexts."""
    keep: Set[int] = set()
    for exc in (*excs, sys.exc_info()[1]):
        while exc is not None and id(exc) not in keep:
            keep.add(id(exc))
            exc = exc.__context__
    return keep


class ContextStack:
    """Facade over the tracer stack of the current execution unit."""

    @staticmethod
    def push(tracer: "Tracer") -> None:
        local = _local_frames()
        origins = local[-1].origins if local else {}
        _stack.set(_stack.get() + (_Frame(tracer, _current_unit(), origins),))

    @staticmethod
    def pop() -> Optional["Tracer"]:
        if not _local_frames():
            return None
        frames = _stack.get()
        _stack.set(frames[:-1])
        return frames[-1].tracer

    @staticmethod
    def top() -> Optional["Tracer"]:
        """Return the innermost active tracer, or None outside any scope."""
        local = _local_frames()
        return local[-1].tracer if local else None

    @staticmethod
    def depth() -> int:
        return len(_local_frames())

    # -- exception origin side table --

    @staticmethod
    def origin_of(exc: BaseException) -> Optional[str]:
        """Return the label of the scope where *exc* was first observed."""
        local = _local_frames()
        if not local:
            return None
        entry = local[-1].origins.get(id(exc))
        if entry is None or entry[0] is not exc:
            return None
        return entry[1]

    @staticmethod
    def mark_origin(exc: BaseException, label: str) -> None:
        """Record *label* as the origin of *exc*; later marks are ignored."""
        local = _local_frames()
        if not local:
            return
        origins = local[-1].origins
        entry = origins.get(id(exc))
        if entry is None or entry[0] is not exc:
            # Holding exc keeps its id from being reused while it is tracked
            origins[id(exc)] = (exc, label)

    @staticmethod
    def prune_origins(*propagating: Optional[BaseException]) -> None:
        """Forget origins of exceptions that are no longer in flight."""
        local = _local_frames()
        if not local or not local[-1].origins:
            return
        keep = _in_flight(propagating)
        origins = local[-1].origins
        for key in [key for key in origins if key not in keep]:
            del origins[key]

    @staticmethod
    def pending_origins() -> int:
        local = _local_frames()
        return len(local[-1].origins) if local else 0


def run_isolated(fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Call *fn* in a fresh context with an empty tracer stack.

    Tracers created inside without an explicit parent become new roots,
    as they would in a newly spawned thread.
    """
    return contextvars.Context().run(fn, *args, **kwargs)


__all__ = ["ContextStack", "run_isolated"]
