"""
Owner-bound tracers and the ``@traced`` decorator.

Quick-start::

    from traceable import Traceable, traced

    class Importer(Traceable):
        @traced
        def load(self, path):
            self.trace("opening", path=path)
            ...

Calling ``Importer().load("a.csv")`` emits ``START: Importer.load`` with a
``path`` tag, the inner info entry, then ``END: Importer.load``.
"""

from __future__ import annotations

import functools
import inspect
from typing import Any, Callable, Dict, Mapping, Optional, Tuple, TypeVar, Union, overload

from .formatter import args_to_tags
from .tracer import ParentLike, Scope, Tracer

F = TypeVar("F", bound=Callable[..., Any])


class Traceable:
    """Mixin giving an object its own lazily created tracer."""

    _tracer: Optional[Tracer] = None

    def local_tracer(self) -> Tracer:
        if self._tracer is None:
            return self.init_tracer()
        return self._tracer

    def init_tracer(
        self,
        parent: ParentLike = None,
        tags: Optional[Mapping[str, Any]] = None,
    ) -> Tracer:
        """Create and keep this object's tracer.

        Without *parent* the tracer inherits from the innermost active scope,
        so objects built inside a traced block join its trace.
        """
        self._tracer = Tracer(parent, tags=tags)
        return self._tracer

    def trace(self, message: Any = None, /, **tags: Any) -> Optional[Tracer]:
        """Log *message* at info level, or return the tracer when no message."""
        return _trace(self.local_tracer(), message, tags)


def trace(message: Any = None, /, **tags: Any) -> Optional[Tracer]:
    """Module-level counterpart of :meth:`Traceable.trace`.

    Builds a fresh tracer under the current scope on every call.
    """
    return _trace(Tracer(), message, tags)


def _trace(tracer: Tracer, message: Any, tags: Dict[str, Any]) -> Optional[Tracer]:
    if message is None:
        return tracer
    tracer.info(message, **tags)
    return None


# ---------------------------------------------------------------------------
# @traced decorator
# ---------------------------------------------------------------------------


@overload
def traced(fn: F) -> F: ...


@overload
def traced(
    fn: None = None, *, name: Optional[str] = None, capture_args: bool = True
) -> Callable[[F], F]: ...


def traced(
    fn: Optional[F] = None,
    *,
    name: Optional[str] = None,
    capture_args: bool = True,
) -> Union[F, Callable[[F], F]]:
    """Wrap a function or method in a scoped block.

    Parameters
    ----------
    name:
        Label for the START/END entries; defaults to ``__qualname__``.
    capture_args:
        If *True* (default), bound arguments are rendered into tags with
        :func:`args_to_tags`. A leading ``self`` or ``cls`` is skipped.

    Works on both sync and async functions. On a :class:`Traceable` method
    the instance's tracer is used; anywhere else a fresh tracer is created
    under the current scope.
    """

    def decorator(fn: F) -> F:
        label = name or fn.__qualname__
        signature = inspect.signature(fn)

        def prepare(args: tuple, kwargs: dict) -> Tuple[Tracer, Dict[str, Any]]:
            owner = args[0] if args and isinstance(args[0], Traceable) else None
            tracer = owner.local_tracer() if owner is not None else Tracer()
            if not capture_args:
                return tracer, {}
            try:
                bound = signature.bind(*args, **kwargs)
            except TypeError:
                # Let the call itself raise its own TypeError
                return tracer, {}
            names = list(bound.arguments)
            if names and names[0] in ("self", "cls"):
                names = names[1:]
            return tracer, args_to_tags(names, [bound.arguments[n] for n in names])

        if inspect.iscoroutinefunction(fn):

            @functools.wraps(fn)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                tracer, tags = prepare(args, kwargs)
                with Scope(tracer, label, tags):
                    return await fn(*args, **kwargs)

            return async_wrapper  # type: ignore[return-value]

        @functools.wraps(fn)
        def sync_wrapper(*args: Any, **kwargs: Any) -> Any:
            tracer, tags = prepare(args, kwargs)
            with Scope(tracer, label, tags):
                return fn(*args, **kwargs)

        return sync_wrapper  # type: ignore[return-value]

    if fn is not None:
        return decorator(fn)
    return decorator


__all__ = ["Traceable", "trace", "traced"]
