class TraceableError(Exception):
    """Base class for errors raised by traceable itself."""


class InvalidParentError(TraceableError, TypeError):
    """A tracer parent was neither None, a Tracer, nor a tracer provider."""


class ArityMismatchError(TraceableError, ValueError):
    """Parameter names and argument values differ in length."""


class ConfigError(TraceableError, ValueError):
    """Invalid configuration value."""


__all__ = [
    "TraceableError",
    "InvalidParentError",
    "ArityMismatchError",
    "ConfigError",
]
