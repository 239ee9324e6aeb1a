"""Scoped logging context.

Fields pushed here are attached to every log record emitted inside the
scope (see ContextualFilter). Context lives in a ContextVar, so each thread
of a match scan or notification fan-out sees only its own fields.
"""

from contextvars import ContextVar, Token
from typing import Any, Dict, Optional

LogContextVar: ContextVar[Dict[str, Any]] = ContextVar("workmatch_log_context", default={})


def get_log_context() -> Dict[str, Any]:
    """Return a copy of the current logging context."""
    return dict(LogContextVar.get())


def push_log_context(**fields: Any) -> Token:
    """Merge fields into the current context.

    Returns:
        Token to pass to pop_log_context() to restore the previous state
    """
    return LogContextVar.set({**LogContextVar.get(), **fields})


def pop_log_context(token: Token) -> None:
    """Restore the context captured by push_log_context()."""
    LogContextVar.reset(token)


def clear_log_context() -> None:
    """Drop all context fields (mostly useful in tests)."""
    LogContextVar.set({})


class log_context:
    """Context manager that pushes fields on entry and restores on exit.

    Example:
        >>> with log_context(job_id="job-1", scan_id="a1b2"):
        ...     logger.info("Scanning workers")
    """

    def __init__(self, **fields: Any):
        self.fields = fields
        self.token: Optional[Token] = None

    def __enter__(self):
        self.token = push_log_context(**self.fields)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.token is not None:
            pop_log_context(self.token)
            self.token = None
        return False
