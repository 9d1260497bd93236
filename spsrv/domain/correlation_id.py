"""Per-connection correlation IDs carried through log records."""

import contextlib
import contextvars
import logging
import uuid
from typing import Any, Iterator, MutableMapping, Optional

LOGGER_PREFIX = "spsrv."
NO_CONNECTION = "-"

_connection_id: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "connection_id", default=None
)


def generate_correlation_id() -> str:
    """Generate a new correlation ID using UUID4."""
    return str(uuid.uuid4())


def get_correlation_id() -> Optional[str]:
    return _connection_id.get()


@contextlib.contextmanager
def connection_scope(correlation_id: Optional[str] = None) -> Iterator[str]:
    """Tag every record logged inside the block with one connection's ID.

    A fresh ID is generated unless one is given. The previous value is
    restored on exit, so scopes nest and never leak into the next connection
    a thread handles.
    """
    value = correlation_id or generate_correlation_id()
    token = _connection_id.set(value)
    try:
        yield value
    finally:
        _connection_id.reset(token)


def component_name(logger_name: str) -> str:
    """Strip the package prefix: ``spsrv.handlers.cgi`` becomes ``handlers.cgi``."""
    if logger_name.startswith(LOGGER_PREFIX):
        return logger_name[len(LOGGER_PREFIX) :]
    return logger_name


class CorrelationLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that tags records with the connection ID and component."""

    def process(
        self, msg: str, kwargs: MutableMapping[str, Any]
    ) -> tuple[str, MutableMapping[str, Any]]:
        extra = dict(kwargs.get("extra") or {})
        extra.setdefault("correlation_id", get_correlation_id() or NO_CONNECTION)
        extra["component"] = component_name(self.logger.name)
        kwargs["extra"] = extra
        return msg, kwargs
