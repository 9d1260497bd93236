"""Draining state and in-flight connection tracking for graceful shutdown.

Once draining begins the accept loop exits, connections that still arrive
are answered with ``5 Server is shutting down`` and the listener waits for
the connections already being answered before the process exits.
"""

import logging
import threading
import time
from typing import Optional

from spsrv.domain.correlation_id import CorrelationLoggerAdapter

LIFECYCLE_LOGGER = CorrelationLoggerAdapter(logging.getLogger("spsrv.lifecycle"), {})

JOIN_SLICE_SECONDS = 0.1


class ServerLifecycle:
    """Tracks the draining flag and the client each handler thread is answering."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._draining = threading.Event()
        self._connections: dict[threading.Thread, str] = {}

    def is_draining(self) -> bool:
        return self._draining.is_set()

    def should_stop(self) -> bool:
        """The accept loop exits as soon as draining has begun."""
        return self._draining.is_set()

    def track_connection(self, thread: threading.Thread, client: str) -> None:
        with self._lock:
            self._connections[thread] = client

    def release_connection(self, thread: threading.Thread) -> None:
        with self._lock:
            self._connections.pop(thread, None)

    def is_tracked(self, thread: threading.Thread) -> bool:
        with self._lock:
            return thread in self._connections

    def in_flight_count(self) -> int:
        with self._lock:
            return len(self._connections)

    def in_flight_clients(self) -> list[str]:
        """Return the peers of connections still being answered, sorted."""
        with self._lock:
            return sorted(self._connections.values())

    def begin_draining(self, reason: Optional[str] = None) -> bool:
        """Start draining; returns False when draining had already begun."""
        with self._lock:
            if self._draining.is_set():
                first_request = False
            else:
                self._draining.set()
                first_request = True
            in_flight = len(self._connections)
        if first_request:
            LIFECYCLE_LOGGER.info(
                "Draining connections before shutdown",
                extra={
                    "event": "drain_started",
                    "signal": reason,
                    "remaining_workers": in_flight,
                },
            )
        else:
            LIFECYCLE_LOGGER.debug(
                "Already draining", extra={"event": "drain_repeated", "signal": reason}
            )
        return first_request

    def _prune_finished(self) -> list[threading.Thread]:
        with self._lock:
            self._connections = {
                thread: client
                for thread, client in self._connections.items()
                if thread.is_alive()
            }
            return list(self._connections)

    def wait_for_connections(self, timeout: float) -> bool:
        """Wait up to ``timeout`` seconds for in-flight connections to finish.

        Returns False, logging the peers still being served, when the grace
        period runs out first.
        """
        deadline = time.monotonic() + timeout
        while True:
            pending = self._prune_finished()
            if not pending:
                LIFECYCLE_LOGGER.info(
                    "All connections drained", extra={"event": "drain_complete"}
                )
                return True
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                LIFECYCLE_LOGGER.warning(
                    "Grace period ended with connections still open",
                    extra={
                        "event": "drain_timeout",
                        "remaining_workers": len(pending),
                        "clients": self.in_flight_clients(),
                    },
                )
                return False
            for thread in pending:
                thread.join(timeout=min(JOIN_SLICE_SECONDS, remaining))
                if time.monotonic() >= deadline:
                    break
