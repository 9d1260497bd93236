"""Unit tests for connection draining and graceful shutdown state."""

import logging
import threading
import time

import pytest

from spsrv.bootstrap.config import ServerConfig
from spsrv.lifecycle.state import ServerLifecycle


def drain_events(caplog) -> list:
    """Records logged by the lifecycle, in order."""
    return [
        record
        for record in caplog.records
        if str(getattr(record, "event", "")).startswith("drain_")
    ]


@pytest.fixture(name="release")
def release_fixture():
    """Event that lets blocked connection threads finish at teardown."""
    event = threading.Event()
    yield event
    event.set()


def start_connection(lifecycle, client, release) -> threading.Thread:
    """Start a handler thread that stays busy until ``release`` is set."""
    thread = threading.Thread(target=release.wait, args=(10.0,))
    lifecycle.track_connection(thread, client)
    thread.start()
    return thread


class TestDraining:
    """The draining flag that stops the listener."""

    def test_new_lifecycle_accepts_connections(self):
        """A fresh lifecycle neither drains nor stops the accept loop."""
        lifecycle = ServerLifecycle()
        assert not lifecycle.is_draining()
        assert not lifecycle.should_stop()

    def test_first_signal_starts_draining(self, caplog):
        """Draining stops the accept loop and logs the triggering signal."""
        lifecycle = ServerLifecycle()
        lifecycle.track_connection(threading.Thread(), "127.0.0.1:50000")

        with caplog.at_level(logging.INFO):
            assert lifecycle.begin_draining("SIGTERM") is True

        assert lifecycle.is_draining()
        assert lifecycle.should_stop()
        (started,) = drain_events(caplog)
        assert started.event == "drain_started"
        assert started.signal == "SIGTERM"
        assert started.remaining_workers == 1

    def test_repeated_signal_is_not_a_second_drain(self, caplog):
        """A second SIGINT while draining changes nothing."""
        lifecycle = ServerLifecycle()
        lifecycle.begin_draining("SIGINT")

        with caplog.at_level(logging.DEBUG):
            assert lifecycle.begin_draining("SIGINT") is False

        assert [r.event for r in drain_events(caplog)] == ["drain_repeated"]
        assert lifecycle.is_draining()


class TestConnectionTracking:
    """Bookkeeping of connections that are still being answered."""

    def test_track_and_release_connection(self):
        """A tracked handler is forgotten once released."""
        lifecycle = ServerLifecycle()
        thread = threading.Thread()

        lifecycle.track_connection(thread, "127.0.0.1:50001")
        assert lifecycle.is_tracked(thread)
        assert lifecycle.in_flight_clients() == ["127.0.0.1:50001"]

        lifecycle.release_connection(thread)
        assert not lifecycle.is_tracked(thread)
        assert lifecycle.in_flight_count() == 0

    def test_releasing_an_untracked_connection_is_harmless(self):
        """Handlers without a lifecycle entry can still clean up."""
        ServerLifecycle().release_connection(threading.Thread())

    def test_in_flight_clients_are_sorted(self):
        """Peers are reported in a stable order."""
        lifecycle = ServerLifecycle()
        for client in ("10.0.0.2:7000", "10.0.0.1:7001", "10.0.0.1:7000"):
            lifecycle.track_connection(threading.Thread(), client)

        assert lifecycle.in_flight_clients() == [
            "10.0.0.1:7000",
            "10.0.0.1:7001",
            "10.0.0.2:7000",
        ]
        assert lifecycle.in_flight_count() == 3


class TestWaitForConnections:
    """The grace period spent waiting for in-flight connections."""

    def test_nothing_in_flight_drains_immediately(self, caplog):
        """With no open connections shutdown proceeds at once."""
        lifecycle = ServerLifecycle()
        with caplog.at_level(logging.INFO):
            assert lifecycle.wait_for_connections(timeout=1.0) is True
        assert [r.event for r in drain_events(caplog)] == ["drain_complete"]

    def test_waits_for_a_slow_response(self):
        """A connection finishing inside the grace period is awaited."""
        lifecycle = ServerLifecycle()
        answered = threading.Event()

        def slow_cgi_response():
            time.sleep(0.2)
            answered.set()

        thread = threading.Thread(target=slow_cgi_response)
        lifecycle.track_connection(thread, "127.0.0.1:50002")
        thread.start()

        assert lifecycle.wait_for_connections(timeout=2.0) is True
        assert answered.is_set()

    def test_grace_period_expiry_reports_open_clients(self, caplog, release):
        """Connections outliving the grace period are named in the warning."""
        lifecycle = ServerLifecycle()
        start_connection(lifecycle, "127.0.0.1:50004", release)
        start_connection(lifecycle, "127.0.0.1:50003", release)

        with caplog.at_level(logging.WARNING):
            started = time.monotonic()
            assert lifecycle.wait_for_connections(timeout=0.3) is False
            elapsed = time.monotonic() - started

        assert 0.2 < elapsed < 1.5
        (timeout_record,) = drain_events(caplog)
        assert timeout_record.event == "drain_timeout"
        assert timeout_record.remaining_workers == 2
        assert timeout_record.clients == ["127.0.0.1:50003", "127.0.0.1:50004"]

    def test_finished_handlers_are_pruned(self):
        """Handlers that exited without releasing do not hold up shutdown."""
        lifecycle = ServerLifecycle()
        thread = threading.Thread(target=lambda: None)
        thread.start()
        thread.join()
        lifecycle.track_connection(thread, "127.0.0.1:50005")

        assert lifecycle.wait_for_connections(timeout=0.1) is True
        assert lifecycle.in_flight_count() == 0


class TestServerConfig:
    """Tests for ServerConfig dataclass."""

    def test_config_defaults(self):
        """Defaults match the classic spsrv configuration."""
        config = ServerConfig()
        assert config.port == 300
        assert config.hostname == "localhost"
        assert config.home_root == "/home"
        assert config.user_dir == "public_spartan"
        assert config.dirlist_enable is True
        assert config.shutdown_grace_seconds == 30

    def test_config_with_custom_values(self):
        """ServerConfig accepts custom grace and CGI timeout values."""
        config = ServerConfig(cgi_timeout=2.5, shutdown_grace_seconds=20)
        assert config.cgi_timeout == 2.5
        assert config.shutdown_grace_seconds == 20
