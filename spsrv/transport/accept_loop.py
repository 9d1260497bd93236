"""Main connection acceptance loop."""

import logging
import socket
import threading

from spsrv.bootstrap.config import ServerConfig
from spsrv.bootstrap.socket_factory import create_server_socket
from spsrv.domain.correlation_id import CorrelationLoggerAdapter
from spsrv.domain.response_builders import draining_response
from spsrv.lifecycle.state import ServerLifecycle
from spsrv.pipeline.io import discard_unread_input, send_response
from spsrv.transport.context import WorkerContext
from spsrv.transport.worker import handle_client

ACCEPT_LOGGER = CorrelationLoggerAdapter(
    logging.getLogger("spsrv.transport.accept"), {}
)


def _reject_while_draining(client_socket: socket.socket, config: ServerConfig) -> None:
    try:
        send_response(client_socket, draining_response())
        discard_unread_input(
            client_socket, config.max_request_line + config.max_data_bytes
        )
    except OSError:
        pass
    finally:
        client_socket.close()


def dispatch_client(
    client_socket: socket.socket,
    client_address: tuple[str, int],
    handler_context: WorkerContext,
) -> threading.Thread:
    """Start a dedicated handler thread for a newly accepted connection."""
    client_addr_str = f"{client_address[0]}:{client_address[1]}"
    ACCEPT_LOGGER.info(
        "Connection accepted",
        extra={"event": "client_accepted", "client": client_addr_str},
    )
    thread = threading.Thread(
        target=handle_client,
        args=(client_socket, client_address, handler_context),
        daemon=False,
    )
    thread.start()
    return thread


def serve_forever(
    server_socket: socket.socket, config: ServerConfig, lifecycle: ServerLifecycle
) -> None:
    """Accept connections until the lifecycle asks the server to stop."""
    handler_context = WorkerContext(config=config, lifecycle=lifecycle)
    while True:
        try:
            client_socket, client_address = server_socket.accept()
        except socket.timeout:
            if lifecycle.should_stop():
                break
            continue
        except OSError as error:
            if lifecycle.should_stop():
                break
            ACCEPT_LOGGER.error(
                "Socket accept failed",
                extra={"event": "accept_error", "error_type": type(error).__name__},
            )
            continue

        if lifecycle.is_draining():
            _reject_while_draining(client_socket, config)
            continue

        dispatch_client(client_socket, client_address, handler_context)


def run_server(config: ServerConfig, lifecycle: ServerLifecycle) -> None:
    """Create the listening socket and serve until shutdown completes."""
    server_socket = create_server_socket(config)

    ACCEPT_LOGGER.info(
        "Listening for connections",
        extra={
            "event": "server_listening",
            "host": config.listen_address or "*",
            "port": config.port,
        },
    )

    try:
        serve_forever(server_socket, config, lifecycle)
    finally:
        server_socket.close()
        ACCEPT_LOGGER.info(
            "Waiting for active connections to complete",
            extra={
                "event": "shutdown_waiting",
                "shutdown_grace_seconds": config.shutdown_grace_seconds,
            },
        )
        lifecycle.wait_for_connections(config.shutdown_grace_seconds)
        ACCEPT_LOGGER.info(
            "Server shutdown complete", extra={"event": "server_stopped"}
        )
