"""Worker thread logic for handling one client connection."""

import logging
import socket
import threading
import time
from dataclasses import dataclass
from typing import Optional

from spsrv.domain.correlation_id import CorrelationLoggerAdapter, connection_scope
from spsrv.domain.path_resolver import ForbiddenPath, resolve_path
from spsrv.domain.response_builders import (
    bad_request_response,
    data_too_large_response,
    draining_response,
    forbidden_response,
    incomplete_data_response,
    internal_error_response,
    request_not_valid_response,
    request_too_long_response,
)
from spsrv.domain.spartan_types import SpartanRequest, SpartanResponse
from spsrv.pipeline.io import (
    DataBlockTooLarge,
    IncompleteDataBlock,
    MalformedRequest,
    RequestLineTooLong,
    discard_unread_input,
    parse_request_line,
    read_data_block,
    read_request_line,
    send_response,
)
from spsrv.pipeline.router import route_request
from spsrv.pipeline.validation import validate_request
from spsrv.transport.context import WorkerContext

WORKER_LOGGER = CorrelationLoggerAdapter(
    logging.getLogger("spsrv.transport.worker"), {}
)


class RequestRejected(Exception):
    """Carries the error response for a request that failed before routing."""

    def __init__(self, response: SpartanResponse, event: str) -> None:
        super().__init__(response.meta)
        self.response = response
        self.event = event


def read_request(
    client_socket: socket.socket,
    client_address: tuple[str, int],
    context: WorkerContext,
) -> Optional[SpartanRequest]:
    """Read, parse and validate one request.

    Returns ``None`` when the client disconnected without sending anything
    and raises ``RequestRejected`` for requests that must not be routed.
    """
    config = context.config
    try:
        line, remainder = read_request_line(client_socket, config.max_request_line)
    except RequestLineTooLong as error:
        raise RequestRejected(
            request_too_long_response(), "request_too_long"
        ) from error
    except MalformedRequest as error:
        raise RequestRejected(
            request_not_valid_response(), "request_incomplete"
        ) from error
    if line is None:
        return None

    try:
        host, path, data_length = parse_request_line(line)
    except MalformedRequest as error:
        raise RequestRejected(bad_request_response(), "malformed_request") from error

    WORKER_LOGGER.info(
        "Incoming request",
        extra={
            "event": "request_line_parsed",
            "host": host,
            "path": path,
            "data_length": data_length,
        },
    )

    vhost, policy_error = validate_request(host, path, config)
    if policy_error is not None:
        raise RequestRejected(policy_error, "policy_violation")

    try:
        data = b""
        if data_length:
            data = read_data_block(
                client_socket, remainder, data_length, config.max_data_bytes
            )
    except DataBlockTooLarge as error:
        raise RequestRejected(data_too_large_response(), "data_too_large") from error
    except IncompleteDataBlock as error:
        raise RequestRejected(
            incomplete_data_response(), "data_incomplete"
        ) from error

    return SpartanRequest(host, path, data_length, data, vhost, client_address)


def process_request(request: SpartanRequest, context: WorkerContext) -> SpartanResponse:
    """Resolve the request path and produce the single response."""
    try:
        resolved = resolve_path(request.path, request.vhost, context.config)
    except ForbiddenPath:
        WORKER_LOGGER.warning(
            "Forbidden path access attempt",
            extra={"event": "forbidden_path", "path": request.path},
        )
        return forbidden_response()
    return route_request(request, resolved, context.config)


def _drain_if_requested(context: WorkerContext, client_socket: socket.socket) -> bool:
    lifecycle = context.lifecycle
    if lifecycle is None or not lifecycle.is_draining():
        return False
    send_response(client_socket, draining_response())
    config = context.config
    discard_unread_input(client_socket, config.max_request_line + config.max_data_bytes)
    return True


@dataclass
class _WorkerResources:
    thread: threading.Thread
    client_socket: socket.socket
    client_addr_str: str


def _cleanup_worker(context: WorkerContext, resources: _WorkerResources) -> None:
    if context.lifecycle is not None:
        context.lifecycle.release_connection(resources.thread)

    try:
        resources.client_socket.shutdown(socket.SHUT_WR)
    except OSError:
        pass
    resources.client_socket.close()

    WORKER_LOGGER.debug(
        "Closed connection",
        extra={"event": "socket_closed", "client": resources.client_addr_str},
    )


def _send_best_effort(client_socket: socket.socket, response: SpartanResponse) -> None:
    try:
        send_response(client_socket, response)
    except OSError:
        pass


def handle_client(
    client_socket: socket.socket,
    client_address: tuple[str, int],
    context: WorkerContext,
) -> None:
    """Serve exactly one request on ``client_socket`` and close it."""
    current_thread = threading.current_thread()
    client_addr_str = f"{client_address[0]}:{client_address[1]}"
    if context.lifecycle is not None:
        context.lifecycle.track_connection(current_thread, client_addr_str)
    resources = _WorkerResources(current_thread, client_socket, client_addr_str)
    with connection_scope():
        _serve_connection(client_address, context, resources)


def _serve_connection(
    client_address: tuple[str, int],
    context: WorkerContext,
    resources: _WorkerResources,
) -> None:
    client_socket = resources.client_socket
    client_addr_str = resources.client_addr_str
    started = time.monotonic()

    try:
        if _drain_if_requested(context, client_socket):
            return

        try:
            request = read_request(client_socket, client_address, context)
        except RequestRejected as rejection:
            WORKER_LOGGER.warning(
                "Request rejected",
                extra={
                    "event": rejection.event,
                    "client": client_addr_str,
                    "meta": rejection.response.meta,
                },
            )
            send_response(client_socket, rejection.response)
            return

        if request is None:
            if WORKER_LOGGER.logger.isEnabledFor(logging.DEBUG):
                WORKER_LOGGER.debug(
                    "Client disconnected before sending a request",
                    extra={"event": "client_disconnected", "client": client_addr_str},
                )
            return

        response = process_request(request, context)
        send_response(client_socket, response)
        WORKER_LOGGER.info(
            "Request complete",
            extra={
                "event": "request_complete",
                "client": client_addr_str,
                "path": request.path,
                "status": int(response.status),
                "duration_ms": int((time.monotonic() - started) * 1000),
            },
        )
    except (ConnectionError, TimeoutError, OSError) as error:
        WORKER_LOGGER.error(
            "Error handling client connection",
            extra={
                "event": "connection_error",
                "client": client_addr_str,
                "error_type": type(error).__name__,
            },
        )
    except Exception as error:  # pylint: disable=broad-except
        WORKER_LOGGER.error(
            "Unexpected error in worker",
            extra={
                "event": "worker_error",
                "client": client_addr_str,
                "error_type": type(error).__name__,
            },
            exc_info=True,
        )
        _send_best_effort(client_socket, internal_error_response())
    finally:
        _cleanup_worker(context, resources)
