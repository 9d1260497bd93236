"""Spartan request reading and response writing."""

import logging
import socket
from typing import Optional, Tuple

from spsrv.domain.correlation_id import CorrelationLoggerAdapter
from spsrv.domain.spartan_types import SpartanResponse

IO_LOGGER = CorrelationLoggerAdapter(logging.getLogger("spsrv.io"), {})

RECV_SIZE = 4096
DISCARD_TIMEOUT_SECONDS = 1.0


class MalformedRequest(ValueError):
    """Raised when the request line does not follow the Spartan grammar."""


class RequestLineTooLong(ValueError):
    """Raised when no line terminator arrives within the configured limit."""


class DataBlockTooLarge(ValueError):
    """Raised when the declared data length exceeds the configured ceiling."""


class IncompleteDataBlock(ValueError):
    """Raised when the peer closes before the declared data block arrives."""


def read_request_line(
    client_socket: socket.socket, max_length: int
) -> Tuple[Optional[bytes], bytes]:
    """Read one ``\\n``-terminated line, returning it and any bytes after it.

    Returns ``(None, b"")`` when the peer closes without sending anything.
    The trailing ``\\r`` is stripped and does not count towards the limit.
    """
    buffer = b""
    while b"\n" not in buffer:
        if len(buffer) > max_length + 1:
            raise RequestLineTooLong
        chunk = client_socket.recv(RECV_SIZE)
        if not chunk:
            if not buffer:
                return None, b""
            raise MalformedRequest("Connection closed mid request line")
        buffer += chunk

    line, remainder = buffer.split(b"\n", 1)
    if line.endswith(b"\r"):
        line = line[:-1]
    if len(line) > max_length:
        raise RequestLineTooLong
    return line, remainder


def parse_request_line(line: bytes) -> Tuple[str, str, int]:
    """Split ``<host> <path> <data-length>`` into its three fields."""
    try:
        text = line.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise MalformedRequest("Request line is not valid UTF-8") from exc

    parts = text.split(" ")
    if len(parts) != 3:
        raise MalformedRequest("Request line must have exactly three fields")
    host, path, length_token = parts
    if not (length_token.isascii() and length_token.isdigit()):
        raise MalformedRequest("Data length is not a number")
    return host, path, int(length_token)


def read_data_block(
    client_socket: socket.socket,
    remainder: bytes,
    data_length: int,
    max_data_bytes: int,
) -> bytes:
    """Read exactly ``data_length`` bytes, starting from already buffered bytes."""
    if data_length > max_data_bytes:
        raise DataBlockTooLarge
    data = remainder
    while len(data) < data_length:
        chunk = client_socket.recv(min(RECV_SIZE, data_length - len(data)))
        if not chunk:
            raise IncompleteDataBlock
        data += chunk
    if IO_LOGGER.logger.isEnabledFor(logging.DEBUG):
        IO_LOGGER.debug(
            "Data block received",
            extra={"event": "data_block_received", "data_length": data_length},
        )
    return data[:data_length]


def send_response(client_socket: socket.socket, response: SpartanResponse) -> None:
    """Serialize and send the response over the socket."""
    payload = response.to_bytes()
    client_socket.sendall(payload)
    IO_LOGGER.debug(
        "Sent response",
        extra={
            "event": "response_sent",
            "status": int(response.status),
            "meta": response.meta,
            "bytes_out": len(payload),
        },
    )


def discard_unread_input(
    client_socket: socket.socket,
    limit: int,
    timeout: float = DISCARD_TIMEOUT_SECONDS,
) -> None:
    """Half-close the socket and read what the peer sent before it is closed.

    Closing with unread bytes makes the kernel reset the connection, which
    can destroy a reply that was already written. Reading stops at EOF, after
    ``limit`` bytes, or when ``timeout`` expires.
    """
    discarded = 0
    try:
        client_socket.shutdown(socket.SHUT_WR)
        client_socket.settimeout(timeout)
        while discarded < limit:
            chunk = client_socket.recv(RECV_SIZE)
            if not chunk:
                break
            discarded += len(chunk)
    except OSError as error:
        IO_LOGGER.debug(
            "Stopped discarding client input",
            extra={"event": "discard_stopped", "error_type": type(error).__name__},
        )
    if discarded and IO_LOGGER.logger.isEnabledFor(logging.DEBUG):
        IO_LOGGER.debug(
            "Discarded unread client input",
            extra={"event": "input_discarded", "bytes_in": discarded},
        )
