"""Integration tests covering traversal and host policy enforcement."""

import socket
from typing import TYPE_CHECKING

import pytest

from tests.utils.spartan import (
    parse_spartan_response,
    read_until_closed,
    send_raw,
    spartan_request,
)

if TYPE_CHECKING:
    from tests.conftest import ServerProcessInfo

pytestmark = pytest.mark.integration

TRAVERSAL = "Stop it with your directory traversal technique!"


@pytest.mark.parametrize(
    "path", ["/../etc/passwd", "/docs/../../etc/passwd", "/~alice/../bob/"]
)
def test_forbid_directory_traversal(
    server_process: "ServerProcessInfo", path: str
) -> None:
    """Any path containing a parent reference is refused."""
    host, port = server_process["host"], server_process["port"]
    response = spartan_request(host, port, path)

    assert response.status == 4
    assert response.meta == TRAVERSAL
    assert response.body == b""


def test_forbid_foreign_host(server_process: "ServerProcessInfo") -> None:
    """Requests for other hosts are not proxied."""
    host, port = server_process["host"], server_process["port"]
    response = spartan_request(host, port, "/", hostname="example.com")

    assert response.raw == b"4 No proxying to other hosts!\r\n"


def test_dotfiles_are_served_but_not_listed(
    server_process: "ServerProcessInfo",
) -> None:
    """Hidden files are excluded from listings only."""
    host, port = server_process["host"], server_process["port"]

    listing = spartan_request(host, port, "/docs/")
    hidden = spartan_request(host, port, "/docs/.hidden")

    assert b".hidden" not in listing.body
    assert hidden.status == 2
    assert hidden.body == b"hidden\n"


def test_malformed_request_line(server_process: "ServerProcessInfo") -> None:
    """Lines without three fields are bad requests."""
    host, port = server_process["host"], server_process["port"]

    assert send_raw(host, port, b"localhost /\r\n").raw == b"4 Bad request\r\n"
    assert send_raw(host, port, b"localhost / abc\r\n").raw == b"4 Bad request\r\n"


def test_unterminated_request_line(server_process: "ServerProcessInfo") -> None:
    """A request line cut short by EOF is not valid."""
    host, port = server_process["host"], server_process["port"]
    with socket.create_connection((host, port), timeout=5) as sock:
        sock.sendall(b"localhost / 0")
        sock.shutdown(socket.SHUT_WR)
        response = parse_spartan_response(read_until_closed(sock))

    assert response.raw == b"4 Request not valid\r\n"


def test_overlong_request_line(server_process: "ServerProcessInfo") -> None:
    """Request lines over the limit are rejected."""
    host, port = server_process["host"], server_process["port"]
    payload = b"localhost /" + b"a" * 1100 + b" 0\r\n"

    assert send_raw(host, port, payload).raw == b"4 Request too long\r\n"
