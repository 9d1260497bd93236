"""Shared Spartan protocol type definitions to avoid circular imports."""

from dataclasses import dataclass
from enum import IntEnum
from typing import Optional

GEMTEXT_EXTENSION = ".gmi"
GEMTEXT_MIME = "text/gemini; lang=en; charset=utf-8"
INDEX_DOCUMENT = "index.gmi"


class Status(IntEnum):
    """Single-digit Spartan response status classes."""

    SUCCESS = 2
    REDIRECT = 3
    CLIENT_ERROR = 4
    SERVER_ERROR = 5


@dataclass(frozen=True)
class SpartanRequest:
    """A parsed request line plus its data block.

    ``vhost`` is the user label taken from a ``<user>.<hostname>`` host token
    and is empty for every other request.
    """

    host: str
    path: str
    data_length: int
    data: bytes = b""
    vhost: str = ""
    peer: tuple[str, int] = ("", 0)


@dataclass(frozen=True)
class ResolvedPath:
    """Filesystem location a request path maps to."""

    absolute_path: str
    relative_path: str
    root: str
    user: str = ""


@dataclass
class SpartanResponse:
    """Represents a response to be written to a client.

    ``verbatim`` holds pre-framed output (from a CGI script) that is written
    as-is instead of a status line and body.
    """

    status: Status
    meta: str
    body: bytes = b""
    verbatim: Optional[bytes] = None

    def header_line(self) -> bytes:
        """Return the ``<status> <meta>\\r\\n`` line."""
        return f"{int(self.status)} {self.meta}\r\n".encode("utf-8")

    def to_bytes(self) -> bytes:
        """Serialize the response, dropping the body for non-success statuses."""
        if self.verbatim is not None:
            return self.verbatim
        if self.status == Status.SUCCESS:
            return self.header_line() + self.body
        return self.header_line()
