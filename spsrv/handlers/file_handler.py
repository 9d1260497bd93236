"""Static file serving with directory listing and redirect fallbacks."""

import logging
import os
from typing import Optional

from spsrv.bootstrap.config import ServerConfig
from spsrv.domain.content_type import content_type_for
from spsrv.domain.correlation_id import CorrelationLoggerAdapter
from spsrv.domain.response_builders import (
    gemtext_response,
    listing_error_response,
    not_found_response,
    redirect_response,
    success_response,
    unreadable_response,
)
from spsrv.domain.spartan_types import (
    GEMTEXT_EXTENSION,
    GEMTEXT_MIME,
    INDEX_DOCUMENT,
    SpartanResponse,
)
from spsrv.handlers.dirlist import generate_directory_listing

FILE_LOGGER = CorrelationLoggerAdapter(logging.getLogger("spsrv.handlers.file"), {})


def content_response(path: str, content: bytes) -> SpartanResponse:
    """Build a success response, typing gemtext by extension and the rest by content."""
    if path.endswith(GEMTEXT_EXTENSION) or path.endswith("/"):
        meta = GEMTEXT_MIME
    else:
        meta = content_type_for(path, content)
    FILE_LOGGER.info(
        "Serving content",
        extra={"event": "file_served", "path": path, "meta": meta},
    )
    return success_response(meta, content)


def listing_response(
    requested_path: str, absolute_path: str, config: ServerConfig
) -> Optional[SpartanResponse]:
    """Return a listing when a missing index sits in an existing directory."""
    if not config.dirlist_enable:
        return None
    if os.path.basename(absolute_path) != INDEX_DOCUMENT:
        return None
    if os.path.lexists(absolute_path):
        return None
    directory = os.path.dirname(absolute_path)
    if not os.path.isdir(directory):
        return None
    FILE_LOGGER.info(
        "Generating directory listing",
        extra={"event": "dirlist_started", "path": directory},
    )
    try:
        listing = generate_directory_listing(requested_path, directory, config)
    except OSError as error:
        FILE_LOGGER.error(
            "Directory listing failed",
            extra={
                "event": "dirlist_failed",
                "path": directory,
                "error_type": type(error).__name__,
            },
        )
        return listing_error_response()
    return gemtext_response(listing)


def unreadable_fallback(requested_path: str, absolute_path: str) -> SpartanResponse:
    """Redirect directories to their slash form; anything else is a server error."""
    if os.path.exists(absolute_path + "/"):
        FILE_LOGGER.info(
            "Redirecting directory to trailing slash",
            extra={"event": "directory_redirect", "path": requested_path},
        )
        return redirect_response(requested_path + "/")
    FILE_LOGGER.error(
        "Resource could not be read",
        extra={"event": "file_unreadable", "path": absolute_path},
    )
    return unreadable_response()


def serve_file(
    requested_path: str, absolute_path: str, config: ServerConfig
) -> SpartanResponse:
    """Serve ``absolute_path`` for a request of ``requested_path``.

    A missing ``index.gmi`` inside an existing directory becomes a listing
    when listings are enabled. Opening a directory (or failing to read an
    opened file) redirects to the slash-terminated path when that names a
    directory.
    """
    if FILE_LOGGER.logger.isEnabledFor(logging.DEBUG):
        FILE_LOGGER.debug(
            "File read started",
            extra={"event": "file_read_started", "path": absolute_path},
        )
    try:
        file_handle = open(absolute_path, "rb")  # pylint: disable=consider-using-with
    except IsADirectoryError:
        return unreadable_fallback(requested_path, absolute_path)
    except OSError as error:
        response = listing_response(requested_path, absolute_path, config)
        if response is not None:
            return response
        FILE_LOGGER.info(
            "File not found",
            extra={
                "event": "file_not_found",
                "path": absolute_path,
                "error_type": type(error).__name__,
            },
        )
        return not_found_response()

    with file_handle:
        try:
            content = file_handle.read()
        except OSError:
            return unreadable_fallback(requested_path, absolute_path)

    return content_response(absolute_path, content)
