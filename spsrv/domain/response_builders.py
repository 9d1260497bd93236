"""Pure Spartan response builders."""

from spsrv.domain.spartan_types import GEMTEXT_MIME, SpartanResponse, Status


def success_response(meta: str, body: bytes) -> SpartanResponse:
    """Return a status 2 response carrying the content type as meta."""
    return SpartanResponse(Status.SUCCESS, meta, body)


def gemtext_response(body: bytes) -> SpartanResponse:
    """Return a success response typed as gemtext."""
    return success_response(GEMTEXT_MIME, body)


def redirect_response(target: str) -> SpartanResponse:
    """Return a status 3 response pointing at ``target``."""
    return SpartanResponse(Status.REDIRECT, target)


def client_error_response(message: str) -> SpartanResponse:
    """Return a status 4 response with a human readable message."""
    return SpartanResponse(Status.CLIENT_ERROR, message)


def server_error_response(message: str) -> SpartanResponse:
    """Return a status 5 response with a human readable message."""
    return SpartanResponse(Status.SERVER_ERROR, message)


def request_not_valid_response() -> SpartanResponse:
    return client_error_response("Request not valid")


def bad_request_response() -> SpartanResponse:
    return client_error_response("Bad request")


def request_too_long_response() -> SpartanResponse:
    return client_error_response("Request too long")


def host_mismatch_response() -> SpartanResponse:
    return client_error_response("No proxying to other hosts!")


def traversal_response() -> SpartanResponse:
    return client_error_response("Stop it with your directory traversal technique!")


def forbidden_response() -> SpartanResponse:
    return client_error_response("Forbidden path")


def data_too_large_response() -> SpartanResponse:
    return client_error_response("Data block too large")


def incomplete_data_response() -> SpartanResponse:
    return client_error_response("Incomplete data block")


def unwanted_data_response() -> SpartanResponse:
    return client_error_response("Unwanted input data block received")


def not_found_response() -> SpartanResponse:
    return client_error_response("Not found")


def unreadable_response() -> SpartanResponse:
    return server_error_response("Resource could not be read")


def listing_error_response() -> SpartanResponse:
    return server_error_response("Error generating directory listing")


def cgi_timeout_response() -> SpartanResponse:
    return client_error_response("CGI process timed out!")


def cgi_error_response() -> SpartanResponse:
    return client_error_response("CGI error")


def cgi_output_response(output: bytes) -> SpartanResponse:
    """Wrap validated CGI output so it is forwarded byte-for-byte."""
    return SpartanResponse(Status.SUCCESS, "", verbatim=output)


def internal_error_response() -> SpartanResponse:
    return server_error_response("Internal server error")


def draining_response() -> SpartanResponse:
    """Produce a status 5 response indicating the server is shutting down."""
    return server_error_response("Server is shutting down")
