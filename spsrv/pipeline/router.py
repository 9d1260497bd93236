"""Dispatch between CGI scripts and static files."""

import logging

from spsrv.bootstrap.config import ServerConfig
from spsrv.domain.correlation_id import CorrelationLoggerAdapter
from spsrv.domain.response_builders import unwanted_data_response
from spsrv.domain.spartan_types import ResolvedPath, SpartanRequest, SpartanResponse
from spsrv.handlers.cgi_handler import matching_cgi_prefix, run_cgi
from spsrv.handlers.file_handler import serve_file

ROUTER_LOGGER = CorrelationLoggerAdapter(logging.getLogger("spsrv.pipeline.router"), {})


def cgi_allowed(resolved: ResolvedPath, config: ServerConfig) -> bool:
    """User trees only run scripts when user directories and user CGI are on."""
    if not resolved.user:
        return True
    return config.user_cgi_enable and config.user_dir_enable


def route_request(
    request: SpartanRequest, resolved: ResolvedPath, config: ServerConfig
) -> SpartanResponse:
    """Route the request to the CGI gateway or the static file server."""
    prefix = matching_cgi_prefix(resolved.relative_path, config)
    if prefix is not None and cgi_allowed(resolved, config):
        if ROUTER_LOGGER.logger.isEnabledFor(logging.DEBUG):
            ROUTER_LOGGER.debug(
                "CGI prefix matched",
                extra={"event": "route_cgi", "path": resolved.relative_path},
            )
        response = run_cgi(request, resolved, config)
        if response is not None:
            return response

    if request.data_length != 0:
        ROUTER_LOGGER.info(
            "Data block sent to a static path",
            extra={
                "event": "unwanted_data",
                "path": request.path,
                "data_length": request.data_length,
            },
        )
        return unwanted_data_response()

    return serve_file(request.path, resolved.absolute_path, config)
