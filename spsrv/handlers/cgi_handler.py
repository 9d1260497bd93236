"""CGI script execution for requests under configured prefixes."""

import logging
import os
import signal
import stat
import subprocess
import time
from typing import Optional

from spsrv.bootstrap.config import ServerConfig
from spsrv.domain.correlation_id import CorrelationLoggerAdapter
from spsrv.domain.response_builders import (
    cgi_error_response,
    cgi_output_response,
    cgi_timeout_response,
)
from spsrv.domain.spartan_types import ResolvedPath, SpartanRequest, SpartanResponse

CGI_LOGGER = CorrelationLoggerAdapter(logging.getLogger("spsrv.handlers.cgi"), {})

WORLD_EXECUTABLE = 0o555
SERVER_PROTOCOL = "SPARTAN"
SERVER_SOFTWARE = "SPSRV"
GATEWAY_INTERFACE = "CGI/1.1"
STDERR_LOG_LIMIT = 2048


def matching_cgi_prefix(relative_path: str, config: ServerConfig) -> Optional[str]:
    """Return the first configured CGI prefix ``relative_path`` starts with."""
    for prefix in config.cgi_paths:
        if relative_path.startswith(prefix):
            return prefix
    return None


def is_executable_script(script_path: str) -> bool:
    """A script must be a regular file carrying every ``0o555`` bit."""
    try:
        info = os.stat(script_path)
    except OSError:
        return False
    if not stat.S_ISREG(info.st_mode):
        return False
    return info.st_mode & WORLD_EXECUTABLE == WORLD_EXECUTABLE


def build_cgi_environment(
    config: ServerConfig, request: SpartanRequest, script_path: str
) -> dict[str, str]:
    """Return the complete environment for one script invocation."""
    return {
        "GATEWAY_INTERFACE": GATEWAY_INTERFACE,
        "SCRIPT_PATH": script_path,
        "REQUEST_METHOD": "",
        "SERVER_NAME": config.hostname,
        "SERVER_PORT": str(config.port),
        "SERVER_PROTOCOL": SERVER_PROTOCOL,
        "SERVER_SOFTWARE": SERVER_SOFTWARE,
        "REMOTE_ADDR": request.peer[0],
    }


def has_valid_header(output: bytes) -> bool:
    """Check that the first whitespace separated token of the output is numeric."""
    first_line = output.split(b"\n", 1)[0].rstrip(b"\r")
    fields = first_line.split(None, 1)
    return bool(fields) and fields[0].isdigit()


def _kill_process_group(process: subprocess.Popen) -> None:
    """Kill the script and anything it spawned, which may hold its pipes open."""
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass


def _decode_stderr(stderr: Optional[bytes]) -> str:
    if not stderr:
        return ""
    return stderr[:STDERR_LOG_LIMIT].decode("utf-8", errors="replace")


def run_cgi(
    request: SpartanRequest, resolved: ResolvedPath, config: ServerConfig
) -> Optional[SpartanResponse]:
    """Execute the script ``resolved`` points at and return its response.

    Returns ``None`` when the script is missing or not executable so the
    caller can fall back to static serving. Timeouts, spawn failures,
    non-zero exits and malformed output produce terminal error responses.
    """
    script_path = resolved.absolute_path
    if not is_executable_script(script_path):
        CGI_LOGGER.info(
            "CGI script not executable, declining",
            extra={"event": "cgi_declined", "script": script_path},
        )
        return None

    environment = build_cgi_environment(config, request, script_path)
    CGI_LOGGER.info(
        "Running CGI script",
        extra={"event": "cgi_started", "script": script_path},
    )
    started = time.monotonic()
    try:
        with subprocess.Popen(
            [script_path],
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            env=environment,
            start_new_session=True,
        ) as process:
            try:
                stdout, stderr = process.communicate(
                    request.data, timeout=config.cgi_timeout
                )
            except subprocess.TimeoutExpired:
                _kill_process_group(process)
                process.communicate()
                CGI_LOGGER.warning(
                    "Terminated CGI process after exceeding runtime limit",
                    extra={
                        "event": "cgi_timeout",
                        "script": script_path,
                        "timeout_seconds": config.cgi_timeout,
                    },
                )
                return cgi_timeout_response()
    except OSError as error:
        CGI_LOGGER.error(
            "Unable to start CGI script",
            extra={
                "event": "cgi_spawn_failed",
                "script": script_path,
                "error_type": type(error).__name__,
            },
        )
        return cgi_error_response()

    duration_ms = int((time.monotonic() - started) * 1000)
    if process.returncode != 0:
        CGI_LOGGER.error(
            "CGI script exited with an error",
            extra={
                "event": "cgi_failed",
                "script": script_path,
                "returncode": process.returncode,
                "stderr": _decode_stderr(stderr),
                "duration_ms": duration_ms,
            },
        )
        return cgi_error_response()

    if not has_valid_header(stdout):
        CGI_LOGGER.error(
            "CGI output does not start with a valid response header",
            extra={
                "event": "cgi_malformed_output",
                "script": script_path,
                "duration_ms": duration_ms,
            },
        )
        return cgi_error_response()

    CGI_LOGGER.info(
        "Returning CGI output",
        extra={
            "event": "cgi_complete",
            "script": script_path,
            "bytes_out": len(stdout),
            "duration_ms": duration_ms,
        },
    )
    return cgi_output_response(stdout)
