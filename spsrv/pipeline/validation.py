"""Request line policy checks: virtual host and path traversal."""

from typing import Optional, Tuple

from spsrv.bootstrap.config import ServerConfig
from spsrv.domain.response_builders import host_mismatch_response, traversal_response
from spsrv.domain.spartan_types import SpartanResponse


def user_subdomain(host: str, config: ServerConfig) -> str:
    """Return the user label of a ``<user>.<hostname>`` host, or ``""``."""
    if not (config.user_dir_enable and config.user_subdomains and config.hostname):
        return ""
    suffix = "." + config.hostname
    if not host.endswith(suffix):
        return ""
    label = host[: -len(suffix)]
    # Nested subdomains such as a.b.<hostname> do not name a user.
    if not label or "." in label or "/" in label:
        return ""
    return label


def enforce_host(
    host: str, config: ServerConfig
) -> Tuple[str, Optional[SpartanResponse]]:
    """Check the host token, returning the implicit user label or an error."""
    if not config.hostname or host == config.hostname:
        return "", None
    label = user_subdomain(host, config)
    if label:
        return label, None
    return "", host_mismatch_response()


def enforce_safe_path(path: str) -> Optional[SpartanResponse]:
    """Reject any path containing ``..`` before it reaches the filesystem."""
    if ".." in path:
        return traversal_response()
    return None


def validate_request(
    host: str, path: str, config: ServerConfig
) -> Tuple[str, Optional[SpartanResponse]]:
    """Return the implicit user label, or an error response for bad requests."""
    vhost, host_error = enforce_host(host, config)
    if host_error is not None:
        return "", host_error
    path_error = enforce_safe_path(path)
    if path_error is not None:
        return "", path_error
    return vhost, None
