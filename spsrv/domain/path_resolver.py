"""Mapping of request paths onto the content root and user home trees."""

import os
import posixpath

from spsrv.bootstrap.config import ServerConfig
from spsrv.domain.spartan_types import INDEX_DOCUMENT, ResolvedPath


class ForbiddenPath(Exception):
    """Raised when a requested path escapes its configured root."""


def _is_contained(root: str, target: str) -> bool:
    return target == root or target.startswith(root.rstrip(os.sep) + os.sep)


def _check_username(user: str) -> None:
    if user in (".", "..") or "/" in user or "\x00" in user:
        raise ForbiddenPath


def user_root(config: ServerConfig, user: str) -> str:
    """Return the content root of ``user``'s public directory."""
    _check_username(user)
    return os.path.normpath(
        os.path.join(os.path.abspath(config.home_root), user, config.user_dir)
    )


def complete_index(path: str) -> str:
    """Append the index document to directory-style paths."""
    if path == "" or path.endswith("/"):
        return path + INDEX_DOCUMENT
    return path


def _clean_relative(path: str) -> str:
    cleaned = posixpath.normpath("/" + path).lstrip("/")
    return "" if cleaned == "." else cleaned


def _split_tilde(path: str) -> tuple[str, str]:
    user, _, rest = path[2:].partition("/")
    return user, "/" + rest if rest or path.endswith("/") else "."


def resolve_path(requested_path: str, vhost: str, config: ServerConfig) -> ResolvedPath:
    """Resolve ``requested_path`` to a file beneath a trusted root.

    A non-empty ``vhost`` names the user whose tree serves the request
    directly; otherwise ``/~user/...`` paths select a user tree when user
    directories are enabled, and everything else maps under ``root_dir``.
    The ``..`` check happens before this is called; the containment check
    here only guards against what normalisation might still let through.
    """
    if "\x00" in requested_path:
        raise ForbiddenPath

    user = ""
    path = requested_path
    if vhost:
        user = vhost
    elif config.user_dir_enable and requested_path.startswith("/~"):
        user, path = _split_tilde(requested_path)

    if user:
        root = user_root(config, user)
    else:
        root = os.path.normpath(os.path.abspath(config.root_dir))
        path = requested_path

    relative_path = _clean_relative(complete_index(path))
    absolute_path = os.path.normpath(os.path.join(root, relative_path))
    if not _is_contained(root, absolute_path):
        raise ForbiddenPath
    return ResolvedPath(absolute_path, relative_path, root, user)
