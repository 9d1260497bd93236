"""Gemtext directory listings."""

import logging
import operator
import os
import posixpath
import stat
from dataclasses import dataclass
from datetime import datetime
from urllib.parse import quote

from spsrv.bootstrap.config import ServerConfig
from spsrv.domain.correlation_id import CorrelationLoggerAdapter
from spsrv.domain.spartan_types import GEMTEXT_EXTENSION

DIRLIST_LOGGER = CorrelationLoggerAdapter(
    logging.getLogger("spsrv.handlers.dirlist"), {}
)

LISTING_HEADER = "# Directory listing\n\n"
LABEL_WIDTH = 40
TRUNCATED_WIDTH = 36
WORLD_READABLE = 0o444
# Characters a path segment may carry unescaped besides letters, digits and _.-~
SEGMENT_SAFE = "$&+,:;=@"
SIZE_UNITS = ("KiB", "MiB", "GiB", "TiB")
SORT_KEYS = {
    "name": operator.attrgetter("name"),
    "size": operator.attrgetter("size"),
    "time": operator.attrgetter("mtime"),
}


@dataclass(frozen=True)
class ListingEntry:
    """Directory entry metadata captured without following symlinks."""

    name: str
    size: int
    mtime: float
    mode: int

    @property
    def is_dir(self) -> bool:
        return stat.S_ISDIR(self.mode)


def format_size(entry: ListingEntry) -> str:
    """Render the fixed-width size column."""
    if entry.is_dir:
        return " " * 8
    if entry.size < 1024:
        return f"{entry.size:4d}   B"
    for power, unit in enumerate(SIZE_UNITS, start=1):
        if entry.size < 1024 << (10 * power):
            return f"{entry.size >> (10 * power):4d} {unit}"
    return "GIGANTIC"


def format_date(timestamp: float) -> str:
    """Render a modification time as ``Jan  2 2006``."""
    moment = datetime.fromtimestamp(timestamp)
    return f"{moment:%b} {moment.day:>2} {moment.year}"


def read_heading(directory: str, name: str) -> str:
    """Return the first ``# `` heading of a gemtext file, else ``name``."""
    try:
        with open(
            os.path.join(directory, name), encoding="utf-8", errors="replace"
        ) as document:
            for line in document:
                if line.startswith("# "):
                    return line[1:].strip()
    except OSError as error:
        DIRLIST_LOGGER.debug(
            "Heading could not be read",
            extra={
                "event": "heading_unreadable",
                "path": name,
                "error_type": type(error).__name__,
            },
        )
    return name


def display_name(name: str) -> str:
    """Make a file system name printable as UTF-8, replacing undecodable bytes."""
    return os.fsencode(name).decode("utf-8", errors="replace")


def format_label(entry: ListingEntry, directory: str, config: ServerConfig) -> str:
    """Render the human readable part of a listing line."""
    name = entry.name
    if (
        config.dirlist_titles
        and not entry.is_dir
        and posixpath.splitext(name)[1] == GEMTEXT_EXTENSION
    ):
        name = read_heading(directory, entry.name)
    name = display_name(name)
    if len(name) > LABEL_WIDTH:
        name = name[:TRUNCATED_WIDTH] + "..."
    if entry.is_dir:
        name += "/"
    size = format_size(entry)
    return f"{name:<{LABEL_WIDTH}}    {size}   {format_date(entry.mtime)}"


def parent_link(requested_path: str) -> str:
    """Return the ``..`` link target for a listed logical path."""
    trimmed = requested_path[:-1] if requested_path.endswith("/") else requested_path
    parent = posixpath.dirname(trimmed)
    return parent or "."


def scan_directory(directory: str) -> list[ListingEntry]:
    """Collect entries in name order."""
    entries = []
    with os.scandir(directory) as iterator:
        for item in iterator:
            info = item.stat(follow_symlinks=False)
            entries.append(
                ListingEntry(item.name, info.st_size, info.st_mtime, info.st_mode)
            )
    entries.sort(key=SORT_KEYS["name"])
    return entries


def sort_entries(
    entries: list[ListingEntry], sort_key: str, reverse: bool
) -> list[ListingEntry]:
    """Stable sort by name, size or time; equal keys keep name order."""
    key = SORT_KEYS.get(sort_key, SORT_KEYS["name"])
    return sorted(entries, key=key, reverse=reverse)


def is_listable(entry: ListingEntry) -> bool:
    """Dotfiles and entries that are not world readable are never listed."""
    if entry.name.startswith("."):
        return False
    return entry.mode & WORLD_READABLE == WORLD_READABLE


def generate_directory_listing(
    requested_path: str, directory: str, config: ServerConfig
) -> bytes:
    """Render a gemtext listing of ``directory`` reached via ``requested_path``.

    Raises ``OSError`` when the directory itself cannot be read; unreadable
    headings only fall back to file names.
    """
    entries = sort_entries(
        scan_directory(directory), config.dirlist_sort, config.dirlist_reverse
    )
    lines = [LISTING_HEADER]
    if requested_path not in ("", "/"):
        lines.append(f"=> {parent_link(requested_path)} ..\n")
    for entry in entries:
        if not is_listable(entry):
            continue
        link = quote(os.fsencode(entry.name), safe=SEGMENT_SAFE)
        if entry.is_dir:
            link += "/"
        lines.append(f"=> {link} {format_label(entry, directory, config)}\n")
    if DIRLIST_LOGGER.logger.isEnabledFor(logging.DEBUG):
        DIRLIST_LOGGER.debug(
            "Directory listing generated",
            extra={"event": "dirlist_generated", "path": requested_path},
        )
    return "".join(lines).encode("utf-8")
