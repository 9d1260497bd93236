"""Shared pytest fixtures for integration and unit tests."""

from __future__ import annotations

import subprocess
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Generator, TypedDict

import pytest

from spsrv.bootstrap.config import ServerConfig
from tests.utils.content import build_content_tree
from tests.utils.spartan import reserve_port, wait_for_port

if TYPE_CHECKING:
    from _pytest.tmpdir import TempPathFactory

PROJECT_ROOT = Path(__file__).resolve().parent.parent
SERVER_ENTRYPOINT = PROJECT_ROOT / "main.py"


@pytest.fixture()
def content_tree(tmp_path: Path) -> tuple[Path, Path]:
    """Provide a populated content root and home root."""

    return build_content_tree(tmp_path)


@pytest.fixture()
def server_config(content_tree: tuple[Path, Path]) -> ServerConfig:
    """Configuration pointing at the temporary content tree."""

    root, home = content_tree
    return ServerConfig(
        port=3000,
        hostname="localhost",
        root_dir=str(root),
        home_root=str(home),
        user_dir_enable=True,
        user_subdomains=True,
        cgi_paths=("cgi/",),
        cgi_timeout=1.0,
    )


CONFIG_TEMPLATE = """\
Port = {port}
Hostname = "localhost"
ListenAddress = "127.0.0.1"
RootDir = "{root}"
HomeRoot = "{home}"
UserDirEnable = true
UserSubdomains = true
DirlistEnable = true
DirlistSort = "name"
CGIPaths = ["cgi/"]
CGITimeout = 1.0
ShutdownGraceSeconds = 5
"""


class ServerProcessInfo(TypedDict):
    """Metadata describing a running server fixture instance."""

    host: str
    port: int
    root: Path
    home: Path
    process: subprocess.Popen[bytes]
    log_file: Path


def _launch_server(
    host: str, port: int, base: Path
) -> Generator[ServerProcessInfo, None, None]:
    root, home = build_content_tree(base)
    config_path = base / "spsrv.conf"
    config_path.write_text(CONFIG_TEMPLATE.format(port=port, root=root, home=home))
    log_file = base / "server.log"
    args = [
        sys.executable,
        str(SERVER_ENTRYPOINT),
        "--config",
        str(config_path),
        "--log-destination",
        str(log_file),
    ]

    with subprocess.Popen(
        args,
        cwd=PROJECT_ROOT,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
    ) as process:
        try:
            wait_for_port(host, port)
        except Exception:
            process.terminate()
            stdout, stderr = process.communicate(timeout=5)
            print(f"\nServer stdout:\n{stdout!r}")
            print(f"\nServer stderr:\n{stderr!r}")
            raise

        yield {
            "host": host,
            "port": port,
            "root": root,
            "home": home,
            "process": process,
            "log_file": log_file,
        }

        if process.poll() is None:
            process.terminate()
        try:
            process.wait(timeout=10)
        except subprocess.TimeoutExpired:
            process.kill()


@pytest.fixture(name="server_process")
def _server_process(
    tmp_path_factory: "TempPathFactory",
) -> Generator[ServerProcessInfo, None, None]:
    """Launch the Spartan server in a background process for integration tests."""

    host = "127.0.0.1"
    port = reserve_port(host)
    base = tmp_path_factory.mktemp("spartan-server")
    yield from _launch_server(host, port, base)
