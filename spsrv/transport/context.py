"""Context object shared across worker threads."""

from dataclasses import dataclass
from typing import Optional

from spsrv.bootstrap.config import ServerConfig
from spsrv.lifecycle.state import ServerLifecycle


@dataclass(frozen=True)
class WorkerContext:
    """Read-only dependencies shared across handler threads."""

    config: ServerConfig
    lifecycle: Optional[ServerLifecycle] = None
