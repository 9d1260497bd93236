"""Spartan protocol server serving static files, listings and CGI scripts."""

import logging
import signal
import sys
from typing import Optional

from spsrv.bootstrap.config import ConfigError, build_config, parse_cli_args
from spsrv.bootstrap.logging_setup import configure_logging
from spsrv.domain.correlation_id import CorrelationLoggerAdapter
from spsrv.lifecycle.state import ServerLifecycle
from spsrv.transport.accept_loop import run_server

SERVER_LOGGER = CorrelationLoggerAdapter(logging.getLogger("spsrv.server"), {})


def main(argv: Optional[list[str]] = None) -> int:
    """Load configuration, install signal handlers and run the listener."""
    args = parse_cli_args(sys.argv[1:] if argv is None else argv)
    configure_logging(args.log_level, args.log_destination)

    try:
        config = build_config(args)
    except ConfigError as error:
        SERVER_LOGGER.critical(
            "Error loading config",
            extra={"event": "config_error", "config_path": args.config},
        )
        print(str(error), file=sys.stderr)
        return 1

    lifecycle = ServerLifecycle()

    def shutdown_handler(signum: int, _frame) -> None:
        SERVER_LOGGER.info(
            "Received shutdown signal",
            extra={"event": "signal", "signal": signal.Signals(signum).name},
        )
        lifecycle.begin_draining(signal.Signals(signum).name)

    signal.signal(signal.SIGTERM, shutdown_handler)
    signal.signal(signal.SIGINT, shutdown_handler)

    SERVER_LOGGER.info(
        "Starting Spartan server",
        extra={
            "event": "server_starting",
            "host": config.hostname,
            "port": config.port,
            "root_dir": config.root_dir,
            "config_path": args.config,
            "log_destination": args.log_destination,
            "log_level": args.log_level,
            "shutdown_grace_seconds": config.shutdown_grace_seconds,
        },
    )
    try:
        run_server(config, lifecycle)
    except OSError as error:
        SERVER_LOGGER.critical(
            "Unable to listen",
            extra={"event": "listen_failed", "error_type": type(error).__name__},
        )
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
