"""beads-ui main application entry point."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from beadsui.engine.errors import ConfigError

LOG_DIR = Path.home() / ".beads-ui" / "logs"


def _configure_logging(level_name: str, log_dir: Path | None = None) -> Path | None:
    """Root logger to a rotating file plus stderr. Returns the log file path."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, level_name.upper(), logging.INFO))
    root.handlers.clear()
    formatter = logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s [pid=%(process)d] %(message)s"
    )
    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    root.addHandler(stream_handler)

    target_dir = log_dir or LOG_DIR
    try:
        target_dir.mkdir(parents=True, exist_ok=True)
        log_file = target_dir / "beads-ui-server.log"
        file_handler = RotatingFileHandler(
            log_file, maxBytes=2_000_000, backupCount=5, encoding="utf-8"
        )
    except OSError:
        logging.getLogger(__name__).warning(
            "Could not open log directory %s; logging to stderr only", target_dir,
        )
        return None
    file_handler.setFormatter(formatter)
    root.addHandler(file_handler)
    return log_file


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="beads-ui",
        description="Multi-client web UI server for beads (bd) issue trackers",
    )
    parser.add_argument(
        "--host", metavar="HOST",
        help="Interface to listen on (default: 127.0.0.1)",
    )
    parser.add_argument(
        "--port", type=int,
        help="Server port (default: $PORT or 3050; 0=random available port)",
    )
    parser.add_argument(
        "--static-dir", metavar="DIR",
        help="Directory holding the built UI (index.html + assets)",
    )
    parser.add_argument(
        "--bd", metavar="CMD", dest="bd_command",
        help="bd executable to invoke (default: bd)",
    )
    parser.add_argument(
        "--config", metavar="PATH",
        help="YAML config file (default: ./beads-ui.yaml or ~/.beads-ui/config.yaml)",
    )
    parser.add_argument(
        "--log-level", metavar="LEVEL",
        help="Logging level (default: INFO)",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    from beadsui.engine.yaml_config import build_config

    try:
        config = build_config(
            args.config,
            host=args.host,
            port=args.port,
            static_dir=args.static_dir,
            bd_command=args.bd_command,
            log_level=args.log_level.upper() if args.log_level else None,
        )
    except (ConfigError, FileNotFoundError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(2)

    log_file = _configure_logging(config.log_level)
    logging.getLogger(__name__).info(
        "Starting beads-ui server host=%s port=%s static_dir=%s bd=%s config=%s log=%s",
        config.host,
        config.port,
        config.static_dir,
        config.bd_command,
        args.config or "<auto>",
        log_file or "<stderr>",
    )

    from beadsui.web.server import BeadsServer

    server = BeadsServer(config)
    try:
        asyncio.run(server.start())
    except KeyboardInterrupt:
        pass
    sys.exit(0)


if __name__ == "__main__":
    main()
