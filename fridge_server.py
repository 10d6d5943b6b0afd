#!/usr/bin/env python3
"""
The Fridge: realtime shared fridge door server

Usage:
    python fridge_server.py                        # Settings from env / .env
    python fridge_server.py --port 8080            # Override listening port
    python fridge_server.py --cooldown-ms 250      # Shorter per-client cooldown
    python fridge_server.py --data-file /var/lib/fridge/data.json

Environment: PORT, HOST, COOLDOWN_MS, DATA_FILE, CORS_ORIGINS, LOG_LEVEL.
SIGINT / SIGTERM stop the server after a final save of the state file.
"""

import argparse
import logging
from pathlib import Path

import uvicorn

from config import load_settings
from logging_config import setup_logging
from web_server import create_app

log = logging.getLogger("fridge.server")


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Realtime shared fridge state server")
    parser.add_argument("--host", type=str, help="Bind address (env HOST, default 0.0.0.0)")
    parser.add_argument("--port", type=int, help="Listening port (env PORT, default 3000)")
    parser.add_argument("--cooldown-ms", type=int,
                        help="Per-connection request cooldown (env COOLDOWN_MS, default 1000)")
    parser.add_argument("--data-file", type=str,
                        help="State snapshot file (env DATA_FILE, default data.json)")
    parser.add_argument("--env-file", type=str, help="Load settings from this .env file")
    parser.add_argument("--log-level", type=str, help="Logging level (env LOG_LEVEL)")
    return parser.parse_args(argv)


def main(argv=None):
    """Entry point: resolve settings, configure logging, serve until signalled."""
    args = parse_args(argv)
    # Configure early so warnings raised while reading settings are formatted
    setup_logging(args.log_level)
    settings = load_settings(env_file=args.env_file)

    if args.host:
        settings.host = args.host
    if args.port is not None:
        settings.port = args.port
    if args.cooldown_ms is not None:
        if args.cooldown_ms < 0:
            raise SystemExit("--cooldown-ms must be >= 0")
        settings.cooldown_ms = args.cooldown_ms
    if args.data_file:
        settings.data_file = Path(args.data_file)
    if args.log_level:
        settings.log_level = args.log_level.upper()

    setup_logging(settings.log_level)
    log.info("Config: port %d, cooldown %dms, data file %s",
             settings.port, settings.cooldown_ms, settings.data_file)

    app = create_app(settings)
    log.info("Server listening on http://localhost:%d", settings.port)
    uvicorn.run(app, host=settings.host, port=settings.port,
                log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
