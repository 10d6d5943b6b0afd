"""Logging setup for the `fridge` logger namespace."""

import logging
import os
import sys
from typing import Optional


def setup_logging(level: Optional[str] = None) -> logging.Logger:
    """Configure logging for the fridge server."""
    log_level = level or os.environ.get("LOG_LEVEL", "INFO")
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    formatter = logging.Formatter(
        fmt="%(asctime)s [%(levelname)-8s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger("fridge")
    root.setLevel(numeric_level)
    # Re-running setup (tests, reloads) must not stack handlers
    root.handlers = [handler]
    root.propagate = False

    logging.basicConfig(level=logging.WARNING)

    # Per-request access lines are noise for a websocket-heavy server
    for name in ("uvicorn.access", "websockets", "httpx"):
        logging.getLogger(name).setLevel(logging.WARNING)

    return root
