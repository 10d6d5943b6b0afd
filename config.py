"""Runtime settings read from the environment (and an optional .env file)."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

from constants import DEFAULT_COOLDOWN_MS, DEFAULT_DATA_FILE, DEFAULT_HOST, DEFAULT_PORT

log = logging.getLogger("fridge.config")


@dataclass
class Settings:
    """Everything the server needs to start."""
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    cooldown_ms: int = DEFAULT_COOLDOWN_MS
    data_file: Path = field(default_factory=lambda: Path(DEFAULT_DATA_FILE))
    cors_origins: list[str] = field(default_factory=lambda: ["*"])
    log_level: str = "INFO"


def _int_setting(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        log.warning("Invalid %s=%r, using default %d", name, raw, default)
        return default
    if value < 0:
        log.warning("Negative %s=%d, using default %d", name, value, default)
        return default
    return value


def load_settings(env: Optional[Mapping[str, str]] = None,
                  env_file: Optional[str] = None) -> Settings:
    """Build Settings from environment variables.

    When ``env`` is omitted, ``.env`` (or ``env_file``) is loaded into the
    process environment first; existing variables win over the file.
    """
    if env is None:
        load_dotenv(env_file or Path.cwd() / ".env")
        env = os.environ

    origins = [o.strip() for o in env.get("CORS_ORIGINS", "*").split(",") if o.strip()]

    settings = Settings(
        host=env.get("HOST", DEFAULT_HOST) or DEFAULT_HOST,
        port=_int_setting(env, "PORT", DEFAULT_PORT),
        cooldown_ms=_int_setting(env, "COOLDOWN_MS", DEFAULT_COOLDOWN_MS),
        data_file=Path(env.get("DATA_FILE") or DEFAULT_DATA_FILE),
        cors_origins=origins or ["*"],
        log_level=(env.get("LOG_LEVEL") or "INFO").upper(),
    )
    log.debug("Settings loaded: %s", settings)
    return settings
