"""Settings loaded from the environment (and an optional `.env` file)."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .cache import DEFAULT_SWEEP_INTERVAL_SECONDS, DEFAULT_TTL_SECONDS, parse_ttl
from .errors import ConfigError

# Names understood by both logging and uvicorn.
LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")

DEV_ORIGINS = ("http://localhost:3000",)
PROD_ORIGINS = ("https://dodobox.pppp.page",)


@dataclass(frozen=True)
class Settings:
    api_key: str
    env: str = "production"
    host: str = "0.0.0.0"
    port: int = 8000
    cert_file: str = ""
    key_file: str = ""
    cors_origins: tuple[str, ...] = PROD_ORIGINS
    timeout: float = 30
    cache_ttl_seconds: int = DEFAULT_TTL_SECONDS
    sweep_interval_seconds: int = DEFAULT_SWEEP_INTERVAL_SECONDS
    log_level: str = "INFO"

    @property
    def development(self) -> bool:
        return self.env == "development"


def load_env_files() -> None:
    # Try current dir, then home dir. Real environment variables win.
    for env_path in [Path(".env"), Path.home() / ".env"]:
        if env_path.exists():
            load_dotenv(env_path, override=False)
            break


def _int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from e


def _duration(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        return parse_ttl(raw)
    except ValueError as e:
        raise ConfigError(f"{name}: {e}") from e


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Build Settings from `environ` (default: `.env` files + os.environ)."""
    if environ is None:
        load_env_files()
        environ = os.environ

    api_key = (environ.get("ABUSEIPDB_KEY") or environ.get("ABUSEIPDB_API_KEY") or "").strip()
    if not api_key:
        raise ConfigError("ABUSEIPDB_KEY not set")

    env = environ.get("ENV", "").strip() or "production"
    origins_raw = environ.get("CORS_ORIGINS", "")
    origins = tuple(o.strip() for o in origins_raw.split(",") if o.strip())
    if not origins:
        origins = DEV_ORIGINS if env == "development" else PROD_ORIGINS

    sweep = _duration(environ, "IPREP_SWEEP_INTERVAL", DEFAULT_SWEEP_INTERVAL_SECONDS)
    if sweep <= 0:
        raise ConfigError("IPREP_SWEEP_INTERVAL must be positive")
    timeout = _int(environ, "IPREP_TIMEOUT", 30)
    if timeout <= 0:
        raise ConfigError("IPREP_TIMEOUT must be positive")
    log_level = (environ.get("LOG_LEVEL", "").strip() or "INFO").upper()
    if log_level not in LOG_LEVELS:
        raise ConfigError(f"LOG_LEVEL must be one of {'/'.join(LOG_LEVELS)}, got {log_level!r}")

    return Settings(
        api_key=api_key,
        env=env,
        host=environ.get("HOST", "").strip() or "0.0.0.0",
        port=_int(environ, "PORT", 8000),
        cert_file=environ.get("CERT", "").strip(),
        key_file=environ.get("KEY", "").strip(),
        cors_origins=origins,
        timeout=timeout,
        cache_ttl_seconds=_duration(environ, "IPREP_CACHE_TTL", DEFAULT_TTL_SECONDS),
        sweep_interval_seconds=sweep,
        log_level=log_level,
    )
