"""Load browser-worker configuration from browser_worker.toml and the environment."""
from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

DEFAULT_PORT = 3030
DEFAULT_SESSION_TTL_MS = 15 * 60 * 1000
DEFAULT_SWEEP_INTERVAL_S = 60.0


@dataclass
class Config:
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    secret: str | None = None  # None = auth gate disabled
    session_ttl_ms: int = DEFAULT_SESSION_TTL_MS
    sweep_interval_s: float = DEFAULT_SWEEP_INTERVAL_S
    headless: bool = True
    viewport: tuple[int, int] = (1280, 720)
    user_agent: str | None = None
    ignore_https_errors: bool = True
    max_body_bytes: int = 1024 * 1024
    log_level: str = "INFO"

    @property
    def session_ttl(self) -> float:
        """Idle eviction threshold in seconds."""
        return self.session_ttl_ms / 1000

    @property
    def auth_enabled(self) -> bool:
        return bool(self.secret)


def _env_int(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def _env_float(environ: Mapping[str, str], name: str, default: float) -> float:
    raw = environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def load(
    project_root: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> Config:
    """Load config from browser_worker.toml, then apply env overrides.

    All fields have defaults; a missing TOML file is not an error.
    """
    if project_root is None:
        project_root = Path.cwd()
    if environ is None:
        environ = os.environ

    toml_path = project_root / "browser_worker.toml"
    data: dict = {}
    if toml_path.exists():
        with open(toml_path, "rb") as f:
            data = tomllib.load(f)

    server = data.get("server", {})
    sessions = data.get("sessions", {})
    browser = data.get("browser", {})
    logging_ = data.get("logging", {})

    # Empty or whitespace-only secret disables the auth gate
    secret = (environ.get("BROWSER_WORKER_SECRET") or server.get("secret") or "").strip()

    return Config(
        host=environ.get("HOST") or server.get("host", "0.0.0.0"),
        port=_env_int(environ, "PORT", server.get("port", DEFAULT_PORT)),
        secret=secret or None,
        session_ttl_ms=_env_int(
            environ, "SESSION_TTL_MS", sessions.get("ttl_ms", DEFAULT_SESSION_TTL_MS),
        ),
        sweep_interval_s=_env_float(
            environ, "SESSION_SWEEP_INTERVAL_S",
            sessions.get("sweep_interval_s", DEFAULT_SWEEP_INTERVAL_S),
        ),
        headless=browser.get("headless", True),
        viewport=(
            browser.get("viewport_width", 1280),
            browser.get("viewport_height", 720),
        ),
        user_agent=browser.get("user_agent"),
        ignore_https_errors=browser.get("ignore_https_errors", True),
        max_body_bytes=server.get("max_body_bytes", 1024 * 1024),
        log_level=(environ.get("LOG_LEVEL") or logging_.get("level", "INFO")).upper(),
    )
