from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

DEFAULT_PORT = 8000
REQUEST_TIMEOUT = 50.0
BUFFER_OVERFLOW_LIMIT = int(1e9)
SURFACES = {"process", "thread"}


def _repo_root() -> Path:
    # `src/chart_render_service/config.py` -> repo root
    return Path(__file__).resolve().parents[2]


def _env_bool(name: str, default: bool = False) -> bool:
    v = (os.getenv(name) or "").strip().lower()
    if not v:
        return default
    return v in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(float(raw))
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def coerce_port(value: Any, default: int = DEFAULT_PORT) -> int:
    """Numeric-looking values become the port; anything else falls back to the default."""
    try:
        port = int(float(str(value).strip()))
    except (TypeError, ValueError):
        return default
    if not 0 <= port <= 65535:
        return default
    return port


@dataclass(frozen=True)
class Settings:
    port: int = DEFAULT_PORT
    host: str = "127.0.0.1"
    debug: bool = False
    request_timeout: float = REQUEST_TIMEOUT
    max_body_bytes: int = BUFFER_OVERFLOW_LIMIT
    surface: str = "process"
    http_log: bool = False

    def render_options(self) -> Dict[str, Any]:
        """JSON-safe options handed to components and across the render channel."""
        return {"port": self.port, "debug": self.debug}

    def override(self, **changes: Any) -> "Settings":
        clean = {k: v for k, v in changes.items() if v is not None}
        if "port" in clean:
            clean["port"] = coerce_port(clean["port"], self.port)
        if "surface" in clean:
            clean["surface"] = _coerce_surface(clean["surface"])
        return replace(self, **clean)


def _coerce_surface(value: Optional[str]) -> str:
    t = str(value or "").strip().lower()
    if t not in SURFACES:
        raise ValueError(f"surface must be one of: {' | '.join(sorted(SURFACES))}")
    return t


def load_settings(*, env_file: Optional[Path] = None) -> Settings:
    """
    Build settings from the environment.

    `.env` then `.env.local` (repo root) are loaded first when present; values already
    in the process environment win.
    """
    if env_file is not None:
        load_dotenv(env_file, override=False)
    else:
        load_dotenv(_repo_root() / ".env", override=False)
        load_dotenv(_repo_root() / ".env.local", override=False)

    return Settings(
        port=coerce_port(os.getenv("CHART_RENDER_PORT") or DEFAULT_PORT),
        host=(os.getenv("CHART_RENDER_HOST") or "127.0.0.1").strip(),
        debug=_env_bool("CHART_RENDER_DEBUG", default=False),
        request_timeout=max(0.001, _env_float("CHART_RENDER_REQUEST_TIMEOUT", REQUEST_TIMEOUT)),
        max_body_bytes=max(0, _env_int("CHART_RENDER_MAX_BODY_BYTES", BUFFER_OVERFLOW_LIMIT)),
        surface=_coerce_surface(os.getenv("CHART_RENDER_SURFACE") or "process"),
        http_log=_env_bool("CHART_RENDER_HTTP_LOG", default=False),
    )
