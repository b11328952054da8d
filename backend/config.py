"""
Runtime settings for the layout backend.
Values come from the process environment; backend/.env is loaded first when present.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

_BACKEND_DIR = Path(__file__).resolve().parent
load_dotenv(_BACKEND_DIR / ".env")

_LOG = logging.getLogger(__name__)

OVERSIZE_POLICIES = ("overflow", "clip", "error")
DEFAULT_ALLOWED_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]


def _env_float(name: str, default: float) -> float:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        _LOG.warning("CONFIG_INVALID name=%s value=%r using_default=%s", name, raw, default)
        return default


def _env_int(name: str, default: int) -> int:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        _LOG.warning("CONFIG_INVALID name=%s value=%r using_default=%s", name, raw, default)
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = (os.environ.get(name) or "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    cache_ttl_seconds: float = 300.0
    cache_max_size: int = 1000
    cache_cleanup_seconds: float = 60.0
    oversize_policy: str = "overflow"
    ready_flag: str = "JSREPORT_READY_TO_START"
    ready_delay_ms: int = 500
    landscape_delay_ms: int = 100
    landscape_char_threshold: int = 8000
    landscape_density_threshold: float = 150.0
    phantom_enabled: bool = True
    diagnostics_enabled: bool = False
    include_cover: bool = False
    snapshot_dir: Path = _BACKEND_DIR / "snapshots"
    load_snapshots: bool = False
    allowed_origins: list[str] = field(default_factory=lambda: list(DEFAULT_ALLOWED_ORIGINS))


def load_settings() -> Settings:
    """Read settings from the environment. Unknown oversize policies are a hard error."""
    policy = (os.environ.get("LAYOUT_OVERSIZE_POLICY") or "overflow").strip().lower()
    if policy not in OVERSIZE_POLICIES:
        raise ValueError(
            f"LAYOUT_OVERSIZE_POLICY must be one of {', '.join(OVERSIZE_POLICIES)}; got {policy!r}"
        )

    origins_env = (os.environ.get("ALLOWED_ORIGINS") or "").strip()
    if origins_env:
        origins = [o.strip() for o in origins_env.split(",") if o.strip()]
    else:
        origins = list(DEFAULT_ALLOWED_ORIGINS)

    snapshot_dir = (os.environ.get("LAYOUT_SNAPSHOT_DIR") or "").strip()

    return Settings(
        cache_ttl_seconds=_env_float("LAYOUT_CACHE_TTL_SECONDS", 300.0),
        cache_max_size=max(1, _env_int("LAYOUT_CACHE_MAX_SIZE", 1000)),
        cache_cleanup_seconds=max(0.0, _env_float("LAYOUT_CACHE_CLEANUP_SECONDS", 60.0)),
        oversize_policy=policy,
        ready_flag=(os.environ.get("LAYOUT_READY_FLAG") or "JSREPORT_READY_TO_START").strip(),
        ready_delay_ms=max(0, _env_int("LAYOUT_READY_DELAY_MS", 500)),
        landscape_delay_ms=max(0, _env_int("LAYOUT_LANDSCAPE_DELAY_MS", 100)),
        landscape_char_threshold=_env_int("LAYOUT_LANDSCAPE_CHAR_THRESHOLD", 8000),
        landscape_density_threshold=_env_float("LAYOUT_DENSITY_THRESHOLD", 150.0),
        phantom_enabled=_env_bool("LAYOUT_PHANTOM_ENABLED", True),
        diagnostics_enabled=_env_bool("LAYOUT_DIAGNOSTICS", False),
        include_cover=_env_bool("LAYOUT_INCLUDE_COVER", False),
        snapshot_dir=Path(snapshot_dir) if snapshot_dir else _BACKEND_DIR / "snapshots",
        load_snapshots=_env_bool("LAYOUT_LOAD_SNAPSHOTS", False),
        allowed_origins=origins,
    )
