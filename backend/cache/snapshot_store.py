"""
JSON-on-disk persistence for measurement snapshots between runs.
Cache snapshot: {cache, timestamps, accessCount, ttl} -> <dir>/measurement_cache.json
Learned measurements: {category.type: {min, avg, max, samples}} -> <dir>/learned_measurements.json
"""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

_LOG = logging.getLogger(__name__)

CACHE_SNAPSHOT_FILE = "measurement_cache.json"
LEARNED_SNAPSHOT_FILE = "learned_measurements.json"


def _ensure_dir(d: Path) -> None:
    d.mkdir(parents=True, exist_ok=True)


def _write_json(path: Path, payload: dict[str, Any]) -> None:
    _ensure_dir(path.parent)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(payload, default=str), encoding="utf-8")
    tmp.replace(path)


def _read_json(path: Path) -> dict[str, Any] | None:
    if not path.exists():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        _LOG.warning("SNAPSHOT_UNREADABLE path=%s", path, exc_info=True)
        return None
    return data if isinstance(data, dict) else None


def save_cache_snapshot(snapshot_dir: Path, snapshot: dict[str, Any]) -> Path:
    path = Path(snapshot_dir) / CACHE_SNAPSHOT_FILE
    _write_json(path, snapshot)
    _LOG.info("SNAPSHOT_SAVED kind=cache entries=%s path=%s", len(snapshot.get("cache") or {}), path)
    return path


def load_cache_snapshot(snapshot_dir: Path) -> dict[str, Any] | None:
    """Return the stored cache snapshot, or None."""
    return _read_json(Path(snapshot_dir) / CACHE_SNAPSHOT_FILE)


def save_learned_snapshot(snapshot_dir: Path, learned: dict[str, Any]) -> Path:
    path = Path(snapshot_dir) / LEARNED_SNAPSHOT_FILE
    _write_json(path, learned)
    _LOG.info("SNAPSHOT_SAVED kind=learned entries=%s path=%s", len(learned), path)
    return path


def load_learned_snapshot(snapshot_dir: Path) -> dict[str, Any] | None:
    """Return the stored learned measurements, or None."""
    return _read_json(Path(snapshot_dir) / LEARNED_SNAPSHOT_FILE)
