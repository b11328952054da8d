from __future__ import annotations

from pathlib import Path

import pytest

from config import load_settings

_ENV_NAMES = (
    "LAYOUT_CACHE_TTL_SECONDS",
    "LAYOUT_CACHE_MAX_SIZE",
    "LAYOUT_OVERSIZE_POLICY",
    "LAYOUT_READY_DELAY_MS",
    "LAYOUT_PHANTOM_ENABLED",
    "LAYOUT_SNAPSHOT_DIR",
    "ALLOWED_ORIGINS",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in _ENV_NAMES:
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    settings = load_settings()
    assert settings.cache_ttl_seconds == 300
    assert settings.cache_max_size == 1000
    assert settings.oversize_policy == "overflow"
    assert settings.ready_flag == "JSREPORT_READY_TO_START"
    assert settings.ready_delay_ms == 500
    assert settings.phantom_enabled is True
    assert "http://localhost:3000" in settings.allowed_origins


def test_values_from_environment(monkeypatch, tmp_path):
    monkeypatch.setenv("LAYOUT_CACHE_TTL_SECONDS", "12.5")
    monkeypatch.setenv("LAYOUT_OVERSIZE_POLICY", " Clip ")
    monkeypatch.setenv("LAYOUT_PHANTOM_ENABLED", "no")
    monkeypatch.setenv("LAYOUT_SNAPSHOT_DIR", str(tmp_path))
    monkeypatch.setenv("ALLOWED_ORIGINS", "https://a.example, https://b.example,")
    settings = load_settings()
    assert settings.cache_ttl_seconds == 12.5
    assert settings.oversize_policy == "clip"
    assert settings.phantom_enabled is False
    assert settings.snapshot_dir == Path(tmp_path)
    assert settings.allowed_origins == ["https://a.example", "https://b.example"]


def test_invalid_numbers_fall_back_to_defaults(monkeypatch):
    monkeypatch.setenv("LAYOUT_CACHE_TTL_SECONDS", "soon")
    monkeypatch.setenv("LAYOUT_CACHE_MAX_SIZE", "lots")
    monkeypatch.setenv("LAYOUT_READY_DELAY_MS", "-20")
    settings = load_settings()
    assert settings.cache_ttl_seconds == 300
    assert settings.cache_max_size == 1000
    assert settings.ready_delay_ms == 0


def test_unknown_oversize_policy_is_rejected(monkeypatch):
    monkeypatch.setenv("LAYOUT_OVERSIZE_POLICY", "shrink")
    with pytest.raises(ValueError, match="LAYOUT_OVERSIZE_POLICY"):
        load_settings()
