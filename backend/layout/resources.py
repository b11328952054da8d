"""
Process-scoped ownership of the shared measurement cache and database.

One LayoutResources is created at app startup and handed to every pass that
needs it; nothing here is a module-level singleton.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional

from cache.measurement_cache import MeasurementCache
from cache.snapshot_store import (
    load_cache_snapshot,
    load_learned_snapshot,
    save_cache_snapshot,
    save_learned_snapshot,
)
from config import Settings, load_settings
from layout.calculation_engine import CalculationEngine
from layout.measurement_database import MeasurementDatabase
from layout.measurement_service import MeasurementService
from layout.phantom_renderer import PhantomRenderer
from layout.probes import LayoutProbe

_LOG = logging.getLogger(__name__)


@dataclass
class LayoutResources:
    settings: Settings
    cache: MeasurementCache
    database: MeasurementDatabase

    def phantom_renderer(self, probe: LayoutProbe) -> PhantomRenderer:
        return PhantomRenderer(
            probe,
            self.database,
            cache=self.cache,
            oversize_policy=self.settings.oversize_policy,
            include_cover=self.settings.include_cover,
        )

    def calculation_engine(self, probe: LayoutProbe) -> CalculationEngine:
        return CalculationEngine(self.phantom_renderer(probe))

    def measurement_service(self, probe: LayoutProbe) -> MeasurementService:
        return MeasurementService(probe, self.settings, cache=self.cache, database=self.database)

    def export_snapshot(self) -> dict[str, Any]:
        return {
            "cache": self.cache.export_snapshot(),
            "learned": self.database.export_learned_measurements(),
        }

    def import_snapshot(self, snapshot: Mapping[str, Any]) -> dict[str, int]:
        cache_entries = 0
        learned = 0
        if snapshot.get("cache"):
            cache_entries = self.cache.import_snapshot(snapshot["cache"])
        if isinstance(snapshot.get("learned"), Mapping):
            learned = self.database.import_learned_measurements(snapshot["learned"])
        return {"cacheEntries": cache_entries, "learnedMeasurements": learned}

    def save_snapshots(self, snapshot_dir: Optional[Path] = None) -> list[Path]:
        target = Path(snapshot_dir or self.settings.snapshot_dir)
        return [
            save_cache_snapshot(target, self.cache.export_snapshot()),
            save_learned_snapshot(target, self.database.export_learned_measurements()),
        ]

    def load_snapshots(self, snapshot_dir: Optional[Path] = None) -> dict[str, int]:
        target = Path(snapshot_dir or self.settings.snapshot_dir)
        return self.import_snapshot(
            {
                "cache": load_cache_snapshot(target),
                "learned": load_learned_snapshot(target),
            }
        )

    def close(self) -> None:
        self.cache.stop_auto_cleanup()


def create_resources(settings: Optional[Settings] = None, auto_cleanup: bool = True) -> LayoutResources:
    settings = settings or load_settings()
    cache = MeasurementCache(
        ttl=settings.cache_ttl_seconds,
        max_size=settings.cache_max_size,
        cleanup_interval=settings.cache_cleanup_seconds,
        auto_cleanup=auto_cleanup,
    )
    resources = LayoutResources(settings=settings, cache=cache, database=MeasurementDatabase())
    if settings.load_snapshots:
        loaded = resources.load_snapshots()
        _LOG.info("RESOURCES_SNAPSHOT_LOADED dir=%s %s", settings.snapshot_dir, loaded)
    return resources
