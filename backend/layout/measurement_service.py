"""
Measurement of the real rendered document.

Runs after the template render: derives content density and a grid-scale
hint, measures modules and keep-together blocks, reconciles the page breaks
with the same distribution the phantom pass uses, flips to landscape when the
content calls for it, and finally tells the PDF capture it may snapshot.
"""
from __future__ import annotations

import hashlib
import logging
from typing import Any, Optional

from cache.measurement_cache import MeasurementCache
from config import Settings
from layout.measurement_database import PAGE_PRESETS, MeasurementDatabase
from layout.pagination import PaginationStage, page_breaks_for
from layout.probes import LayoutProbe, to_measurement
from models import (
    Distribution,
    DocumentSnapshot,
    ElementBox,
    Measurement,
    MeasurementReport,
    Orientation,
    PageBreak,
    PageMetrics,
)

_LOG = logging.getLogger(__name__)

DENSE_CONTENT = 100.0
SPARSE_CONTENT = 50.0
GRID_SCALE_DENSE = 0.8
GRID_SCALE_NORMAL = 1.0
GRID_SCALE_SPARSE = 1.2
WIDE_ELEMENT_RATIO = 0.8
WIDE_ELEMENT_LIMIT = 5
TABLE_LIMIT = 2


def content_density(text_lengths: list[int]) -> float:
    """Average text length per paragraph / list item / table cell."""
    if not text_lengths:
        return 0.0
    return sum(text_lengths) / len(text_lengths)


def grid_scale_for(density: float) -> float:
    if density > DENSE_CONTENT:
        return GRID_SCALE_DENSE
    if density < SPARSE_CONTENT:
        return GRID_SCALE_SPARSE
    return GRID_SCALE_NORMAL


def document_fingerprint(snapshot: DocumentSnapshot) -> str:
    """Digest of a live document's snapshot; scopes shared-cache entries to one document."""
    return hashlib.sha256(snapshot.model_dump_json().encode("utf-8")).hexdigest()[:16]


class MeasurementService(PaginationStage):
    def __init__(
        self,
        probe: LayoutProbe,
        settings: Settings,
        cache: Optional[MeasurementCache] = None,
        database: Optional[MeasurementDatabase] = None,
        page_metrics: Optional[PageMetrics] = None,
    ) -> None:
        super().__init__(page_metrics or PAGE_PRESETS["A4"], settings.oversize_policy)
        self.probe = probe
        self.settings = settings
        self.cache = cache
        self.database = database
        self.fase2_enabled = cache is not None or database is not None

        self.orientation = self.page_metrics.orientation
        self.density = 0.0
        self.total_elements = 0
        self.grid_scale = GRID_SCALE_NORMAL
        self.total_height = 0.0
        self.measurements: list[Measurement] = []
        self.page_breaks: list[PageBreak] = []
        self.distribution = Distribution()
        self._local_cache: dict[str, Measurement] = {}
        self._document_key = ""
        self._report: Optional[MeasurementReport] = None

    def initialize(self) -> MeasurementReport:
        if self._report is not None:
            return self._report

        snapshot = self.probe.snapshot_document()
        self._document_key = document_fingerprint(snapshot)
        _LOG.info(
            "MEASURE_START elements=%s text_blocks=%s tables=%s fase2=%s",
            len(snapshot.elements), len(snapshot.text_lengths), snapshot.table_count, self.fase2_enabled,
        )
        self.set_dynamic_css(snapshot)
        self.perform_initial_measurements(snapshot)
        self.optimize_page_orientation(snapshot)
        self.signal_ready()

        self._report = self.report()
        _LOG.info(
            "MEASURE_DONE orientation=%s pages=%s breaks=%s density=%.1f",
            self.orientation.value, self.distribution.page_count, len(self.page_breaks), self.density,
        )
        return self._report

    def set_dynamic_css(self, snapshot: DocumentSnapshot) -> None:
        self.density = content_density(snapshot.text_lengths)
        self.total_elements = len(snapshot.text_lengths)
        self.grid_scale = grid_scale_for(self.density)
        self.probe.set_root_properties(
            {
                "--content-density": f"{self.density:g}",
                "--total-elements": str(self.total_elements),
                "--grid-scale": f"{self.grid_scale:.1f}",
            }
        )

    def perform_initial_measurements(self, snapshot: DocumentSnapshot) -> None:
        for box in snapshot.elements:
            if box.kind == "no-break" and box.breakable:
                box = box.model_copy(update={"breakable": False})
            measurement = self.measure_element(box)
            self.measurements.append(measurement)
            if box.kind == "module":
                self.total_height += measurement.height
        self.calculate_break_points()

    def _enrichment(self, box: ElementBox) -> dict[str, Any]:
        if self.database is None:
            return {}
        standard = self.database.standard_measurement(box.element_type)
        if standard is None:
            return {}
        return {
            "standard_height": standard.avg,
            "variance": abs(box.height - standard.avg),
            "confidence": self.database.confidence(box.element_type),
        }

    def measure_element(self, box: ElementBox) -> Measurement:
        cache_key = f"{box.id}-{box.html_length}"
        shared_key = f"measure#{self._document_key}:{cache_key}"
        if self.cache is not None:
            cached = self.cache.get(shared_key)
            if cached is not None:
                return Measurement.model_validate(cached)
        if cache_key in self._local_cache:
            return self._local_cache[cache_key]

        measurement = to_measurement(box, **self._enrichment(box))
        if self.database is not None:
            self.database.learn_from_element(box.element_type, box.height)

        self._local_cache[cache_key] = measurement
        if self.cache is not None:
            self.cache.set(shared_key, measurement.model_dump())
        return measurement

    def calculate_break_points(self) -> None:
        self.distribution = self.reconcile(self.measurements)
        self.page_breaks = page_breaks_for(self.distribution, self.measurements)

    def should_use_landscape(self, snapshot: DocumentSnapshot) -> bool:
        total_content = sum(m.content_length for m in self.measurements)
        wide_elements = sum(1 for m in self.measurements if m.width > self.page_metrics.width * WIDE_ELEMENT_RATIO)
        return (
            total_content > self.settings.landscape_char_threshold
            or wide_elements > WIDE_ELEMENT_LIMIT
            or snapshot.table_count > TABLE_LIMIT
            or self.density > self.settings.landscape_density_threshold
        )

    def optimize_page_orientation(self, snapshot: DocumentSnapshot) -> None:
        if self.orientation == Orientation.LANDSCAPE or not self.should_use_landscape(snapshot):
            return
        _LOG.info("MEASURE_LANDSCAPE switching orientation")
        self.probe.set_landscape()
        self.probe.wait(self.settings.landscape_delay_ms)
        self.recalculate_with_landscape()

    def recalculate_with_landscape(self) -> None:
        # A transpose of the page box, not a relayout: element heights are the portrait ones.
        self.page_metrics = self.page_metrics.transposed()
        self.orientation = self.page_metrics.orientation
        self._local_cache.clear()
        self.calculate_break_points()

    def signal_ready(self) -> None:
        self.probe.signal_ready(self.settings.ready_flag, self.settings.ready_delay_ms)

    def report(self) -> MeasurementReport:
        return MeasurementReport(
            orientation=self.orientation,
            density=self.density,
            total_elements=self.total_elements,
            grid_scale=self.grid_scale,
            total_height=self.total_height,
            page_metrics=self.page_metrics,
            measurements=list(self.measurements),
            page_breaks=list(self.page_breaks),
            distribution=self.distribution,
            ready_flag=self.settings.ready_flag,
            fase2_enabled=self.fase2_enabled,
        )
