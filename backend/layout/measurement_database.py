"""
Standard element measurements for candidate-evaluation reports.

Static table of expected heights (CSS pixels at 96dpi) by category and type,
page geometry presets, and a learned layer that folds in real observations so
estimates improve over a session. Lookups never raise: an unknown
category/type is None.
"""
from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping, Optional

from models import MAX_LEARNED_SAMPLES, HeightEstimate, Orientation, PageMetrics, StandardMeasurement

_LOG = logging.getLogger(__name__)

BASE_CONFIDENCE = 0.5
CONFIDENCE_PER_SAMPLE = 0.05
MAX_CONFIDENCE = 0.95

STANDARD_MEASUREMENTS: dict[str, dict[str, dict[str, Any]]] = {
    "module": {
        "cover-page": {"min": 800, "avg": 1000, "max": 1122, "description": "Full report cover"},
        "presentacion": {"min": 200, "avg": 350, "max": 500, "description": "Candidate presentation"},
        "experiencia": {"min": 300, "avg": 600, "max": 1200, "description": "Work experience"},
        "formacion": {"min": 150, "avg": 300, "max": 500, "description": "Education"},
        "competencias": {"min": 200, "avg": 400, "max": 600, "description": "Skills and competencies"},
        "conclusiones": {"min": 250, "avg": 450, "max": 700, "description": "Conclusions and assessment"},
    },
    "headers": {
        "module-title": {"min": 40, "avg": 48, "max": 56, "marginBottom": 16, "description": "Module title (h2)"},
        "section-title": {"min": 28, "avg": 32, "max": 40, "marginBottom": 12, "description": "Section title (h3)"},
        "subsection-title": {"min": 20, "avg": 24, "max": 28, "marginBottom": 8, "description": "Subsection title (h4)"},
    },
    "content": {
        "experience-item": {"min": 80, "avg": 120, "max": 200, "marginBottom": 16, "description": "Work experience entry"},
        "education-item": {"min": 60, "avg": 90, "max": 120, "marginBottom": 12, "description": "Education entry"},
        "competency-card": {"min": 50, "avg": 70, "max": 90, "marginBottom": 8, "description": "Competency card"},
        "reference-item": {"min": 40, "avg": 60, "max": 80, "marginBottom": 8, "description": "Reference entry"},
        "paragraph": {"min": 40, "avg": 60, "max": 100, "marginBottom": 12, "description": "Body paragraph"},
        "bullet-point": {"min": 20, "avg": 30, "max": 50, "marginBottom": 4, "description": "List bullet"},
    },
    "special": {
        "candidate-header": {"min": 100, "avg": 120, "max": 150, "marginBottom": 20, "description": "Photo and candidate details"},
        "evaluation-box": {"min": 150, "avg": 200, "max": 300, "marginBottom": 16, "description": "Scored evaluation box"},
        "chart": {"min": 200, "avg": 250, "max": 350, "marginBottom": 16, "description": "Chart or visualization"},
        "table-row": {"min": 24, "avg": 32, "max": 48, "marginBottom": 0, "description": "Table row"},
    },
}

SPACING: dict[str, float] = {
    "module-gap": 32,
    "section-gap": 24,
    "item-gap": 16,
    "paragraph-gap": 12,
    "line-gap": 8,
}

# A4 at 96dpi: 210mm x 297mm -> 794 x 1122
PAGE_PRESETS: dict[str, PageMetrics] = {
    "A4": PageMetrics(
        width=794, height=1122,
        margin_top=68, margin_bottom=76, margin_left=60, margin_right=60,
        orientation=Orientation.PORTRAIT,
    ),
    "A4-landscape": PageMetrics(
        width=1122, height=794,
        margin_top=60, margin_bottom=60, margin_left=76, margin_right=76,
        orientation=Orientation.LANDSCAPE,
    ),
}

# Element types seen in a rendered document -> database row.
_ELEMENT_TYPE_ROWS: dict[str, tuple[str, str]] = {
    "h2": ("headers", "module-title"),
    "h3": ("headers", "section-title"),
    "h4": ("headers", "subsection-title"),
    "paragraph": ("content", "paragraph"),
    "list": ("content", "bullet-point"),
    "table": ("special", "table-row"),
    "competency-card": ("content", "competency-card"),
    "experience-item": ("content", "experience-item"),
    "education-item": ("content", "education-item"),
}

_METRIC_FIELDS = {"min": "min", "avg": "avg", "max": "max", "marginBottom": "margin_bottom", "margin_bottom": "margin_bottom"}


def _custom_key(category: str, type_: str) -> str:
    return f"{category}.{type_}"


class MeasurementDatabase:
    def __init__(self, table: Optional[Mapping[str, Mapping[str, Mapping[str, Any]]]] = None) -> None:
        source = table if table is not None else STANDARD_MEASUREMENTS
        self._static: dict[str, dict[str, StandardMeasurement]] = {
            category: {type_: StandardMeasurement.model_validate(row) for type_, row in rows.items()}
            for category, rows in source.items()
        }
        self._custom: dict[str, StandardMeasurement] = {}

    def _row(self, category: str, type_: str) -> Optional[StandardMeasurement]:
        row = self._static.get(category, {}).get(type_)
        if row is not None:
            return row
        return self._custom.get(_custom_key(category, type_))

    def get_measurement(self, category: str, type_: str, metric: str = "avg") -> Optional[float]:
        """Static row first, then a learned `category.type` row. Zero counts as unknown."""
        field_name = _METRIC_FIELDS.get(metric)
        if field_name is None:
            return None
        row = self._row(category, type_)
        if row is None:
            return None
        value = getattr(row, field_name)
        return value or None

    def estimate_total_height(self, elements: Iterable[HeightEstimate | Mapping[str, Any]]) -> float:
        """
        Sum (measurement + marginBottom) * count over the requested elements.

        Elements with no known measurement contribute nothing, so the result is a
        lower bound whenever the request mentions unknown types.
        """
        total = 0.0
        for raw in elements:
            element = raw if isinstance(raw, HeightEstimate) else HeightEstimate.model_validate(raw)
            measurement = self.get_measurement(element.category, element.type, element.metric)
            if measurement is None:
                continue
            row = self._row(element.category, element.type)
            margin_bottom = row.margin_bottom if row is not None else 0.0
            total += (measurement + margin_bottom) * element.count
        return total

    def fits_in_space(self, elements: Iterable[HeightEstimate | Mapping[str, Any]], available_space: float) -> bool:
        return self.estimate_total_height(elements) <= available_space

    def page_metrics(self, landscape: bool = False) -> PageMetrics:
        return PAGE_PRESETS["A4-landscape"] if landscape else PAGE_PRESETS["A4"]

    def spacing(self, name: str) -> Optional[float]:
        return SPACING.get(name)

    def register_custom_measurement(self, key: str, measurement: StandardMeasurement | Mapping[str, Any]) -> None:
        row = measurement if isinstance(measurement, StandardMeasurement) else StandardMeasurement.model_validate(measurement)
        self._custom[key] = row
        _LOG.debug("DB_CUSTOM_REGISTERED key=%s", key)

    def custom_measurement(self, category: str, type_: str) -> Optional[StandardMeasurement]:
        return self._custom.get(_custom_key(category, type_))

    def learn_from_measurement(self, category: str, type_: str, real_value: float) -> StandardMeasurement:
        """
        Fold one observed height into the learned row for category.type.

        min/max are widened against every observation and never narrowed when old
        samples age out of the 100-sample window; avg is the mean of the retained
        samples, with an imported snapshot mean counted as many times as the
        window still has room for.
        """
        key = _custom_key(category, type_)
        value = float(real_value)
        current = self._custom.get(key)
        if current is None:
            current = StandardMeasurement(min=value, avg=value, max=value)

        samples = [*current.samples, value][-MAX_LEARNED_SAMPLES:]
        learned = current.model_copy(
            update={"samples": samples, "min": min(current.min, value), "max": max(current.max, value)}
        )
        weight = learned.imported_weight
        learned.avg = ((learned.imported_avg or 0.0) * weight + sum(samples)) / (weight + len(samples))
        self._custom[key] = learned
        _LOG.debug("DB_LEARN key=%s value=%.1f samples=%s", key, value, len(samples))
        return learned

    def export_learned_measurements(self) -> dict[str, dict[str, Any]]:
        return {
            key: {
                "min": row.min,
                "avg": round(row.avg),
                "max": row.max,
                "samples": row.sample_count,
            }
            for key, row in self._custom.items()
        }

    def import_learned_measurements(self, learned: Mapping[str, Mapping[str, Any]]) -> int:
        imported = 0
        for key, raw in learned.items():
            if not isinstance(raw, Mapping):
                continue
            row = dict(raw)
            count = row.get("samples")
            if isinstance(count, int):
                row["imported_samples"] = count
                row["imported_avg"] = row.get("avg")
            self._custom[key] = StandardMeasurement.model_validate(row)
            imported += 1
        _LOG.info("DB_IMPORT learned=%s", imported)
        return imported

    # --- lookups by rendered element type ---

    def standard_measurement(self, element_type: str) -> Optional[StandardMeasurement]:
        target = _ELEMENT_TYPE_ROWS.get(element_type)
        if target is None:
            return None
        return self._row(*target)

    def learn_from_element(self, element_type: str, real_value: float) -> Optional[StandardMeasurement]:
        target = _ELEMENT_TYPE_ROWS.get(element_type)
        if target is None:
            return None
        return self.learn_from_measurement(*target, real_value)

    def confidence(self, element_type: str) -> Optional[float]:
        target = _ELEMENT_TYPE_ROWS.get(element_type)
        if target is None or self._row(*target) is None:
            return None
        learned = self.custom_measurement(*target)
        samples = learned.sample_count if learned is not None else 0
        return min(MAX_CONFIDENCE, BASE_CONFIDENCE + CONFIDENCE_PER_SAMPLE * samples)
