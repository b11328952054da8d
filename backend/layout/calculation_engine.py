"""
Runs the phantom pass and writes its summary into the shared request data.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from layout.phantom_renderer import PhantomRenderer, PhantomResult
from models import LayoutCalculations

_LOG = logging.getLogger(__name__)


class LayoutCalculationError(RuntimeError):
    pass


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def layout_metadata(data: dict[str, Any]) -> dict[str, Any]:
    """The `__layout` dict of the request data, created when missing or not a dict."""
    layout = data.get("__layout")
    if not isinstance(layout, dict):
        layout = {}
        data["__layout"] = layout
    return layout


class CalculationEngine:
    def __init__(self, renderer: PhantomRenderer) -> None:
        self.renderer = renderer

    def execute(self, data: dict[str, Any]) -> PhantomResult:
        """
        Run the phantom pass over `data` and overwrite `__layout.calculations`.

        Any failure is raised as LayoutCalculationError and leaves the previous
        summary untouched.
        """
        _LOG.info("CALC_START")
        try:
            results = self.renderer.pre_calculate(data)
        except Exception as exc:
            _LOG.error("CALC_FAILED err=%s", exc, exc_info=True)
            raise LayoutCalculationError(f"phantom pre-calculation failed: {exc}") from exc

        self.inject_calculations(data, results)
        _LOG.info(
            "CALC_DONE pages=%s breaks=%s orphans=%s",
            results.distribution.page_count,
            len(results.distribution.break_points),
            len(results.distribution.orphaned_headers),
        )
        return results

    def inject_calculations(self, data: dict[str, Any], results: PhantomResult) -> None:
        summary = LayoutCalculations(
            performed=True,
            timestamp=_now_iso(),
            page_count=results.distribution.page_count,
            break_points=list(results.distribution.break_points),
            orphaned_headers=list(results.distribution.orphaned_headers),
            measurements=len(results.measurements),
        )
        layout_metadata(data)["calculations"] = summary.model_dump(by_alias=True, exclude_none=True)


def mark_calculation_failed(data: dict[str, Any], error: str) -> dict[str, Any]:
    """No pagination hints: `calculations.performed = False` and portrait."""
    fallback = LayoutCalculations(performed=False, timestamp=_now_iso(), error=error)
    layout = layout_metadata(data)
    layout["calculations"] = fallback.model_dump(by_alias=True, exclude_none=True)
    layout["isLandscape"] = False
    return data


def precalculate_layout(data: dict[str, Any], engine: CalculationEngine) -> dict[str, Any]:
    """
    Best-effort pagination hints: on failure the report still renders, with
    `calculations.performed = False` and no break points.
    """
    try:
        engine.execute(data)
    except LayoutCalculationError as exc:
        _LOG.warning("CALC_DEGRADED falling back to no pagination hints err=%s", exc)
        mark_calculation_failed(data, str(exc))
    return data
