"""
Before-render preparation of report data.

Makes sure every list the template iterates over is a list, and writes a
first, volume-based layout guess into `__layout` together with the flags
that tell the template which measurement phases are switched on.
"""
from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from typing import Any

from config import Settings
from layout.calculation_engine import layout_metadata
from models import Fase2Flags

_LOG = logging.getLogger(__name__)

LIST_FIELDS = (
    "modulos",
    "acreditaciones",
    "adjuntos",
    "competencias",
    "experienciasLaborales",
    "formaciones",
    "idiomas",
    "aplicacionesInformaticas",
    "referencias",
)

TEXT_FIELDS = (
    "motivoPresentacion",
    "aspectosPersonales",
    "trayectoriaFormativa",
    "trayectoriaProfesional",
    "datosInteres",
    "entrevistaPersonal",
    "valoracion",
    "potencial",
)

LANDSCAPE_CHARS = 5000
LANDSCAPE_ITEMS = 50
CHARS_PER_ITEM = 100
CHARS_PER_PAGE = 3000


def _count_chars(informe: Any) -> int:
    if not isinstance(informe, dict):
        return 0
    total = 0
    for name in TEXT_FIELDS:
        value = informe.get(name)
        if value:
            total += len(str(value))
    return total


def estimate_pages(total_chars: int, total_items: int) -> int:
    return math.ceil((total_chars + total_items * CHARS_PER_ITEM) / CHARS_PER_PAGE)


def fase2_flags(settings: Settings) -> Fase2Flags:
    return Fase2Flags(
        enabled=True,
        timestamp=datetime.now(timezone.utc).isoformat(),
        calculation_requested=settings.phantom_enabled,
        phantom_render_enabled=settings.phantom_enabled,
        diagnostics_enabled=settings.diagnostics_enabled,
    )


def prepare_report_data(data: dict[str, Any], settings: Settings) -> dict[str, Any]:
    for name in LIST_FIELDS:
        if not isinstance(data.get(name), list):
            data[name] = []

    total_chars = _count_chars(data.get("informe"))
    total_items = sum(len(data[name]) for name in LIST_FIELDS)

    layout = layout_metadata(data)
    layout.update(
        {
            "isLandscape": total_chars > LANDSCAPE_CHARS or total_items > LANDSCAPE_ITEMS,
            "totalChars": total_chars,
            "totalItems": total_items,
            "estimatedPages": estimate_pages(total_chars, total_items),
        }
    )
    layout["fase2"] = fase2_flags(settings).model_dump(by_alias=True)

    _LOG.info(
        "PREPARE_DONE chars=%s items=%s landscape=%s pages=%s",
        total_chars, total_items, layout["isLandscape"], layout["estimatedPages"],
    )
    return data
