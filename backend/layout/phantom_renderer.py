"""
Phantom render: estimate where page breaks will fall before the real render.

The report's module/section/item tree is turned into a minimal off-screen
skeleton carrying representative filler per content type, every structural
box is measured after one layout settle, and the measurements are
distributed over pages. The skeleton is always removed, including when
measuring fails.
"""
from __future__ import annotations

import hashlib
import html
import logging
from dataclasses import dataclass
from typing import Any, Optional

from cache.measurement_cache import MeasurementCache
from layout.measurement_database import MeasurementDatabase
from layout.pagination import PaginationStage
from layout.probes import LayoutProbe, to_measurement
from models import (
    Distribution,
    ElementBox,
    Measurement,
    OversizePolicy,
    PageMetrics,
    PhantomNode,
    ReportContent,
    ReportSection,
)

_LOG = logging.getLogger(__name__)

FILLER_TEXT = "Lorem ipsum dolor sit amet, consectetur adipiscing elit."


@dataclass
class PhantomResult:
    measurements: list[Measurement]
    distribution: Distribution
    page_metrics: PageMetrics


def _esc(value: Any) -> str:
    return html.escape(str(value if value is not None else ""), quote=True)


def _item_parts(item: dict[str, Any], section_kind: str) -> tuple[str, str]:
    """(html, plain text) of the representative content for one item."""
    if section_kind == "experiencia":
        parts = [
            ("h4", item.get("empresa") or "Empresa"),
            ("p", item.get("puesto") or "Puesto"),
            ("p", item.get("funciones") or FILLER_TEXT),
        ]
        css = "experience-item"
    elif section_kind == "formacion":
        parts = [("h4", item.get("titulo") or "Título"), ("p", item.get("centro") or "Centro")]
        css = "education-item"
    elif section_kind == "competencias":
        parts = [("span", item.get("nombre") or "Competencia"), ("span", f"{item.get('nivel') or 8}/10")]
        css = "competency-card"
    else:
        text = item.get("descripcion") or item.get("texto") or "Contenido"
        return f"<p>{_esc(text)}</p>", str(text)

    body = "".join(f"<{tag}>{_esc(value)}</{tag}>" for tag, value in parts)
    return f'<div class="{css}">{body}</div>', " ".join(str(value) for _, value in parts)


def _data_attrs(node: PhantomNode) -> str:
    attrs = [
        f'data-phantom-id="{_esc(node.id)}"',
        f'data-kind="{node.kind}"',
        f'data-content-type="{_esc(node.content_type)}"',
    ]
    for name, value in (("module", node.module_index), ("section", node.section_index), ("item", node.item_index)):
        if value is not None:
            attrs.append(f'data-{name}="{value}"')
    return " ".join(attrs)


def _section_skeleton(
    section: ReportSection, m_idx: int, s_idx: int, nodes: list[PhantomNode]
) -> str:
    out = [f'<div class="section" data-section="{s_idx}">']
    if section.title:
        node = PhantomNode(
            id=f"m{m_idx}-s{s_idx}",
            kind="section-title",
            content_type=section.kind,
            module_index=m_idx,
            section_index=s_idx,
            text=section.title,
        )
        nodes.append(node)
        out.append(f'<h3 class="section-title" {_data_attrs(node)}>{_esc(section.title)}</h3>')
    for i_idx, item in enumerate(section.items):
        item_html, item_text = _item_parts(item, section.kind)
        node = PhantomNode(
            id=f"m{m_idx}-s{s_idx}-i{i_idx}",
            kind="section-item",
            content_type=section.kind,
            module_index=m_idx,
            section_index=s_idx,
            item_index=i_idx,
            text=item_text,
        )
        nodes.append(node)
        out.append(f'<div class="section-item" {_data_attrs(node)}>{item_html}</div>')
    out.append("</div>")
    return "".join(out)


def build_phantom_skeleton(content: ReportContent, include_cover: bool = False) -> tuple[list[PhantomNode], str]:
    """
    Depth-first skeleton of the report: module title, then each section's title
    (only when it has one) and items. Returns the measurable nodes in traversal
    order and the HTML that carries them.
    """
    nodes: list[PhantomNode] = []
    out = ['<div class="phantom-content">']
    if include_cover:
        cover = PhantomNode(id="cover", kind="cover-page", text="Portada")
        nodes.append(cover)
        out.append(f'<div class="module cover-page" {_data_attrs(cover)}>Portada</div>')

    for m_idx, module in enumerate(content.modules):
        title = module.title or f"Módulo {m_idx + 1}"
        node = PhantomNode(
            id=f"m{m_idx}",
            kind="module-title",
            content_type=module.module_type,
            module_index=m_idx,
            text=title,
        )
        nodes.append(node)
        out.append(f'<div class="module" data-module="{m_idx}" data-type="{_esc(module.module_type)}">')
        out.append(f'<h2 class="module-title" {_data_attrs(node)}>{_esc(title)}</h2>')
        for s_idx, section in enumerate(module.sections):
            out.append(_section_skeleton(section, m_idx, s_idx, nodes))
        out.append("</div>")

    out.append("</div>")
    return nodes, "".join(out)


class PhantomRenderer(PaginationStage):
    def __init__(
        self,
        probe: LayoutProbe,
        database: MeasurementDatabase,
        cache: Optional[MeasurementCache] = None,
        page_metrics: Optional[PageMetrics] = None,
        oversize_policy: OversizePolicy | str = OversizePolicy.OVERFLOW,
        include_cover: bool = False,
    ) -> None:
        super().__init__(page_metrics or database.page_metrics(landscape=False), oversize_policy)
        self.probe = probe
        self.database = database
        self.cache = cache
        self.include_cover = include_cover

    def _measure_skeleton(self, nodes: list[PhantomNode], skeleton_html: str) -> list[dict[str, Any]]:
        self.probe.attach(nodes, skeleton_html, self.page_metrics.width)
        try:
            self.probe.settle()
            boxes = self.probe.measure()
        finally:
            self.probe.detach()
        return [box.model_dump() for box in boxes]

    def _cache_key(self, skeleton_html: str, styles: Any = None) -> str:
        params = {
            "probe": type(self.probe).__name__,
            "width": self.page_metrics.width,
            "html": hashlib.sha256(skeleton_html.encode("utf-8")).hexdigest(),
        }
        if isinstance(styles, str) and styles:
            params["styles"] = hashlib.sha256(styles.encode("utf-8")).hexdigest()
        return MeasurementCache.generate_key("phantom", params)

    def pre_calculate(self, data: Any) -> PhantomResult:
        content = ReportContent.from_data(data)
        if not content.modules:
            _LOG.warning("PHANTOM_EMPTY no modules to pre-calculate")
        nodes, skeleton_html = build_phantom_skeleton(content, include_cover=self.include_cover)
        _LOG.info("PHANTOM_START modules=%s nodes=%s", len(content.modules), len(nodes))

        if self.cache is not None:
            styles = data.get("styles") if isinstance(data, dict) else None
            raw = self.cache.get_or_calculate(
                self._cache_key(skeleton_html, styles),
                lambda: self._measure_skeleton(nodes, skeleton_html),
            )
        else:
            raw = self._measure_skeleton(nodes, skeleton_html)

        measurements = [to_measurement(ElementBox.model_validate(item)) for item in raw]
        distribution = self.reconcile(measurements)
        _LOG.info("PHANTOM_DONE elements=%s pages=%s", len(measurements), distribution.page_count)
        return PhantomResult(measurements=measurements, distribution=distribution, page_metrics=self.page_metrics)

    def estimate(self, data: Any) -> Distribution:
        return self.pre_calculate(data).distribution
