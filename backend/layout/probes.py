"""
Layout probes: the capability to ask a layout engine how big something renders.

BrowserProbe drives a headless Chromium page through Playwright.
EstimatingProbe answers from the measurement database and never touches a
browser; it is deterministic and is what the tests use.
"""
from __future__ import annotations

import logging
import math
from contextlib import contextmanager
from typing import Any, Iterator, Optional, Protocol, Sequence

from layout.measurement_database import MeasurementDatabase
from models import DocumentSnapshot, ElementBox, Measurement, PhantomNode

_LOG = logging.getLogger(__name__)

PHANTOM_CONTAINER_ID = "phantom-renderer"


class LayoutProbe(Protocol):
    def attach(self, nodes: Sequence[PhantomNode], html: str, width: float) -> None: ...

    def settle(self) -> None: ...

    def measure(self) -> list[ElementBox]: ...

    def detach(self) -> None: ...

    def snapshot_document(self) -> DocumentSnapshot: ...

    def set_root_properties(self, properties: dict[str, str]) -> None: ...

    def set_landscape(self) -> None: ...

    def wait(self, delay_ms: int) -> None: ...

    def signal_ready(self, flag: str, delay_ms: int) -> None: ...


# --- Headless browser ---

_ATTACH_JS = """
({ html, width, containerId }) => {
  let container = document.getElementById(containerId);
  if (!container) {
    container = document.createElement("div");
    container.id = containerId;
    container.setAttribute("aria-hidden", "true");
    container.style.cssText = [
      "position: absolute",
      "left: -9999px",
      "top: -9999px",
      `width: ${width}px`,
      "visibility: hidden",
      "overflow: hidden",
    ].join(";");
    document.querySelectorAll('style, link[rel="stylesheet"]').forEach((node) => {
      container.appendChild(node.cloneNode(true));
    });
    document.body.appendChild(container);
  }
  container.insertAdjacentHTML("beforeend", html);
  return true;
}
"""

_SETTLE_JS = """
() => new Promise((resolve) => {
  requestAnimationFrame(() => requestAnimationFrame(() => resolve(true)));
})
"""

_MEASURE_JS = """
(containerId) => {
  const container = document.getElementById(containerId);
  if (!container) return [];
  const num = (v) => { const n = parseFloat(v); return Number.isFinite(n) ? n : 0; };
  const idx = (v) => (v === undefined || v === "" ? null : Number(v));
  return Array.from(container.querySelectorAll("[data-phantom-id]")).map((el) => {
    const rect = el.getBoundingClientRect();
    const s = window.getComputedStyle(el);
    return {
      id: el.dataset.phantomId,
      kind: el.dataset.kind || "generic",
      contentType: el.dataset.contentType || "",
      moduleIndex: idx(el.dataset.module),
      sectionIndex: idx(el.dataset.section),
      itemIndex: idx(el.dataset.item),
      width: rect.width,
      height: rect.height,
      top: rect.top,
      left: rect.left,
      marginTop: num(s.marginTop),
      marginBottom: num(s.marginBottom),
      paddingTop: num(s.paddingTop),
      paddingBottom: num(s.paddingBottom),
      breakable: (s.breakInside || s.pageBreakInside) !== "avoid",
      textLength: (el.textContent || "").length,
      htmlLength: el.outerHTML.length,
      childCount: el.querySelectorAll("*").length,
    };
  });
}
"""

_DETACH_JS = """
(containerId) => {
  const container = document.getElementById(containerId);
  if (container && container.parentNode) container.parentNode.removeChild(container);
  return true;
}
"""

_SNAPSHOT_JS = """
() => {
  const num = (v) => { const n = parseFloat(v); return Number.isFinite(n) ? n : 0; };
  const elementType = (el) => {
    const tag = el.tagName.toLowerCase();
    if (el.classList.contains("module")) return "module";
    if (el.classList.contains("section")) return "section";
    if (["h1", "h2", "h3", "h4"].includes(tag)) return tag;
    if (tag === "p") return "paragraph";
    if (tag === "table") return "table";
    if (tag === "ul" || tag === "ol") return "list";
    if (el.classList.contains("competency-card")) return "competency-card";
    if (el.classList.contains("experience-item")) return "experience-item";
    if (el.classList.contains("education-item")) return "education-item";
    return "generic";
  };
  const box = (el, id, kind) => {
    const rect = el.getBoundingClientRect();
    const s = window.getComputedStyle(el);
    return {
      id,
      kind,
      elementType: elementType(el),
      width: rect.width,
      height: rect.height,
      top: rect.top,
      left: rect.left,
      marginTop: num(s.marginTop),
      marginBottom: num(s.marginBottom),
      paddingTop: num(s.paddingTop),
      paddingBottom: num(s.paddingBottom),
      breakable: !el.classList.contains("no-break"),
      breadcrumb: el.getAttribute("data-breadcrumb"),
      textLength: (el.textContent || "").length,
      htmlLength: el.outerHTML.length,
      childCount: el.querySelectorAll("*").length,
      hasImages: el.querySelectorAll("img").length > 0,
      hasTables: el.querySelectorAll("table").length > 0,
      hasLists: el.querySelectorAll("ul, ol").length > 0,
    };
  };
  const elements = [];
  document.querySelectorAll(".module").forEach((el, i) => elements.push(box(el, `module-${i}`, "module")));
  document.querySelectorAll(".no-break").forEach((el, i) => elements.push(box(el, `no-break-${i}`, "no-break")));
  return {
    text_lengths: Array.from(document.querySelectorAll("p, li, td")).map((el) => (el.textContent || "").length),
    elements,
    table_count: document.querySelectorAll("table").length,
  };
}
"""

_ROOT_PROPERTIES_JS = """
(properties) => {
  const root = document.documentElement;
  Object.entries(properties).forEach(([name, value]) => root.style.setProperty(name, value));
  return true;
}
"""

_SIGNAL_READY_JS = """
({ flag, delay }) => {
  setTimeout(() => { window[flag] = true; }, delay);
  return true;
}
"""


class BrowserProbe:
    """LayoutProbe over a Playwright (sync API) page that already holds the document."""

    def __init__(self, page: Any, container_id: str = PHANTOM_CONTAINER_ID) -> None:
        self.page = page
        self.container_id = container_id

    def attach(self, nodes: Sequence[PhantomNode], html: str, width: float) -> None:
        self.page.evaluate(_ATTACH_JS, {"html": html, "width": width, "containerId": self.container_id})

    def settle(self) -> None:
        self.page.evaluate(_SETTLE_JS)

    def measure(self) -> list[ElementBox]:
        raw = self.page.evaluate(_MEASURE_JS, self.container_id)
        return [ElementBox.model_validate(item) for item in raw or []]

    def detach(self) -> None:
        self.page.evaluate(_DETACH_JS, self.container_id)

    def snapshot_document(self) -> DocumentSnapshot:
        return DocumentSnapshot.model_validate(self.page.evaluate(_SNAPSHOT_JS))

    def set_root_properties(self, properties: dict[str, str]) -> None:
        self.page.evaluate(_ROOT_PROPERTIES_JS, properties)

    def set_landscape(self) -> None:
        self.page.evaluate("() => document.body.classList.add('landscape')")

    def wait(self, delay_ms: int) -> None:
        self.page.wait_for_timeout(delay_ms)

    def signal_ready(self, flag: str, delay_ms: int) -> None:
        self.page.evaluate(_SIGNAL_READY_JS, {"flag": flag, "delay": delay_ms})


BLANK_DOCUMENT = "<!doctype html><html><head></head><body></body></html>"


def host_document(styles: Any = None) -> str:
    """
    Blank page carrying the report template's styles so phantom nodes get the
    fonts and spacing of the real render. `styles` is raw CSS or head markup
    (`<style>` / `<link>` tags); anything else gives the bare page.
    """
    if not isinstance(styles, str) or not styles.strip():
        return BLANK_DOCUMENT
    head = styles if styles.lstrip().startswith("<") else f"<style>{styles}</style>"
    return f"<!doctype html><html><head>{head}</head><body></body></html>"


@contextmanager
def browser_page(html: Optional[str] = None, width: int = 794, height: int = 1122) -> Iterator[Any]:
    """Launch headless Chromium with `html` loaded and print media emulated."""
    from playwright.sync_api import sync_playwright

    with sync_playwright() as p:
        browser = p.chromium.launch(args=["--no-sandbox"])
        _LOG.debug("BROWSER_LAUNCH viewport=%sx%s", width, height)
        try:
            page = browser.new_page(viewport={"width": width, "height": height})
            page.set_content(html or BLANK_DOCUMENT, wait_until="networkidle")
            page.emulate_media(media="print")
            yield page
        finally:
            browser.close()


@contextmanager
def browser_probe(html: Optional[str] = None) -> Iterator[BrowserProbe]:
    with browser_page(html) as page:
        yield BrowserProbe(page)


# --- In-memory estimation ---

# Section `tipo` -> (category, type) row used for its items.
ITEM_ROWS: dict[str, tuple[str, str]] = {
    "experiencia": ("content", "experience-item"),
    "formacion": ("content", "education-item"),
    "competencias": ("content", "competency-card"),
    "referencias": ("content", "reference-item"),
}
DEFAULT_ITEM_ROW = ("content", "paragraph")
TEXT_LINE_PX = 18.0
AVG_CHAR_PX = 7.0
BASELINE_TEXT_LINES = 2


def row_for_node(node: PhantomNode) -> tuple[str, str]:
    if node.kind == "cover-page":
        return ("module", "cover-page")
    if node.kind == "module-title":
        return ("headers", "module-title")
    if node.kind == "section-title":
        return ("headers", "section-title")
    return ITEM_ROWS.get(node.content_type, DEFAULT_ITEM_ROW)


class EstimatingProbe:
    """
    LayoutProbe that answers from the measurement database.

    Items with more text than fits on two lines grow by one line height per
    extra line. Document-level calls work on a supplied DocumentSnapshot and
    record what a browser would have been told to do.
    """

    def __init__(self, database: MeasurementDatabase, document: Optional[DocumentSnapshot] = None) -> None:
        self.database = database
        self.document = document or DocumentSnapshot()
        self._nodes: list[PhantomNode] = []
        self._width = 0.0
        self.attached = False
        self.root_properties: dict[str, str] = {}
        self.landscape = False
        self.waits: list[int] = []
        self.ready_flags: dict[str, int] = {}

    def attach(self, nodes: Sequence[PhantomNode], html: str, width: float) -> None:
        self._nodes = list(nodes)
        self._width = width
        self.attached = True

    def settle(self) -> None:
        return None

    def _estimate(self, node: PhantomNode) -> ElementBox:
        category, type_ = row_for_node(node)
        height = self.database.get_measurement(category, type_) or 0.0
        margin_bottom = self.database.get_measurement(category, type_, "marginBottom") or 0.0
        if node.kind == "section-item" and node.text:
            chars_per_line = max(1, int(self._width / AVG_CHAR_PX))
            lines = math.ceil(len(node.text) / chars_per_line)
            height += max(0, lines - BASELINE_TEXT_LINES) * TEXT_LINE_PX
        return ElementBox(
            id=node.id,
            kind=node.kind,
            element_type=type_,
            content_type=node.content_type,
            module_index=node.module_index,
            section_index=node.section_index,
            item_index=node.item_index,
            width=self._width,
            height=height,
            margin_bottom=margin_bottom,
            text_length=len(node.text),
        )

    def measure(self) -> list[ElementBox]:
        if not self.attached:
            return []
        return [self._estimate(node) for node in self._nodes]

    def detach(self) -> None:
        self._nodes = []
        self.attached = False

    def snapshot_document(self) -> DocumentSnapshot:
        return self.document

    def set_root_properties(self, properties: dict[str, str]) -> None:
        self.root_properties.update(properties)

    def set_landscape(self) -> None:
        self.landscape = True

    def wait(self, delay_ms: int) -> None:
        self.waits.append(delay_ms)

    def signal_ready(self, flag: str, delay_ms: int) -> None:
        self.ready_flags[flag] = delay_ms


def complexity_score(box: ElementBox) -> float:
    """0-10 score: descendants, text volume, and the presence of images, tables or lists."""
    score = min(box.child_count * 0.1, 3.0)
    score += min(box.text_length / 1000.0, 3.0)
    score += 2.0 if box.has_images else 0.0
    score += 2.0 if box.has_tables else 0.0
    score += 1.0 if box.has_lists else 0.0
    return min(score, 10.0)


def to_measurement(box: ElementBox, **enrichment: Any) -> Measurement:
    return Measurement(
        id=box.id,
        kind=box.kind,
        content_type=box.content_type or box.element_type,
        module_index=box.module_index,
        section_index=box.section_index,
        item_index=box.item_index,
        width=box.width,
        height=box.height,
        margin_top=box.margin_top,
        margin_bottom=box.margin_bottom,
        padding_top=box.padding_top,
        padding_bottom=box.padding_bottom,
        breakable=box.breakable,
        complexity=complexity_score(box),
        content_length=box.text_length,
        **enrichment,
    )
