from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, computed_field, field_validator

MAX_LEARNED_SAMPLES = 100


class Orientation(str, Enum):
    PORTRAIT = "portrait"
    LANDSCAPE = "landscape"


class OversizePolicy(str, Enum):
    """What the page distribution does with an element taller than a whole page."""
    OVERFLOW = "overflow"
    CLIP = "clip"
    ERROR = "error"


class PageMetrics(BaseModel):
    """
    Page geometry in CSS pixels (96dpi).

    Usable height/width are derived from the page size minus margins and are
    never stored independently.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    width: float = Field(gt=0)
    height: float = Field(gt=0)
    margin_top: float = Field(ge=0.0, default=0.0, validation_alias=AliasChoices("margin_top", "marginTop"))
    margin_bottom: float = Field(ge=0.0, default=0.0, validation_alias=AliasChoices("margin_bottom", "marginBottom"))
    margin_left: float = Field(ge=0.0, default=0.0, validation_alias=AliasChoices("margin_left", "marginLeft"))
    margin_right: float = Field(ge=0.0, default=0.0, validation_alias=AliasChoices("margin_right", "marginRight"))
    orientation: Orientation = Orientation.PORTRAIT

    @computed_field
    @property
    def usable_height(self) -> float:
        return self.height - self.margin_top - self.margin_bottom

    @computed_field
    @property
    def usable_width(self) -> float:
        return self.width - self.margin_left - self.margin_right

    def transposed(self) -> "PageMetrics":
        """Swap width and height, keeping margins. Used after an orientation flip of a live document."""
        flipped = Orientation.PORTRAIT if self.orientation == Orientation.LANDSCAPE else Orientation.LANDSCAPE
        return self.model_copy(update={"width": self.height, "height": self.width, "orientation": flipped})


# --- Input contract (shaped by the template data helpers) ---

def _list_or_empty(value: Any) -> list:
    if not isinstance(value, list):
        return []
    return value


class ReportSection(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    title: str = Field(default="", validation_alias=AliasChoices("titulo", "title"))
    kind: str = Field(default="", validation_alias=AliasChoices("tipo", "type", "kind"))
    items: List[Dict[str, Any]] = Field(default_factory=list)

    @field_validator("title", "kind", mode="before")
    @classmethod
    def _text_or_blank(cls, value: Any) -> str:
        if value is None:
            return ""
        return str(value).strip()

    @field_validator("items", mode="before")
    @classmethod
    def _normalize_items(cls, value: Any) -> list[dict[str, Any]]:
        items = []
        for item in _list_or_empty(value):
            if isinstance(item, dict):
                items.append(item)
            elif isinstance(item, str) and item.strip():
                # Bare strings show up in older payloads; treat them as plain text items.
                items.append({"texto": item})
        return items


class ReportModule(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    title: str = Field(default="", validation_alias=AliasChoices("titulo", "title"))
    module_type: str = Field(default="", validation_alias=AliasChoices("moduleType", "module_type", "tipo"))
    sections: List[ReportSection] = Field(default_factory=list, validation_alias=AliasChoices("secciones", "sections"))

    @field_validator("title", "module_type", mode="before")
    @classmethod
    def _text_or_blank(cls, value: Any) -> str:
        if value is None:
            return ""
        return str(value).strip()

    @field_validator("sections", mode="before")
    @classmethod
    def _normalize_sections(cls, value: Any) -> list:
        return [s for s in _list_or_empty(value) if isinstance(s, dict)]


class ReportContent(BaseModel):
    """Read-only view over the `modulos` tree of a report payload."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    modules: List[ReportModule] = Field(default_factory=list, validation_alias=AliasChoices("modulos", "modules"))

    @field_validator("modules", mode="before")
    @classmethod
    def _normalize_modules(cls, value: Any) -> list:
        return [m for m in _list_or_empty(value) if isinstance(m, dict)]

    @classmethod
    def from_data(cls, data: Any) -> "ReportContent":
        if not isinstance(data, dict):
            return cls()
        return cls.model_validate({"modulos": data.get("modulos")})


# --- Geometry collected from a layout probe ---

class PhantomNode(BaseModel):
    """One structural box of the off-screen skeleton, in depth-first order."""
    model_config = ConfigDict(frozen=True)

    id: str
    kind: Literal["cover-page", "module-title", "section-title", "section-item"]
    content_type: str = ""
    module_index: Optional[int] = None
    section_index: Optional[int] = None
    item_index: Optional[int] = None
    text: str = ""


class ElementBox(BaseModel):
    """Raw geometry and content facts for one rendered element, as reported by a probe."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    kind: str = "generic"
    element_type: str = Field(default="generic", validation_alias=AliasChoices("element_type", "elementType"))
    content_type: str = Field(default="", validation_alias=AliasChoices("content_type", "contentType"))
    module_index: Optional[int] = Field(default=None, validation_alias=AliasChoices("module_index", "moduleIndex"))
    section_index: Optional[int] = Field(default=None, validation_alias=AliasChoices("section_index", "sectionIndex"))
    item_index: Optional[int] = Field(default=None, validation_alias=AliasChoices("item_index", "itemIndex"))
    width: float = 0.0
    height: float = 0.0
    top: float = 0.0
    left: float = 0.0
    margin_top: float = Field(default=0.0, validation_alias=AliasChoices("margin_top", "marginTop"))
    margin_bottom: float = Field(default=0.0, validation_alias=AliasChoices("margin_bottom", "marginBottom"))
    padding_top: float = Field(default=0.0, validation_alias=AliasChoices("padding_top", "paddingTop"))
    padding_bottom: float = Field(default=0.0, validation_alias=AliasChoices("padding_bottom", "paddingBottom"))
    breakable: bool = True
    breadcrumb: Optional[str] = None
    text_length: int = Field(default=0, validation_alias=AliasChoices("text_length", "textLength"))
    html_length: int = Field(default=0, validation_alias=AliasChoices("html_length", "htmlLength"))
    child_count: int = Field(default=0, validation_alias=AliasChoices("child_count", "childCount"))
    has_images: bool = Field(default=False, validation_alias=AliasChoices("has_images", "hasImages"))
    has_tables: bool = Field(default=False, validation_alias=AliasChoices("has_tables", "hasTables"))
    has_lists: bool = Field(default=False, validation_alias=AliasChoices("has_lists", "hasLists"))

    @field_validator(
        "width", "height", "top", "left",
        "margin_top", "margin_bottom", "padding_top", "padding_bottom",
        mode="before",
    )
    @classmethod
    def _number_or_zero(cls, value: Any) -> float:
        # getComputedStyle can report "auto" or NaN; those count as 0.
        try:
            parsed = float(value)
        except (TypeError, ValueError):
            return 0.0
        if parsed != parsed:
            return 0.0
        return parsed


class DocumentSnapshot(BaseModel):
    """What the post-render measurement needs to know about a live document."""
    text_lengths: List[int] = Field(default_factory=list)
    elements: List[ElementBox] = Field(default_factory=list)
    table_count: int = Field(ge=0, default=0)


class Measurement(BaseModel):
    """One measured element. Immutable; a re-measure produces a new instance."""
    model_config = ConfigDict(frozen=True)

    id: str
    kind: str
    content_type: str = ""
    module_index: Optional[int] = None
    section_index: Optional[int] = None
    item_index: Optional[int] = None
    width: float = 0.0
    height: float = 0.0
    margin_top: float = 0.0
    margin_bottom: float = 0.0
    padding_top: float = 0.0
    padding_bottom: float = 0.0
    breakable: bool = True
    complexity: float = Field(ge=0.0, le=10.0, default=0.0)
    content_length: int = 0
    standard_height: Optional[float] = None
    variance: Optional[float] = None
    confidence: Optional[float] = None

    @computed_field
    @property
    def effective_height(self) -> float:
        return self.height + self.margin_top + self.margin_bottom


class Page(BaseModel):
    elements: List[Measurement] = Field(default_factory=list)
    indices: List[int] = Field(default_factory=list)
    used_height: float = 0.0
    remaining_height: float
    overflow: bool = False


class Distribution(BaseModel):
    pages: List[Page] = Field(default_factory=list)
    break_points: List[int] = Field(default_factory=list)
    orphaned_headers: List[int] = Field(default_factory=list)
    oversized: List[int] = Field(default_factory=list)
    clipped: List[int] = Field(default_factory=list)

    @computed_field
    @property
    def page_count(self) -> int:
        return len(self.pages)


class PageBreak(BaseModel):
    reason: Literal["height-exceeded", "orphan-header", "keep-together"]
    before_element: Optional[int] = None
    after_element: Optional[int] = None
    element: Optional[int] = None
    suggested_break: bool = True
    keep_together: bool = False


class StandardMeasurement(BaseModel):
    """
    Expected size of one element category/type, in pixels.

    Learned rows keep at most the last 100 raw samples; min and max only ever widen.
    Rows restored from a snapshot carry a sample count and mean but no raw
    samples; that mean keeps its weight until newer samples fill the window.
    """
    model_config = ConfigDict(populate_by_name=True)

    min: float
    avg: float
    max: float
    margin_bottom: float = Field(default=0.0, validation_alias=AliasChoices("margin_bottom", "marginBottom"))
    samples: List[float] = Field(default_factory=list)
    imported_samples: int = Field(ge=0, default=0)
    imported_avg: Optional[float] = None
    description: str = ""

    @field_validator("samples", mode="before")
    @classmethod
    def _samples_list(cls, value: Any) -> list:
        # Exported snapshots store a count in place of the raw list.
        if not isinstance(value, list):
            return []
        return value

    @property
    def imported_weight(self) -> int:
        if self.imported_avg is None:
            return 0
        return min(self.imported_samples, max(0, MAX_LEARNED_SAMPLES - len(self.samples)))

    @property
    def sample_count(self) -> int:
        if self.imported_avg is None:
            return len(self.samples) or self.imported_samples
        return len(self.samples) + self.imported_weight


class HeightEstimate(BaseModel):
    """One line of an estimate request: `count` elements of category/type."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    category: str
    type: str
    count: int = Field(ge=0, default=1)
    metric: Literal["min", "avg", "max"] = "avg"


# --- Output contract written into the shared request data ---

class LayoutCalculations(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    performed: bool
    timestamp: str
    page_count: int = Field(default=0, serialization_alias="pageCount")
    break_points: List[int] = Field(default_factory=list, serialization_alias="breakPoints")
    orphaned_headers: List[int] = Field(default_factory=list, serialization_alias="orphanedHeaders")
    measurements: int = 0
    error: Optional[str] = None


class Fase2Flags(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    enabled: bool
    timestamp: str
    calculation_requested: bool = Field(serialization_alias="calculationRequested")
    phantom_render_enabled: bool = Field(serialization_alias="phantomRenderEnabled")
    diagnostics_enabled: bool = Field(serialization_alias="diagnosticsEnabled")


class MeasurementReport(BaseModel):
    """Outcome of measuring the real rendered document."""
    orientation: Orientation
    density: float
    total_elements: int
    grid_scale: float
    total_height: float
    page_metrics: PageMetrics
    measurements: List[Measurement] = Field(default_factory=list)
    page_breaks: List[PageBreak] = Field(default_factory=list)
    distribution: Distribution
    ready_flag: str
    fase2_enabled: bool = False


# --- API schemas ---

class MeasureRequest(BaseModel):
    html: str = Field(min_length=1)


class LayoutSnapshot(BaseModel):
    cache: Dict[str, Any] = Field(default_factory=dict)
    learned: Dict[str, Any] = Field(default_factory=dict)
