from __future__ import annotations

import pytest

from layout.measurement_database import PAGE_PRESETS
from layout.pagination import (
    OversizedElementError,
    PaginationStage,
    distribute,
    is_header,
    page_breaks_for,
)
from models import Measurement, OversizePolicy, PageMetrics

PAGE = PageMetrics(width=500, height=1000)


def _m(index: int, height: float, kind: str = "section-item", **kwargs) -> Measurement:
    return Measurement(id=f"e{index}", kind=kind, height=height, **kwargs)


def _run(heights, kinds=None, page=PAGE, policy=OversizePolicy.OVERFLOW):
    kinds = kinds or ["section-item"] * len(heights)
    return distribute([_m(i, h, k) for i, (h, k) in enumerate(zip(heights, kinds))], page, policy)


def test_every_element_lands_on_exactly_one_page_in_order():
    heights = [120, 340, 80, 700, 45, 300, 300, 300, 999, 10, 640]
    result = _run(heights)
    placed = [i for page in result.pages for i in page.indices]
    assert placed == list(range(len(heights)))
    assert result.page_count == len(result.pages)


def test_page_accounting_matches_usable_height():
    heights = [120, 340, 80, 700, 45, 300, 300, 300, 999, 10, 640]
    result = _run(heights)
    for page in result.pages:
        assert page.used_height == sum(e.effective_height for e in page.elements)
        assert page.used_height + page.remaining_height == PAGE.usable_height
        assert page.used_height <= PAGE.usable_height


def test_break_points_are_first_index_of_each_following_page():
    result = _run([600, 600, 600])
    assert result.break_points == [1, 2]
    assert result.break_points == [page.indices[0] for page in result.pages[1:]]


def test_effective_height_includes_margins():
    elements = [_m(0, 480, margin_bottom=20), _m(1, 480, margin_top=25)]
    result = distribute(elements, PAGE)
    assert result.break_points == [1]


def test_exact_fit_stays_on_page():
    result = _run([400, 600])
    assert result.page_count == 1
    assert result.pages[0].remaining_height == 0


def test_orphan_header_is_pushed_to_next_page():
    # A4 portrait: 978px usable. After the filler only 120px remain; the header
    # needs 48 + 0.3 * 900 = 318px.
    page = PAGE_PRESETS["A4"]
    result = _run([858, 48, 900], ["section-item", "section-title", "section-item"], page=page)
    assert result.break_points == [1]
    assert result.orphaned_headers == [1]
    assert [p.indices for p in result.pages] == [[0], [1, 2]]


def test_header_with_room_for_start_of_next_element_stays():
    result = _run([500, 48, 100], ["section-item", "module-title", "section-item"])
    assert result.page_count == 1
    assert result.orphaned_headers == []


def test_trailing_header_needs_fallback_space():
    result = _run([900, 60], ["section-item", "section-title"])
    assert result.orphaned_headers == [1]
    assert result.break_points == [1]

    result = _run([880, 60], ["section-item", "section-title"])
    assert result.orphaned_headers == []
    assert result.page_count == 1


def test_header_at_top_of_page_never_leaves_an_empty_page():
    result = _run([48, 990], ["module-title", "section-item"])
    assert result.break_points == [1]
    assert result.orphaned_headers == []
    assert all(page.elements for page in result.pages)


def test_oversized_element_overflows_alone_by_default():
    result = _run([100, 1500, 100])
    assert [p.indices for p in result.pages] == [[0], [1], [2]]
    assert result.pages[1].overflow is True
    assert result.pages[1].remaining_height == -500
    assert result.oversized == [1]
    assert result.clipped == []


def test_oversized_first_element_does_not_create_empty_page():
    result = _run([1500, 100])
    assert [p.indices for p in result.pages] == [[0], [1]]
    assert result.break_points == [1]


def test_clip_policy_accounts_oversized_at_usable_height():
    result = _run([100, 1500, 100], policy="clip")
    assert result.clipped == [1]
    assert result.oversized == [1]
    assert result.pages[1].used_height == PAGE.usable_height
    assert result.pages[1].overflow is False


def test_error_policy_raises():
    with pytest.raises(OversizedElementError) as excinfo:
        _run([100, 1500, 100], policy=OversizePolicy.ERROR)
    assert excinfo.value.index == 1
    assert excinfo.value.usable_height == PAGE.usable_height


def test_empty_input_has_no_pages():
    result = _run([])
    assert result.page_count == 0
    assert result.break_points == []


@pytest.mark.parametrize(
    "kind,item_index,expected",
    [
        ("module-title", None, True),
        ("section-title", None, True),
        ("candidate-header", None, True),
        ("module", None, True),
        ("module", 2, False),
        ("section-item", 0, False),
        ("no-break", None, False),
    ],
)
def test_is_header(kind, item_index, expected):
    assert is_header(Measurement(id="x", kind=kind, item_index=item_index)) is expected


def test_page_breaks_report_reasons_and_keep_together():
    measurements = [
        _m(0, 858),
        _m(1, 48, kind="section-title"),
        _m(2, 900, complexity=8.5),
    ]
    result = distribute(measurements, PAGE_PRESETS["A4"])
    breaks = page_breaks_for(result, measurements)

    assert breaks[0].reason == "orphan-header"
    assert breaks[0].before_element == 1
    assert breaks[0].after_element == 0
    assert breaks[0].suggested_break is True
    keep = [b for b in breaks if b.keep_together]
    assert len(keep) == 1
    assert keep[0].element == 2
    assert keep[0].suggested_break is False


def test_pagination_stage_uses_its_page_and_policy():
    stage = PaginationStage(PAGE, "clip")
    result = stage.reconcile([_m(0, 2000)])
    assert result.clipped == [0]
    assert stage.oversize_policy == OversizePolicy.CLIP
