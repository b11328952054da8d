"""
Page distribution: partition an ordered run of measured elements into pages.

Single pass, no backtracking, no reordering. An element is never split; an
element taller than a whole page is handled by the oversize policy. Headers
that would end a page without room for a start of the following element are
pushed to the next page (orphan-header avoidance).
"""
from __future__ import annotations

from typing import Optional, Sequence

from models import Distribution, Measurement, OversizePolicy, Page, PageBreak, PageMetrics

HEADER_FOLLOW_RATIO = 0.3
HEADER_FOLLOW_FALLBACK_PX = 50.0
KEEP_TOGETHER_COMPLEXITY = 7.0


class OversizedElementError(ValueError):
    def __init__(self, index: int, height: float, usable_height: float) -> None:
        self.index = index
        self.height = height
        self.usable_height = usable_height
        super().__init__(
            f"element {index} is {height:.1f}px tall; a page only holds {usable_height:.1f}px"
        )


def is_header(element: Measurement) -> bool:
    kind = element.kind.lower()
    if "title" in kind or "header" in kind:
        return True
    return kind == "module" and element.item_index is None


def _new_page(usable_height: float) -> Page:
    return Page(used_height=0.0, remaining_height=usable_height)


def _required_after_header(header_height: float, following: Optional[Measurement]) -> float:
    if following is None:
        return header_height + HEADER_FOLLOW_FALLBACK_PX
    return header_height + following.effective_height * HEADER_FOLLOW_RATIO


def distribute(
    measurements: Sequence[Measurement],
    page: PageMetrics,
    policy: OversizePolicy | str = OversizePolicy.OVERFLOW,
) -> Distribution:
    policy = OversizePolicy(policy)
    usable = page.usable_height
    distribution = Distribution()
    current = _new_page(usable)

    def close_page(index: int) -> Page:
        distribution.pages.append(current)
        distribution.break_points.append(index)
        return _new_page(usable)

    for index, element in enumerate(measurements):
        height = element.effective_height
        if height > usable:
            if policy == OversizePolicy.ERROR:
                raise OversizedElementError(index, height, usable)
            distribution.oversized.append(index)
            if policy == OversizePolicy.CLIP:
                height = usable
                distribution.clipped.append(index)

        # A break never leaves an empty page behind.
        if current.elements:
            following = measurements[index + 1] if index + 1 < len(measurements) else None
            if is_header(element) and _required_after_header(height, following) > current.remaining_height:
                distribution.orphaned_headers.append(index)
                current = close_page(index)
            elif height > current.remaining_height:
                current = close_page(index)

        current.elements.append(element)
        current.indices.append(index)
        current.used_height += height
        current.remaining_height -= height
        if current.used_height > usable:
            current.overflow = True

    if current.elements:
        distribution.pages.append(current)
    return distribution


def page_breaks_for(distribution: Distribution, measurements: Sequence[Measurement]) -> list[PageBreak]:
    """Break suggestions for a distribution, plus keep-together flags for complex elements."""
    orphaned = set(distribution.orphaned_headers)
    breaks = [
        PageBreak(
            reason="orphan-header" if index in orphaned else "height-exceeded",
            before_element=index,
            after_element=index - 1,
            suggested_break=True,
        )
        for index in distribution.break_points
    ]
    for index, element in enumerate(measurements):
        if element.complexity > KEEP_TOGETHER_COMPLEXITY:
            breaks.append(
                PageBreak(reason="keep-together", element=index, suggested_break=False, keep_together=True)
            )
    return breaks


class PaginationStage:
    """
    Shared base for the two pagination passes: the phantom estimate before the
    real render and the reconciliation against the real render afterwards.
    """

    def __init__(self, page_metrics: PageMetrics, oversize_policy: OversizePolicy | str = OversizePolicy.OVERFLOW) -> None:
        self.page_metrics = page_metrics
        self.oversize_policy = OversizePolicy(oversize_policy)

    def reconcile(self, actual: Sequence[Measurement]) -> Distribution:
        return distribute(actual, self.page_metrics, self.oversize_policy)
