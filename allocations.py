from dataclasses import dataclass
from typing import Iterable, Protocol

ALLOCATION_TOLERANCE = 0.01


@dataclass(frozen=True)
class DefaultCategory:
    name: str
    min_percentage: float
    max_percentage: float
    suggested_percentage: float


DEFAULT_CATEGORIES: tuple[DefaultCategory, ...] = (
    DefaultCategory("Food", 30, 35, 40),
    DefaultCategory("Transport", 10, 15, 2),
    DefaultCategory("Small treats", 10, 15, 40),
    DefaultCategory("Supplements", 5, 10, 5),
    DefaultCategory("Other", 5, 10, 13),
)


class AllocatedCategory(Protocol):
    id: int
    allocation: float


def allocations_total(allocations: Iterable[float]) -> float:
    return sum(allocations)


def is_complete(allocations: Iterable[float]) -> bool:
    return abs(allocations_total(allocations) - 100) < ALLOCATION_TOLERANCE


def allocate(
    weekly_budget: int, categories: Iterable[AllocatedCategory]
) -> dict[int, int]:
    """Return ``{category_id: allocated_amount}`` for one week.

    Each share is ``weekly_budget * allocation / 100`` floored to whole
    units. When the allocations add up to 100% the leftover units are
    handed out by largest fractional part, so the shares sum exactly to
    ``weekly_budget``.
    """
    items = list(categories)
    if not items:
        return {}

    exact = {c.id: weekly_budget * c.allocation / 100 for c in items}
    amounts = {cid: int(value // 1) for cid, value in exact.items()}

    if is_complete(c.allocation for c in items):
        leftover = weekly_budget - sum(amounts.values())
        by_fraction = sorted(
            exact, key=lambda cid: (exact[cid] - amounts[cid], -cid), reverse=True
        )
        step = 1
        if leftover < 0:
            # allocations within tolerance but above 100
            by_fraction.reverse()
            step = -1
        for index in range(abs(leftover)):
            cid = by_fraction[index % len(by_fraction)]
            amounts[cid] += step
    return amounts
