from types import SimpleNamespace

import pytest
from pydantic import ValidationError

from allocations import DEFAULT_CATEGORIES, allocate, is_complete
from schemas import AllocationIn, AllocationsIn


def _categories(*allocations: float) -> list[SimpleNamespace]:
    return [
        SimpleNamespace(id=index + 1, allocation=value)
        for index, value in enumerate(allocations)
    ]


def test_default_categories_are_complete() -> None:
    assert is_complete(d.suggested_percentage for d in DEFAULT_CATEGORIES)


def test_allocate_default_split_of_a_week() -> None:
    categories = _categories(
        *(d.suggested_percentage for d in DEFAULT_CATEGORIES)
    )

    amounts = allocate(35000, categories)

    assert amounts == {1: 14000, 2: 700, 3: 14000, 4: 1750, 5: 4550}


def test_allocate_hands_leftover_units_to_largest_fractions() -> None:
    amounts = allocate(1000, _categories(33.33, 33.33, 33.34))

    assert amounts == {1: 333, 2: 333, 3: 334}
    assert sum(amounts.values()) == 1000


def test_allocate_sums_exactly_for_awkward_budgets() -> None:
    categories = _categories(40, 2, 40, 5, 13)
    for budget in (1, 7, 999, 28571, 35001, 123457):
        assert sum(allocate(budget, categories).values()) == budget


def test_allocate_negative_week_budget() -> None:
    amounts = allocate(-5000, _categories(50, 50))
    assert sum(amounts.values()) == -5000


def test_incomplete_allocations_are_not_topped_up() -> None:
    amounts = allocate(1000, _categories(50, 40))
    assert amounts == {1: 500, 2: 400}


def test_allocations_payload_must_sum_to_hundred() -> None:
    AllocationsIn(
        allocations=[
            AllocationIn(category_id=1, allocation=60),
            AllocationIn(category_id=2, allocation=39.995),
        ]
    )
    with pytest.raises(ValidationError):
        AllocationsIn(
            allocations=[
                AllocationIn(category_id=1, allocation=60),
                AllocationIn(category_id=2, allocation=30),
            ]
        )


def test_allocations_payload_rejects_duplicates() -> None:
    with pytest.raises(ValidationError):
        AllocationsIn(
            allocations=[
                AllocationIn(category_id=1, allocation=50),
                AllocationIn(category_id=1, allocation=50),
            ]
        )
