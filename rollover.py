"""Pure rollover cascade over the weeks of one month.

The plan is derived only from each week's base share, closed flag and
spent amount (plus an optional carry-in from the previous month), so
running it again on unchanged input always yields the same result.
"""

from dataclasses import dataclass
from typing import Optional, Sequence


@dataclass(frozen=True)
class WeekState:
    week_id: int
    week_number: int
    base_budget: int
    spent_amount: int
    is_closed: bool


@dataclass(frozen=True)
class WeekPlan:
    week_id: int
    week_number: int
    weekly_budget: int
    rollover_amount: int
    is_closed: bool


@dataclass(frozen=True)
class MonthPlan:
    weeks: tuple[WeekPlan, ...]
    total_rollover: int
    # rollover left after the last closed week when no open week can take it
    unattached_rollover: int
    receiving_week_id: Optional[int]

    def for_week(self, week_id: int) -> WeekPlan:
        for plan in self.weeks:
            if plan.week_id == week_id:
                return plan
        raise KeyError(week_id)

    @property
    def has_open_week(self) -> bool:
        return any(not plan.is_closed for plan in self.weeks)


def calculate_rollover(weekly_budget: int, spent_amount: int) -> int:
    return weekly_budget - spent_amount


def plan_month(states: Sequence[WeekState], carry_in: int = 0) -> MonthPlan:
    ordered = sorted(states, key=lambda s: s.week_number)

    closed_plans: dict[int, WeekPlan] = {}
    chain = carry_in
    total_rollover = 0
    for state in ordered:
        if not state.is_closed:
            continue
        budget = state.base_budget + chain
        rollover = calculate_rollover(budget, state.spent_amount)
        closed_plans[state.week_id] = WeekPlan(
            week_id=state.week_id,
            week_number=state.week_number,
            weekly_budget=budget,
            rollover_amount=rollover,
            is_closed=True,
        )
        chain = rollover
        total_rollover += rollover

    plans: list[WeekPlan] = []
    receiving_week_id: Optional[int] = None
    for state in ordered:
        if state.is_closed:
            plans.append(closed_plans[state.week_id])
            continue
        budget = state.base_budget
        if receiving_week_id is None:
            receiving_week_id = state.week_id
            budget += chain
        plans.append(
            WeekPlan(
                week_id=state.week_id,
                week_number=state.week_number,
                weekly_budget=budget,
                rollover_amount=0,
                is_closed=False,
            )
        )

    return MonthPlan(
        weeks=tuple(plans),
        total_rollover=total_rollover,
        unattached_rollover=chain if receiving_week_id is None else 0,
        receiving_week_id=receiving_week_id,
    )
