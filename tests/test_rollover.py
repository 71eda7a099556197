from rollover import WeekState, calculate_rollover, plan_month


def _states(*weeks: tuple[bool, int], base: int = 35000) -> list[WeekState]:
    return [
        WeekState(
            week_id=index + 10,
            week_number=index + 1,
            base_budget=base,
            spent_amount=spent,
            is_closed=closed,
        )
        for index, (closed, spent) in enumerate(weeks)
    ]


def _budgets(plan) -> list[int]:
    return [w.weekly_budget for w in plan.weeks]


def test_calculate_rollover_is_signed() -> None:
    assert calculate_rollover(35000, 30000) == 5000
    assert calculate_rollover(35000, 40000) == -5000


def test_nothing_closed_keeps_base_budgets() -> None:
    plan = plan_month(_states((False, 0), (False, 0), (False, 0), (False, 0)))

    assert _budgets(plan) == [35000] * 4
    assert plan.total_rollover == 0
    assert plan.receiving_week_id == 10


def test_underspend_moves_to_next_open_week() -> None:
    plan = plan_month(_states((True, 30000), (False, 0), (False, 0), (False, 0)))

    assert _budgets(plan) == [35000, 40000, 35000, 35000]
    assert plan.weeks[0].rollover_amount == 5000
    assert plan.total_rollover == 5000


def test_overspend_shrinks_next_open_week() -> None:
    plan = plan_month(_states((True, 40000), (False, 0), (False, 0), (False, 0)))

    assert _budgets(plan) == [35000, 30000, 35000, 35000]
    assert plan.weeks[0].rollover_amount == -5000


def test_chain_runs_through_consecutive_closed_weeks() -> None:
    plan = plan_month(
        _states((True, 30000), (True, 20000), (False, 0), (False, 0))
    )

    assert _budgets(plan) == [35000, 40000, 55000, 35000]
    assert [w.rollover_amount for w in plan.weeks] == [5000, 20000, 0, 0]
    assert plan.total_rollover == 25000


def test_reopened_earlier_week_receives_the_chain() -> None:
    plan = plan_month(
        _states((False, 30000), (True, 20000), (False, 0), (False, 0))
    )

    assert _budgets(plan) == [50000, 35000, 35000, 35000]
    assert plan.receiving_week_id == 10
    assert plan.total_rollover == 15000


def test_rollover_lands_on_exactly_one_open_week() -> None:
    states = _states((True, 10000), (False, 0), (True, 0), (False, 0))
    plan = plan_month(states)

    extra = [
        w.weekly_budget - s.base_budget
        for w, s in zip(plan.weeks, states)
        if not w.is_closed
    ]
    assert sorted(extra) == [0, plan.weeks[2].rollover_amount]


def test_all_weeks_closed_leaves_rollover_unattached() -> None:
    plan = plan_month(_states((True, 0), (True, 0), (True, 0), (True, 0)))

    assert not plan.has_open_week
    assert plan.receiving_week_id is None
    assert plan.unattached_rollover == 140000
    assert plan.weeks[-1].rollover_amount == 140000


def test_carry_in_seeds_the_chain() -> None:
    plan = plan_month(_states((False, 0), (False, 0), base=28000), carry_in=7000)

    assert _budgets(plan) == [35000, 28000]


def test_plan_is_idempotent_and_order_independent() -> None:
    states = _states((True, 12000), (False, 5000), (True, 50000), (False, 0))

    first = plan_month(states)
    second = plan_month(list(reversed(states)))

    assert first == second
    assert plan_month(states) == first
