from datetime import date, timedelta

from sqlalchemy import create_engine, delete, select
from sqlalchemy.orm import Session

from database import Base
from models import Expense, MonthlyHistory, Week, WeekCategory
from schemas import ExpenseIn, UserUpdateIn
from services import (
    ExpenseService,
    HistoryService,
    MonthService,
    ReconciliationService,
    UserService,
    WeekService,
    get_or_create_user,
)
from weeks import partition_month

FEB_1 = date(2027, 2, 1)


def _session() -> Session:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return Session(engine)


def _seed(session: Session) -> int:
    user = get_or_create_user(session, "ana", today=FEB_1)
    UserService(session, user.id).update(
        UserUpdateIn(monthly_budget=140000), today=FEB_1
    )
    return user.id


def _weeks(session: Session, user_id: int) -> list[Week]:
    months = MonthService(session, user_id)
    return months.weeks(months.require_history(2027, 2))


def test_reconcile_repairs_missing_weeks_dates_and_spent() -> None:
    with _session() as session:
        user_id = _seed(session)
        expenses = ExpenseService(session, user_id)
        expenses.create(ExpenseIn(amount=4000, description="Bus", date=date(2027, 2, 2)))
        expenses.create(ExpenseIn(amount=6000, description="Lunch", date=date(2027, 2, 20)))

        week_1, week_2, week_3, _ = _weeks(session, user_id)
        week_1.spent_amount = 999
        week_2.start_date = week_2.start_date + timedelta(days=2)
        session.execute(delete(Expense).where(Expense.week_id == week_3.id))
        session.execute(delete(WeekCategory).where(WeekCategory.week_id == week_3.id))
        session.delete(week_3)
        session.commit()
        assert len(_weeks(session, user_id)) == 3

        report = ReconciliationService(session, user_id).reconcile(
            2027, 2, today=FEB_1
        )

        assert report.created_weeks == 1
        assert report.fixed_dates == 1
        assert report.repaired
        weeks = _weeks(session, user_id)
        canonical = partition_month(2027, 2, 140000).weeks
        assert [(w.start_date, w.end_date) for w in weeks] == [
            (slot.start_date, slot.end_date) for slot in canonical
        ]
        assert [w.spent_amount for w in weeks] == [4000, 0, 0, 0]
        assert [w.weekly_budget for w in weeks] == [35000] * 4


def test_reconcile_is_a_no_op_on_healthy_month() -> None:
    with _session() as session:
        user_id = _seed(session)
        ExpenseService(session, user_id).create(
            ExpenseIn(amount=4000, description="Bus", date=date(2027, 2, 2))
        )
        service = ReconciliationService(session, user_id)

        service.reconcile(2027, 2, today=FEB_1)
        before = [
            (w.weekly_budget, w.spent_amount, w.rollover_amount)
            for w in _weeks(session, user_id)
        ]
        report = service.reconcile(2027, 2, today=FEB_1)
        after = [
            (w.weekly_budget, w.spent_amount, w.rollover_amount)
            for w in _weeks(session, user_id)
        ]

        assert not report.repaired
        assert report.auto_closed == 0
        assert before == after


def test_reconcile_rehomes_expense_attached_to_wrong_week() -> None:
    with _session() as session:
        user_id = _seed(session)
        expense = ExpenseService(session, user_id).create(
            ExpenseIn(amount=5000, description="Cinema", date=date(2027, 2, 3))
        )
        expense.date = date(2027, 2, 20)
        session.commit()

        report = ReconciliationService(session, user_id).reconcile(
            2027, 2, today=FEB_1
        )

        assert report.rehomed_expenses == 1
        weeks = _weeks(session, user_id)
        assert session.get(Expense, expense.id).week_id == weeks[2].id
        assert [w.spent_amount for w in weeks] == [0, 0, 5000, 0]


def test_reconcile_resyncs_settled_total_and_closes_expired_weeks() -> None:
    with _session() as session:
        user_id = _seed(session)
        ExpenseService(session, user_id).create(
            ExpenseIn(amount=12000, description="Market", date=date(2027, 2, 4))
        )
        history = MonthService(session, user_id).require_history(2027, 2)
        history.total_spent = 77
        session.commit()

        report = ReconciliationService(session, user_id).reconcile(
            2027, 2, today=date(2027, 2, 9)
        )

        assert report.auto_closed == 1
        history = session.get(MonthlyHistory, report.history_id)
        assert history.total_spent == 12000
        weeks = _weeks(session, user_id)
        assert weeks[0].is_closed
        assert weeks[1].weekly_budget == 35000 + 23000


def test_standalone_maintenance_operations() -> None:
    with _session() as session:
        user_id = _seed(session)
        service = ReconciliationService(session, user_id)
        week_4 = _weeks(session, user_id)[3]
        session.execute(delete(WeekCategory).where(WeekCategory.week_id == week_4.id))
        session.delete(week_4)
        session.commit()

        assert service.recover_missing_weeks(2027, 2) == 1
        assert len(_weeks(session, user_id)) == 4

        week_1 = _weeks(session, user_id)[0]
        week_1.end_date = date(2027, 2, 6)
        session.commit()
        assert service.validate_and_fix_weeks(2027, 2) == {
            "fixed_weeks": 1,
            "created_weeks": 0,
        }

        ExpenseService(session, user_id).create(
            ExpenseIn(amount=3000, description="Snacks", date=date(2027, 2, 3))
        )
        WeekService(session, user_id).close(week_1.id)
        history = session.get(MonthlyHistory, week_1.monthly_history_id)
        history.total_spent = 0
        session.commit()
        assert service.recalculate_totals(2027, 2) == {
            "previous_total": 0,
            "new_total": 3000,
            "difference": 3000,
        }

        weeks = service.force_recalculate(2027, 2)
        assert [w.weekly_budget for w in weeks] == [35000, 67000, 35000, 35000]


def test_monthly_history_statistics() -> None:
    with _session() as session:
        user_id = _seed(session)
        expenses = ExpenseService(session, user_id)
        categories = {c.name: c for c in MonthService(session, user_id).categories()}
        expenses.create(
            ExpenseIn(
                amount=9000,
                description="Market",
                date=date(2027, 2, 2),
                category_id=categories["Food"].id,
            )
        )
        expenses.create(
            ExpenseIn(
                amount=3000,
                description="Bus card",
                date=date(2027, 2, 10),
                category_id=categories["Transport"].id,
            )
        )
        expenses.create(
            ExpenseIn(amount=2000, description="Misc", date=date(2027, 2, 11))
        )

        stats = HistoryService(session, user_id).monthly_history(
            2027, 2, today=FEB_1
        )

        assert stats.month_spent == 14000
        assert stats.total_spent == 0
        assert [c.category_name for c in stats.top_categories] == ["Food", "Transport"]
        assert round(stats.top_categories[0].percentage, 2) == round(9000 / 14000 * 100, 2)
        assert stats.average_daily_spending == 14000 / 28
        assert [s.week_number for s in stats.weekly_stats] == [1, 2, 3, 4]
        assert stats.weekly_stats[0].traffic_light_color == "green"

        food_row = next(
            c for c in stats.weeks[0].categories if c.name == "Food"
        )
        assert food_row.spent_amount == 9000
        assert food_row.allocated_amount == 14000

        listed = HistoryService(session, user_id).list_all()
        assert [(h.year, h.month) for h in listed] == [(2027, 2)]


def test_only_the_owner_month_is_touched() -> None:
    with _session() as session:
        user_id = _seed(session)
        other = get_or_create_user(session, "ben", today=FEB_1)

        ReconciliationService(session, other.id).reconcile(2027, 2, today=FEB_1)

        histories = session.scalars(
            select(MonthlyHistory).where(MonthlyHistory.user_id == user_id)
        ).all()
        assert len(histories) == 1
        assert histories[0].total_budget == 140000
