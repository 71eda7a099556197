from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Iterable, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session, joinedload

from allocations import DEFAULT_CATEGORIES, allocate
from config import get_settings
from models import (
    BudgetMode,
    Category,
    Expense,
    MonthlyHistory,
    User,
    UserRole,
    Week,
    WeekCategory,
)
from rollover import MonthPlan, WeekState, calculate_rollover, plan_month
from schemas import (
    AllocationsIn,
    CategoryIn,
    CategoryUpdateIn,
    ExpenseIn,
    ExpenseUpdateIn,
    MonthlyHistoryOut,
    MonthWeeksOut,
    TopCategoryOut,
    UserUpdateIn,
    WeekCategoryOut,
    WeeklyStatOut,
    WeekOut,
)
from weeks import (
    MonthPartition,
    budget_percentage,
    days_in_month,
    find_week_for_date,
    local_today,
    next_month,
    partition_month,
    previous_month,
    traffic_light,
)

logger = logging.getLogger(__name__)


class NotFoundError(ValueError):
    pass


class BudgetValidationError(ValueError):
    pass


class WeekStateConflict(ValueError):
    pass


@dataclass
class ReconcileReport:
    history_id: int
    created_weeks: int = 0
    fixed_dates: int = 0
    rehomed_expenses: int = 0
    resynced_rows: int = 0
    auto_closed: int = 0

    @property
    def repaired(self) -> bool:
        return bool(
            self.created_weeks
            or self.fixed_dates
            or self.rehomed_expenses
            or self.resynced_rows
        )


def seed_default_categories(session: Session, user_id: int) -> list[Category]:
    categories = [
        Category(user_id=user_id, name=d.name, allocation=d.suggested_percentage)
        for d in DEFAULT_CATEGORIES
    ]
    session.add_all(categories)
    session.flush()
    return categories


def get_or_create_user(
    session: Session,
    identity: str,
    name: Optional[str] = None,
    *,
    today: Optional[date] = None,
) -> User:
    """Return the user behind a session identity, seeding a fresh account.

    New users get the default monthly budget in categorized mode, the
    default category set and the weeks of the current month.
    """
    user = session.scalar(select(User).where(User.identity == identity))
    if user:
        return user

    today = today or local_today()
    user = User(
        identity=identity,
        name=name,
        monthly_budget=get_settings().default_monthly_budget,
        budget_mode=BudgetMode.categorized,
        role=UserRole.user,
    )
    session.add(user)
    session.flush()
    seed_default_categories(session, user.id)

    months = MonthService(session, user.id)
    history = months.ensure_month(today.year, today.month)
    months.recalculate_month(history)
    session.commit()
    session.refresh(user)
    logger.info(f"user_created: user_id={user.id} identity={identity}")
    return user


class MonthService:
    """Week structure, rollover cascade and repair steps for one user.

    Methods only flush; the calling operation commits.
    """

    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def _user(self) -> User:
        user = self.session.get(User, self.user_id)
        if not user:
            raise NotFoundError("User not found")
        return user

    def get_history(self, year: int, month: int) -> Optional[MonthlyHistory]:
        return self.session.scalar(
            select(MonthlyHistory).where(
                MonthlyHistory.user_id == self.user_id,
                MonthlyHistory.year == year,
                MonthlyHistory.month == month,
            )
        )

    def require_history(self, year: int, month: int) -> MonthlyHistory:
        history = self.get_history(year, month)
        if not history:
            raise NotFoundError("Monthly history not found")
        return history

    def get_or_create_history(self, year: int, month: int) -> MonthlyHistory:
        history = self.get_history(year, month)
        if history:
            return history
        user = self._user()
        history = MonthlyHistory(
            user_id=self.user_id,
            year=year,
            month=month,
            total_budget=user.monthly_budget,
            total_spent=0,
            total_rollover=0,
            budget_mode=user.budget_mode,
        )
        self.session.add(history)
        self.session.flush()
        return history

    def ensure_month(self, year: int, month: int) -> MonthlyHistory:
        history = self.get_or_create_history(year, month)
        self.create_missing_weeks(history)
        return history

    def partition(self, history: MonthlyHistory) -> MonthPartition:
        return partition_month(history.year, history.month, history.total_budget)

    def weeks(self, history: MonthlyHistory) -> list[Week]:
        return list(
            self.session.scalars(
                select(Week)
                .where(
                    Week.user_id == self.user_id,
                    Week.monthly_history_id == history.id,
                )
                .order_by(Week.week_number)
            ).all()
        )

    def categories(self) -> list[Category]:
        return list(
            self.session.scalars(
                select(Category)
                .where(Category.user_id == self.user_id)
                .order_by(Category.name, Category.id)
            ).all()
        )

    def week_for_date(self, history: MonthlyHistory, day: date) -> Week:
        slot = find_week_for_date(day, history.total_budget)
        week = self.session.scalar(
            select(Week).where(
                Week.user_id == self.user_id,
                Week.monthly_history_id == history.id,
                Week.week_number == slot.week_number,
            )
        )
        if not week:
            raise NotFoundError(f"No week found for {day.isoformat()}")
        return week

    def create_missing_weeks(self, history: MonthlyHistory) -> list[Week]:
        existing = {week.week_number for week in self.weeks(history)}
        created: list[Week] = []
        for slot in self.partition(history).weeks:
            if slot.week_number in existing:
                continue
            week = Week(
                user_id=self.user_id,
                monthly_history_id=history.id,
                week_number=slot.week_number,
                start_date=slot.start_date,
                end_date=slot.end_date,
                weekly_budget=slot.weekly_budget,
                spent_amount=0,
                rollover_amount=0,
                is_closed=False,
            )
            self.session.add(week)
            created.append(week)
        if created:
            self.session.flush()
            if history.budget_mode == BudgetMode.categorized:
                self.sync_allocations(history, created)
        return created

    def fix_week_dates(self, history: MonthlyHistory) -> int:
        partition = self.partition(history)
        fixed = 0
        for week in self.weeks(history):
            slot = partition.slot(week.week_number)
            if not slot:
                continue
            if week.start_date != slot.start_date or week.end_date != slot.end_date:
                logger.warning(
                    f"week_dates_drift: week_id={week.id} "
                    f"stored={week.start_date}..{week.end_date} "
                    f"expected={slot.start_date}..{slot.end_date}"
                )
                week.start_date = slot.start_date
                week.end_date = slot.end_date
                fixed += 1
        if fixed:
            self.session.flush()
        return fixed

    def rehome_expenses(self, history: MonthlyHistory) -> int:
        """Move expenses onto the week whose date range holds their date."""
        weeks = self.weeks(history)
        by_id = {week.id: week for week in weeks}
        if not by_id:
            return 0
        expenses = self.session.scalars(
            select(Expense).where(
                Expense.user_id == self.user_id, Expense.week_id.in_(by_id.keys())
            )
        ).all()
        moved = 0
        for expense in expenses:
            current = by_id[expense.week_id]
            if current.start_date <= expense.date <= current.end_date:
                continue
            target_history = history
            if (expense.date.year, expense.date.month) != (history.year, history.month):
                target_history = self.ensure_month(expense.date.year, expense.date.month)
            target = self.week_for_date(target_history, expense.date)
            if target.id != expense.week_id:
                expense.week_id = target.id
                moved += 1
        if moved:
            self.session.flush()
        return moved

    def _live_spent(
        self, week_ids: Iterable[int]
    ) -> tuple[dict[int, int], dict[tuple[int, int], int]]:
        ids = list(week_ids)
        by_week: dict[int, int] = {}
        by_category: dict[tuple[int, int], int] = {}
        if not ids:
            return by_week, by_category
        rows = self.session.execute(
            select(
                Expense.week_id,
                Expense.category_id,
                func.coalesce(func.sum(Expense.amount), 0),
            )
            .where(Expense.user_id == self.user_id, Expense.week_id.in_(ids))
            .group_by(Expense.week_id, Expense.category_id)
        ).all()
        for week_id, category_id, total in rows:
            by_week[week_id] = by_week.get(week_id, 0) + int(total)
            if category_id is not None:
                by_category[(week_id, category_id)] = int(total)
        return by_week, by_category

    def resync_spent(self, history: MonthlyHistory) -> int:
        """Re-derive spent totals from the expense records.

        Covers each week, each week category and the month's settled
        total (spend of closed weeks). Returns the number of rows rewritten.
        """
        weeks = self.weeks(history)
        by_week, by_category = self._live_spent(w.id for w in weeks)
        changed = 0
        for week in weeks:
            live = by_week.get(week.id, 0)
            if week.spent_amount != live:
                logger.warning(
                    f"week_spent_drift: week_id={week.id} "
                    f"stored={week.spent_amount} live={live}"
                )
                week.spent_amount = live
                changed += 1

        if weeks:
            rows = self.session.scalars(
                select(WeekCategory).where(
                    WeekCategory.week_id.in_([w.id for w in weeks])
                )
            ).all()
            for row in rows:
                live = by_category.get((row.week_id, row.category_id), 0)
                if row.spent_amount != live:
                    row.spent_amount = live
                    changed += 1

        settled = sum(w.spent_amount for w in weeks if w.is_closed)
        if history.total_spent != settled:
            history.total_spent = settled
            changed += 1
        if changed:
            self.session.flush()
        return changed

    def refresh_week_spent(self, week: Week) -> int:
        """Recompute one week's spent figures after an expense change.

        Returns the change applied to the week's spent amount; closed
        weeks pass that change on to the month's settled total.
        """
        by_week, by_category = self._live_spent([week.id])
        live = by_week.get(week.id, 0)
        delta = live - week.spent_amount
        week.spent_amount = live
        if delta and week.is_closed:
            history = week.monthly_history
            history.total_spent += delta
        rows = self.session.scalars(
            select(WeekCategory).where(WeekCategory.week_id == week.id)
        ).all()
        for row in rows:
            row.spent_amount = by_category.get((week.id, row.category_id), 0)
        self.session.flush()
        return delta

    def sync_allocations(
        self, history: MonthlyHistory, weeks: Optional[list[Week]] = None
    ) -> None:
        """Make WeekCategory rows match the month's mode and week budgets.

        Simple mode drops every row. Categorized mode keeps one row per
        (week, category) whose allocated amount follows the week budget;
        spent amounts are only ever derived from expenses.
        """
        weeks = self.weeks(history) if weeks is None else weeks
        week_ids = [w.id for w in weeks]
        if not week_ids:
            return
        if history.budget_mode != BudgetMode.categorized:
            self.session.execute(
                delete(WeekCategory).where(WeekCategory.week_id.in_(week_ids))
            )
            return

        categories = self.categories()
        existing = {
            (row.week_id, row.category_id): row
            for row in self.session.scalars(
                select(WeekCategory).where(WeekCategory.week_id.in_(week_ids))
            ).all()
        }
        _, live_by_category = self._live_spent(week_ids)
        for week in weeks:
            amounts = allocate(week.weekly_budget, categories)
            for category in categories:
                row = existing.get((week.id, category.id))
                if row is None:
                    self.session.add(
                        WeekCategory(
                            week_id=week.id,
                            category_id=category.id,
                            allocated_amount=amounts[category.id],
                            spent_amount=live_by_category.get(
                                (week.id, category.id), 0
                            ),
                        )
                    )
                elif row.allocated_amount != amounts[category.id]:
                    row.allocated_amount = amounts[category.id]
        self.session.flush()

    def carry_in(self, history: MonthlyHistory) -> int:
        """Rollover handed over by the previous month.

        Only a month with no open week passes its last closed week's
        rollover on; otherwise that rollover already sits in one of its
        own open weeks.
        """
        prev = self.get_history(*previous_month(history.year, history.month))
        if not prev:
            return 0
        weeks = self.weeks(prev)
        if not weeks or any(not w.is_closed for w in weeks):
            return 0
        return weeks[-1].rollover_amount

    def recalculate_month(self, history: MonthlyHistory) -> MonthPlan:
        partition = self.partition(history)
        weeks = self.weeks(history)
        states = []
        for week in weeks:
            slot = partition.slot(week.week_number)
            states.append(
                WeekState(
                    week_id=week.id,
                    week_number=week.week_number,
                    base_budget=slot.weekly_budget if slot else 0,
                    spent_amount=week.spent_amount,
                    is_closed=week.is_closed,
                )
            )
        plan = plan_month(states, carry_in=self.carry_in(history))

        for week in weeks:
            target = plan.for_week(week.id)
            if week.weekly_budget != target.weekly_budget:
                week.weekly_budget = target.weekly_budget
            if week.rollover_amount != target.rollover_amount:
                week.rollover_amount = target.rollover_amount
        if history.total_rollover != plan.total_rollover:
            history.total_rollover = plan.total_rollover
        self.session.flush()
        self.sync_allocations(history, weeks)

        following = self.get_history(*next_month(history.year, history.month))
        if following:
            self.recalculate_month(following)
        return plan


class WeekService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def get(self, week_id: int) -> Week:
        week = self.session.get(Week, week_id)
        if not week or week.user_id != self.user_id:
            raise NotFoundError("Week not found")
        return week

    def _close(self, week: Week, history: MonthlyHistory) -> None:
        week.is_closed = True
        week.rollover_amount = calculate_rollover(week.weekly_budget, week.spent_amount)
        history.total_spent += week.spent_amount

    def close(self, week_id: int) -> Week:
        week = self.get(week_id)
        if week.is_closed:
            raise WeekStateConflict("Week is already closed")
        history = week.monthly_history
        self._close(week, history)
        self.session.flush()
        MonthService(self.session, self.user_id).recalculate_month(history)
        self.session.commit()
        logger.info(
            f"week_closed: week_id={week.id} spent={week.spent_amount} "
            f"rollover={week.rollover_amount}"
        )
        return week

    def reopen(self, week_id: int) -> Week:
        week = self.get(week_id)
        if not week.is_closed:
            raise WeekStateConflict("Week is already open")
        history = week.monthly_history
        week.is_closed = False
        week.rollover_amount = 0
        history.total_spent -= week.spent_amount
        self.session.flush()
        MonthService(self.session, self.user_id).recalculate_month(history)
        self.session.commit()
        logger.info(f"week_reopened: week_id={week.id}")
        return week

    def auto_close_expired(self, history: MonthlyHistory, today: date) -> int:
        """Close open weeks that ended before ``today``, earliest first."""
        expired = self.session.scalars(
            select(Week)
            .where(
                Week.user_id == self.user_id,
                Week.monthly_history_id == history.id,
                Week.is_closed.is_(False),
                Week.end_date < today,
            )
            .order_by(Week.week_number)
        ).all()
        for week in expired:
            self._close(week, history)
        if expired:
            self.session.flush()
            MonthService(self.session, self.user_id).recalculate_month(history)
            logger.info(
                f"auto_close: history_id={history.id} closed={len(expired)}"
            )
        return len(expired)

    def auto_close(
        self,
        year: Optional[int] = None,
        month: Optional[int] = None,
        *,
        today: Optional[date] = None,
    ) -> int:
        today = today or local_today()
        year = year or today.year
        month = month or today.month
        history = MonthService(self.session, self.user_id).get_history(year, month)
        if not history:
            return 0
        closed = self.auto_close_expired(history, today)
        self.session.commit()
        return closed

    def month_view(
        self, year: int, month: int, *, today: Optional[date] = None
    ) -> MonthWeeksOut:
        report = ReconciliationService(self.session, self.user_id).reconcile(
            year, month, today=today
        )
        history = self.session.get(MonthlyHistory, report.history_id)
        weeks = MonthService(self.session, self.user_id).weeks(history)
        return MonthWeeksOut(
            year=year,
            month=month,
            budget_mode=history.budget_mode,
            weeks=week_views(self.session, weeks),
        )


def week_views(session: Session, weeks: list[Week]) -> list[WeekOut]:
    rows_by_week: dict[int, list[WeekCategory]] = {}
    if weeks:
        rows = session.scalars(
            select(WeekCategory)
            .options(joinedload(WeekCategory.category))
            .where(WeekCategory.week_id.in_([w.id for w in weeks]))
        ).all()
        for row in rows:
            rows_by_week.setdefault(row.week_id, []).append(row)

    views: list[WeekOut] = []
    for week in weeks:
        used = budget_percentage(week.spent_amount, week.weekly_budget)
        categories = sorted(
            rows_by_week.get(week.id, []), key=lambda r: (r.category.name, r.id)
        )
        views.append(
            WeekOut(
                id=week.id,
                week_number=week.week_number,
                start_date=week.start_date,
                end_date=week.end_date,
                weekly_budget=week.weekly_budget,
                spent_amount=week.spent_amount,
                rollover_amount=week.rollover_amount,
                is_closed=week.is_closed,
                percentage_used=used,
                traffic_light_color=traffic_light(used),
                categories=[
                    WeekCategoryOut(
                        id=row.category.id,
                        name=row.category.name,
                        allocated_amount=row.allocated_amount,
                        spent_amount=row.spent_amount,
                        percentage_used=budget_percentage(
                            row.spent_amount, row.allocated_amount
                        ),
                    )
                    for row in categories
                ],
            )
        )
    return views


class ReconciliationService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id
        self.months = MonthService(session, user_id)

    def reconcile(
        self, year: int, month: int, *, today: Optional[date] = None
    ) -> ReconcileReport:
        """Repair a month before it is read.

        Creates missing weeks, restores canonical dates, re-homes and
        re-sums expenses, closes expired weeks and reruns the cascade.
        """
        today = today or local_today()
        history = self.months.get_or_create_history(year, month)
        report = ReconcileReport(history_id=history.id)
        report.created_weeks = len(self.months.create_missing_weeks(history))
        report.fixed_dates = self.months.fix_week_dates(history)
        report.rehomed_expenses = self.months.rehome_expenses(history)
        report.resynced_rows = self.months.resync_spent(history)
        report.auto_closed = WeekService(
            self.session, self.user_id
        ).auto_close_expired(history, today)
        self.months.recalculate_month(history)
        self.session.commit()
        if report.repaired:
            logger.info(
                f"reconcile: history_id={history.id} "
                f"created_weeks={report.created_weeks} "
                f"fixed_dates={report.fixed_dates} "
                f"rehomed_expenses={report.rehomed_expenses} "
                f"resynced_rows={report.resynced_rows}"
            )
        return report

    def recover_missing_weeks(self, year: int, month: int) -> int:
        history = self.months.require_history(year, month)
        created = self.months.create_missing_weeks(history)
        if created:
            self.months.recalculate_month(history)
        self.session.commit()
        return len(created)

    def validate_and_fix_weeks(self, year: int, month: int) -> dict[str, int]:
        history = self.months.require_history(year, month)
        fixed = self.months.fix_week_dates(history)
        created = len(self.months.create_missing_weeks(history))
        self.months.recalculate_month(history)
        self.session.commit()
        return {"fixed_weeks": fixed, "created_weeks": created}

    def force_recalculate(self, year: int, month: int) -> list[Week]:
        history = self.months.require_history(year, month)
        self.months.recalculate_month(history)
        self.session.commit()
        return self.months.weeks(history)

    def recalculate_totals(self, year: int, month: int) -> dict[str, int]:
        history = self.months.require_history(year, month)
        previous = history.total_spent
        self.months.resync_spent(history)
        self.months.recalculate_month(history)
        self.session.commit()
        return {
            "previous_total": previous,
            "new_total": history.total_spent,
            "difference": history.total_spent - previous,
        }


class UserService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id
        self.months = MonthService(session, user_id)

    def get(self) -> User:
        user = self.session.get(User, self.user_id)
        if not user:
            raise NotFoundError("User not found")
        return user

    def _ensure_categories(self) -> None:
        if not self.months.categories():
            seed_default_categories(self.session, self.user_id)

    def update(self, data: UserUpdateIn, *, today: Optional[date] = None) -> User:
        user = self.get()
        today = today or local_today()
        budget_changed = (
            data.monthly_budget is not None
            and data.monthly_budget != user.monthly_budget
        )
        mode_changed = (
            data.budget_mode is not None and data.budget_mode != user.budget_mode
        )
        if budget_changed:
            user.monthly_budget = data.monthly_budget
        if mode_changed:
            user.budget_mode = data.budget_mode
        if user.budget_mode == BudgetMode.categorized:
            self._ensure_categories()

        if budget_changed or mode_changed:
            history = self.months.ensure_month(today.year, today.month)
            history.total_budget = user.monthly_budget
            history.budget_mode = user.budget_mode
            self.session.flush()
            self.months.recalculate_month(history)
            logger.info(
                f"user_updated: user_id={user.id} budget={user.monthly_budget} "
                f"mode={user.budget_mode.value}"
            )
        self.session.commit()
        self.session.refresh(user)
        return user

    def update_month_mode(self, year: int, month: int, mode: BudgetMode) -> MonthlyHistory:
        history = self.months.ensure_month(year, month)
        if mode == BudgetMode.categorized:
            self._ensure_categories()
        history.budget_mode = mode
        self.session.flush()
        self.months.recalculate_month(history)
        self.session.commit()
        return history

    def sync_budget_modes(self) -> int:
        """Align every month's mode with the user's current mode."""
        user = self.get()
        histories = self.session.scalars(
            select(MonthlyHistory).where(MonthlyHistory.user_id == self.user_id)
        ).all()
        if user.budget_mode == BudgetMode.categorized:
            self._ensure_categories()
        updated = 0
        for history in histories:
            if history.budget_mode == user.budget_mode:
                continue
            history.budget_mode = user.budget_mode
            self.session.flush()
            self.months.sync_allocations(history)
            updated += 1
        self.session.commit()
        return updated

    def reset_budget(self, *, today: Optional[date] = None) -> int:
        """Wipe the user's budget data and reseed the current month."""
        user = self.get()
        today = today or local_today()
        week_ids = select(Week.id).where(Week.user_id == self.user_id)
        self.session.execute(delete(Expense).where(Expense.user_id == self.user_id))
        self.session.execute(
            delete(WeekCategory).where(WeekCategory.week_id.in_(week_ids))
        )
        self.session.execute(delete(Week).where(Week.user_id == self.user_id))
        self.session.execute(
            delete(MonthlyHistory).where(MonthlyHistory.user_id == self.user_id)
        )
        self.session.execute(delete(Category).where(Category.user_id == self.user_id))
        self.session.flush()

        if user.budget_mode == BudgetMode.categorized:
            seed_default_categories(self.session, self.user_id)
        history = self.months.ensure_month(today.year, today.month)
        self.months.recalculate_month(history)
        self.session.commit()
        created = len(self.months.weeks(history))
        logger.info(f"budget_reset: user_id={user.id} weeks_created={created}")
        return created


class CategoryService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id
        self.months = MonthService(session, user_id)

    def list_all(self) -> list[Category]:
        return self.months.categories()

    def get(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category or category.user_id != self.user_id:
            raise NotFoundError("Category not found")
        return category

    def _reallocate_current_month(self, today: Optional[date]) -> None:
        today = today or local_today()
        history = self.months.get_history(today.year, today.month)
        if history:
            self.months.sync_allocations(history)

    def _ensure_name_free(self, name: str, exclude_id: Optional[int] = None) -> None:
        stmt = select(Category.id).where(
            Category.user_id == self.user_id,
            func.lower(Category.name) == name.lower(),
        )
        if exclude_id is not None:
            stmt = stmt.where(Category.id != exclude_id)
        if self.session.scalar(stmt) is not None:
            raise BudgetValidationError("Category with this name already exists")

    def create(self, data: CategoryIn, *, today: Optional[date] = None) -> Category:
        name = data.name.strip()
        self._ensure_name_free(name)
        category = Category(user_id=self.user_id, name=name, allocation=data.allocation)
        self.session.add(category)
        self.session.flush()
        self._reallocate_current_month(today)
        self.session.commit()
        self.session.refresh(category)
        return category

    def update(
        self, category_id: int, data: CategoryUpdateIn, *, today: Optional[date] = None
    ) -> Category:
        category = self.get(category_id)
        if data.name is not None:
            name = data.name.strip()
            self._ensure_name_free(name, exclude_id=category.id)
            category.name = name
        if data.allocation is not None and data.allocation != category.allocation:
            category.allocation = data.allocation
            self.session.flush()
            self._reallocate_current_month(today)
        self.session.commit()
        self.session.refresh(category)
        return category

    def delete(self, category_id: int) -> None:
        category = self.get(category_id)
        self.session.execute(
            update(Expense)
            .where(Expense.user_id == self.user_id, Expense.category_id == category.id)
            .values(category_id=None)
        )
        self.session.execute(
            delete(WeekCategory).where(WeekCategory.category_id == category.id)
        )
        self.session.delete(category)
        self.session.commit()

    def update_allocations(
        self, data: AllocationsIn, *, today: Optional[date] = None
    ) -> list[Category]:
        categories = [self.get(item.category_id) for item in data.allocations]
        owned = {c.id for c in self.list_all()}
        if {c.id for c in categories} != owned:
            raise BudgetValidationError(
                "Allocations must cover every category exactly once"
            )
        for category, item in zip(categories, data.allocations):
            category.allocation = item.allocation
        self.session.flush()
        self._reallocate_current_month(today)
        self.session.commit()
        return self.list_all()


class ExpenseService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id
        self.months = MonthService(session, user_id)

    def _check_category(self, category_id: Optional[int]) -> None:
        if category_id is None:
            return
        category = self.session.get(Category, category_id)
        if not category or category.user_id != self.user_id:
            raise NotFoundError("Category not found")

    def get(self, expense_id: int) -> Expense:
        expense = self.session.scalar(
            select(Expense)
            .options(joinedload(Expense.category))
            .where(Expense.user_id == self.user_id, Expense.id == expense_id)
        )
        if not expense:
            raise NotFoundError("Expense not found")
        return expense

    def list_all(
        self, *, week_id: Optional[int] = None, category_id: Optional[int] = None
    ) -> list[Expense]:
        stmt = (
            select(Expense)
            .options(joinedload(Expense.category))
            .where(Expense.user_id == self.user_id)
            .order_by(Expense.date.desc(), Expense.id.desc())
        )
        if week_id is not None:
            stmt = stmt.where(Expense.week_id == week_id)
        if category_id is not None:
            stmt = stmt.where(Expense.category_id == category_id)
        return list(self.session.scalars(stmt).all())

    def _week_for(self, day: date) -> tuple[Week, bool]:
        history = self.months.get_or_create_history(day.year, day.month)
        created = self.months.create_missing_weeks(history)
        return self.months.week_for_date(history, day), bool(created)

    def _settle(self, weeks: Iterable[Week], force: bool = False) -> None:
        """Refresh spent totals and rerun the cascade where it matters."""
        to_recalculate: dict[int, MonthlyHistory] = {}
        for week in weeks:
            self.months.refresh_week_spent(week)
            if week.is_closed or force:
                history = week.monthly_history
                to_recalculate[history.id] = history
        for history in to_recalculate.values():
            self.months.recalculate_month(history)

    def create(self, data: ExpenseIn) -> Expense:
        self._check_category(data.category_id)
        week, created_weeks = self._week_for(data.date)
        expense = Expense(
            user_id=self.user_id,
            week_id=week.id,
            category_id=data.category_id,
            amount=data.amount,
            description=data.description,
            date=data.date,
        )
        self.session.add(expense)
        self.session.flush()
        self._settle([week], force=created_weeks)
        self.session.commit()
        self.session.refresh(expense)
        return expense

    def update(self, expense_id: int, data: ExpenseUpdateIn) -> Expense:
        expense = self.get(expense_id)
        fields = data.model_fields_set
        if "category_id" in fields:
            self._check_category(data.category_id)
            expense.category_id = data.category_id
        if data.amount is not None:
            expense.amount = data.amount
        if data.description is not None:
            description = data.description.strip()
            if not description:
                raise BudgetValidationError("Description is required")
            expense.description = description

        old_week = self.session.get(Week, expense.week_id)
        touched = [old_week]
        created_weeks = False
        if data.date is not None and data.date != expense.date:
            expense.date = data.date
            new_week, created_weeks = self._week_for(data.date)
            if new_week.id != old_week.id:
                expense.week_id = new_week.id
                touched.append(new_week)
        self.session.flush()
        self._settle(touched, force=created_weeks)
        self.session.commit()
        self.session.refresh(expense)
        return expense

    def delete(self, expense_id: int) -> None:
        expense = self.get(expense_id)
        week = self.session.get(Week, expense.week_id)
        self.session.delete(expense)
        self.session.flush()
        self._settle([week])
        self.session.commit()


class HistoryService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self) -> list[MonthlyHistory]:
        return list(
            self.session.scalars(
                select(MonthlyHistory)
                .where(MonthlyHistory.user_id == self.user_id)
                .order_by(MonthlyHistory.year.desc(), MonthlyHistory.month.desc())
            ).all()
        )

    def monthly_history(
        self, year: int, month: int, *, today: Optional[date] = None
    ) -> MonthlyHistoryOut:
        report = ReconciliationService(self.session, self.user_id).reconcile(
            year, month, today=today
        )
        history = self.session.get(MonthlyHistory, report.history_id)
        weeks = MonthService(self.session, self.user_id).weeks(history)
        views = week_views(self.session, weeks)

        expenses = self.session.scalars(
            select(Expense)
            .options(joinedload(Expense.category))
            .where(
                Expense.user_id == self.user_id,
                Expense.week_id.in_([w.id for w in weeks]),
            )
        ).all()
        month_spent = sum(e.amount for e in expenses)

        totals: dict[str, int] = {}
        for expense in expenses:
            if expense.category:
                name = expense.category.name
                totals[name] = totals.get(name, 0) + expense.amount
        top_categories = [
            TopCategoryOut(
                category_name=name,
                total_spent=amount,
                percentage=(amount / month_spent * 100) if month_spent else 0.0,
            )
            for name, amount in totals.items()
        ]
        top_categories.sort(key=lambda row: (-row.total_spent, row.category_name))

        weekly_stats = [
            WeeklyStatOut(
                week_number=view.week_number,
                spent=view.spent_amount,
                traffic_light_color=view.traffic_light_color,
            )
            for view in views
        ]

        return MonthlyHistoryOut(
            id=history.id,
            year=history.year,
            month=history.month,
            budget_mode=history.budget_mode,
            total_budget=history.total_budget,
            total_spent=history.total_spent,
            total_rollover=history.total_rollover,
            month_spent=month_spent,
            weeks=views,
            top_categories=top_categories,
            weekly_stats=weekly_stats,
            average_daily_spending=month_spent / days_in_month(year, month),
        )
