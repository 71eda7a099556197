import logging
from pathlib import Path
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Response
from sqlalchemy.orm import Session

from config import get_settings
from csrf import generate_csrf_token, validate_csrf_token
from database import get_db
from models import BudgetMode, Category, Expense, MonthlyHistory, User, Week
from schemas import (
    AllocationsIn,
    CategoryIn,
    CategoryUpdateIn,
    ExpenseIn,
    ExpenseUpdateIn,
    MonthIn,
    MonthlyHistoryOut,
    MonthModeIn,
    MonthWeeksOut,
    UserUpdateIn,
)
from services import (
    CategoryService,
    ExpenseService,
    HistoryService,
    NotFoundError,
    ReconciliationService,
    UserService,
    WeekService,
    WeekStateConflict,
    get_or_create_user,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(title="Weekly Budget")


def _load_app_version() -> str:
    try:
        import tomllib
    except Exception:
        return "unknown"
    try:
        with open(Path(__file__).resolve().parent / "pyproject.toml", "rb") as f:
            data = tomllib.load(f)
        return str(data.get("project", {}).get("version", "unknown"))
    except Exception:
        return "unknown"


APP_VERSION = _load_app_version()


def current_user(
    x_user: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
) -> User:
    identity = (x_user or get_settings().default_identity).strip()
    if not identity:
        raise HTTPException(status_code=400, detail="Missing user identity")
    return get_or_create_user(db, identity)


def csrf_protected(
    x_csrf_token: Optional[str] = Header(default=None),
    user: User = Depends(current_user),
) -> User:
    if not validate_csrf_token(x_csrf_token, user.id):
        raise HTTPException(status_code=400, detail="Invalid CSRF token")
    return user


def _http_error(exc: ValueError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, WeekStateConflict):
        return HTTPException(status_code=409, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


def _month(year: int, month: int) -> MonthIn:
    try:
        return MonthIn(year=year, month=month)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc


def user_payload(user: User) -> dict:
    return {
        "id": user.id,
        "identity": user.identity,
        "name": user.name,
        "monthly_budget": user.monthly_budget,
        "budget_mode": user.budget_mode.value,
        "role": user.role.value,
    }


def category_payload(category: Category) -> dict:
    return {
        "id": category.id,
        "name": category.name,
        "allocation": category.allocation,
    }


def expense_payload(expense: Expense) -> dict:
    return {
        "id": expense.id,
        "week_id": expense.week_id,
        "category_id": expense.category_id,
        "category": expense.category.name if expense.category else None,
        "amount": expense.amount,
        "description": expense.description,
        "date": expense.date.isoformat(),
    }


def history_payload(history: MonthlyHistory) -> dict:
    return {
        "id": history.id,
        "year": history.year,
        "month": history.month,
        "budget_mode": history.budget_mode.value,
        "total_budget": history.total_budget,
        "total_spent": history.total_spent,
        "total_rollover": history.total_rollover,
    }


def week_payload(week: Week) -> dict:
    return {
        "id": week.id,
        "week_number": week.week_number,
        "start_date": week.start_date.isoformat(),
        "end_date": week.end_date.isoformat(),
        "weekly_budget": week.weekly_budget,
        "spent_amount": week.spent_amount,
        "rollover_amount": week.rollover_amount,
        "is_closed": week.is_closed,
    }


@app.get("/api/health")
def api_health():
    return {"status": "ok", "version": APP_VERSION}


@app.get("/api/csrf-token")
def api_csrf_token(user: User = Depends(current_user)):
    return {"csrf_token": generate_csrf_token(user.id)}


@app.get("/api/user")
def api_user(user: User = Depends(current_user)):
    return user_payload(user)


@app.patch("/api/user")
def api_update_user(
    data: UserUpdateIn,
    user: User = Depends(csrf_protected),
    db: Session = Depends(get_db),
):
    try:
        updated = UserService(db, user.id).update(data)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return user_payload(updated)


@app.post("/api/user/reset")
def api_reset_budget(
    user: User = Depends(csrf_protected), db: Session = Depends(get_db)
):
    created = UserService(db, user.id).reset_budget()
    return {"success": True, "weeks_created": created}


@app.post("/api/user/sync-budget-modes")
def api_sync_budget_modes(
    user: User = Depends(csrf_protected), db: Session = Depends(get_db)
):
    updated = UserService(db, user.id).sync_budget_modes()
    return {"success": True, "updated_months": updated}


@app.get("/api/categories")
def api_categories(user: User = Depends(current_user), db: Session = Depends(get_db)):
    return [category_payload(c) for c in CategoryService(db, user.id).list_all()]


@app.post("/api/categories", status_code=201)
def api_create_category(
    data: CategoryIn,
    user: User = Depends(csrf_protected),
    db: Session = Depends(get_db),
):
    try:
        category = CategoryService(db, user.id).create(data)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return category_payload(category)


@app.patch("/api/categories/{category_id}")
def api_update_category(
    category_id: int,
    data: CategoryUpdateIn,
    user: User = Depends(csrf_protected),
    db: Session = Depends(get_db),
):
    try:
        category = CategoryService(db, user.id).update(category_id, data)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return category_payload(category)


@app.delete("/api/categories/{category_id}", status_code=204)
def api_delete_category(
    category_id: int,
    user: User = Depends(csrf_protected),
    db: Session = Depends(get_db),
):
    try:
        CategoryService(db, user.id).delete(category_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return Response(status_code=204)


@app.put("/api/categories/allocations")
def api_update_allocations(
    data: AllocationsIn,
    user: User = Depends(csrf_protected),
    db: Session = Depends(get_db),
):
    try:
        categories = CategoryService(db, user.id).update_allocations(data)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return [category_payload(c) for c in categories]


@app.get("/api/weeks/{year}/{month}", response_model=MonthWeeksOut)
def api_weeks(
    year: int,
    month: int,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    period = _month(year, month)
    return WeekService(db, user.id).month_view(period.year, period.month)


@app.post("/api/weeks/{week_id}/close")
def api_close_week(
    week_id: int,
    user: User = Depends(csrf_protected),
    db: Session = Depends(get_db),
):
    try:
        week = WeekService(db, user.id).close(week_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return {"success": True, "rollover": week.rollover_amount}


@app.post("/api/weeks/{week_id}/reopen")
def api_reopen_week(
    week_id: int,
    user: User = Depends(csrf_protected),
    db: Session = Depends(get_db),
):
    try:
        WeekService(db, user.id).reopen(week_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return {"success": True}


@app.post("/api/weeks/auto-close")
def api_auto_close(
    year: Optional[int] = Query(default=None, ge=2000, le=2100),
    month: Optional[int] = Query(default=None, ge=1, le=12),
    user: User = Depends(csrf_protected),
    db: Session = Depends(get_db),
):
    closed = WeekService(db, user.id).auto_close(year, month)
    return {"success": True, "closed_weeks": closed}


@app.post("/api/months/recover-weeks")
def api_recover_missing_weeks(
    data: MonthIn,
    user: User = Depends(csrf_protected),
    db: Session = Depends(get_db),
):
    try:
        created = ReconciliationService(db, user.id).recover_missing_weeks(
            data.year, data.month
        )
    except ValueError as exc:
        raise _http_error(exc) from exc
    return {"success": True, "created_weeks": created}


@app.post("/api/months/validate-weeks")
def api_validate_weeks(
    data: MonthIn,
    user: User = Depends(csrf_protected),
    db: Session = Depends(get_db),
):
    try:
        result = ReconciliationService(db, user.id).validate_and_fix_weeks(
            data.year, data.month
        )
    except ValueError as exc:
        raise _http_error(exc) from exc
    return {"success": True, **result}


@app.post("/api/months/recalculate-rollovers")
def api_force_recalculate(
    data: MonthIn,
    user: User = Depends(csrf_protected),
    db: Session = Depends(get_db),
):
    try:
        weeks = ReconciliationService(db, user.id).force_recalculate(
            data.year, data.month
        )
    except ValueError as exc:
        raise _http_error(exc) from exc
    return {"success": True, "weeks": [week_payload(w) for w in weeks]}


@app.post("/api/months/recalculate-totals")
def api_recalculate_totals(
    data: MonthIn,
    user: User = Depends(csrf_protected),
    db: Session = Depends(get_db),
):
    try:
        result = ReconciliationService(db, user.id).recalculate_totals(
            data.year, data.month
        )
    except ValueError as exc:
        raise _http_error(exc) from exc
    return {"success": True, **result}


@app.put("/api/months/budget-mode")
def api_month_budget_mode(
    data: MonthModeIn,
    user: User = Depends(csrf_protected),
    db: Session = Depends(get_db),
):
    history = UserService(db, user.id).update_month_mode(
        data.year, data.month, BudgetMode(data.budget_mode)
    )
    return history_payload(history)


@app.get("/api/expenses")
def api_expenses(
    week_id: Optional[int] = None,
    category_id: Optional[int] = None,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    items = ExpenseService(db, user.id).list_all(
        week_id=week_id, category_id=category_id
    )
    return [expense_payload(e) for e in items]


@app.post("/api/expenses", status_code=201)
def api_create_expense(
    data: ExpenseIn,
    user: User = Depends(csrf_protected),
    db: Session = Depends(get_db),
):
    try:
        expense = ExpenseService(db, user.id).create(data)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return expense_payload(expense)


@app.patch("/api/expenses/{expense_id}")
def api_update_expense(
    expense_id: int,
    data: ExpenseUpdateIn,
    user: User = Depends(csrf_protected),
    db: Session = Depends(get_db),
):
    try:
        expense = ExpenseService(db, user.id).update(expense_id, data)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return expense_payload(expense)


@app.delete("/api/expenses/{expense_id}", status_code=204)
def api_delete_expense(
    expense_id: int,
    user: User = Depends(csrf_protected),
    db: Session = Depends(get_db),
):
    try:
        ExpenseService(db, user.id).delete(expense_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return Response(status_code=204)


@app.get("/api/history")
def api_histories(user: User = Depends(current_user), db: Session = Depends(get_db)):
    return [history_payload(h) for h in HistoryService(db, user.id).list_all()]


@app.get("/api/history/{year}/{month}", response_model=MonthlyHistoryOut)
def api_monthly_history(
    year: int,
    month: int,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    period = _month(year, month)
    return HistoryService(db, user.id).monthly_history(period.year, period.month)
