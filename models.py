import datetime as dt
from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class BudgetMode(str, Enum):
    simple = "simple"
    categorized = "categorized"


class UserRole(str, Enum):
    user = "user"
    admin = "admin"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    identity: Mapped[str] = mapped_column(String(120), nullable=False, unique=True)
    name: Mapped[Optional[str]] = mapped_column(String(120))
    monthly_budget: Mapped[int] = mapped_column(Integer, nullable=False)
    budget_mode: Mapped[BudgetMode] = mapped_column(
        SAEnum(BudgetMode), nullable=False, default=BudgetMode.categorized
    )
    role: Mapped[UserRole] = mapped_column(
        SAEnum(UserRole), nullable=False, default=UserRole.user
    )

    __table_args__ = (
        CheckConstraint("monthly_budget >= 0", name="ck_users_budget_positive"),
    )


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(50), nullable=False)
    allocation: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    __table_args__ = (
        CheckConstraint(
            "allocation >= 0 AND allocation <= 100",
            name="ck_categories_allocation_range",
        ),
        Index("ix_categories_user", "user_id"),
    )


class MonthlyHistory(Base, TimestampMixin):
    __tablename__ = "monthly_histories"
    __table_args__ = (
        UniqueConstraint("user_id", "year", "month", name="uq_history_user_month"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    total_budget: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_spent: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_rollover: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    budget_mode: Mapped[BudgetMode] = mapped_column(
        SAEnum(BudgetMode), nullable=False, default=BudgetMode.simple
    )


class Week(Base, TimestampMixin):
    __tablename__ = "weeks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    monthly_history_id: Mapped[int] = mapped_column(
        ForeignKey("monthly_histories.id"), nullable=False
    )
    week_number: Mapped[int] = mapped_column(Integer, nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    weekly_budget: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    spent_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rollover_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_closed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    monthly_history: Mapped["MonthlyHistory"] = relationship("MonthlyHistory")

    __table_args__ = (
        UniqueConstraint(
            "monthly_history_id", "week_number", name="uq_week_history_number"
        ),
        Index("ix_weeks_user_dates", "user_id", "start_date", "end_date"),
    )


class WeekCategory(Base, TimestampMixin):
    __tablename__ = "week_categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    week_id: Mapped[int] = mapped_column(ForeignKey("weeks.id"), nullable=False)
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id"), nullable=False
    )
    allocated_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    spent_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    category: Mapped["Category"] = relationship("Category")

    __table_args__ = (
        UniqueConstraint("week_id", "category_id", name="uq_week_category"),
    )


class Expense(Base, TimestampMixin):
    __tablename__ = "expenses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    week_id: Mapped[int] = mapped_column(ForeignKey("weeks.id"), nullable=False)
    category_id: Mapped[Optional[int]] = mapped_column(ForeignKey("categories.id"))
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str] = mapped_column(String(200), nullable=False)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)

    category: Mapped[Optional["Category"]] = relationship("Category")

    __table_args__ = (
        Index("ix_expenses_user_date", "user_id", "date"),
        Index("ix_expenses_week_category", "week_id", "category_id"),
        CheckConstraint("amount > 0", name="ck_expenses_amount_positive"),
    )
