import datetime as dt
from datetime import date
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from allocations import ALLOCATION_TOLERANCE, allocations_total
from config import get_settings
from models import BudgetMode

TrafficLight = Literal["green", "yellow", "red"]


class UserUpdateIn(BaseModel):
    monthly_budget: Optional[int] = None
    budget_mode: Optional[BudgetMode] = None

    @field_validator("monthly_budget")
    @classmethod
    def _budget_above_minimum(cls, value: Optional[int]) -> Optional[int]:
        if value is None:
            return value
        minimum = get_settings().min_monthly_budget
        if value < minimum:
            raise ValueError(f"Monthly budget must be at least {minimum}")
        return value


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    allocation: float = Field(..., ge=0, le=100)


class CategoryUpdateIn(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=50)
    allocation: Optional[float] = Field(default=None, ge=0, le=100)


class AllocationIn(BaseModel):
    category_id: int
    allocation: float = Field(..., ge=0, le=100)


class AllocationsIn(BaseModel):
    allocations: list[AllocationIn] = Field(..., min_length=1)

    @model_validator(mode="after")
    def _sums_to_hundred(self) -> "AllocationsIn":
        total = allocations_total(a.allocation for a in self.allocations)
        if abs(total - 100) >= ALLOCATION_TOLERANCE:
            raise ValueError("Allocations must add up to 100%")
        ids = [a.category_id for a in self.allocations]
        if len(ids) != len(set(ids)):
            raise ValueError("Each category may appear only once")
        return self


class ExpenseIn(BaseModel):
    amount: int = Field(..., ge=1)
    description: str = Field(..., min_length=1, max_length=200)
    date: dt.date
    category_id: Optional[int] = None

    @field_validator("description")
    @classmethod
    def _strip_description(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Description is required")
        return value


class ExpenseUpdateIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    amount: Optional[int] = Field(default=None, ge=1)
    description: Optional[str] = Field(default=None, min_length=1, max_length=200)
    date: Optional[dt.date] = None
    category_id: Optional[int] = None


class MonthIn(BaseModel):
    year: int = Field(..., ge=2000, le=2100)
    month: int = Field(..., ge=1, le=12)


class MonthModeIn(MonthIn):
    budget_mode: BudgetMode


class WeekCategoryOut(BaseModel):
    id: int
    name: str
    allocated_amount: int
    spent_amount: int
    percentage_used: float


class WeekOut(BaseModel):
    id: int
    week_number: int
    start_date: date
    end_date: date
    weekly_budget: int
    spent_amount: int
    rollover_amount: int
    is_closed: bool
    percentage_used: float
    traffic_light_color: TrafficLight
    categories: list[WeekCategoryOut] = Field(default_factory=list)


class MonthWeeksOut(BaseModel):
    year: int
    month: int
    budget_mode: BudgetMode
    weeks: list[WeekOut]


class TopCategoryOut(BaseModel):
    category_name: str
    total_spent: int
    percentage: float


class WeeklyStatOut(BaseModel):
    week_number: int
    spent: int
    traffic_light_color: TrafficLight


class MonthlyHistoryOut(BaseModel):
    id: int
    year: int
    month: int
    budget_mode: BudgetMode
    total_budget: int
    total_spent: int
    total_rollover: int
    month_spent: int
    weeks: list[WeekOut]
    top_categories: list[TopCategoryOut]
    weekly_stats: list[WeeklyStatOut]
    average_daily_spending: float
