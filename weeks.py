from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings


@dataclass(frozen=True)
class WeekSlot:
    week_number: int
    start_date: date
    end_date: date
    weekly_budget: int

    def contains(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date


@dataclass(frozen=True)
class MonthPartition:
    year: int
    month: int
    total_budget: int
    weeks: tuple[WeekSlot, ...]

    @property
    def total_weeks(self) -> int:
        return len(self.weeks)

    def slot(self, week_number: int) -> Optional[WeekSlot]:
        for slot in self.weeks:
            if slot.week_number == week_number:
                return slot
        return None

    def slot_for_date(self, day: date) -> Optional[WeekSlot]:
        for slot in self.weeks:
            if slot.contains(day):
                return slot
        return None


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def month_start(year: int, month: int) -> date:
    return date(year, month, 1)


def month_end(year: int, month: int) -> date:
    if month == 12:
        return date(year + 1, 1, 1) - date.resolution
    return date(year, month + 1, 1) - date.resolution


def days_in_month(year: int, month: int) -> int:
    return month_end(year, month).day


def previous_month(year: int, month: int) -> tuple[int, int]:
    if month == 1:
        return year - 1, 12
    return year, month - 1


def next_month(year: int, month: int) -> tuple[int, int]:
    if month == 12:
        return year + 1, 1
    return year, month + 1


def split_evenly(total: int, parts: int) -> list[int]:
    """Split an integer amount into ``parts`` shares that sum to ``total``.

    Rounding leftovers go one unit at a time to the earliest shares.
    """
    if parts <= 0:
        return []
    base, remainder = divmod(total, parts)
    return [base + 1 if index < remainder else base for index in range(parts)]


def partition_month(year: int, month: int, total_budget: int) -> MonthPartition:
    """Cut a month into Monday-start weeks clipped to the month boundaries.

    Every week that intersects the month gets an even share of
    ``total_budget``; the divisor is the real number of weeks (4 to 6).
    """
    first = month_start(year, month)
    last = month_end(year, month)

    ranges: list[tuple[date, date]] = []
    monday = first - timedelta(days=first.weekday())
    while monday <= last:
        sunday = monday + timedelta(days=6)
        ranges.append((max(monday, first), min(sunday, last)))
        monday += timedelta(weeks=1)

    shares = split_evenly(total_budget, len(ranges))
    weeks = tuple(
        WeekSlot(
            week_number=index + 1,
            start_date=start,
            end_date=end,
            weekly_budget=shares[index],
        )
        for index, (start, end) in enumerate(ranges)
    )
    return MonthPartition(
        year=year, month=month, total_budget=total_budget, weeks=weeks
    )


def find_week_for_date(day: date, total_budget: int = 0) -> WeekSlot:
    partition = partition_month(day.year, day.month, total_budget)
    slot = partition.slot_for_date(day)
    if slot is None:  # pragma: no cover - the partition covers every day
        raise ValueError(f"No week found for {day.isoformat()}")
    return slot


def budget_percentage(spent: int, budget: int) -> float:
    if budget <= 0:
        if budget == 0 and spent <= 0:
            return 0.0
        return 100.0
    return min(spent / budget * 100, 100.0)


def traffic_light(percentage_used: float) -> str:
    remaining = 100 - percentage_used
    if remaining > 50:
        return "green"
    if remaining >= 20:
        return "yellow"
    return "red"
