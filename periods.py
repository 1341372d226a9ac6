from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date

    def as_dict(self) -> dict[str, str]:
        return {"start_date": self.start.isoformat(), "end_date": self.end.isoformat()}


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def rolling_window(days: int, *, today: Optional[date] = None) -> Period:
    """The ``days`` calendar days ending on ``today``, both ends inclusive."""
    if days <= 0:
        raise ValueError("Rolling window must span at least one day")
    today = today or local_today()
    return Period(f"last_{days}_days", today - timedelta(days=days - 1), today)


def month_to_date(*, today: Optional[date] = None) -> Period:
    today = today or local_today()
    return Period("month_to_date", today.replace(day=1), today)


def months_back(count: int, *, today: Optional[date] = None) -> Period:
    today = today or local_today()
    month_index = (today.year * 12) + (today.month - 1) - count
    start = date(month_index // 12, (month_index % 12) + 1, 1)
    return Period(f"last_{count}_months", start, today)


def resolve_range(
    start: Optional[date], end: Optional[date], *, today: Optional[date] = None
) -> Period:
    default = month_to_date(today=today)
    start_date = start or default.start
    end_date = end or default.end
    if start_date > end_date:
        raise ValueError("Start date must be before end date")
    slug = "month_to_date" if (start is None and end is None) else "custom"
    return Period(slug, start_date, end_date)
