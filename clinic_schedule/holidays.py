from __future__ import annotations

from dataclasses import dataclass
from datetime import date

from sqlalchemy import select
from sqlalchemy.orm import Session

from clinic_schedule.calendar_utils import last_weekday_of_month, nth_weekday_of_month, observed_date
from clinic_schedule.config import DEFAULT_INPATIENT_SERVICES
from clinic_schedule.models import Holiday


@dataclass(frozen=True)
class HolidayInfo:
    date: date
    name: str
    block_assignments: bool = True


def holidays_for_year(year: int) -> list[HolidayInfo]:
    return [
        HolidayInfo(observed_date(year, 1, 1), "New Year's Day"),
        HolidayInfo(nth_weekday_of_month(year, 1, 1, 3), "MLK Day"),
        HolidayInfo(nth_weekday_of_month(year, 2, 1, 3), "Presidents' Day"),
        HolidayInfo(last_weekday_of_month(year, 5, 1), "Memorial Day"),
        HolidayInfo(observed_date(year, 6, 19), "Juneteenth"),
        HolidayInfo(observed_date(year, 7, 4), "Independence Day"),
        HolidayInfo(nth_weekday_of_month(year, 9, 1, 1), "Labor Day"),
        HolidayInfo(nth_weekday_of_month(year, 11, 4, 4), "Thanksgiving"),
        HolidayInfo(observed_date(year, 12, 25), "Christmas"),
    ]


class HolidayPolicy:
    """Observed institutional holidays merged with configured ``holidays`` rows.

    A configured row on the same date replaces the computed holiday, which is
    how an administrator un-blocks (or renames) a computed holiday.
    """

    def __init__(self, db: Session | None = None, inpatient_services: tuple[str, ...] = DEFAULT_INPATIENT_SERVICES) -> None:
        self.db = db
        self.inpatient_services = frozenset(inpatient_services)
        self._years: dict[int, dict[date, HolidayInfo]] = {}

    def _load_year(self, year: int) -> dict[date, HolidayInfo]:
        cached = self._years.get(year)
        if cached is not None:
            return cached
        by_date = {h.date: h for h in holidays_for_year(year)}
        if self.db is not None:
            rows = self.db.scalars(
                select(Holiday).where(Holiday.date >= date(year, 1, 1), Holiday.date <= date(year, 12, 31))
            ).all()
            for row in rows:
                by_date[row.date] = HolidayInfo(row.date, row.name, row.block_assignments)
        self._years[year] = by_date
        return by_date

    def is_holiday(self, value: date) -> HolidayInfo | None:
        return self._load_year(value.year).get(value)

    def holidays_in_range(self, start: date, end: date) -> dict[date, HolidayInfo]:
        found: dict[date, HolidayInfo] = {}
        for year in range(start.year, end.year + 1):
            for day, holiday in self._load_year(year).items():
                if start <= day <= end:
                    found[day] = holiday
        return dict(sorted(found.items()))

    def is_inpatient_service(self, service_name: str) -> bool:
        return service_name in self.inpatient_services

    def blocking_holiday(self, value: date, service_name: str) -> HolidayInfo | None:
        holiday = self.is_holiday(value)
        if holiday is None or not holiday.block_assignments:
            return None
        if self.is_inpatient_service(service_name):
            return None
        return holiday
