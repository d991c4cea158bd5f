"""
Financial year helpers.

A financial year label Y covers 1 April Y through 31 March Y+1.
"""
from datetime import date, timedelta
from typing import Optional, Tuple

from app.core.config import settings


def get_current_financial_year(today: Optional[date] = None) -> int:
    today = today or date.today()
    if today.month < settings.financial_year_start_month:
        return today.year - 1
    return today.year


def get_financial_year_dates(year: int) -> Tuple[date, date]:
    """Inclusive start and end dates of financial year `year`."""
    start = date(year, settings.financial_year_start_month, 1)
    end = date(year + 1, settings.financial_year_start_month, 1) - timedelta(days=1)
    return start, end


def resolve_financial_year(year: Optional[int] = None) -> int:
    return year if year is not None else get_current_financial_year()


def financial_year_label(year: int) -> str:
    return f"FY {year}-{year + 1}"
