import pytest
from datetime import date
from app.services.financial_year import (
    financial_year_label,
    get_current_financial_year,
    get_financial_year_dates,
    resolve_financial_year,
)

@pytest.mark.parametrize("today, expected", [
    (date(2025, 1, 15), 2024),
    (date(2025, 3, 31), 2024),
    (date(2025, 4, 1), 2025),
    (date(2025, 12, 31), 2025),
])
def test_current_financial_year(today, expected):
    assert get_current_financial_year(today) == expected

def test_financial_year_dates_span_april_to_march():
    start, end = get_financial_year_dates(2024)
    assert start == date(2024, 4, 1)
    assert end == date(2025, 3, 31)

def test_resolve_defaults_to_current_year():
    assert resolve_financial_year(None) == get_current_financial_year()
    assert resolve_financial_year(2027) == 2027

def test_label():
    assert financial_year_label(2024) == "FY 2024-2025"
