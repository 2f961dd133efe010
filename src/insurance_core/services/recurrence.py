"""Calendar-correct due-date arithmetic for premium schedules."""

from datetime import date

from dateutil.relativedelta import relativedelta

from insurance_core.exceptions import InvalidFrequency
from insurance_core.models.common import PremiumFrequency

# relativedelta clamps the day to the last valid day of the target month
_PERIODS = {
    PremiumFrequency.MONTHLY: relativedelta(months=1),
    PremiumFrequency.QUARTERLY: relativedelta(months=3),
    PremiumFrequency.SEMI_ANNUAL: relativedelta(months=6),
    PremiumFrequency.ANNUAL: relativedelta(years=1),
}


def parse_frequency(frequency: PremiumFrequency | str) -> PremiumFrequency:
    """Coerce a frequency value, raising InvalidFrequency for anything unknown."""
    if isinstance(frequency, PremiumFrequency):
        return frequency
    try:
        return PremiumFrequency(frequency)
    except ValueError:
        raise InvalidFrequency(
            f"Unknown premium frequency: {frequency!r}",
            allowed=[f.value for f in PremiumFrequency],
        ) from None


def next_due_date(anchor: date, frequency: PremiumFrequency | str) -> date:
    """Return the due date one premium period after ``anchor``.

    Jan 31 + monthly is Feb 28 (Feb 29 in leap years), never an invalid date.
    """
    return anchor + _PERIODS[parse_frequency(frequency)]


def add_years(anchor: date, years: int) -> date:
    """``anchor`` shifted by whole years; Feb 29 maps to Feb 28 in non-leap years."""
    return anchor + relativedelta(years=years)
