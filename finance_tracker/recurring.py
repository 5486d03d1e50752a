# finance_tracker/recurring.py
from __future__ import annotations

from calendar import monthrange
from datetime import datetime, timedelta

from finance_tracker.core.errors import ValidationError
from finance_tracker.core.models import Category, Frequency, TransactionType

_MONTH_STEPS = {
    Frequency.MONTHLY: 1,
    Frequency.QUARTERLY: 3,
    Frequency.YEARLY: 12,
}


def _add_months(original: datetime, months: int) -> datetime:
    # Clamp to the last day of the target month (Jan 31 + 1 month -> Feb 28/29).
    month_index = original.month - 1 + months
    year = original.year + month_index // 12
    month = month_index % 12 + 1
    day = min(original.day, monthrange(year, month)[1])
    return original.replace(year=year, month=month, day=day)


def next_date(value: datetime, frequency: Frequency) -> datetime:
    """Return the next processing time after *value* for *frequency*.

    Calendar arithmetic is used for month based frequencies, keeping the time
    of day. When the target month is shorter than the source day the result is
    clamped to the target month's last day, so the result is always strictly
    later than *value*.
    """
    frequency = Frequency(frequency)
    if frequency is Frequency.DAILY:
        return value + timedelta(days=1)
    if frequency is Frequency.WEEKLY:
        return value + timedelta(weeks=1)
    return _add_months(value, _MONTH_STEPS[frequency])


def _clear_schedule(category: Category) -> None:
    category.frequency = None
    category.default_amount = None
    category.last_processed_date = None
    category.next_processed_date = None


def apply_recurrence(category: Category, now: datetime) -> Category:
    """Bring *category* into a consistent recurring or one-time state.

    Raises ``ValidationError`` when a recurring category lacks a frequency or
    a positive default amount. The schedule cursor is only initialised on the
    first transition into recurring; later edits keep it as stored.
    """
    if category.transaction_type is TransactionType.RECURRING:
        if category.frequency is None:
            raise ValidationError(
                "Frequency is required for recurring categories",
                field="frequency",
            )
        if category.default_amount is None or category.default_amount <= 0:
            raise ValidationError(
                "Default amount must be positive for recurring categories",
                field="defaultAmount",
            )
        if category.last_processed_date is None:
            category.last_processed_date = now
            category.next_processed_date = next_date(now, category.frequency)
    else:
        _clear_schedule(category)

    category.is_recurring = category.transaction_type is TransactionType.RECURRING
    return category
