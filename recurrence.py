import logging
import threading
from datetime import date, datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings
from models import RecurrenceType, Transaction, new_occurrence, touch
from store import TransactionStore

logger = logging.getLogger(__name__)

# Serializes materialization passes (scheduled run vs. manual trigger).
_generation_lock = threading.Lock()

EXPANSION_ERRORS = (ValueError, OverflowError, TypeError)


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def _add_months(base: date, months: int) -> date:
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    day = min(base.day, days_in_month(year, month))
    return date(year, month, day)


def next_occurrence(from_date: date, recurrence: RecurrenceType) -> date:
    if recurrence == RecurrenceType.daily:
        return from_date + timedelta(days=1)
    elif recurrence == RecurrenceType.weekly:
        return from_date + timedelta(weeks=1)
    elif recurrence == RecurrenceType.monthly:
        return _add_months(from_date, 1)
    elif recurrence == RecurrenceType.yearly:
        return _add_months(from_date, 12)
    raise ValueError(f"Recurrence {recurrence!r} has no next occurrence")


def step_dates(start: date, recurrence: RecurrenceType, count: int) -> list[date]:
    """``count`` dates beginning at ``start``, one period apart."""
    dates: list[date] = []
    current = start
    for _ in range(count):
        dates.append(current)
        current = next_occurrence(current, recurrence)
    return dates


def expand(template: Transaction, window_start: date, window_end: date) -> list[date]:
    """Dates on which ``template`` recurs inside ``[window_start, window_end]``.

    Stepping always starts at the template's effective date so the phase of
    the series is preserved; occurrences before the window are discarded.
    The template's end date, when set, caps the series.
    """
    if not template.is_recurring:
        return []
    if template.effective_date is None:
        raise ValueError(f"Template {template.id} has no effective date")

    upper = window_end
    if template.end_date is not None and template.end_date < upper:
        upper = template.end_date
    if upper < window_start:
        return []

    occurrences: list[date] = []
    current = template.effective_date
    while current <= upper:
        if current >= window_start:
            occurrences.append(current)
        current = next_occurrence(current, template.recurrence)
    return occurrences


def pending_occurrences(template: Transaction, as_of: date) -> list[date]:
    """Occurrences not yet materialized for ``template``, up to ``as_of``.

    The template's own effective date is never returned: the template row
    already accounts for it.
    """
    if not template.is_recurring:
        return []
    if template.effective_date is None:
        raise ValueError(f"Template {template.id} has no effective date")

    upper = as_of
    if template.end_date is not None and template.end_date < upper:
        upper = template.end_date

    start_from = template.last_generated_date or template.effective_date
    occurrences: list[date] = []
    current = next_occurrence(start_from, template.recurrence)
    while current <= upper:
        occurrences.append(current)
        current = next_occurrence(current, template.recurrence)
    return occurrences


class RecurringEngine:
    def __init__(self, store: TransactionStore) -> None:
        self.store = store

    def generate_pending(self, as_of: Optional[date] = None) -> int:
        as_of = as_of or local_today()
        with _generation_lock:
            with self.store.transaction():
                to_create: list[Transaction] = []
                for template in self.store.find_recurring():
                    try:
                        dates = pending_occurrences(template, as_of)
                    except EXPANSION_ERRORS as exc:
                        logger.warning(
                            f"recurring_skip: template_id={template.id} error={exc}"
                        )
                        continue
                    if not dates:
                        continue
                    to_create.extend(new_occurrence(template, d) for d in dates)
                    template.last_generated_date = dates[-1]
                    touch(template)
                    self.store.update(template)

                if to_create:
                    self.store.insert_batch(to_create)
        logger.info(
            f"recurring_generate: as_of={as_of.isoformat()} created={len(to_create)}"
        )
        return len(to_create)
