from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import Optional, Sequence

from models import RecurrenceType, Transaction, TransactionType
from money import ZERO, quantize
from recurrence import EXPANSION_ERRORS, expand, step_dates
from store import TransactionStore

logger = logging.getLogger(__name__)

SIMULATED_PURCHASE_REASON = "Simulated purchase"


class InvalidRecurrenceError(ValueError):
    pass


@dataclass(frozen=True)
class BalancePoint:
    date: date
    balance: Decimal
    transactions: tuple[Transaction, ...] = ()


@dataclass(frozen=True)
class BalanceSummary:
    as_of: date
    balance: Decimal
    total_income: Decimal
    total_expense: Decimal


@dataclass(frozen=True)
class SimulationResult:
    simulated_amount: Decimal
    projections: list[BalancePoint] = field(default_factory=list)
    goes_negative: bool = False
    negative_date: Optional[date] = None
    negative_reason: Optional[str] = None
    minimum_balance: Optional[Decimal] = None
    minimum_balance_date: Optional[date] = None


def parse_recurrence(value: Optional[str]) -> RecurrenceType:
    raw = (value or "none").strip().lower()
    try:
        return RecurrenceType(raw)
    except ValueError as exc:
        options = ", ".join(r.value for r in RecurrenceType)
        raise InvalidRecurrenceError(
            f"Unsupported recurrence '{value}'; expected one of: {options}"
        ) from exc


def _sort_key(txn: Transaction) -> tuple[int, int]:
    # unsaved rows sort after persisted ones
    if txn.id is None:
        return (1, 0)
    return (0, txn.id)


def build_projection(
    base_date: date,
    days: int,
    starting_balance: Decimal,
    transactions: Sequence[Transaction],
    templates: Sequence[Transaction],
) -> list[BalancePoint]:
    """Day-by-day balances for ``[base_date, base_date + days]``.

    ``transactions`` are the rows dated inside the window; only one-off rows
    among them are applied directly. ``templates`` are recurring rows, expanded
    over the window. An expanded date that already has a materialized row for
    the same template is not applied a second time.
    """
    if days < 0:
        raise ValueError("days must be zero or positive")
    end_date = base_date + timedelta(days=days)

    by_date: dict[date, list[Transaction]] = {}
    materialized: set[tuple[int, date]] = set()
    for txn in transactions:
        if txn.is_recurring:
            continue
        if not base_date <= txn.effective_date <= end_date:
            continue
        by_date.setdefault(txn.effective_date, []).append(txn)
        if txn.parent_template_id is not None:
            materialized.add((txn.parent_template_id, txn.effective_date))

    for template in templates:
        if not template.is_recurring:
            continue
        if template.effective_date is not None and template.effective_date > end_date:
            continue
        try:
            occurrences = expand(template, base_date, end_date)
        except EXPANSION_ERRORS as exc:
            logger.warning(f"projection_skip: template_id={template.id} error={exc}")
            continue
        for occurrence in occurrences:
            if (template.id, occurrence) in materialized:
                continue
            by_date.setdefault(occurrence, []).append(template)

    points: list[BalancePoint] = []
    running = quantize(starting_balance)
    current = base_date
    while current <= end_date:
        day_txns = sorted(by_date.get(current, []), key=_sort_key)
        for txn in day_txns:
            running += txn.signed_amount
        points.append(BalancePoint(current, running, tuple(day_txns)))
        current += timedelta(days=1)
    return points


def simulate(
    base_projection: Sequence[BalancePoint],
    amount: Decimal,
    recurrence: RecurrenceType,
    occurrences: int = 1,
) -> SimulationResult:
    """Overlay a hypothetical purchase on an existing projection.

    A one-off purchase is deducted on the first projected day; a recurring one
    is deducted ``occurrences`` times, one period apart, starting that day.
    """
    amount = quantize(amount)
    if amount < 0:
        raise ValueError("amount must be zero or positive")
    if recurrence != RecurrenceType.none and occurrences < 1:
        raise ValueError("occurrences must be at least 1 for recurring purchases")
    if not base_projection:
        return SimulationResult(simulated_amount=ZERO)

    base_date = base_projection[0].date
    if recurrence == RecurrenceType.none:
        deduction_dates = [base_date]
        simulated_amount = amount
    else:
        deduction_dates = step_dates(base_date, recurrence, occurrences)
        simulated_amount = amount * occurrences

    adjusted: list[BalancePoint] = []
    for point in base_projection:
        deductions = sum(1 for d in deduction_dates if d <= point.date)
        adjusted.append(
            BalancePoint(
                point.date, point.balance - amount * deductions, point.transactions
            )
        )

    goes_negative = False
    negative_date: Optional[date] = None
    negative_reason: Optional[str] = None
    minimum = adjusted[0]
    for point in adjusted:
        if point.balance < minimum.balance:
            minimum = point
        if not goes_negative and point.balance < 0:
            goes_negative = True
            negative_date = point.date
            negative_reason = next(
                (
                    t.description
                    for t in point.transactions
                    if t.type == TransactionType.expense
                ),
                SIMULATED_PURCHASE_REASON,
            )

    return SimulationResult(
        simulated_amount=simulated_amount,
        projections=adjusted,
        goes_negative=goes_negative,
        negative_date=negative_date,
        negative_reason=negative_reason,
        minimum_balance=minimum.balance,
        minimum_balance_date=minimum.date,
    )


class LedgerProjector:
    def __init__(self, store: TransactionStore) -> None:
        self.store = store

    def balance_as_of(self, as_of: date) -> BalanceSummary:
        income = self.store.sum_amount(TransactionType.income, as_of)
        expense = self.store.sum_amount(TransactionType.expense, as_of)
        return BalanceSummary(
            as_of=as_of,
            balance=income - expense,
            total_income=income,
            total_expense=expense,
        )

    def project(self, base_date: date, days: int) -> list[BalancePoint]:
        if days < 0:
            raise ValueError("days must be zero or positive")
        end_date = base_date + timedelta(days=days)
        starting = self.balance_as_of(base_date - timedelta(days=1)).balance
        in_window = self.store.find_in_date_range(base_date, end_date)
        templates = self.store.find_recurring()
        return build_projection(base_date, days, starting, in_window, templates)

    def simulate(
        self,
        base_date: date,
        amount: Decimal,
        days: int,
        recurrence: str,
        occurrences: int = 1,
    ) -> SimulationResult:
        kind = parse_recurrence(recurrence)
        if amount < 0:
            raise ValueError("amount must be zero or positive")
        if kind != RecurrenceType.none and occurrences < 1:
            raise ValueError("occurrences must be at least 1 for recurring purchases")
        return simulate(self.project(base_date, days), amount, kind, occurrences)
