from contextlib import contextmanager
from datetime import date
from decimal import Decimal
from typing import ContextManager, Iterator, Protocol, Sequence

from sqlalchemy import func, select
from sqlalchemy.orm import Session, joinedload

from models import RecurrenceType, Transaction, TransactionType
from money import cents_to_decimal


class TransactionStore(Protocol):
    """What the balance and recurrence code needs from persistence."""

    def sum_amount(self, type: TransactionType, up_to: date) -> Decimal: ...

    def find_all(self) -> list[Transaction]: ...

    def find_recurring(self) -> list[Transaction]: ...

    def find_in_date_range(self, start: date, end: date) -> list[Transaction]: ...

    def insert_batch(self, rows: Sequence[Transaction]) -> None: ...

    def update(self, template: Transaction) -> None: ...

    def transaction(self) -> ContextManager[None]: ...


class SqlTransactionStore:
    def __init__(self, session: Session) -> None:
        self.session = session

    def sum_amount(self, type: TransactionType, up_to: date) -> Decimal:
        stmt = select(func.coalesce(func.sum(Transaction.amount_cents), 0)).where(
            Transaction.type == type,
            Transaction.effective_date <= up_to,
        )
        return cents_to_decimal(self.session.execute(stmt).scalar_one())

    def find_all(self) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category))
            .order_by(Transaction.effective_date, Transaction.id)
        )
        return list(self.session.scalars(stmt).all())

    def find_recurring(self) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category))
            .where(Transaction.recurrence != RecurrenceType.none)
            .order_by(Transaction.id)
        )
        return list(self.session.scalars(stmt).all())

    def find_in_date_range(self, start: date, end: date) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category))
            .where(Transaction.effective_date.between(start, end))
            .order_by(Transaction.effective_date, Transaction.id)
        )
        return list(self.session.scalars(stmt).all())

    def insert_batch(self, rows: Sequence[Transaction]) -> None:
        self.session.add_all(rows)
        self.session.flush()

    def update(self, template: Transaction) -> None:
        self.session.add(template)
        self.session.flush()

    @contextmanager
    def transaction(self) -> Iterator[None]:
        try:
            yield
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
