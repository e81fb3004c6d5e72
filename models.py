from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base
from money import cents_to_decimal, decimal_to_cents


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"


class RecurrenceType(str, Enum):
    none = "none"
    daily = "daily"
    weekly = "weekly"
    monthly = "monthly"
    yearly = "yearly"


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    color: Mapped[Optional[str]] = mapped_column(String(7))
    icon: Mapped[Optional[str]] = mapped_column(String(50))

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="category"
    )


class Transaction(Base, TimestampMixin):
    """A ledger row. Recurring rows double as templates for their occurrences."""

    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    description: Mapped[str] = mapped_column(String(255), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    effective_date: Mapped[date] = mapped_column(Date, nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    recurrence: Mapped[RecurrenceType] = mapped_column(
        SAEnum(RecurrenceType), nullable=False, default=RecurrenceType.none
    )
    category_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("categories.id", ondelete="SET NULL")
    )
    end_date: Mapped[Optional[date]] = mapped_column(Date)
    last_generated_date: Mapped[Optional[date]] = mapped_column(Date)
    parent_template_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("transactions.id", ondelete="SET NULL")
    )

    category: Mapped[Optional["Category"]] = relationship(
        "Category", back_populates="transactions"
    )

    __table_args__ = (
        UniqueConstraint(
            "parent_template_id",
            "effective_date",
            name="uq_txn_template_occurrence",
        ),
        Index("ix_transactions_effective_date", "effective_date"),
        Index("ix_transactions_type_date", "type", "effective_date"),
        Index("ix_transactions_recurrence", "recurrence"),
        CheckConstraint("amount_cents >= 0", name="ck_transactions_amount_positive"),
    )

    @property
    def amount(self) -> Decimal:
        return cents_to_decimal(self.amount_cents)

    @amount.setter
    def amount(self, value: Decimal) -> None:
        self.amount_cents = decimal_to_cents(value)

    @property
    def signed_amount(self) -> Decimal:
        if self.type == TransactionType.income:
            return self.amount
        return -self.amount

    @property
    def is_recurring(self) -> bool:
        return self.recurrence is not None and self.recurrence != RecurrenceType.none


def new_category(
    name: str, color: Optional[str] = None, icon: Optional[str] = None
) -> Category:
    now = utcnow()
    return Category(
        name=name, color=color, icon=icon, created_at=now, updated_at=now
    )


def new_transaction(
    *,
    description: str,
    amount: Decimal,
    effective_date: date,
    type: TransactionType,
    recurrence: RecurrenceType = RecurrenceType.none,
    category_id: Optional[int] = None,
    end_date: Optional[date] = None,
    parent_template_id: Optional[int] = None,
) -> Transaction:
    now = utcnow()
    return Transaction(
        description=description,
        amount_cents=decimal_to_cents(amount),
        effective_date=effective_date,
        type=type,
        recurrence=recurrence,
        category_id=category_id,
        end_date=end_date,
        last_generated_date=None,
        parent_template_id=parent_template_id,
        created_at=now,
        updated_at=now,
    )


def new_occurrence(template: Transaction, occurrence_date: date) -> Transaction:
    return new_transaction(
        description=template.description,
        amount=template.amount,
        effective_date=occurrence_date,
        type=template.type,
        recurrence=RecurrenceType.none,
        category_id=template.category_id,
        parent_template_id=template.id,
    )


def touch(entity: TimestampMixin) -> None:
    entity.updated_at = utcnow()
