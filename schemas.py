from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from models import RecurrenceType, TransactionType


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    color: Optional[str] = Field(default=None, pattern=r"^#[0-9A-Fa-f]{6}$")
    icon: Optional[str] = Field(default=None, max_length=50)


class CategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    color: Optional[str]
    icon: Optional[str]
    created_at: datetime
    updated_at: datetime


class TransactionIn(BaseModel):
    description: str = Field(..., min_length=1, max_length=255)
    amount: Decimal = Field(..., gt=0, max_digits=15, decimal_places=2)
    effective_date: date
    type: TransactionType
    recurrence: RecurrenceType = RecurrenceType.none
    category_id: Optional[int] = None
    end_date: Optional[date] = None

    @model_validator(mode="after")
    def _check_end_date(self) -> "TransactionIn":
        if self.end_date is not None:
            if self.recurrence == RecurrenceType.none:
                raise ValueError("end_date only applies to recurring transactions")
            if self.end_date < self.effective_date:
                raise ValueError("end_date must not be before effective_date")
        return self


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    description: str
    amount: Decimal
    effective_date: date
    type: TransactionType
    recurrence: RecurrenceType
    category: Optional[CategoryOut] = None
    end_date: Optional[date] = None
    last_generated_date: Optional[date] = None
    parent_template_id: Optional[int] = None
    created_at: datetime
    updated_at: datetime


class BalanceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    as_of: date
    balance: Decimal
    total_income: Decimal
    total_expense: Decimal


class BalancePointOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    date: date
    balance: Decimal
    transactions: list[TransactionOut]


class SimulationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    simulated_amount: Decimal
    projections: list[BalancePointOut]
    goes_negative: bool
    negative_date: Optional[date]
    negative_reason: Optional[str]
    minimum_balance: Optional[Decimal]
    minimum_balance_date: Optional[date]


class GenerateOut(BaseModel):
    as_of: date
    created: int


class CSVRow(BaseModel):
    date: date
    description: str
    amount: Decimal


class CSVImportRowIn(BaseModel):
    effective_date: date
    description: str = Field(..., min_length=1, max_length=255)
    amount: Decimal = Field(..., gt=0, max_digits=15, decimal_places=2)
    type: TransactionType
    category: Optional[str] = Field(default=None, max_length=100)


class CSVImportRowOut(BaseModel):
    effective_date: date
    description: str
    amount: Decimal
    type: TransactionType
    category: str


class CSVPreviewOut(BaseModel):
    rows: list[CSVImportRowOut]
    errors: list[str]


class BackupOut(BaseModel):
    name: str
    size: int
    created: datetime
