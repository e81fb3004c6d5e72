from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, joinedload

from categorizer import FALLBACK_CATEGORY, CategoryMatcher, KnowledgeBase
from config import Settings, get_settings
from csv_utils import export_transactions, parse_csv
from models import (
    Category,
    RecurrenceType,
    Transaction,
    TransactionType,
    new_category,
    new_transaction,
    touch,
)
from projection import BalancePoint, BalanceSummary, LedgerProjector, SimulationResult
from recurrence import RecurringEngine, local_today
from schemas import CategoryIn, CSVImportRowIn, CSVImportRowOut, TransactionIn
from store import SqlTransactionStore

logger = logging.getLogger(__name__)

CATEGORY_PALETTE = (
    "#6366F1",
    "#EC4899",
    "#F59E0B",
    "#10B981",
    "#3B82F6",
    "#EF4444",
    "#8B5CF6",
    "#14B8A6",
    "#F97316",
    "#06B6D4",
    "#84CC16",
    "#A855F7",
    "#E11D48",
    "#0EA5E9",
    "#D946EF",
    "#22C55E",
    "#FB923C",
    "#64748B",
    "#FACC15",
    "#2DD4BF",
)


class NotFoundError(ValueError):
    pass


class BackupNotFoundError(NotFoundError):
    pass


class CategoryService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self) -> list[Category]:
        stmt = select(Category).order_by(Category.name)
        return self.session.scalars(stmt).all()

    def get(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category:
            raise NotFoundError(f"Category not found: {category_id}")
        return category

    def find_by_name(self, name: str) -> Optional[Category]:
        return self.session.scalar(
            select(Category).where(func.lower(Category.name) == name.strip().lower())
        )

    def create(self, data: CategoryIn) -> Category:
        if self.find_by_name(data.name):
            raise ValueError(f"Category already exists: {data.name}")
        category = new_category(data.name.strip(), data.color, data.icon)
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category

    def update(self, category_id: int, data: CategoryIn) -> Category:
        category = self.get(category_id)
        existing = self.find_by_name(data.name)
        if existing and existing.id != category.id:
            raise ValueError(f"Category already exists: {data.name}")
        category.name = data.name.strip()
        category.color = data.color
        category.icon = data.icon
        touch(category)
        self.session.commit()
        self.session.refresh(category)
        return category

    def delete(self, category_id: int) -> None:
        category = self.get(category_id)
        self.session.execute(
            update(Transaction)
            .where(Transaction.category_id == category.id)
            .values(category_id=None)
        )
        self.session.delete(category)
        self.session.commit()

    def seed_from_knowledge(self, knowledge: KnowledgeBase) -> int:
        used_colors = {
            (c.color or "").upper() for c in self.list_all() if c.color
        }
        created = 0
        for index, name in enumerate(knowledge.categories):
            if self.find_by_name(name):
                continue
            color = _next_available_color(used_colors, index)
            self.session.add(new_category(name, color))
            self.session.flush()
            used_colors.add(color.upper())
            created += 1
            logger.info(f"category_seed: name={name} color={color}")
        self.session.commit()
        return created


def _next_available_color(used: set[str], start: int) -> str:
    for offset in range(len(CATEGORY_PALETTE)):
        candidate = CATEGORY_PALETTE[(start + offset) % len(CATEGORY_PALETTE)]
        if candidate.upper() not in used:
            return candidate
    return CATEGORY_PALETTE[start % len(CATEGORY_PALETTE)]


class TransactionService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def _check_category(self, category_id: Optional[int]) -> None:
        if category_id is not None:
            CategoryService(self.session).get(category_id)

    def list(
        self, start: Optional[date] = None, end: Optional[date] = None
    ) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category))
            .order_by(Transaction.effective_date.desc(), Transaction.id.desc())
        )
        if start is not None:
            stmt = stmt.where(Transaction.effective_date >= start)
        if end is not None:
            stmt = stmt.where(Transaction.effective_date <= end)
        return self.session.scalars(stmt).all()

    def list_recurring(self) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category))
            .where(Transaction.recurrence != RecurrenceType.none)
            .order_by(Transaction.effective_date, Transaction.id)
        )
        return self.session.scalars(stmt).all()

    def get(self, transaction_id: int) -> Transaction:
        txn = self.session.get(Transaction, transaction_id)
        if not txn:
            raise NotFoundError(f"Transaction not found: {transaction_id}")
        return txn

    def create(self, data: TransactionIn) -> Transaction:
        self._check_category(data.category_id)
        txn = new_transaction(
            description=data.description.strip(),
            amount=data.amount,
            effective_date=data.effective_date,
            type=data.type,
            recurrence=data.recurrence,
            category_id=data.category_id,
            end_date=data.end_date,
        )
        self.session.add(txn)
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def update(self, transaction_id: int, data: TransactionIn) -> Transaction:
        txn = self.get(transaction_id)
        self._check_category(data.category_id)
        schedule_changed = (
            txn.effective_date != data.effective_date
            or txn.recurrence != data.recurrence
        )

        txn.description = data.description.strip()
        txn.amount = data.amount
        txn.effective_date = data.effective_date
        txn.type = data.type
        txn.recurrence = data.recurrence
        txn.category_id = data.category_id
        txn.end_date = data.end_date

        if not txn.is_recurring:
            txn.last_generated_date = None
        else:
            cut_short = (
                txn.end_date is not None
                and txn.last_generated_date is not None
                and txn.last_generated_date > txn.end_date
            )
            if cut_short:
                dropped = self._drop_occurrences_after(txn, txn.end_date)
                logger.info(
                    f"recurring_truncate: template_id={txn.id} "
                    f"end_date={txn.end_date.isoformat()} dropped={dropped}"
                )
            if schedule_changed or cut_short:
                # The marker must be a real occurrence so later passes keep the phase.
                txn.last_generated_date = self._latest_materialized(txn)

        touch(txn)
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def _latest_materialized(self, template: Transaction) -> Optional[date]:
        stmt = select(func.max(Transaction.effective_date)).where(
            Transaction.parent_template_id == template.id,
            Transaction.effective_date >= template.effective_date,
        )
        if template.end_date is not None:
            stmt = stmt.where(Transaction.effective_date <= template.end_date)
        return self.session.scalar(stmt)

    def _drop_occurrences_after(self, template: Transaction, end_date: date) -> int:
        result = self.session.execute(
            delete(Transaction).where(
                Transaction.parent_template_id == template.id,
                Transaction.effective_date > end_date,
            )
        )
        return result.rowcount

    def delete(self, transaction_id: int) -> None:
        txn = self.get(transaction_id)
        self.session.execute(
            update(Transaction)
            .where(Transaction.parent_template_id == txn.id)
            .values(parent_template_id=None)
        )
        self.session.delete(txn)
        self.session.commit()


class BalanceService:
    def __init__(self, session: Session) -> None:
        self.session = session
        self.projector = LedgerProjector(SqlTransactionStore(session))

    def current(self) -> BalanceSummary:
        return self.projector.balance_as_of(local_today())

    def as_of(self, as_of: date) -> BalanceSummary:
        return self.projector.balance_as_of(as_of)

    def projection(
        self, days: int = 30, base_date: Optional[date] = None
    ) -> list[BalancePoint]:
        return self.projector.project(base_date or local_today(), days)

    def simulate(
        self,
        amount: Decimal,
        days: int = 30,
        recurrence: str = "none",
        occurrences: int = 1,
        base_date: Optional[date] = None,
    ) -> SimulationResult:
        return self.projector.simulate(
            base_date or local_today(), amount, days, recurrence, occurrences
        )


class RecurringTransactionService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_templates(self) -> list[Transaction]:
        return TransactionService(self.session).list_recurring()

    def generate_pending(self, as_of: Optional[date] = None) -> int:
        engine = RecurringEngine(SqlTransactionStore(self.session))
        return engine.generate_pending(as_of or local_today())


class CSVService:
    def __init__(self, session: Session, matcher: CategoryMatcher) -> None:
        self.session = session
        self.matcher = matcher

    def preview(self, content: str) -> tuple[list[CSVImportRowOut], list[str]]:
        rows, errors = parse_csv(content)
        categories = self.matcher.categorize([row.description for row in rows])
        preview_rows: list[CSVImportRowOut] = []
        for row, category in zip(rows, categories):
            if row.amount == 0:
                errors.append(f"Skipped zero amount: {row.description}")
                continue
            preview_rows.append(
                CSVImportRowOut(
                    effective_date=row.date,
                    description=row.description,
                    amount=abs(row.amount),
                    type=(
                        TransactionType.expense
                        if row.amount < 0
                        else TransactionType.income
                    ),
                    category=category,
                )
            )
        logger.info(f"csv_preview: rows={len(preview_rows)} errors={len(errors)}")
        return preview_rows, errors

    def commit(self, rows: list[CSVImportRowIn]) -> int:
        categories = CategoryService(self.session)
        cache: dict[str, int] = {}
        for row in rows:
            name = (row.category or FALLBACK_CATEGORY).strip() or FALLBACK_CATEGORY
            key = name.lower()
            if key not in cache:
                category = categories.find_by_name(name)
                if category is None:
                    category = new_category(name)
                    self.session.add(category)
                    self.session.flush()
                cache[key] = category.id
            self.session.add(
                new_transaction(
                    description=row.description.strip(),
                    amount=row.amount,
                    effective_date=row.effective_date,
                    type=row.type,
                    category_id=cache[key],
                )
            )
        self.session.commit()
        logger.info(f"csv_commit: created={len(rows)}")
        return len(rows)

    def export(self, transactions: list[Transaction]) -> str:
        return export_transactions(transactions)


@dataclass(frozen=True)
class BackupInfo:
    name: str
    size: int
    created: datetime


class BackupService:
    PREFIX = "finance-backup_"
    SQLITE_HEADER = b"SQLite format 3\x00"

    def __init__(
        self, settings: Optional[Settings] = None, engine: Optional[Engine] = None
    ) -> None:
        self.settings = settings or get_settings()
        self.engine = engine
        self.backup_dir = self.settings.backup_dir
        self.backup_dir.mkdir(parents=True, exist_ok=True)

    @property
    def database_path(self) -> Path:
        path = self.settings.sqlite_path
        if path is None:
            raise ValueError("Backups are only supported for file-based SQLite")
        return path

    def _resolve(self, name: str) -> Path:
        if not name or "/" in name or "\\" in name or name.startswith("."):
            raise ValueError(f"Invalid backup name: {name}")
        if not name.endswith(".db"):
            raise ValueError(f"Invalid backup name: {name}")
        path = self.backup_dir / name
        if not path.exists():
            raise BackupNotFoundError(f"Backup not found: {name}")
        return path

    @staticmethod
    def _copy(source: Path, target: Path) -> None:
        src = sqlite3.connect(str(source))
        dst = sqlite3.connect(str(target))
        try:
            src.backup(dst)
        finally:
            dst.close()
            src.close()

    def create_backup(self, prune: bool = True) -> str:
        if not self.database_path.exists():
            raise NotFoundError("Database file not found")
        stamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S-%f")
        name = f"{self.PREFIX}{stamp}.db"
        self._copy(self.database_path, self.backup_dir / name)
        logger.info(f"backup_created: name={name}")
        if prune:
            self._clean_old_backups()
        return name

    def list_backups(self) -> list[BackupInfo]:
        items = []
        for path in sorted(self.backup_dir.glob(f"{self.PREFIX}*.db"), reverse=True):
            stat = path.stat()
            items.append(
                BackupInfo(
                    name=path.name,
                    size=stat.st_size,
                    created=datetime.fromtimestamp(stat.st_mtime),
                )
            )
        return items

    def delete_backup(self, name: str) -> None:
        path = self._resolve(name)
        path.unlink()
        logger.info(f"backup_deleted: name={name}")

    def restore_backup(self, name: str) -> None:
        path = self._resolve(name)
        self.create_backup(prune=False)
        self._copy(path, self.database_path)
        self._clean_old_backups()
        if self.engine is not None:
            self.engine.dispose()
        logger.info(f"backup_restored: name={name}")

    def import_database(self, content: bytes) -> None:
        if not content.startswith(self.SQLITE_HEADER):
            raise ValueError("Uploaded file is not a SQLite database")
        upload = self.backup_dir / ".upload.db"
        upload.write_bytes(content)
        try:
            if self.database_path.exists():
                self.create_backup(prune=False)
            self._copy(upload, self.database_path)
        finally:
            upload.unlink(missing_ok=True)
        self._clean_old_backups()
        if self.engine is not None:
            self.engine.dispose()
        logger.info(f"database_imported: size={len(content)}")

    def _clean_old_backups(self) -> None:
        backups = self.list_backups()
        for stale in backups[self.settings.max_backups :]:
            (self.backup_dir / stale.name).unlink(missing_ok=True)
            logger.info(f"backup_pruned: name={stale.name}")
