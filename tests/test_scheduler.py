from contextlib import contextmanager
from datetime import timedelta
from decimal import Decimal

from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session

import scheduler
from database import Base
from models import RecurrenceType, Transaction, TransactionType, new_transaction
from recurrence import local_today


def test_run_job_posts_pending_occurrences(monkeypatch):
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    session = Session(engine, expire_on_commit=False)
    session.add(
        new_transaction(
            description="Coffee",
            amount=Decimal("4.50"),
            effective_date=local_today() - timedelta(days=3),
            type=TransactionType.expense,
            recurrence=RecurrenceType.daily,
        )
    )
    session.commit()

    @contextmanager
    def fake_scope():
        yield session
        session.commit()

    monkeypatch.setattr(scheduler, "session_scope", fake_scope)
    manager = scheduler.SchedulerManager()

    manager._run_job("test")
    manager._run_job("test")

    count = session.scalar(
        select(func.count()).select_from(Transaction).where(
            Transaction.parent_template_id.is_not(None)
        )
    )
    assert count == 3
    assert not manager.scheduler.running


def test_run_backup_respects_flag(monkeypatch):
    manager = scheduler.SchedulerManager()
    monkeypatch.setattr(manager.settings, "auto_backup", False)

    def fail(*args, **kwargs):
        raise AssertionError("backup should not run")

    monkeypatch.setattr(scheduler, "BackupService", fail)
    manager._run_backup()
