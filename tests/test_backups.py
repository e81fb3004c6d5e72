import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

from config import Settings
from database import Base
from models import Category, new_category
from services import BackupNotFoundError, BackupService


@pytest.fixture()
def backup_env(tmp_path):
    db_path = tmp_path / "finance.db"
    settings = Settings(
        data_dir=tmp_path,
        database_url=f"sqlite:///{db_path}",
        timezone="UTC",
        backup_dir=tmp_path / "backups",
        max_backups=2,
        auto_backup=True,
        categories_file=tmp_path / "categories.md",
    )
    engine = create_engine(settings.database_url)
    Base.metadata.create_all(engine)
    yield settings, engine
    engine.dispose()


def _add_category(engine, name: str) -> None:
    with Session(engine) as session:
        session.add(new_category(name))
        session.commit()


def _category_names(engine) -> list[str]:
    with Session(engine) as session:
        return list(session.scalars(select(Category.name).order_by(Category.name)))


def test_create_and_list_backups(backup_env):
    settings, engine = backup_env
    service = BackupService(settings, engine)

    name = service.create_backup()

    assert name.startswith(BackupService.PREFIX)
    assert name.endswith(".db")
    backups = service.list_backups()
    assert [b.name for b in backups] == [name]
    assert backups[0].size > 0


def test_old_backups_are_pruned(backup_env):
    settings, engine = backup_env
    service = BackupService(settings, engine)

    names = [service.create_backup() for _ in range(4)]

    remaining = [b.name for b in service.list_backups()]
    assert remaining == [names[3], names[2]]


def test_restore_backup_replaces_database(backup_env):
    settings, engine = backup_env
    service = BackupService(settings, engine)
    _add_category(engine, "Food")
    name = service.create_backup()

    _add_category(engine, "Travel")
    assert _category_names(engine) == ["Food", "Travel"]

    service.restore_backup(name)

    assert _category_names(engine) == ["Food"]
    assert len(service.list_backups()) == 2


def test_import_database(backup_env, tmp_path):
    settings, engine = backup_env
    other_path = tmp_path / "other.db"
    other = create_engine(f"sqlite:///{other_path}")
    Base.metadata.create_all(other)
    _add_category(other, "Imported")
    other.dispose()

    service = BackupService(settings, engine)
    service.import_database(other_path.read_bytes())

    assert _category_names(engine) == ["Imported"]
    assert not (settings.backup_dir / ".upload.db").exists()


def test_import_rejects_non_sqlite(backup_env):
    settings, engine = backup_env
    service = BackupService(settings, engine)
    with pytest.raises(ValueError):
        service.import_database(b"definitely not a database")


def test_delete_and_resolve_backups(backup_env):
    settings, engine = backup_env
    service = BackupService(settings, engine)
    name = service.create_backup()

    with pytest.raises(ValueError):
        service.delete_backup("../finance.db")
    with pytest.raises(BackupNotFoundError):
        service.delete_backup("finance-backup_missing.db")

    service.delete_backup(name)
    assert service.list_backups() == []


def test_memory_database_cannot_be_backed_up(tmp_path):
    settings = Settings(
        data_dir=tmp_path,
        database_url="sqlite:///:memory:",
        timezone="UTC",
        backup_dir=tmp_path / "backups",
        max_backups=5,
        auto_backup=True,
        categories_file=tmp_path / "categories.md",
    )
    with pytest.raises(ValueError):
        BackupService(settings).create_backup()
