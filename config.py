import os
from functools import lru_cache
from pathlib import Path
from typing import Optional


class Settings:
    def __init__(
        self,
        data_dir: Path,
        database_url: str,
        timezone: str,
        backup_dir: Path,
        max_backups: int,
        auto_backup: bool,
        categories_file: Path,
    ) -> None:
        self.data_dir = data_dir
        self.database_url = database_url
        self.timezone = timezone
        self.backup_dir = backup_dir
        self.max_backups = max_backups
        self.auto_backup = auto_backup
        self.categories_file = categories_file

    @property
    def sqlite_path(self) -> Optional[Path]:
        prefix = "sqlite:///"
        if not self.database_url.startswith(prefix):
            return None
        raw = self.database_url[len(prefix) :]
        if not raw or raw == ":memory:":
            return None
        return Path(raw)


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINANCE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "finance.db"
    database_url = os.getenv("FINANCE_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("FINANCE_TIMEZONE", "America/Sao_Paulo")
    backup_dir = Path(
        os.getenv("FINANCE_BACKUP_DIR", str(data_dir / "backups"))
    ).resolve()
    max_backups = int(os.getenv("FINANCE_MAX_BACKUPS", "5"))
    auto_backup = _env_flag("FINANCE_AUTO_BACKUP", True)
    categories_file = Path(os.getenv("FINANCE_CATEGORIES_FILE", "./categories.md"))
    return Settings(
        data_dir=data_dir,
        database_url=database_url,
        timezone=timezone,
        backup_dir=backup_dir,
        max_backups=max_backups,
        auto_backup=auto_backup,
        categories_file=categories_file,
    )
