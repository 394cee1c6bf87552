from __future__ import annotations

from pathlib import Path

from alembic import command
from alembic.config import Config

from tirestore.db import check_db_connection
from tirestore.settings_store import SettingsStore


def run_migrations() -> None:
    root = Path(__file__).resolve().parent
    alembic_cfg = Config(str(root / "alembic.ini"))
    command.upgrade(alembic_cfg, "head")


if __name__ == "__main__":
    run_migrations()
    check_db_connection()
    seeded = SettingsStore().seed_defaults()
    print(f"Migrations complete. Seeded rate limit policies: {', '.join(seeded) or 'none'}")
