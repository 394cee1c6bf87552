from pathlib import Path

from alembic import command
from alembic.config import Config
import pytest
from sqlalchemy import inspect

from tirestore.config import settings
from tirestore.db import get_engine, reset_database_engine
from tirestore.rate_limit import default_policy_map
from tirestore.settings_store import RATE_LIMIT_CATEGORY, SettingsStore

BACKEND_DIR = Path(__file__).resolve().parents[1]


@pytest.fixture(autouse=True)
def isolated_db(tmp_path: Path):
    original_db_url = settings.database_url
    test_db = tmp_path / "tirestore-migrations-test.db"
    test_url = f"sqlite:///{test_db}"

    object.__setattr__(settings, "database_url", test_url)
    reset_database_engine(test_url)

    try:
        yield
    finally:
        object.__setattr__(settings, "database_url", original_db_url)
        reset_database_engine(original_db_url)


def test_upgrade_head_creates_schema_and_seeding_fills_defaults():
    command.upgrade(Config(str(BACKEND_DIR / "alembic.ini")), "head")

    inspector = inspect(get_engine())
    assert {"users", "system_settings", "alembic_version"} <= set(inspector.get_table_names())
    assert "ix_system_settings_category" in {index["name"] for index in inspector.get_indexes("system_settings")}

    store = SettingsStore()
    assert set(store.seed_defaults()) == set(default_policy_map())
    assert store.get(RATE_LIMIT_CATEGORY) == default_policy_map()
