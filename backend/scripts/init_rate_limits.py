from __future__ import annotations

import argparse
from pathlib import Path
import sys

BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.append(str(BACKEND_DIR))

from tirestore.db import check_db_connection, init_db  # noqa: E402
from tirestore.settings_store import SettingsStore  # noqa: E402


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Seed default rate limit policies into system_settings.")
    parser.add_argument(
        "--overwrite",
        action="store_true",
        help="Replace policies that are already stored instead of only filling in missing ones.",
    )
    parser.add_argument("--actor-id", type=int, default=None, help="users.id recorded as updated_by.")
    parser.add_argument(
        "--create-tables",
        action="store_true",
        help="Create tables from the models first (development databases without Alembic).",
    )
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    check_db_connection()
    if args.create_tables:
        init_db()

    written = SettingsStore().seed_defaults(actor_id=args.actor_id, overwrite=args.overwrite)
    if written:
        print(f"Seeded rate limit policies: {', '.join(written)}")
    else:
        print("Rate limit policies already present; nothing written.")


if __name__ == "__main__":
    main()
