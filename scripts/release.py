"""
Release-phase helper.

Goal:
- Fail fast if no database is configured in production (avoid silently using SQLite).
- Run alembic migrations.
- Seed the initial administrator (idempotent; does NOT overwrite existing passwords).

Usage:
  python scripts/release.py
"""

from __future__ import annotations

import os
import sys
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def alembic_config(db_url: str):
    from alembic.config import Config

    cfg = Config(str(ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(ROOT / "migrations"))
    # ConfigParser interpolates "%"; escaped credentials (p%40ss) must be doubled.
    cfg.set_main_option("sqlalchemy.url", db_url.replace("%", "%%"))
    return cfg


def run_release() -> None:
    from scripts._db_utils import resolve_db_url

    db_url = resolve_db_url()
    env = (os.environ.get("ENV") or "").strip().lower()
    if env in ("prod", "production") and db_url.startswith("sqlite"):
        raise RuntimeError(
            "Refusing to run release on sqlite in production. Set DATABASE_URL or DATABASE_HOST/USER/PASSWORD/NAME."
        )

    print("=== Portal release start ===", flush=True)
    print(f"ENV={env or '(unset)'}", flush=True)
    print("Running Alembic migrations...", flush=True)

    from alembic import command

    command.upgrade(alembic_config(db_url), "head")
    print("Migrations complete.", flush=True)

    print("Seeding admin (idempotent)...", flush=True)
    from scripts import init_db

    init_db.seed_only(database_url=db_url)
    print("Seed complete.", flush=True)
    print("=== Portal release done ===", flush=True)


def main() -> None:
    run_release()


if __name__ == "__main__":
    main()
