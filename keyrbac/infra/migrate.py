from __future__ import annotations

import argparse
from pathlib import Path

from alembic import command
from alembic.config import Config

ROOT = Path(__file__).resolve().parents[2]


def alembic_config(database_url: str | None = None) -> Config:
    config = Config(str(ROOT / "alembic.ini"))
    config.set_main_option("script_location", str(ROOT / "infra" / "migrations"))
    if database_url:
        config.set_main_option("sqlalchemy.url", database_url)
    return config


def run_upgrade_head(database_url: str | None = None) -> None:
    command.upgrade(alembic_config(database_url), "head")


def run_downgrade_base(database_url: str | None = None) -> None:
    command.downgrade(alembic_config(database_url), "base")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Apply key-rbac schema migrations.")
    parser.add_argument("--database-url", default=None)
    parser.add_argument("--downgrade", action="store_true", help="revert to an empty schema")
    args = parser.parse_args()
    if args.downgrade:
        run_downgrade_base(args.database_url)
    else:
        run_upgrade_head(args.database_url)
