"""Dedup store schema migrations, shipped inside the package."""

from __future__ import annotations

from importlib import resources
from pathlib import Path

from alembic import command
from alembic.config import Config


def migrate_dedup_store(db_path: Path) -> None:
    """Bring the dedup store at `db_path` up to the latest schema revision."""

    with resources.as_file(resources.files("seed_agent") / "migrations") as migrations_dir:
        config = Config()
        config.set_main_option("script_location", str(migrations_dir))
        config.set_main_option("sqlalchemy.url", f"sqlite:///{db_path}")
        command.upgrade(config, "head")
