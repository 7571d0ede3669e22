"""
Migration Runner - Applies pending Alembic migrations at application startup.
"""

from dataclasses import dataclass
from pathlib import Path

from sqlalchemy import Engine, create_engine

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from app.config import settings
from app.observability.logging import get_logger

logger = get_logger(__name__)

# Path to alembic.ini at the project root
ALEMBIC_INI_PATH = Path(__file__).parent.parent.parent / "alembic.ini"


@dataclass(frozen=True)
class MigrationStatus:
    current_revision: str | None
    head_revision: str | None

    @property
    def pending(self) -> bool:
        return self.current_revision != self.head_revision


def sync_database_url(url: str) -> str:
    """Alembic runs synchronously; swap the asyncpg driver for psycopg2."""
    return url.replace("+asyncpg", "+psycopg2")


def _alembic_config() -> Config:
    cfg = Config(str(ALEMBIC_INI_PATH))
    cfg.set_main_option(
        "sqlalchemy.url", sync_database_url(settings.database_url).replace("%", "%%")
    )
    return cfg


def _current_revision(engine: Engine) -> str | None:
    with engine.connect() as conn:
        return MigrationContext.configure(conn).get_current_revision()


def check_migrations_status() -> MigrationStatus:
    """Compare the database revision with the newest migration script."""
    cfg = _alembic_config()
    engine = create_engine(sync_database_url(settings.database_url))
    try:
        return MigrationStatus(
            current_revision=_current_revision(engine),
            head_revision=ScriptDirectory.from_config(cfg).get_current_head(),
        )
    finally:
        engine.dispose()


def run_migrations() -> None:
    """
    Upgrade the schema to head if anything is pending.

    Raises:
        RuntimeError: a migration failed; the application must not start
    """
    if not ALEMBIC_INI_PATH.exists():
        logger.warning("alembic_config_missing", path=str(ALEMBIC_INI_PATH))
        return

    try:
        status = check_migrations_status()
        if not status.pending:
            logger.info("database_schema_up_to_date", revision=status.current_revision)
            return

        logger.info(
            "running_migrations",
            from_revision=status.current_revision,
            to_revision=status.head_revision,
        )
        command.upgrade(_alembic_config(), "head")
        logger.info("migrations_complete", revision=status.head_revision)
    except Exception as e:
        logger.error("migration_failed", error=str(e))
        raise RuntimeError(f"Database migration failed: {e}") from e
