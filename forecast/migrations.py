"""
Idempotent database migrations for the forecast store.

Safe, repeatable schema migrations that run on every startup without risk
of data loss. Each migration checks whether it needs to run before making
changes.

Usage:
    from forecast.migrations import run_migrations
    run_migrations(db)

Guidelines for adding new migrations:
1. Always check if the change is needed before applying (idempotent)
2. Use inspector.get_indexes() / get_table_names() to check what exists
3. Never use DROP TABLE or DROP COLUMN without explicit user confirmation
"""
import logging

from sqlalchemy import inspect, text

logger = logging.getLogger(__name__)


def run_migrations(db):
    """
    Create missing tables and apply all idempotent schema migrations.

    Args:
        db: SQLAlchemy database instance
    """
    db.create_all()
    inspector = inspect(db.engine)

    logger.info("Running idempotent migrations...")

    # =========================================================================
    # Add new migrations below this line
    # =========================================================================

    # Close-date lookups for the quarter views
    _add_index_if_not_exists(
        db, inspector, 'forecast_deals', 'ix_forecast_deals_close_date', ['close_date']
    )

    # =========================================================================
    # End migrations
    # =========================================================================

    logger.info("Migrations complete")


def _table_exists(inspector, table: str) -> bool:
    """Check if a table exists in the database."""
    return table in inspector.get_table_names()


def _add_index_if_not_exists(db, inspector, table: str, index_name: str, columns: list):
    """Add an index to a table if it doesn't already exist."""
    if not _table_exists(inspector, table):
        return
    existing_indexes = [idx['name'] for idx in inspector.get_indexes(table)]
    if index_name not in existing_indexes:
        cols = ', '.join(columns)
        with db.engine.connect() as conn:
            conn.execute(text(f"CREATE INDEX {index_name} ON {table} ({cols})"))
            conn.commit()
        logger.info(f"  Added index '{index_name}' on '{table}'")
    else:
        logger.debug(f"  Index '{index_name}' already exists - skipping")
