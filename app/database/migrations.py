"""Database migration utilities."""

import logging
from sqlalchemy import inspect, text
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

# (table, column, DDL type) added after the first release
COLUMN_MIGRATIONS = [
    ("orders", "is_escrow_fetched", "BOOLEAN"),
    ("sync_status", "finance_synced_at", "TIMESTAMP"),
    ("sync_status", "flash_sales_claimed_at", "TIMESTAMP"),
    ("sync_status", "finance_claimed_at", "TIMESTAMP"),
]


def migrate_database(db: Session) -> None:
    """Apply database migrations.

    Checks for missing columns and adds them if needed.
    It's safe to call multiple times.

    Args:
        db: Database session.
    """
    logger.info("Checking for database migrations...")

    engine = db.get_bind()
    inspector = inspect(engine)
    tables = inspector.get_table_names()

    for table, column, ddl_type in COLUMN_MIGRATIONS:
        if table not in tables:
            continue

        columns = [col['name'] for col in inspector.get_columns(table)]
        if column in columns:
            continue

        logger.info(f"Adding {column} column to {table} table")
        try:
            db.execute(text(f"ALTER TABLE {table} ADD COLUMN {column} {ddl_type}"))
            db.commit()
            logger.info(f"Successfully added {table}.{column}")
        except Exception as e:
            logger.error(f"Failed to add {table}.{column} column: {e}")
            db.rollback()

    logger.info("Database migrations complete")


def get_migration_status(db: Session) -> dict:
    """Get the status of database migrations.

    Args:
        db: Database session.

    Returns:
        Dictionary with migration status information.
    """
    engine = db.get_bind()
    inspector = inspect(engine)

    status = {
        'tables': inspector.get_table_names(),
        'migrations_applied': []
    }

    for table, column, _ in COLUMN_MIGRATIONS:
        if table not in status['tables']:
            continue
        columns = [col['name'] for col in inspector.get_columns(table)]
        if column in columns:
            status['migrations_applied'].append(f"{table}.{column}")

    return status
