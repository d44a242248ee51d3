"""Removal of rows not refreshed by an exhaustive sync."""

import logging
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


def reap_stale(
    db: Session,
    model,
    shop_id: int,
    sync_started_at: datetime,
    exhaustive: bool
) -> int:
    """Delete rows of a shop whose synced_at predates the current run.

    Only runs after an exhaustive fetch: rows a partial fetch did not reach
    may still exist remotely.

    Args:
        db: Database session.
        model: Model with ``shop_id`` and ``synced_at`` columns.
        shop_id: Shop whose rows are reaped.
        sync_started_at: synced_at stamp written by the current run.
        exhaustive: Whether the run fetched the whole remote set.

    Returns:
        Number of deleted rows.
    """
    if not exhaustive:
        logger.info(f"Skipping stale cleanup of {model.__tablename__} for shop {shop_id}: fetch was partial")
        return 0

    try:
        removed = db.query(model).filter(
            model.shop_id == shop_id,
            model.synced_at < sync_started_at
        ).delete(synchronize_session=False)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.warning(f"Cleanup of stale {model.__tablename__} rows for shop {shop_id} failed: {e}")
        return 0

    if removed:
        logger.info(f"Removed {removed} stale {model.__tablename__} rows for shop {shop_id}")
    return removed
