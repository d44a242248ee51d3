"""Sync status rows and the per-shop run claim."""

import logging
from datetime import datetime, timedelta
from typing import Optional, Set, Tuple

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.config import settings
from app.models.sync_status import SyncStatus
from app.services.batch_writer import dialect_insert
from app.services.exceptions import SyncInProgressError

logger = logging.getLogger(__name__)

PIPELINE_FLASH_SALES = "flash_sales"
PIPELINE_FINANCE = "finance"
PIPELINES = (PIPELINE_FLASH_SALES, PIPELINE_FINANCE)


def is_stale(synced_at: Optional[datetime], stale_minutes: int, now: Optional[datetime] = None) -> bool:
    """Check if data is stale based on last sync time.

    A shop that was never synced is always stale.
    """
    if synced_at is None:
        return True
    now = now or datetime.utcnow()
    return (now - synced_at) > timedelta(minutes=stale_minutes)


class SyncStatusService:
    """Reads and writes SyncStatus rows.

    A run is claimed twice: in the process-local ``_in_process`` set, then
    with a conditional update of the pipeline's ``*_claimed_at`` column so
    replicas sharing the database cannot start the same run. A claim older
    than the lease is considered abandoned (lost execution context).
    """

    # Class-level so every service instance in this process shares it
    _in_process: Set[Tuple[str, int, str]] = set()

    def __init__(self, lease_minutes: Optional[int] = None):
        self.lease_minutes = lease_minutes or settings.sync_claim_lease_minutes

    @staticmethod
    def _columns(pipeline: str):
        if pipeline not in PIPELINES:
            raise ValueError(f"Unknown pipeline '{pipeline}'")
        return (
            getattr(SyncStatus, f"{pipeline}_synced_at"),
            getattr(SyncStatus, f"{pipeline}_claimed_at"),
        )

    def get_status(self, db: Session, shop_id: int, user_id: str) -> Optional[SyncStatus]:
        return db.query(SyncStatus).filter(
            SyncStatus.shop_id == shop_id,
            SyncStatus.user_id == user_id
        ).first()

    def last_synced_at(self, db: Session, pipeline: str, shop_id: int, user_id: str) -> Optional[datetime]:
        synced_column, _ = self._columns(pipeline)
        status = self.get_status(db, shop_id, user_id)
        return getattr(status, synced_column.key) if status else None

    def _ensure_row(self, db: Session, shop_id: int, user_id: str) -> None:
        stmt = dialect_insert(db, SyncStatus).values(
            shop_id=shop_id,
            user_id=user_id,
            updated_at=datetime.utcnow()
        ).on_conflict_do_nothing(index_elements=["shop_id", "user_id"])
        db.execute(stmt)
        db.commit()

    def is_running(self, db: Session, pipeline: str, shop_id: int, user_id: str) -> bool:
        if (pipeline, shop_id, user_id) in self._in_process:
            return True
        _, claim_column = self._columns(pipeline)
        status = self.get_status(db, shop_id, user_id)
        claimed_at = getattr(status, claim_column.key) if status else None
        return claimed_at is not None and not is_stale(claimed_at, self.lease_minutes)

    def claim(self, db: Session, pipeline: str, shop_id: int, user_id: str) -> datetime:
        """Claim the right to run a pipeline for a shop and user.

        Returns:
            The claim timestamp.

        Raises:
            SyncInProgressError: If a run already holds the claim.
        """
        key = (pipeline, shop_id, user_id)
        if key in self._in_process:
            logger.info(f"{pipeline} sync already running for shop {shop_id} user {user_id}, skipping")
            raise SyncInProgressError(f"A {pipeline} sync is already in progress for shop {shop_id}")

        _, claim_column = self._columns(pipeline)
        now = datetime.utcnow()
        lease_expired_before = now - timedelta(minutes=self.lease_minutes)

        self._ensure_row(db, shop_id, user_id)
        claimed = db.query(SyncStatus).filter(
            SyncStatus.shop_id == shop_id,
            SyncStatus.user_id == user_id,
            or_(claim_column.is_(None), claim_column < lease_expired_before)
        ).update({claim_column: now}, synchronize_session=False)
        db.commit()

        if claimed != 1:
            logger.info(f"{pipeline} sync for shop {shop_id} user {user_id} is claimed elsewhere, skipping")
            raise SyncInProgressError(f"A {pipeline} sync is already in progress for shop {shop_id}")

        self._in_process.add(key)
        return now

    def release(self, db: Session, pipeline: str, shop_id: int, user_id: str) -> None:
        """Release a claim taken by ``claim``. Never raises."""
        self._in_process.discard((pipeline, shop_id, user_id))
        _, claim_column = self._columns(pipeline)
        try:
            # A failed run can leave the transaction aborted (PostgreSQL refuses
            # further statements until it is rolled back)
            db.rollback()
            db.query(SyncStatus).filter(
                SyncStatus.shop_id == shop_id,
                SyncStatus.user_id == user_id
            ).update({claim_column: None}, synchronize_session=False)
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to release {pipeline} claim for shop {shop_id}: {e}")

    def mark_synced(
        self,
        db: Session,
        pipeline: str,
        shop_id: int,
        user_id: str,
        synced_at: Optional[datetime] = None
    ) -> datetime:
        """Record a completed run. Marks that a sync happened, not that every record succeeded."""
        synced_column, _ = self._columns(pipeline)
        synced_at = synced_at or datetime.utcnow()

        self._ensure_row(db, shop_id, user_id)
        db.query(SyncStatus).filter(
            SyncStatus.shop_id == shop_id,
            SyncStatus.user_id == user_id
        ).update(
            {synced_column: synced_at, SyncStatus.updated_at: synced_at},
            synchronize_session=False
        )
        db.commit()
        return synced_at
