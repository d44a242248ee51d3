"""Sync status database model."""

from datetime import datetime
from sqlalchemy import Column, Integer, BigInteger, String, DateTime, UniqueConstraint
from app.database.database import Base

# user_id of rows that track shop-wide (scheduled) runs
SHOP_WIDE_USER_ID = "__shop__"


class SyncStatus(Base):
    """Last successful sync per pipeline for a shop and user.

    The ``*_claimed_at`` columns hold the start time of a run in progress and
    are cleared when the run ends.
    """

    __tablename__ = "sync_status"

    id = Column(Integer, primary_key=True, index=True)
    shop_id = Column(BigInteger, nullable=False)
    user_id = Column(String, nullable=False)
    flash_sales_synced_at = Column(DateTime, nullable=True)
    finance_synced_at = Column(DateTime, nullable=True)
    flash_sales_claimed_at = Column(DateTime, nullable=True)
    finance_claimed_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint('shop_id', 'user_id', name='uq_sync_status_shop_user'),
    )
