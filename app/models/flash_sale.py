"""Flash sale database model."""

from datetime import datetime
from sqlalchemy import Column, Integer, BigInteger, String, DateTime, JSON, UniqueConstraint, Index
from app.database.database import Base


class FlashSale(Base):
    """Shop flash sale as last returned by the flash sale list API."""

    __tablename__ = "flash_sales"

    id = Column(Integer, primary_key=True, index=True)
    shop_id = Column(BigInteger, nullable=False)
    flash_sale_id = Column(BigInteger, nullable=False)
    timeslot_id = Column(BigInteger, nullable=True)
    status = Column(Integer, nullable=True)
    start_time = Column(BigInteger, nullable=True)
    end_time = Column(BigInteger, nullable=True)
    enabled_item_count = Column(Integer, default=0)
    item_count = Column(Integer, default=0)
    type = Column(Integer, nullable=True)
    remindme_count = Column(Integer, default=0)
    click_count = Column(Integer, default=0)
    raw_response = Column(JSON, nullable=True)
    synced_by = Column(String, nullable=True)
    synced_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint('shop_id', 'flash_sale_id', name='uq_flash_sales_shop_flash_sale'),
        Index('ix_flash_sales_shop_synced_at', 'shop_id', 'synced_at'),
    )
