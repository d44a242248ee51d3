"""Order database model."""

from datetime import datetime
from sqlalchemy import Column, Integer, BigInteger, String, Float, Boolean, DateTime, UniqueConstraint, Index
from app.database.database import Base

ORDER_STATUS_COMPLETED = "COMPLETED"


class Order(Base):
    """Shopee order, written by the order ingestion process.

    ``is_escrow_fetched`` is three-valued: NULL (never looked at), False and
    True. NULL and False both mean "escrow still pending".
    """

    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    shop_id = Column(BigInteger, nullable=False)
    order_sn = Column(String, nullable=False)
    order_status = Column(String, nullable=False)
    total_amount = Column(Float, nullable=True)
    create_time = Column(BigInteger, nullable=False)  # epoch seconds
    is_escrow_fetched = Column(Boolean, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint('shop_id', 'order_sn', name='uq_orders_shop_order_sn'),
        Index('ix_orders_shop_status_create_time', 'shop_id', 'order_status', 'create_time'),
    )
