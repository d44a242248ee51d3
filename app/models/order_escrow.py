"""Order escrow (finance) database model."""

from datetime import datetime
from sqlalchemy import Column, Integer, BigInteger, String, Float, DateTime, JSON, UniqueConstraint, Index
from app.database.database import Base


class OrderEscrow(Base):
    """Escrow detail ("actual income") of a completed order."""

    __tablename__ = "order_escrows"

    id = Column(Integer, primary_key=True, index=True)
    shop_id = Column(BigInteger, nullable=False)
    order_sn = Column(String, nullable=False)
    buyer_user_name = Column(String, nullable=True)
    return_order_sn_list = Column(JSON, nullable=True)

    # Order income
    escrow_amount = Column(Float, nullable=True)
    escrow_amount_after_adjustment = Column(Float, nullable=True)
    buyer_total_amount = Column(Float, nullable=True)
    original_price = Column(Float, nullable=True)
    seller_discount = Column(Float, nullable=True)
    shopee_discount = Column(Float, nullable=True)
    voucher_from_seller = Column(Float, nullable=True)
    voucher_from_shopee = Column(Float, nullable=True)
    coins = Column(Float, nullable=True)

    # Shipping and fees
    buyer_paid_shipping_fee = Column(Float, nullable=True)
    actual_shipping_fee = Column(Float, nullable=True)
    commission_fee = Column(Float, nullable=True)
    service_fee = Column(Float, nullable=True)
    seller_transaction_fee = Column(Float, nullable=True)
    buyer_payment_method = Column(String, nullable=True)

    # Full payloads
    items = Column(JSON, nullable=True)
    order_income = Column(JSON, nullable=True)
    buyer_payment_info = Column(JSON, nullable=True)

    synced_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint('shop_id', 'order_sn', name='uq_order_escrows_shop_order_sn'),
        Index('ix_order_escrows_shop_synced_at', 'shop_id', 'synced_at'),
    )
