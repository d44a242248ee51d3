"""Shop database model."""

from datetime import datetime
from sqlalchemy import Column, Integer, BigInteger, String, DateTime, CheckConstraint
from app.database.database import Base


class Shop(Base):
    """Connected Shopee shop and its (encrypted) API credentials."""

    __tablename__ = "shops"

    id = Column(Integer, primary_key=True, index=True)
    shop_id = Column(BigInteger, nullable=False, unique=True, index=True)
    shop_name = Column(String, nullable=True)
    partner_id = Column(BigInteger, nullable=False)
    partner_key_encrypted = Column(String, nullable=False)
    access_token_encrypted = Column(String, nullable=True)
    status = Column(String, nullable=False, default="active")  # active, inactive
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        CheckConstraint("status IN ('active', 'inactive')", name='ck_shop_status'),
    )
