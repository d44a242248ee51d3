"""API call log database model."""

from datetime import datetime
from sqlalchemy import Column, Integer, BigInteger, String, DateTime, Text, JSON, CheckConstraint
from app.database.database import Base


class ApiCallLog(Base):
    """One Shopee API call made by a sync pipeline."""

    __tablename__ = "api_call_logs"

    id = Column(Integer, primary_key=True, index=True)
    shop_id = Column(BigInteger, nullable=True, index=True)
    sync_function = Column(String, nullable=False)
    api_endpoint = Column(String, nullable=False)
    http_method = Column(String, nullable=False, default="GET")
    status = Column(String, nullable=False)  # success, failed, timeout
    shopee_error = Column(String, nullable=True)
    shopee_message = Column(Text, nullable=True)
    http_status_code = Column(Integer, nullable=True)
    duration_ms = Column(Integer, nullable=True)
    request_params = Column(JSON, nullable=True)
    response_summary = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    __table_args__ = (
        CheckConstraint("status IN ('success', 'failed', 'timeout')", name='ck_api_call_status'),
    )
