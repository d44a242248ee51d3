"""Activity log database model."""

from datetime import datetime
from sqlalchemy import Column, Integer, BigInteger, String, DateTime, Text, JSON
from app.database.database import Base


class ActivityLog(Base):
    """User-facing record of a completed sync run."""

    __tablename__ = "activity_logs"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, nullable=True)
    shop_id = Column(BigInteger, nullable=True, index=True)
    action_type = Column(String, nullable=False)
    action_category = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String, nullable=False)  # success, failed
    source = Column(String, nullable=False, default="manual")  # manual, scheduled
    response_data = Column(JSON, nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
