"""
SQLAlchemy ORM models for persistence.
"""
from datetime import datetime, timezone
from sqlalchemy import Column, DateTime, String, Text

from db import Base


class StorageSlotORM(Base):
    """One named slot holding a serialized document."""

    __tablename__ = "storage_slots"

    key = Column(String, primary_key=True, index=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime, default=lambda: datetime.now(timezone.utc), nullable=False)
