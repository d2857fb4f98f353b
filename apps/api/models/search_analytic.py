"""Append-only search log model."""

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, JSON, String
from sqlalchemy.sql import func

from database import Base


class SearchAnalytic(Base):
    """One row per executed search, written after the result count is known."""

    __tablename__ = "search_analytics"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    query = Column(String, nullable=False, index=True)
    filters_json = Column(JSON, nullable=True)
    sort = Column(String, nullable=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=True, index=True)
    ip_address = Column(String, nullable=True)
    results_count = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
