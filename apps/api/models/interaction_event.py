"""Append-only engagement event model."""

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


EVENT_VIEW = "VIEW"
EVENT_LIKE = "LIKE"
EVENT_FAVORITE = "FAVORITE"
EVENT_SHARE = "SHARE"
EVENT_DOWNLOAD = "DOWNLOAD"
EVENT_COMMENT = "COMMENT"
EVENT_TYPES = (EVENT_VIEW, EVENT_LIKE, EVENT_FAVORITE, EVENT_SHARE, EVENT_DOWNLOAD, EVENT_COMMENT)


class InteractionEvent(Base):
    """Interaction with a catalog item. Rows are inserted, never updated."""

    __tablename__ = "interaction_events"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    item_id = Column(String, ForeignKey("catalog_items.id"), nullable=False, index=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=True, index=True)
    event_type = Column(String, nullable=False, index=True)
    referrer = Column(String, nullable=True)
    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    item = relationship("CatalogItem", back_populates="events")
