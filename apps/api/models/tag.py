"""Tag model and its join table to catalog items."""

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Table
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


item_tags = Table(
    "item_tags",
    Base.metadata,
    Column("item_id", String, ForeignKey("catalog_items.id", ondelete="CASCADE"), primary_key=True),
    Column("tag_id", String, ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
)


class Tag(Base):
    """Free-form tag; names are stored lowercased and unique."""

    __tablename__ = "tags"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String, unique=True, nullable=False, index=True)
    slug = Column(String, nullable=True)
    color = Column(String, nullable=True)
    usage_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    items = relationship("CatalogItem", secondary=item_tags, back_populates="tags")
