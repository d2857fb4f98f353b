"""CatalogImage model: preview images owned by a catalog item."""

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


class CatalogImage(Base):
    """Ordered preview image. Deleted together with its item."""

    __tablename__ = "catalog_images"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    item_id = Column(String, ForeignKey("catalog_items.id", ondelete="CASCADE"), nullable=False, index=True)
    image_order = Column(Integer, nullable=False, default=1)
    image_url = Column(String, nullable=False)
    thumbnail_url = Column(String, nullable=True)
    alt_text = Column(String, nullable=True)
    width = Column(Integer, nullable=True)
    height = Column(Integer, nullable=True)
    format = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    item = relationship("CatalogItem", back_populates="images")
