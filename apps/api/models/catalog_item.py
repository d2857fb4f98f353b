"""CatalogItem model: one style reference (SREF) code."""

import uuid

from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Integer, JSON, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base
from models.category import item_categories
from models.tag import item_tags


STATUS_PENDING = "PENDING"
STATUS_ACTIVE = "ACTIVE"
STATUS_ARCHIVED = "ARCHIVED"
STATUS_DELETED = "DELETED"
ITEM_STATUSES = (STATUS_PENDING, STATUS_ACTIVE, STATUS_ARCHIVED, STATUS_DELETED)


class CatalogItem(Base):
    """Style reference code with curation flags and engagement counters."""

    __tablename__ = "catalog_items"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    code = Column(String, unique=True, nullable=False, index=True)
    slug = Column(String, nullable=True, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    prompt_examples = Column(JSON, nullable=True)
    featured = Column(Boolean, nullable=False, default=False, index=True)
    premium = Column(Boolean, nullable=False, default=False, index=True)
    verified = Column(Boolean, nullable=False, default=False)
    views = Column(Integer, nullable=False, default=0)
    likes = Column(Integer, nullable=False, default=0)
    favorites = Column(Integer, nullable=False, default=0)
    downloads = Column(Integer, nullable=False, default=0)
    popularity_score = Column(Float, nullable=False, default=0.0, index=True)
    status = Column(String, nullable=False, default=STATUS_PENDING, index=True)
    submitted_by_id = Column(String, ForeignKey("users.id"), nullable=True, index=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    submitted_by = relationship("User", back_populates="submitted_items")
    categories = relationship("Category", secondary=item_categories, back_populates="items")
    tags = relationship("Tag", secondary=item_tags, back_populates="items")
    images = relationship(
        "CatalogImage",
        back_populates="item",
        cascade="all, delete-orphan",
        order_by="CatalogImage.image_order",
    )
    events = relationship("InteractionEvent", back_populates="item")
