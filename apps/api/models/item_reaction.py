"""Per-user like/favorite marker."""

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


REACTION_LIKE = "like"
REACTION_FAVORITE = "favorite"


class ItemReaction(Base):
    """One row per (user, item, kind); keeps like/favorite toggles idempotent."""

    __tablename__ = "item_reactions"
    __table_args__ = (UniqueConstraint("user_id", "item_id", "kind", name="uq_item_reactions_user_item_kind"),)

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    item_id = Column(String, ForeignKey("catalog_items.id"), nullable=False, index=True)
    kind = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    user = relationship("User", back_populates="reactions")
