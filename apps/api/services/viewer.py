"""Caller identity and entitlements for catalog access decisions."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.user import User


@dataclass(frozen=True)
class Viewer:
    user_id: Optional[str] = None
    premium: bool = False
    admin: bool = False

    @property
    def authenticated(self) -> bool:
        return bool(self.user_id)

    @property
    def entitled(self) -> bool:
        """True when the caller may see premium-only items."""
        return self.premium or self.admin


ANONYMOUS = Viewer()


async def resolve_viewer(user_id: Optional[str], db: AsyncSession) -> Viewer:
    """Load entitlements server-side; token claims are never trusted for them.

    A token whose account is missing or soft-deleted resolves to the anonymous viewer.
    """
    if not user_id:
        return ANONYMOUS
    result = await db.execute(
        select(User.premium, User.admin).where(User.id == user_id, User.deleted_at.is_(None))
    )
    row = result.first()
    if row is None:
        return ANONYMOUS
    return Viewer(user_id=user_id, premium=bool(row.premium), admin=bool(row.admin))
