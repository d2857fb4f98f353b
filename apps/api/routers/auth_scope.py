"""Authentication dependencies for caller identity and entitlements."""

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from services.errors import AuthorizationError
from services.session_token import decode_session_token
from services.viewer import Viewer, resolve_viewer

logger = logging.getLogger(__name__)

auth_scheme = HTTPBearer(auto_error=False)


@dataclass
class AuthContext:
    user_id: str
    username: Optional[str] = None


def _context_from_token(token: str) -> AuthContext:
    try:
        payload = decode_session_token(token)
    except ValueError as exc:
        raise AuthorizationError.authentication_required(str(exc)) from exc

    return AuthContext(
        user_id=str(payload.get("sub", "")),
        username=str(payload.get("username", "")) or None,
    )


async def get_auth_context(
    credentials: HTTPAuthorizationCredentials = Depends(auth_scheme),
) -> AuthContext:
    """Resolve authenticated user from Bearer session token."""
    if not credentials or credentials.scheme.lower() != "bearer":
        raise AuthorizationError.authentication_required("Missing Bearer session token.")
    return _context_from_token(credentials.credentials)


async def get_optional_auth_context(
    credentials: HTTPAuthorizationCredentials = Depends(auth_scheme),
) -> Optional[AuthContext]:
    """Public reads treat a missing or unusable token as an anonymous caller."""
    if not credentials or credentials.scheme.lower() != "bearer":
        return None
    try:
        return _context_from_token(credentials.credentials)
    except AuthorizationError as exc:
        logger.debug("optional_auth_ignored_token: %s", exc.message)
        return None


async def get_viewer(
    auth: Optional[AuthContext] = Depends(get_optional_auth_context),
    db: AsyncSession = Depends(get_db),
) -> Viewer:
    return await resolve_viewer(auth.user_id if auth else None, db)


async def get_authenticated_viewer(
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
) -> Viewer:
    viewer = await resolve_viewer(auth.user_id, db)
    if not viewer.authenticated:
        raise AuthorizationError.authentication_required("Unknown or deleted account")
    return viewer


async def require_admin(viewer: Viewer = Depends(get_authenticated_viewer)) -> Viewer:
    if not viewer.admin:
        raise AuthorizationError("Admin access required")
    return viewer
