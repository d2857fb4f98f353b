"""Session token helpers for backend-authenticated user scope."""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import JWTError, jwt

from config import settings


SESSION_TOKEN_TYPE = "sref_session"


def create_session_token(
    user_id: str,
    username: Optional[str] = None,
    expires_hours: Optional[int] = None,
) -> Dict[str, Any]:
    """Sign a session token for ``user_id``. Entitlements are never embedded."""
    issued_at = datetime.now(timezone.utc)
    ttl_hours = max(int(expires_hours or settings.JWT_EXPIRATION_HOURS or 24), 1)
    expires_at = issued_at + timedelta(hours=ttl_hours)
    claims: Dict[str, Any] = {
        "sub": user_id,
        "type": SESSION_TOKEN_TYPE,
        "iat": int(issued_at.timestamp()),
        "exp": int(expires_at.timestamp()),
    }
    if username:
        claims["username"] = username

    return {
        "token": jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM),
        "expires_at": int(expires_at.timestamp()),
    }


def decode_session_token(token: str) -> Dict[str, Any]:
    """Verify signature, expiry, token type and subject; raise ValueError otherwise."""
    try:
        claims = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except JWTError as exc:
        raise ValueError("Invalid or expired session token.") from exc

    if str(claims.get("type", "")).strip() != SESSION_TOKEN_TYPE:
        raise ValueError("Invalid session token type.")
    if not str(claims.get("sub", "")).strip():
        raise ValueError("Session token missing subject.")
    return claims
