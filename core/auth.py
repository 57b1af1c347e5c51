"""
Request identity for the generation endpoints.

Session-cookie verification happens upstream; requests reach this service
with a signed bearer token carrying the verified uid.
"""

import logging
from dataclasses import dataclass, field

from fastapi import Header

from .exceptions import AuthenticationError
from .security import extract_token_from_header, verify_token

logger = logging.getLogger(__name__)


@dataclass
class AppUser:
    """Verified caller identity."""

    uid: str
    username: str | None = None
    email: str | None = None
    raw_payload: dict = field(default_factory=dict)

    def creator_snapshot(self) -> dict:
        """Identity snapshot stored on new history items."""
        return {"uid": self.uid, "username": self.username, "email": self.email}


def _to_app_user(payload: dict) -> AppUser:
    return AppUser(
        uid=str(payload["sub"]),
        username=payload.get("username"),
        email=payload.get("email"),
        raw_payload=payload,
    )


async def get_current_user(authorization: str | None = Header(None)) -> AppUser | None:
    """
    Get current user from JWT token in Authorization header.

    Returns None if not authenticated.
    """
    token = extract_token_from_header(authorization)
    if not token:
        return None

    try:
        payload = verify_token(token)
    except AuthenticationError as e:
        logger.warning("JWT verification failed: %s", e.details.get("error"))
        return None

    if not payload.get("sub"):
        logger.warning("JWT without sub claim rejected")
        return None
    return _to_app_user(payload)


async def require_current_user(authorization: str | None = Header(None)) -> AppUser:
    """
    Require authenticated user.

    Raises 401 if not authenticated.
    """
    user = await get_current_user(authorization)
    if not user:
        raise AuthenticationError(message="Authentication required")
    return user
