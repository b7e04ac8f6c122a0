"""FastAPI authentication dependencies."""

from __future__ import annotations

import jwt
from fastapi import Depends, HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from tavern.audit.service import Actor
from tavern.auth.jwt import verify_token
from tavern.config import get_settings

_bearer = HTTPBearer()


async def get_current_actor(
    credentials: HTTPAuthorizationCredentials = Security(_bearer),
) -> Actor:
    """
    Extract and verify the bearer JWT, return the caller's identity.

    The identity is trusted as issued; the user need not be registered.
    Raises 401 on failure.
    """
    try:
        payload = verify_token(credentials.credentials, expected_type="access")
    except jwt.InvalidTokenError as e:
        raise HTTPException(status_code=401, detail=str(e)) from e
    return Actor(user_id=payload["sub"], username=payload["name"])


async def require_admin(actor: Actor = Depends(get_current_actor)) -> Actor:
    """Same as get_current_actor but only for ids listed in admin_user_ids."""
    if actor.user_id not in get_settings().admin_user_ids:
        raise HTTPException(status_code=403, detail="Administrator access required")
    return actor
