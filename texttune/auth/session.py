"""Dev/guest login tokens (HS256 JWT in a cookie or Bearer header)."""

from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Cookie, Depends, Header, HTTPException

from texttune.api.deps import get_settings, get_user_store
from texttune.config import Settings
from texttune.db.tables import User
from texttune.db.users import UserStore

TOKEN_COOKIE = "token"


def issue_token(user: User, settings: Settings) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "userId": user.id,
        "email": user.email,
        "iat": now,
        "exp": now + timedelta(days=settings.token_ttl_days),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str, settings: Settings) -> dict:
    return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])


async def current_user(
    authorization: Optional[str] = Header(None),
    token: Optional[str] = Cookie(None, alias=TOKEN_COOKIE),
    settings: Settings = Depends(get_settings),
    users: UserStore = Depends(get_user_store),
) -> User:
    """Resolve the caller from the Bearer header or the ``token`` cookie."""
    raw = None
    if authorization and authorization.startswith("Bearer "):
        raw = authorization.replace("Bearer ", "", 1)
    elif token:
        raw = token
    if not raw:
        raise HTTPException(status_code=401, detail="unauthorized")

    try:
        claims = decode_token(raw, settings)
    except jwt.PyJWTError:
        raise HTTPException(status_code=401, detail="unauthorized")

    user = users.get(claims.get("userId"))
    if user is None:
        raise HTTPException(status_code=401, detail="unauthorized")
    return user
