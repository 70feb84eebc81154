"""Dev login, logout and current-user endpoints."""

from fastapi import APIRouter, Depends, HTTPException, Response
from pydantic import BaseModel
from typing import Any

from texttune.api.deps import get_settings, get_user_store
from texttune.auth.session import TOKEN_COOKIE, current_user, issue_token
from texttune.config import Settings
from texttune.db.tables import User
from texttune.db.users import UserStore

router = APIRouter()


class LoginRequest(BaseModel):
    email: Any = None


@router.post("/auth/login")
async def login(
    request: LoginRequest,
    response: Response,
    settings: Settings = Depends(get_settings),
    users: UserStore = Depends(get_user_store),
):
    """Very simple dev login: any email gets (or creates) an account."""
    if not isinstance(request.email, str) or not request.email.strip():
        raise HTTPException(status_code=400, detail="invalid_email")

    user = users.find_or_create_by_email(request.email)
    token = issue_token(user, settings)
    response.set_cookie(TOKEN_COOKIE, token, httponly=True, samesite="lax")
    return {"ok": True, "user": {"id": user.id, "email": user.email}, "token": token}


@router.post("/auth/logout")
async def logout(response: Response):
    response.delete_cookie(TOKEN_COOKIE)
    return {"ok": True}


@router.get("/me")
async def me(user: User = Depends(current_user)):
    return {"id": user.id, "email": user.email, "plan": user.plan}
