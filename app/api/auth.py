"""Auth API — registration and login for chat participants."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.infra.auth import (
    authenticate_by_password,
    create_access_token,
    ensure_active,
    generate_api_key,
    get_current_user_jwt,
    get_user_by_api_key,
    hash_password,
)
from app.infra.db import get_db
from app.models.db_models import User

router = APIRouter(prefix="/api/auth", tags=["auth"])


# --- Request schemas ---


class RegisterRequest(BaseModel):
    username: str
    password: str | None = None
    email: str | None = None


class ApiKeyLoginRequest(BaseModel):
    api_key: str


class PasswordLoginRequest(BaseModel):
    username: str
    password: str


def _token_body(user: User) -> dict:
    token = create_access_token(user.id, user.role)
    return {
        "user_id": user.id,
        "access_token": token.access_token,
        "expires_at": token.expires_at.isoformat(),
    }


# --- Endpoints ---


@router.post("/register")
async def register(
    req: RegisterRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> dict:
    """Register a new player. The API key is returned once and never stored in clear."""
    username = req.username.strip()
    if not username:
        raise HTTPException(status_code=400, detail="Username must not be empty")
    existing = await db.execute(select(User).where(User.username == username))
    if existing.scalar_one_or_none() is not None:
        raise HTTPException(status_code=409, detail="Username already taken")

    raw_key, key_hash = generate_api_key()
    user = User(
        username=username,
        email=req.email,
        api_key_hash=key_hash,
        password_hash=hash_password(req.password) if req.password else None,
    )
    db.add(user)
    await db.flush()

    return {"api_key": raw_key, **_token_body(user)}


@router.post("/login/api-key")
async def login_by_api_key(
    req: ApiKeyLoginRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> dict:
    """Exchange an API key for a JWT."""
    user = ensure_active(await get_user_by_api_key(db, req.api_key), "Invalid API key")
    return _token_body(user)


@router.post("/login/password")
async def login_by_password(
    req: PasswordLoginRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> dict:
    """Login via username + password. Returns JWT token."""
    user = await authenticate_by_password(db, req.username, req.password)
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return _token_body(user)


@router.get("/me")
async def get_me(
    user: Annotated[User, Depends(get_current_user_jwt)],
) -> dict:
    """The current user's profile."""
    return {
        "user_id": user.id,
        "username": user.username,
        "email": user.email,
        "role": user.role,
        "is_active": user.is_active,
        "created_at": user.created_at.isoformat(),
    }
