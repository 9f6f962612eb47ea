"""Authentication utilities — JWT tokens, API keys, password hashing, FastAPI dependencies."""

from __future__ import annotations

import hashlib
import secrets
from datetime import datetime, timedelta, timezone
from typing import Annotated

import bcrypt
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.infra.config import settings
from app.infra.db import get_db
from app.models.db_models import User


# --- Password hashing ---


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return bcrypt.checkpw(plain_password.encode(), hashed_password.encode())


# --- Token schemas ---


class TokenData(BaseModel):
    user_id: str
    role: str = "user"
    exp: datetime


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user_id: str
    expires_at: datetime


# --- API keys ---


def hash_api_key(raw_key: str) -> str:
    return hashlib.sha256(raw_key.encode()).hexdigest()


def generate_api_key() -> tuple[str, str]:
    """Generate a new API key. Returns (raw_key, hash); only the hash is stored."""
    raw_key = secrets.token_hex(32)
    return raw_key, hash_api_key(raw_key)


def verify_api_key(raw_key: str, key_hash: str) -> bool:
    return secrets.compare_digest(hash_api_key(raw_key), key_hash)


# --- JWT ---


def create_access_token(user_id: str, role: str = "user") -> TokenResponse:
    """Create a JWT access token. The role claim is informational; authority is
    always re-checked against the stored user."""
    expires_at = datetime.now(timezone.utc) + timedelta(minutes=settings.jwt_expire_minutes)
    payload = {"sub": user_id, "role": role, "exp": expires_at}
    token = jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)
    return TokenResponse(access_token=token, user_id=user_id, expires_at=expires_at)


def decode_access_token(token: str) -> TokenData:
    """Decode and validate a JWT token. Raises HTTPException on failure."""
    try:
        payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError as e:
        raise HTTPException(status_code=401, detail=f"Invalid token: {e}")
    user_id: str = payload.get("sub", "")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token: missing subject")
    return TokenData(
        user_id=user_id,
        role=payload.get("role", "user"),
        exp=datetime.fromtimestamp(payload.get("exp", 0), tz=timezone.utc),
    )


# --- Lookups ---


async def get_user_by_api_key(db: AsyncSession, raw_key: str) -> User | None:
    result = await db.execute(select(User).where(User.api_key_hash == hash_api_key(raw_key)))
    return result.scalar_one_or_none()


async def authenticate_by_password(db: AsyncSession, username: str, password: str) -> User | None:
    """Authenticate a user by username + password. Returns User or None."""
    result = await db.execute(
        select(User).where(
            User.username == username,
            User.is_active == True,  # noqa: E712
        )
    )
    user = result.scalar_one_or_none()
    if user is None or user.password_hash is None:
        return None
    if not verify_password(password, user.password_hash):
        return None
    return user


def ensure_active(user: User | None, missing_detail: str) -> User:
    if user is None:
        raise HTTPException(status_code=401, detail=missing_detail)
    if not user.is_active:
        raise HTTPException(status_code=403, detail="User account is deactivated")
    return user


# --- FastAPI dependencies ---

_bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_user_jwt(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(_bearer_scheme)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> User:
    """Dependency: the user named by a JWT Bearer token."""
    if credentials is None:
        raise HTTPException(status_code=401, detail="Missing authorization header")
    token_data = decode_access_token(credentials.credentials)
    return ensure_active(await db.get(User, token_data.user_id), "User not found")


async def get_current_user(
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> User:
    """Dependency: JWT Bearer first, then the ``X-API-Key`` header.

    Browser clients use Bearer JWT; scripted table tools use X-API-Key.
    """
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token_data = decode_access_token(auth_header[7:])
        user = await db.get(User, token_data.user_id)
        if user and user.is_active:
            return user

    api_key = request.headers.get("X-API-Key")
    if api_key:
        user = await get_user_by_api_key(db, api_key)
        if user and user.is_active:
            return user

    raise HTTPException(status_code=401, detail="Authentication required")
