# auth.py — Session authentication helpers for the Hermes BFF
# Features:
# - Opaque bearer session tokens stored server-side
# - Session expiry checked on every request
# - bcrypt password hashing
# - API key generation (sha256 hash + display prefix)

import os
import hashlib
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

import bcrypt
from fastapi import HTTPException, Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db_session
from models import Session, User

# ============================================================
# CONFIGURATION
# ============================================================

SESSION_TTL_HOURS = int(os.getenv("SESSION_TTL_HOURS", "24"))
API_KEY_PREFIX = "hk_"
API_KEY_DISPLAY_LENGTH = 10

security = HTTPBearer(auto_error=False)


# ============================================================
# TOKENS & KEYS
# ============================================================

def generate_token() -> str:
    """64 hex chars of OS randomness"""
    return secrets.token_hex(32)


def hash_api_key(key: str) -> str:
    return hashlib.sha256(key.encode("utf-8")).hexdigest()


def generate_api_key() -> Tuple[str, str, str]:
    """Generate an API key. Returns (raw_key, key_hash, key_prefix)"""
    key = f"{API_KEY_PREFIX}{secrets.token_hex(32)}"
    return key, hash_api_key(key), key[:API_KEY_DISPLAY_LENGTH]


def hash_password(password: str) -> str:
    salt = bcrypt.gensalt(rounds=12)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: Optional[str]) -> bool:
    if not password_hash:
        return False
    return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))


def session_expiry(now: Optional[datetime] = None) -> datetime:
    return (now or datetime.now(timezone.utc)) + timedelta(hours=SESSION_TTL_HOURS)


def client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()[:45]
    return request.client.host if request.client else None


async def issue_session(db: AsyncSession, user: User, request: Request) -> Session:
    """Add a fresh session for ``user``; the caller commits."""
    session = Session(
        user_id=user.id,
        token=generate_token(),
        expires_at=session_expiry(),
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    db.add(session)
    return session


# ============================================================
# SESSION RESOLUTION
# ============================================================

class CurrentSession(BaseModel):
    id: str
    token: str
    user_id: str


async def get_current_session(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db_session),
) -> CurrentSession:
    if credentials is None or not credentials.credentials:
        raise HTTPException(status_code=401, detail="Not authenticated")

    stmt = select(Session).where(
        Session.token == credentials.credentials,
        Session.expires_at > datetime.now(timezone.utc),
    )
    result = await db.execute(stmt)
    session = result.scalar_one_or_none()
    if not session:
        raise HTTPException(status_code=401, detail="Invalid or expired session")

    return CurrentSession(id=session.id, token=session.token, user_id=session.user_id)


async def get_current_user(
    session: CurrentSession = Depends(get_current_session),
    db: AsyncSession = Depends(get_db_session),
) -> User:
    result = await db.execute(select(User).where(User.id == session.user_id))
    user = result.scalar_one_or_none()
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    return user
