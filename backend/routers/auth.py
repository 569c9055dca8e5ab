# routers/auth.py — Sign-up, sign-in and session lifecycle procedures
import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy import select, update, delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from access import log_activity
from auth import (
    CurrentSession, get_current_session, get_current_user,
    hash_password, verify_password, issue_session, session_expiry,
)
from database import get_db_session
from models import Session, User
from schemas import CamelModel, UserOut, SuccessOut, user_to_out

logger = logging.getLogger("hermes-bff.auth")

router = APIRouter(tags=["Auth"])


# --- Schemas ---

class SignUpRequest(BaseModel):
    email: EmailStr
    name: str = Field(..., min_length=2)
    password: str = Field(..., min_length=8)


class SignInRequest(BaseModel):
    email: EmailStr
    password: str


class WorkOSSignInRequest(BaseModel):
    code: str
    state: Optional[str] = None


class AuthOut(CamelModel):
    user: UserOut
    token: str


class RefreshOut(CamelModel):
    expires_at: datetime


# --- Procedures ---

@router.get("/auth.me", response_model=UserOut)
async def me(user: User = Depends(get_current_user)):
    """Current user"""
    return user_to_out(user)


@router.post("/auth.signUp", response_model=AuthOut)
async def sign_up(
    body: SignUpRequest,
    request: Request,
    db: AsyncSession = Depends(get_db_session),
):
    """Register with email/password. SSO-backed accounts arrive via signInWithWorkOS."""
    result = await db.execute(select(User).where(User.email == body.email).limit(1))
    if result.scalar_one_or_none():
        raise HTTPException(status_code=409, detail="User already exists")

    user = User(
        email=body.email,
        name=body.name,
        password_hash=hash_password(body.password),
    )
    db.add(user)
    try:
        await db.flush()

        session = await issue_session(db, user, request)
        log_activity(db, user.id, "auth.signed_up", resource_type="user", resource_id=user.id, request=request)
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(status_code=409, detail="User already exists")

    await db.refresh(user)

    logger.info(f"User signed up: {user.id[:8]}")
    return AuthOut(user=user_to_out(user), token=session.token)


@router.post("/auth.signIn", response_model=AuthOut)
async def sign_in(
    body: SignInRequest,
    request: Request,
    db: AsyncSession = Depends(get_db_session),
):
    """Authenticate with email/password and open a new session"""
    result = await db.execute(select(User).where(User.email == body.email).limit(1))
    user = result.scalar_one_or_none()

    if not user or not verify_password(body.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid credentials")

    session = await issue_session(db, user, request)
    user.last_active_at = datetime.now(timezone.utc)
    log_activity(db, user.id, "auth.signed_in", resource_type="user", resource_id=user.id, request=request)
    await db.commit()
    await db.refresh(user)

    return AuthOut(user=user_to_out(user), token=session.token)


@router.post("/auth.signOut", response_model=SuccessOut)
async def sign_out(
    session: CurrentSession = Depends(get_current_session),
    db: AsyncSession = Depends(get_db_session),
):
    """Delete the caller's current session"""
    await db.execute(delete(Session).where(Session.token == session.token))
    await db.commit()
    return SuccessOut()


@router.post("/auth.signInWithWorkOS")
async def sign_in_with_workos(body: WorkOSSignInRequest):
    """Reserved for the WorkOS code exchange"""
    raise HTTPException(status_code=501, detail="WorkOS integration coming soon")


@router.post("/auth.refreshSession", response_model=RefreshOut)
async def refresh_session(
    session: CurrentSession = Depends(get_current_session),
    db: AsyncSession = Depends(get_db_session),
):
    """Push the current session's expiry out by the session TTL"""
    expires_at = session_expiry()
    await db.execute(update(Session).where(Session.id == session.id).values(expires_at=expires_at))
    await db.commit()
    return RefreshOut(expires_at=expires_at)
