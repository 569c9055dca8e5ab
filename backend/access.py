# access.py — Workspace access checks and activity logging
# Every workspace-scoped procedure re-verifies access through these helpers
# before touching storage.
from typing import Optional, Dict, Any

from fastapi import HTTPException, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from auth import client_ip
from models import Workspace, WorkspaceMember, WorkspaceVisibility, ActivityLog

OWNER_ROLE = "owner"
DEFAULT_ROLE = "viewer"


async def get_workspace_or_404(db: AsyncSession, workspace_id: str) -> Workspace:
    result = await db.execute(select(Workspace).where(Workspace.id == workspace_id))
    workspace = result.scalar_one_or_none()
    if not workspace:
        raise HTTPException(status_code=404, detail="Workspace not found")
    return workspace


async def get_membership(db: AsyncSession, workspace_id: str, user_id: str) -> Optional[WorkspaceMember]:
    stmt = (
        select(WorkspaceMember)
        .where(
            WorkspaceMember.workspace_id == workspace_id,
            WorkspaceMember.user_id == user_id,
        )
        .limit(1)
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def require_member(db: AsyncSession, workspace_id: str, user_id: str) -> str:
    """Return the caller's member role or fail 403"""
    member = await get_membership(db, workspace_id, user_id)
    if not member:
        raise HTTPException(status_code=403, detail="Access denied")
    return member.role.value


def resolve_role(workspace: Workspace, member: Optional[WorkspaceMember], user_id: str) -> str:
    if workspace.owner_id == user_id:
        return OWNER_ROLE
    if member is not None:
        return member.role.value
    return DEFAULT_ROLE


def can_view(workspace: Workspace, member: Optional[WorkspaceMember], user_id: str) -> bool:
    if workspace.owner_id == user_id or member is not None:
        return True
    return workspace.visibility != WorkspaceVisibility.PRIVATE


def require_owner(workspace: Workspace, user_id: str, action: str) -> None:
    if workspace.owner_id != user_id:
        raise HTTPException(status_code=403, detail=f"Only owners can {action} workspaces")


def log_activity(
    db: AsyncSession,
    user_id: str,
    action: str,
    workspace_id: Optional[str] = None,
    resource_type: Optional[str] = None,
    resource_id: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    request: Optional[Request] = None,
) -> ActivityLog:
    """Stage an append-only activity row; committed with the caller's mutation"""
    entry = ActivityLog(
        user_id=user_id,
        workspace_id=workspace_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        metadata_=metadata or {},
        ip_address=client_ip(request) if request else None,
        user_agent=request.headers.get("user-agent") if request else None,
    )
    db.add(entry)
    return entry
