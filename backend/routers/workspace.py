# routers/workspace.py — Workspace management procedures
import logging
from datetime import datetime, timezone
from typing import Optional, List, Dict
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy import select, func, delete, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from access import (
    get_workspace_or_404, get_membership, require_member, require_owner,
    resolve_role, can_view, log_activity,
)
from auth import get_current_user
from database import get_db_session
from hermes_client import HermesClient, get_hermes_client, call_with_deadline
from models import (
    User, Workspace, WorkspaceMember, WorkspaceVisibility, UserRole,
    Execution, MemoryEntry, ActivityLog, CANCELLABLE_STATUSES,
)
from schemas import (
    CamelModel, WorkspaceOut, ActivityOut, SuccessOut,
    workspace_to_out, activity_to_out,
)

logger = logging.getLogger("hermes-bff.workspace")

router = APIRouter(tags=["Workspace"])

SLUG_PATTERN = r"^[a-z0-9-]+$"


# --- Schemas ---

class WorkspaceCreate(BaseModel):
    name: str = Field(..., min_length=2, max_length=255)
    slug: str = Field(..., min_length=2, max_length=255, pattern=SLUG_PATTERN)
    description: Optional[str] = None
    visibility: WorkspaceVisibility = WorkspaceVisibility.PRIVATE


class WorkspaceSettings(CamelModel):
    default_language: Optional[str] = None
    default_environment: Optional[Dict[str, str]] = None
    features: Optional[List[str]] = None


class WorkspaceUpdate(BaseModel):
    id: UUID
    name: Optional[str] = Field(None, min_length=2, max_length=255)
    description: Optional[str] = None
    visibility: Optional[WorkspaceVisibility] = None
    settings: Optional[WorkspaceSettings] = None


class WorkspaceRef(BaseModel):
    id: UUID


class MemberAdd(CamelModel):
    workspace_id: UUID
    email: EmailStr
    role: UserRole = UserRole.VIEWER


class MemberRemove(CamelModel):
    workspace_id: UUID
    user_id: UUID


class StatsOut(CamelModel):
    executions: int
    memories: int
    members: int


class MemberOut(CamelModel):
    user_id: str
    email: str
    name: Optional[str] = None
    role: str
    joined_at: Optional[datetime] = None


# --- Procedures ---

@router.get("/workspace.list", response_model=List[WorkspaceOut])
async def list_workspaces(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Workspaces the caller owns or belongs to, newest first"""
    stmt = (
        select(Workspace, WorkspaceMember)
        .outerjoin(
            WorkspaceMember,
            (WorkspaceMember.workspace_id == Workspace.id) & (WorkspaceMember.user_id == user.id),
        )
        .where(or_(Workspace.owner_id == user.id, WorkspaceMember.id.is_not(None)))
        .order_by(Workspace.created_at.desc())
    )
    result = await db.execute(stmt)
    return [
        workspace_to_out(ws, role=resolve_role(ws, member, user.id))
        for ws, member in result.all()
    ]


@router.get("/workspace.getBySlug", response_model=WorkspaceOut)
async def get_workspace_by_slug(
    slug: str = Query(...),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    result = await db.execute(select(Workspace).where(Workspace.slug == slug).limit(1))
    workspace = result.scalar_one_or_none()
    if not workspace:
        raise HTTPException(status_code=404, detail="Workspace not found")

    member = await get_membership(db, workspace.id, user.id)
    if not can_view(workspace, member, user.id):
        raise HTTPException(status_code=403, detail="Access denied")

    return workspace_to_out(workspace, role=resolve_role(workspace, member, user.id))


@router.post("/workspace.create", response_model=WorkspaceOut)
async def create_workspace(
    body: WorkspaceCreate,
    request: Request,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Create a workspace owned by the caller"""
    result = await db.execute(select(Workspace).where(Workspace.slug == body.slug).limit(1))
    if result.scalar_one_or_none():
        raise HTTPException(status_code=409, detail="Workspace slug already exists")

    workspace = Workspace(
        name=body.name,
        slug=body.slug,
        description=body.description,
        visibility=body.visibility,
        owner_id=user.id,
        settings={},
    )
    db.add(workspace)
    try:
        await db.flush()

        # Owners hold an admin member row so membership-gated procedures admit them
        db.add(WorkspaceMember(workspace_id=workspace.id, user_id=user.id, role=UserRole.ADMIN))
        log_activity(
            db, user.id, "workspace.created",
            workspace_id=workspace.id, resource_type="workspace", resource_id=workspace.id,
            metadata={"name": workspace.name}, request=request,
        )
        await db.commit()
    except IntegrityError:
        # A concurrent create claimed the slug between the check and the insert
        await db.rollback()
        raise HTTPException(status_code=409, detail="Workspace slug already exists")

    await db.refresh(workspace)

    logger.info(f"Workspace created: {workspace.slug} by {user.id[:8]}")
    return workspace_to_out(workspace, role="owner")


@router.post("/workspace.update", response_model=WorkspaceOut)
async def update_workspace(
    body: WorkspaceUpdate,
    request: Request,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Partial update; owner only"""
    workspace = await get_workspace_or_404(db, str(body.id))
    require_owner(workspace, user.id, "update")

    changes = {}
    if body.name is not None:
        workspace.name = changes["name"] = body.name
    if "description" in body.model_fields_set:
        workspace.description = changes["description"] = body.description
    if body.visibility is not None:
        workspace.visibility = body.visibility
        changes["visibility"] = body.visibility.value
    if body.settings is not None:
        workspace.settings = changes["settings"] = body.settings.model_dump(by_alias=True, exclude_none=True)
    workspace.updated_at = datetime.now(timezone.utc)

    log_activity(
        db, user.id, "workspace.updated",
        workspace_id=workspace.id, resource_type="workspace", resource_id=workspace.id,
        metadata=changes, request=request,
    )
    await db.commit()
    await db.refresh(workspace)

    return workspace_to_out(workspace, role="owner")


@router.post("/workspace.delete", response_model=SuccessOut)
async def delete_workspace(
    body: WorkspaceRef,
    request: Request,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    hermes: HermesClient = Depends(get_hermes_client),
):
    """Hard delete; owner only. Engine-side state is released after the commit."""
    workspace = await get_workspace_or_404(db, str(body.id))
    require_owner(workspace, user.id, "delete")

    workspace_id, name = workspace.id, workspace.name
    live_executions = (await db.execute(
        select(Execution.hermes_execution_id).where(
            Execution.workspace_id == workspace_id,
            Execution.status.in_(CANCELLABLE_STATUSES),
            Execution.hermes_execution_id.is_not(None),
        )
    )).scalars().all()
    hermes_memories = (await db.execute(
        select(MemoryEntry.hermes_memory_id).where(
            MemoryEntry.workspace_id == workspace_id,
            MemoryEntry.hermes_memory_id.is_not(None),
        )
    )).scalars().all()

    # Executions and memory entries hold plain foreign keys; clear them in the same transaction
    await db.execute(delete(Execution).where(Execution.workspace_id == workspace_id))
    await db.execute(delete(MemoryEntry).where(MemoryEntry.workspace_id == workspace_id))
    await db.execute(delete(WorkspaceMember).where(WorkspaceMember.workspace_id == workspace_id))
    await db.execute(delete(Workspace).where(Workspace.id == workspace_id))

    log_activity(
        db, user.id, "workspace.deleted",
        resource_type="workspace", resource_id=workspace_id,
        metadata={"name": name}, request=request,
    )
    await db.commit()

    logger.info(f"Workspace deleted: {workspace_id[:8]} by {user.id[:8]}")
    await _release_engine_state(hermes, workspace_id, live_executions, hermes_memories)
    return SuccessOut()


async def _release_engine_state(hermes: HermesClient, workspace_id: str, execution_ids, memory_ids) -> None:
    """Best-effort cancel/delete in Hermes for a workspace that no longer exists locally"""
    for execution_id in execution_ids:
        try:
            await call_with_deadline(hermes.cancel_execution(execution_id))
        except Exception as e:
            logger.warning(f"Orphaned Hermes execution {execution_id} from workspace {workspace_id[:8]}: {e}")
    for memory_id in memory_ids:
        try:
            await call_with_deadline(hermes.delete_memory(memory_id))
        except Exception as e:
            logger.warning(f"Orphaned Hermes memory {memory_id} from workspace {workspace_id[:8]}: {e}")


@router.get("/workspace.stats", response_model=StatsOut)
async def workspace_stats(
    workspace_id: UUID = Query(..., alias="workspaceId"),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    ws_id = str(workspace_id)
    await require_member(db, ws_id, user.id)

    executions = await db.scalar(select(func.count(Execution.id)).where(Execution.workspace_id == ws_id))
    memories = await db.scalar(select(func.count(MemoryEntry.id)).where(MemoryEntry.workspace_id == ws_id))
    members = await db.scalar(select(func.count(WorkspaceMember.id)).where(WorkspaceMember.workspace_id == ws_id))

    return StatsOut(executions=executions or 0, memories=memories or 0, members=members or 0)


@router.get("/workspace.members", response_model=List[MemberOut])
async def list_members(
    workspace_id: UUID = Query(..., alias="workspaceId"),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    ws_id = str(workspace_id)
    await require_member(db, ws_id, user.id)

    stmt = (
        select(WorkspaceMember, User)
        .join(User, User.id == WorkspaceMember.user_id)
        .where(WorkspaceMember.workspace_id == ws_id)
        .order_by(WorkspaceMember.joined_at.asc())
    )
    result = await db.execute(stmt)
    return [
        MemberOut(
            user_id=u.id,
            email=u.email,
            name=u.name,
            role=m.role.value,
            joined_at=m.joined_at,
        )
        for m, u in result.all()
    ]


@router.post("/workspace.addMember", response_model=MemberOut)
async def add_member(
    body: MemberAdd,
    request: Request,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Grant a registered user a role in the workspace; owner only"""
    workspace = await get_workspace_or_404(db, str(body.workspace_id))
    require_owner(workspace, user.id, "manage members of")

    result = await db.execute(select(User).where(User.email == body.email).limit(1))
    invitee = result.scalar_one_or_none()
    if not invitee:
        raise HTTPException(status_code=404, detail="User not found")

    if await get_membership(db, workspace.id, invitee.id):
        raise HTTPException(status_code=409, detail="User is already a member")

    member = WorkspaceMember(workspace_id=workspace.id, user_id=invitee.id, role=body.role)
    db.add(member)
    log_activity(
        db, user.id, "workspace.member_added",
        workspace_id=workspace.id, resource_type="user", resource_id=invitee.id,
        metadata={"role": body.role.value}, request=request,
    )
    await db.commit()
    await db.refresh(member)

    return MemberOut(
        user_id=invitee.id,
        email=invitee.email,
        name=invitee.name,
        role=member.role.value,
        joined_at=member.joined_at,
    )


@router.post("/workspace.removeMember", response_model=SuccessOut)
async def remove_member(
    body: MemberRemove,
    request: Request,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    workspace = await get_workspace_or_404(db, str(body.workspace_id))
    require_owner(workspace, user.id, "manage members of")

    target_id = str(body.user_id)
    if target_id == workspace.owner_id:
        raise HTTPException(status_code=400, detail="The owner cannot be removed")

    member = await get_membership(db, workspace.id, target_id)
    if not member:
        raise HTTPException(status_code=404, detail="Member not found")

    await db.execute(delete(WorkspaceMember).where(WorkspaceMember.id == member.id))
    log_activity(
        db, user.id, "workspace.member_removed",
        workspace_id=workspace.id, resource_type="user", resource_id=target_id,
        request=request,
    )
    await db.commit()
    return SuccessOut()


@router.get("/workspace.activity", response_model=List[ActivityOut])
async def workspace_activity(
    workspace_id: UUID = Query(..., alias="workspaceId"),
    limit: int = Query(default=50, ge=1, le=100),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Audit trail for a workspace, newest first"""
    ws_id = str(workspace_id)
    await require_member(db, ws_id, user.id)

    stmt = (
        select(ActivityLog)
        .where(ActivityLog.workspace_id == ws_id)
        .order_by(ActivityLog.created_at.desc())
        .limit(limit)
    )
    result = await db.execute(stmt)
    return [activity_to_out(a) for a in result.scalars().all()]
