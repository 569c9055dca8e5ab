# routers/execution.py — Code execution procedures
# Lifecycle: pending → running → {completed | failed | cancelled}
#            pending → failed (submission error), {pending, running} → cancelled
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Dict, List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import Field
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from access import require_member, log_activity
from auth import get_current_user
from database import get_db_session
from hermes_client import HermesClient, get_hermes_client, call_with_deadline
from models import User, Execution, ExecutionStatus, CANCELLABLE_STATUSES
from schemas import CamelModel, ExecutionOut, ExecutionPage, execution_to_out

logger = logging.getLogger("hermes-bff.execution")

router = APIRouter(tags=["Execution"])


# --- Schemas ---

class Language(str, Enum):
    PYTHON = "python"
    JAVASCRIPT = "javascript"
    TYPESCRIPT = "typescript"
    GO = "go"
    RUST = "rust"


class ExecutionCreate(CamelModel):
    workspace_id: UUID
    title: Optional[str] = Field(None, max_length=255)
    language: Language
    code: str = Field(..., min_length=1)
    environment: Optional[Dict[str, str]] = None


class ExecutionRef(CamelModel):
    id: UUID


class LogLine(CamelModel):
    timestamp: str
    level: str
    message: str


class ExecutionLogs(CamelModel):
    execution_id: str
    logs: List[LogLine]


# --- Helpers ---

async def _get_execution_or_404(db: AsyncSession, execution_id: str) -> Execution:
    result = await db.execute(select(Execution).where(Execution.id == execution_id).limit(1))
    execution = result.scalar_one_or_none()
    if not execution:
        raise HTTPException(status_code=404, detail="Execution not found")
    return execution


# --- Procedures ---

@router.get("/execution.list", response_model=ExecutionPage)
async def list_executions(
    workspace_id: UUID = Query(..., alias="workspaceId"),
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    status: Optional[ExecutionStatus] = Query(default=None),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Page through a workspace's executions, newest first"""
    ws_id = str(workspace_id)
    await require_member(db, ws_id, user.id)

    conditions = [Execution.workspace_id == ws_id]
    if status is not None:
        conditions.append(Execution.status == status)

    stmt = (
        select(Execution)
        .where(*conditions)
        .order_by(Execution.created_at.desc())
        .limit(limit)
        .offset(offset)
    )
    result = await db.execute(stmt)
    items = result.scalars().all()
    total = await db.scalar(select(func.count(Execution.id)).where(*conditions)) or 0

    return ExecutionPage(
        items=[execution_to_out(e) for e in items],
        total=total,
        has_more=offset + len(items) < total,
    )


@router.get("/execution.get", response_model=ExecutionOut)
async def get_execution(
    id: UUID = Query(...),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    execution = await _get_execution_or_404(db, str(id))
    await require_member(db, execution.workspace_id, user.id)
    return execution_to_out(execution)


@router.post("/execution.create", response_model=ExecutionOut)
async def create_execution(
    body: ExecutionCreate,
    request: Request,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    hermes: HermesClient = Depends(get_hermes_client),
):
    """Record the execution, then submit it to Hermes.

    The pending row is committed before submission so a failed or lost
    submission always leaves evidence behind.
    """
    ws_id = str(body.workspace_id)
    await require_member(db, ws_id, user.id)

    environment = body.environment or {}
    execution = Execution(
        workspace_id=ws_id,
        user_id=user.id,
        title=body.title,
        language=body.language.value,
        code=body.code,
        environment=environment,
        status=ExecutionStatus.PENDING,
    )
    db.add(execution)
    await db.commit()
    await db.refresh(execution)

    try:
        response = await call_with_deadline(
            hermes.create_execution(code=body.code, language=body.language.value, environment=environment)
        )
    except Exception as e:
        logger.error(f"Hermes submission failed for execution {execution.id[:8]}: {e}")
        execution.status = ExecutionStatus.FAILED
        execution.error = str(e) or e.__class__.__name__
        execution.completed_at = datetime.now(timezone.utc)
        await db.commit()
        raise HTTPException(status_code=500, detail="Failed to submit execution")

    execution.hermes_execution_id = response["executionId"]
    execution.status = ExecutionStatus.RUNNING
    execution.started_at = datetime.now(timezone.utc)
    log_activity(
        db, user.id, "execution.created",
        workspace_id=ws_id, resource_type="execution", resource_id=execution.id,
        metadata={"language": body.language.value, "title": body.title}, request=request,
    )
    await db.commit()
    await db.refresh(execution)

    return execution_to_out(execution)


@router.post("/execution.cancel", response_model=ExecutionOut)
async def cancel_execution(
    body: ExecutionRef,
    request: Request,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    hermes: HermesClient = Depends(get_hermes_client),
):
    """Cancel one of the caller's own pending or running executions"""
    execution = await _get_execution_or_404(db, str(body.id))

    if execution.user_id != user.id:
        raise HTTPException(status_code=403, detail="Can only cancel your own executions")

    if execution.status not in CANCELLABLE_STATUSES:
        raise HTTPException(status_code=400, detail="Execution is not running")

    if execution.hermes_execution_id:
        try:
            await call_with_deadline(hermes.cancel_execution(execution.hermes_execution_id))
        except Exception as e:
            # Local state is authoritative; the engine reconciles on its side
            logger.warning(f"Failed to cancel in Hermes ({execution.hermes_execution_id}): {e}")

    execution.status = ExecutionStatus.CANCELLED
    execution.completed_at = datetime.now(timezone.utc)
    log_activity(
        db, user.id, "execution.cancelled",
        workspace_id=execution.workspace_id, resource_type="execution", resource_id=execution.id,
        request=request,
    )
    await db.commit()
    await db.refresh(execution)

    return execution_to_out(execution)


@router.get("/execution.logs", response_model=ExecutionLogs)
async def execution_logs(
    id: UUID = Query(...),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Execution log lines.

    Streaming log retrieval lives in the Hermes engine; this returns the
    start marker only.
    """
    execution = await _get_execution_or_404(db, str(id))
    await require_member(db, execution.workspace_id, user.id)

    return ExecutionLogs(
        execution_id=execution.id,
        logs=[
            LogLine(
                timestamp=datetime.now(timezone.utc).isoformat(),
                level="info",
                message="Execution started",
            ),
        ],
    )
