# routers/memory.py — Workspace memory procedures backed by the Hermes memory service
# Entries live in Hermes under "<workspaceId>:<namespace>"; a local row keeps
# the reference, ownership and audit trail.
import logging
from datetime import datetime
from typing import Optional, Dict, Any, List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import Field
from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from access import require_member, log_activity
from auth import get_current_user
from database import get_db_session
from hermes_client import HermesClient, get_hermes_client, call_with_deadline, namespace_key
from models import User, MemoryEntry
from schemas import CamelModel, MemoryEntryOut, SuccessOut, memory_entry_to_out

logger = logging.getLogger("hermes-bff.memory")

router = APIRouter(tags=["Memory"])


# --- Schemas ---

class MemoryStore(CamelModel):
    workspace_id: UUID
    namespace: str
    content: str = Field(..., min_length=1)
    metadata: Optional[Dict[str, Any]] = None


class MemoryRef(CamelModel):
    id: UUID


class SearchHit(CamelModel):
    id: str
    content: str
    score: float
    metadata: Dict[str, Any] = Field(default_factory=dict)
    local_id: Optional[str] = None
    created_at: Optional[datetime] = None


class SearchOut(CamelModel):
    results: List[SearchHit]
    total: int


# --- Procedures ---

@router.get("/memory.search", response_model=SearchOut)
async def search_memories(
    workspace_id: UUID = Query(..., alias="workspaceId"),
    namespace: str = Query(...),
    query: str = Query(...),
    limit: int = Query(default=10, ge=1, le=50),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    hermes: HermesClient = Depends(get_hermes_client),
):
    """Semantic search in Hermes, joined with local entry metadata"""
    ws_id = str(workspace_id)
    await require_member(db, ws_id, user.id)

    try:
        response = await call_with_deadline(
            hermes.search_memory(namespace=namespace_key(ws_id, namespace), query=query, limit=limit)
        )
        hits = response.get("results", [])
        if not hits:
            return SearchOut(results=[], total=0)

        hermes_ids = [hit["id"] for hit in hits]
        result = await db.execute(
            select(MemoryEntry).where(
                MemoryEntry.workspace_id == ws_id,
                MemoryEntry.hermes_memory_id.in_(hermes_ids),
            )
        )
        local_by_hermes_id = {e.hermes_memory_id: e for e in result.scalars().all()}
    except Exception as e:
        logger.error(f"Memory search failed in {ws_id[:8]}/{namespace}: {e}")
        raise HTTPException(status_code=500, detail="Failed to search memories")

    merged = []
    for hit in hits:
        local = local_by_hermes_id.get(hit["id"])
        merged.append(SearchHit(
            id=hit["id"],
            content=hit.get("content", ""),
            score=hit.get("score", 0.0),
            metadata=hit.get("metadata") or {},
            local_id=local.id if local else None,
            created_at=local.created_at if local else None,
        ))

    return SearchOut(results=merged, total=len(hits))


@router.post("/memory.store", response_model=MemoryEntryOut)
async def store_memory(
    body: MemoryStore,
    request: Request,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    hermes: HermesClient = Depends(get_hermes_client),
):
    """Write to Hermes, then persist the local reference and audit row together"""
    ws_id = str(body.workspace_id)
    await require_member(db, ws_id, user.id)

    hermes_id = None
    try:
        response = await call_with_deadline(hermes.store_memory(
            namespace=namespace_key(ws_id, body.namespace),
            content=body.content,
            metadata={**(body.metadata or {}), "userId": user.id, "workspaceId": ws_id},
        ))
        hermes_id = response["id"]

        entry = MemoryEntry(
            workspace_id=ws_id,
            user_id=user.id,
            namespace=body.namespace,
            content=body.content,
            metadata_=body.metadata or {},
            hermes_memory_id=hermes_id,
        )
        db.add(entry)
        await db.flush()
        log_activity(
            db, user.id, "memory.stored",
            workspace_id=ws_id, resource_type="memory", resource_id=entry.id,
            metadata={"namespace": body.namespace, "contentLength": len(body.content)},
            request=request,
        )
        await db.commit()
        await db.refresh(entry)
    except Exception as e:
        logger.error(f"Memory store failed in {ws_id[:8]}/{body.namespace}: {e}")
        await db.rollback()
        if hermes_id:
            await _compensate_store(hermes, hermes_id)
        raise HTTPException(status_code=500, detail="Failed to store memory")

    return memory_entry_to_out(entry)


async def _compensate_store(hermes: HermesClient, hermes_id: str) -> None:
    """Undo a Hermes write whose local reference could not be saved"""
    try:
        await call_with_deadline(hermes.delete_memory(hermes_id))
    except Exception as e:
        logger.warning(f"Orphaned Hermes memory {hermes_id}: compensating delete failed: {e}")


@router.get("/memory.query")
async def query_memories(
    workspace_id: UUID = Query(..., alias="workspaceId"),
    namespace: str = Query(...),
    omni_query: str = Query(..., alias="omniQuery"),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    hermes: HermesClient = Depends(get_hermes_client),
):
    """Forward an Omni query verbatim; Hermes owns the language"""
    ws_id = str(workspace_id)
    await require_member(db, ws_id, user.id)

    try:
        return await call_with_deadline(
            hermes.query_memory(namespace=namespace_key(ws_id, namespace), omni_query=omni_query)
        )
    except Exception as e:
        logger.error(f"Omni query failed in {ws_id[:8]}/{namespace}: {e}")
        raise HTTPException(status_code=500, detail="Failed to query memories")


@router.get("/memory.namespaces", response_model=List[str])
async def list_namespaces(
    workspace_id: UUID = Query(..., alias="workspaceId"),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    ws_id = str(workspace_id)
    await require_member(db, ws_id, user.id)

    result = await db.execute(
        select(MemoryEntry.namespace)
        .where(MemoryEntry.workspace_id == ws_id)
        .group_by(MemoryEntry.namespace)
        .order_by(MemoryEntry.namespace)
    )
    return [ns for ns in result.scalars().all() if ns]


@router.post("/memory.delete", response_model=SuccessOut)
async def delete_memory(
    body: MemoryRef,
    request: Request,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    hermes: HermesClient = Depends(get_hermes_client),
):
    """Delete one of the caller's own entries, locally and (best effort) in Hermes"""
    result = await db.execute(select(MemoryEntry).where(MemoryEntry.id == str(body.id)).limit(1))
    entry = result.scalar_one_or_none()
    if not entry:
        raise HTTPException(status_code=404, detail="Memory entry not found")

    if entry.user_id != user.id:
        raise HTTPException(status_code=403, detail="Can only delete your own memories")

    if entry.hermes_memory_id:
        try:
            await call_with_deadline(hermes.delete_memory(entry.hermes_memory_id))
        except Exception as e:
            logger.warning(f"Failed to delete from Hermes ({entry.hermes_memory_id}): {e}")

    entry_id, ws_id, namespace = entry.id, entry.workspace_id, entry.namespace
    await db.execute(delete(MemoryEntry).where(MemoryEntry.id == entry_id))
    log_activity(
        db, user.id, "memory.deleted",
        workspace_id=ws_id, resource_type="memory", resource_id=entry_id,
        metadata={"namespace": namespace}, request=request,
    )
    await db.commit()

    return SuccessOut()
