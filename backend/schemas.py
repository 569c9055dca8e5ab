# schemas.py — Shared response schemas
# Procedures answer in camelCase, matching the RPC client's field names.
from datetime import datetime
from typing import Optional, Dict, Any, List

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from models import User, Workspace, Execution, MemoryEntry, ActivityLog


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _enum_value(value):
    return value.value if hasattr(value, "value") else value


# --- Users ---

class UserOut(CamelModel):
    id: str
    email: str
    name: Optional[str] = None
    avatar_url: Optional[str] = None
    workos_user_id: Optional[str] = None
    workos_org_id: Optional[str] = None
    role: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    last_active_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


def user_to_out(u: User) -> UserOut:
    return UserOut(
        id=u.id,
        email=u.email,
        name=u.name,
        avatar_url=u.avatar_url,
        workos_user_id=u.workos_user_id,
        workos_org_id=u.workos_org_id,
        role=_enum_value(u.role),
        metadata=u.metadata_ or {},
        last_active_at=u.last_active_at,
        created_at=u.created_at,
        updated_at=u.updated_at,
    )


# --- Workspaces ---

class WorkspaceOut(CamelModel):
    id: str
    name: str
    slug: str
    description: Optional[str] = None
    owner_id: str
    visibility: str
    settings: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    role: Optional[str] = None


def workspace_to_out(ws: Workspace, role: Optional[str] = None) -> WorkspaceOut:
    return WorkspaceOut(
        id=ws.id,
        name=ws.name,
        slug=ws.slug,
        description=ws.description,
        owner_id=ws.owner_id,
        visibility=_enum_value(ws.visibility),
        settings=ws.settings or {},
        created_at=ws.created_at,
        updated_at=ws.updated_at,
        role=role,
    )


# --- Executions ---

class ExecutionOut(CamelModel):
    id: str
    workspace_id: str
    user_id: str
    title: Optional[str] = None
    language: str
    code: str
    environment: Dict[str, str] = Field(default_factory=dict)
    status: str
    output: Optional[str] = None
    error: Optional[str] = None
    execution_time_ms: Optional[int] = None
    memory_usage_mb: Optional[int] = None
    hermes_execution_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


def execution_to_out(e: Execution) -> ExecutionOut:
    return ExecutionOut(
        id=e.id,
        workspace_id=e.workspace_id,
        user_id=e.user_id,
        title=e.title,
        language=e.language,
        code=e.code,
        environment=e.environment or {},
        status=_enum_value(e.status),
        output=e.output,
        error=e.error,
        execution_time_ms=e.execution_time_ms,
        memory_usage_mb=e.memory_usage_mb,
        hermes_execution_id=e.hermes_execution_id,
        metadata=e.metadata_ or {},
        started_at=e.started_at,
        completed_at=e.completed_at,
        created_at=e.created_at,
    )


class ExecutionPage(CamelModel):
    items: List[ExecutionOut]
    total: int
    has_more: bool


# --- Memory ---

class MemoryEntryOut(CamelModel):
    id: str
    workspace_id: str
    user_id: str
    namespace: str
    content: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    hermes_memory_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


def memory_entry_to_out(m: MemoryEntry) -> MemoryEntryOut:
    return MemoryEntryOut(
        id=m.id,
        workspace_id=m.workspace_id,
        user_id=m.user_id,
        namespace=m.namespace,
        content=m.content,
        metadata=m.metadata_ or {},
        hermes_memory_id=m.hermes_memory_id,
        created_at=m.created_at,
        updated_at=m.updated_at,
    )


# --- Activity ---

class ActivityOut(CamelModel):
    id: str
    user_id: str
    workspace_id: Optional[str] = None
    action: str
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None


def activity_to_out(a: ActivityLog) -> ActivityOut:
    return ActivityOut(
        id=a.id,
        user_id=a.user_id,
        workspace_id=a.workspace_id,
        action=a.action,
        resource_type=a.resource_type,
        resource_id=a.resource_id,
        metadata=a.metadata_ or {},
        created_at=a.created_at,
    )


class SuccessOut(BaseModel):
    success: bool = True
