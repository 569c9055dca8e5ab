# routers/root.py — Composes the namespaced procedure routers
# Procedures are addressed as /api/trpc/<namespace>.<procedure>;
# queries are GET with query-string input, mutations POST with a JSON body.
from fastapi import APIRouter

from routers import auth, workspace, execution, memory

api_router = APIRouter(prefix="/api/trpc")

api_router.include_router(auth.router)
api_router.include_router(workspace.router)
api_router.include_router(execution.router)
api_router.include_router(memory.router)
