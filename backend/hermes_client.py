# hermes_client.py — Client for the Hermes execution & memory engine
"""
The Hermes engine (sandboxed execution, vector memory, Omni queries) runs as a
separate service. Routers talk to it only through ``HermesClient``:

- ``MockHermesClient`` returns synthetic data and is the default.
- ``HTTPHermesClient`` speaks the same contract as JSON over HTTP.

Routers obtain the client via the ``get_hermes_client`` dependency so tests
can substitute their own implementation, and wrap every call in
``call_with_deadline`` so a hung engine cannot block a request forever.
"""
import os
import time
import asyncio
import logging
from typing import Any, Awaitable, Dict, List, Optional, TypeVar

import httpx

logger = logging.getLogger("hermes-bff.hermes")

HERMES_CLIENT = os.getenv("HERMES_CLIENT", "mock").lower()
HERMES_BACKEND_URL = os.getenv("HERMES_BACKEND_URL", "http://localhost:8090")
HERMES_TIMEOUT_SECONDS = float(os.getenv("HERMES_TIMEOUT_SECONDS", "10"))

T = TypeVar("T")


class HermesError(Exception):
    """Raised when the Hermes engine rejects or fails a call"""


def namespace_key(workspace_id: str, namespace: str) -> str:
    return f"{workspace_id}:{namespace}"


async def call_with_deadline(awaitable: Awaitable[T], timeout: Optional[float] = None) -> T:
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout or HERMES_TIMEOUT_SECONDS)
    except asyncio.TimeoutError:
        raise HermesError(f"Hermes call timed out after {timeout or HERMES_TIMEOUT_SECONDS}s")


class HermesClient:
    """Contract every Hermes client implements"""

    async def create_execution(self, code: str, language: str, environment: Dict[str, str]) -> Dict[str, Any]:
        raise NotImplementedError

    async def cancel_execution(self, execution_id: str) -> None:
        raise NotImplementedError

    async def search_memory(self, namespace: str, query: str, limit: int) -> Dict[str, List[Dict[str, Any]]]:
        raise NotImplementedError

    async def store_memory(self, namespace: str, content: str, metadata: Dict[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError

    async def query_memory(self, namespace: str, omni_query: str) -> Dict[str, Any]:
        raise NotImplementedError

    async def delete_memory(self, memory_id: str) -> None:
        raise NotImplementedError

    async def aclose(self) -> None:
        return None


class MockHermesClient(HermesClient):
    """Static stand-in until the engine is deployed"""

    @staticmethod
    def _stamp() -> int:
        return int(time.time() * 1000)

    async def create_execution(self, code, language, environment):
        return {"executionId": f"exec_{self._stamp()}"}

    async def cancel_execution(self, execution_id):
        return None

    async def search_memory(self, namespace, query, limit):
        return {
            "results": [
                {
                    "id": f"mem_{self._stamp()}",
                    "content": "Sample memory content",
                    "score": 0.95,
                    "metadata": {},
                },
            ],
        }

    async def store_memory(self, namespace, content, metadata):
        return {"id": f"mem_{self._stamp()}", "success": True}

    async def query_memory(self, namespace, omni_query):
        return {"results": [], "executionTimeMs": 42}

    async def delete_memory(self, memory_id):
        return None


class HTTPHermesClient(HermesClient):
    """JSON/HTTP transport for the Hermes engine"""

    def __init__(
        self,
        base_url: str = HERMES_BACKEND_URL,
        timeout: float = HERMES_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            transport=transport,
        )

    async def _request(self, method: str, path: str, json: Optional[dict] = None) -> Dict[str, Any]:
        try:
            resp = await self._client.request(method, path, json=json)
        except httpx.HTTPError as e:
            raise HermesError(f"{method} {path} failed: {e}") from e
        if resp.status_code >= 400:
            raise HermesError(f"{method} {path} returned {resp.status_code}: {resp.text[:200]}")
        if not resp.content:
            return {}
        return resp.json()

    async def create_execution(self, code, language, environment):
        data = await self._request("POST", "/v1/executions", {
            "code": code, "language": language, "environment": environment,
        })
        if "executionId" not in data:
            raise HermesError("Hermes response is missing executionId")
        return {"executionId": data["executionId"]}

    async def cancel_execution(self, execution_id):
        await self._request("POST", f"/v1/executions/{execution_id}/cancel")

    async def search_memory(self, namespace, query, limit):
        data = await self._request("POST", "/v1/memory/search", {
            "namespace": namespace, "query": query, "limit": limit,
        })
        return {"results": data.get("results", [])}

    async def store_memory(self, namespace, content, metadata):
        return await self._request("POST", "/v1/memory", {
            "namespace": namespace, "content": content, "metadata": metadata,
        })

    async def query_memory(self, namespace, omni_query):
        return await self._request("POST", "/v1/memory/query", {
            "namespace": namespace, "omniQuery": omni_query,
        })

    async def delete_memory(self, memory_id):
        await self._request("DELETE", f"/v1/memory/{memory_id}")

    async def aclose(self):
        await self._client.aclose()


_client: Optional[HermesClient] = None


def build_hermes_client() -> HermesClient:
    if HERMES_CLIENT == "http":
        logger.info(f"Hermes client: HTTP → {HERMES_BACKEND_URL}")
        return HTTPHermesClient()
    logger.info("Hermes client: mock (set HERMES_CLIENT=http to use a live engine)")
    return MockHermesClient()


def init_hermes_client() -> HermesClient:
    """Build the process-wide client; called once from the app lifespan"""
    global _client
    if _client is None:
        _client = build_hermes_client()
    return _client


async def get_hermes_client() -> HermesClient:
    """FastAPI dependency returning the process-wide Hermes client.

    Runs on the event loop, not the threadpool, so the lazy build below
    cannot race.
    """
    return init_hermes_client()


async def close_hermes_client() -> None:
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None
