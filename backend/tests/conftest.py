# tests/conftest.py — Shared test fixtures
import os
import uuid
from datetime import timedelta

import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

# Use SQLite for tests
TEST_DB_URL = "sqlite+aiosqlite:///./test.db"
os.environ["DATABASE_URL"] = TEST_DB_URL
os.environ["HERMES_CLIENT"] = "mock"
os.environ["ENVIRONMENT"] = "test"

from models import Base, User, Session, Workspace, WorkspaceMember, UserRole, WorkspaceVisibility, utcnow
from auth import generate_token, hash_password
from database import get_db_session
from hermes_client import MockHermesClient, HermesError, get_hermes_client
from main import app


class FakeHermesClient(MockHermesClient):
    """Mock engine that records calls and can be told to fail"""

    def __init__(self):
        self.calls = []
        self.fail = set()
        self.search_results = None

    def _record(self, name, *args):
        self.calls.append((name,) + args)
        if name in self.fail:
            raise HermesError(f"{name} unavailable")

    def called(self, name):
        return [c for c in self.calls if c[0] == name]

    async def create_execution(self, code, language, environment):
        self._record("create_execution", code, language, environment)
        return await super().create_execution(code, language, environment)

    async def cancel_execution(self, execution_id):
        self._record("cancel_execution", execution_id)

    async def search_memory(self, namespace, query, limit):
        self._record("search_memory", namespace, query, limit)
        if self.search_results is not None:
            return {"results": self.search_results}
        return await super().search_memory(namespace, query, limit)

    async def store_memory(self, namespace, content, metadata):
        self._record("store_memory", namespace, content, metadata)
        return {"id": f"mem_{uuid.uuid4().hex[:12]}", "success": True}

    async def query_memory(self, namespace, omni_query):
        self._record("query_memory", namespace, omni_query)
        return await super().query_memory(namespace, omni_query)

    async def delete_memory(self, memory_id):
        self._record("delete_memory", memory_id)


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    engine = create_async_engine(TEST_DB_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(db_engine):
    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def hermes():
    return FakeHermesClient()


@pytest_asyncio.fixture(scope="function")
async def client(db_engine, hermes):
    """HTTP test client with overridden DB and Hermes dependencies"""
    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_get_db
    app.dependency_overrides[get_hermes_client] = lambda: hermes
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


async def _make_user(db_session, email, name, password="TestPassword123"):
    user = User(
        id=str(uuid.uuid4()),
        email=email,
        name=name,
        password_hash=hash_password(password),
        role=UserRole.USER,
        metadata_={},
    )
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest_asyncio.fixture
async def test_user(db_session):
    """Create a test user"""
    return await _make_user(db_session, "testuser@hermes.dev", "Test User")


@pytest_asyncio.fixture
async def other_user(db_session):
    """A second user with no memberships"""
    return await _make_user(db_session, "other@hermes.dev", "Other User")


async def get_auth_headers(db_session, user, expires_in=timedelta(hours=24)) -> dict:
    """Open a session row for a user and return bearer headers"""
    session = Session(
        user_id=user.id,
        token=generate_token(),
        expires_at=utcnow() + expires_in,
    )
    db_session.add(session)
    await db_session.commit()
    return {"Authorization": f"Bearer {session.token}"}


@pytest_asyncio.fixture
async def auth_headers(db_session, test_user):
    return await get_auth_headers(db_session, test_user)


@pytest_asyncio.fixture
async def other_headers(db_session, other_user):
    return await get_auth_headers(db_session, other_user)


@pytest_asyncio.fixture
async def test_workspace(db_session, test_user):
    """A private workspace owned by test_user, with the owner's admin membership"""
    workspace = Workspace(
        id=str(uuid.uuid4()),
        name="Acme",
        slug="acme",
        owner_id=test_user.id,
        visibility=WorkspaceVisibility.PRIVATE,
        settings={},
    )
    db_session.add(workspace)
    await db_session.flush()
    db_session.add(WorkspaceMember(workspace_id=workspace.id, user_id=test_user.id, role=UserRole.ADMIN))
    await db_session.commit()
    await db_session.refresh(workspace)
    return workspace


@pytest_asyncio.fixture
async def sql_statements(db_engine):
    """SQL text of every statement executed on the test engine while the test runs"""
    statements = []

    def record(conn, cursor, statement, parameters, context, executemany):
        statements.append(statement)

    event.listen(db_engine.sync_engine, "before_cursor_execute", record)
    yield statements
    event.remove(db_engine.sync_engine, "before_cursor_execute", record)
