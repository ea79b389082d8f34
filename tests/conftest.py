"""
Shared fixtures: an in-memory database per test and helpers for
fake provider traffic.
"""
from typing import AsyncIterator, Callable, Iterable

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from polychat.core.database import create_engine, init_db
from polychat.services.storage import BranchManager, ConversationStore


@pytest_asyncio.fixture
async def engine():
    engine = create_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def store(db):
    return ConversationStore(db)


@pytest.fixture
def branches(store):
    return BranchManager(store)


def sse_response(chunks: Iterable[str], status_code: int = 200) -> httpx.Response:
    """A streamed response delivering the given text chunks one read at a time."""

    async def body() -> AsyncIterator[bytes]:
        for chunk in chunks:
            yield chunk.encode("utf-8")

    return httpx.Response(
        status_code,
        headers={"content-type": "text/event-stream"},
        content=body(),
    )


@pytest_asyncio.fixture
async def mock_http():
    """Build AsyncClients whose requests are answered by a handler."""
    clients: list[httpx.AsyncClient] = []

    def factory(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        clients.append(client)
        return client

    yield factory

    for client in clients:
        await client.aclose()
