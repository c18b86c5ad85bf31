from collections.abc import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from src.core.database.base import Base
from src.core.database.session import build_engine, build_sessionmaker
from src.core.documents.service import DocumentNumberService, get_document_number_service
from src.main import app


# File-backed SQLite so concurrent sessions see one database
@pytest.fixture
def database_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"


@pytest.fixture
async def test_engine(database_url: str) -> AsyncGenerator[AsyncEngine, None]:
    """Create tables before each test and dispose the engine after."""
    engine = build_engine(database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return build_sessionmaker(test_engine)


@pytest.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Get test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def number_service(session_factory: async_sessionmaker[AsyncSession]) -> DocumentNumberService:
    return DocumentNumberService(session_factory)


@pytest.fixture
async def client(number_service: DocumentNumberService) -> AsyncGenerator[AsyncClient, None]:
    """Get test HTTP client with the numbering service bound to the test database."""
    app.dependency_overrides[get_document_number_service] = lambda: number_service

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client

    app.dependency_overrides.clear()
