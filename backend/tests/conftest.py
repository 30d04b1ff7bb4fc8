from collections.abc import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.ext.compiler import compiles

from app.database import Base, get_db
from app.main import app
from app.models.integration import Integration, UserApiKey


@compiles(JSONB, "sqlite")
def compile_jsonb_sqlite(type_, compiler, **kw):
    return "JSON"

TEST_DATABASE_URL = "sqlite+aiosqlite:///./test.db"

engine = create_async_engine(TEST_DATABASE_URL)
TestSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)

TEST_USER_ID = "user-1"
TEST_LOCATION_ID = "loc-123"


@pytest.fixture(autouse=True)
async def setup_db():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionLocal() as session:
        yield session


@pytest.fixture
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac
    app.dependency_overrides.clear()


async def seed_integration(
    db: AsyncSession,
    *,
    user_id: str = TEST_USER_ID,
    location_id: str | None = TEST_LOCATION_ID,
    config: dict | None = None,
    mcp_token: str | None = "pit-token",
    openai_key: str | None = "sk-test",
) -> Integration:
    integration = Integration(
        user_id=user_id,
        type="gohighlevel",
        is_active=True,
        location_id=location_id,
        config=config or {},
    )
    db.add(integration)
    if mcp_token:
        db.add(UserApiKey(user_id=user_id, provider="ghlmcp", api_key=mcp_token))
    if openai_key:
        db.add(UserApiKey(user_id=user_id, provider="openai", api_key=openai_key))
    await db.commit()
    return integration


@pytest.fixture
async def integration(db_session: AsyncSession) -> Integration:
    return await seed_integration(db_session)
