import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import text

from biblio.db.session import AsyncSessionLocal, get_db
from biblio.main import app


@pytest.fixture(autouse=True)
def _reset_dependency_overrides():
    """A test that fails mid-request must not leak its user into the next one."""
    yield
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def db():
    """A live session, or a skip when Postgres is not reachable."""
    async with AsyncSessionLocal() as session:
        try:
            await session.execute(text("SELECT 1"))
        except Exception as exc:
            pytest.skip(f"Database not available: {exc}")
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def anon_client():
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture
async def client(db):
    async def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
