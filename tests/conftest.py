import pytest
from httpx import ASGITransport, AsyncClient

from engmetrics_api.app import app, get_state_registry
from engmetrics_api.config import Settings, get_settings
from engmetrics_api.oauth import ConsumedStateRegistry


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def settings():
    return Settings(
        GITHUB_CLIENT_ID="client-123",
        GITHUB_CLIENT_SECRET="secret-456",
        GITHUB_REDIRECT_URI="http://localhost:5173/",
    )


@pytest.fixture
def registry():
    return ConsumedStateRegistry()


@pytest.fixture
async def client(settings, registry):
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_state_registry] = lambda: registry
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
