# tests/conftest.py
import math

import pytest
from httpx import AsyncClient, ASGITransport
from asgi_lifespan import LifespanManager

from karuna.core.security import create_token
from karuna.deps import get_repo
from karuna.main import app
from karuna.repos.inmemory import InMemoryRepo

ORIGIN = {"lat": 14.5995, "lng": 120.9842}

def north_of(point: dict, meters: float) -> dict:
    """Point `meters` due north of `point` (haversine along a meridian)."""
    return {"lat": point["lat"] + math.degrees(meters / 6_371_000.0), "lng": point["lng"]}

def as_latlon(point: dict) -> dict:
    return {"latitude": point["lat"], "longitude": point["lng"]}

@pytest.fixture(scope="session")
def anyio_backend():
    # keep AnyIO on asyncio for the whole test session
    return "asyncio"

@pytest.fixture
def repo():
    return InMemoryRepo()

@pytest.fixture
async def test_client(repo):
    app.dependency_overrides[get_repo] = lambda: repo
    async with LifespanManager(app):
        transport = ASGITransport(app=app, raise_app_exceptions=True)
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            yield ac
    app.dependency_overrides.clear()

@pytest.fixture
def auth_headers():
    tok = create_token({"sub": "user-1", "role": "citizen"}, minutes=30)
    return {"Authorization": f"Bearer {tok}"}

@pytest.fixture
def facilitator_headers():
    tok = create_token({"sub": "fac-1", "role": "facilitator"}, minutes=30)
    return {"Authorization": f"Bearer {tok}"}
