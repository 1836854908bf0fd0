"""Test fixtures with a file-backed SQLite database via SQLModel."""

from __future__ import annotations

import json

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool
from sqlmodel import SQLModel

from assignmint.background import ExpansionScheduler
from assignmint.config import settings
from assignmint.database import get_db_session
from assignmint.db_models import Expert, Invite, Task  # noqa: F401
from assignmint.ids import expert_id as make_expert_id
from assignmint.main import app
from assignmint.rate_limit import limiter

ADMIN_KEY = "test-admin-key"


@pytest.fixture
async def db(tmp_path):
    # One connection per session so concurrent sessions really race
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        echo=False,
        poolclass=NullPool,
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    factory = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)  # type: ignore[call-overload]

    async def override_get_db_session():
        async with factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_get_db_session

    yield factory

    app.dependency_overrides.clear()
    await engine.dispose()


@pytest.fixture
async def session(db):
    async with db() as s:
        yield s


@pytest.fixture(autouse=True)
def _test_settings(monkeypatch):
    monkeypatch.setattr(settings, "admin_key", ADMIN_KEY)
    monkeypatch.setattr(settings, "scoring_weights", {})
    limiter.enabled = False
    yield
    limiter.enabled = True


@pytest.fixture
async def client(db):
    # ASGITransport skips the lifespan, so wire the scheduler by hand (stopped)
    scheduler = ExpansionScheduler(db, interval_seconds=0.05)
    app.state.scheduler = scheduler
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    await scheduler.stop()
    del app.state.scheduler


async def make_expert(
    session: AsyncSession,
    name: str = "expert",
    subjects: list[str] | None = None,
    min_price: float | None = None,
    max_price: float | None = None,
    rating_avg: float = 4.5,
    rating_count: int = 10,
    accept_rate: float = 0.8,
    median_response_minutes: float = 30.0,
    completed_by_subject: dict | None = None,
) -> Expert:
    """Helper: insert an expert with reputation stats already set."""
    expert = Expert(
        id=make_expert_id(),
        name=name,
        subjects=json.dumps(subjects if subjects is not None else ["Math"]),
        min_price=min_price,
        max_price=max_price,
        rating_avg=rating_avg,
        rating_count=rating_count,
        accept_rate=accept_rate,
        median_response_minutes=median_response_minutes,
        completed_by_subject=json.dumps(completed_by_subject or {}),
    )
    session.add(expert)
    await session.commit()
    return expert


async def register_expert(
    client: AsyncClient,
    name: str = "test-expert",
    subjects: list[str] | None = None,
    **fields,
) -> dict:
    """Helper: register an expert over HTTP, return {"expert_id", "api_key"}."""
    resp = await client.post(
        "/v1/experts",
        json={"name": name, "subjects": subjects or ["Math"], **fields},
        headers={"Accept": "application/json"},
    )
    assert resp.status_code == 201
    return resp.json()


async def set_stats(client: AsyncClient, expert_id: str, **stats) -> dict:
    """Helper: make an expert eligible by giving them rating history."""
    body = {"rating_avg": 4.5, "rating_count": 10, **stats}
    resp = await client.patch(f"/v1/admin/experts/{expert_id}", json=body, headers=admin_header())
    assert resp.status_code == 200
    return resp.json()


def auth_header(api_key: str) -> dict:
    return {"Authorization": f"Bearer {api_key}", "Accept": "application/json"}


def admin_header() -> dict:
    return auth_header(ADMIN_KEY)


@pytest.fixture
async def two_experts(client):
    """Register two eligible Math experts."""
    d1 = await register_expert(client, "alice", min_price=30, max_price=80)
    d2 = await register_expert(client, "bob", min_price=30, max_price=80)
    await set_stats(client, d1["expert_id"], rating_avg=4.8)
    await set_stats(client, d2["expert_id"], rating_avg=4.2)
    return {
        "client": client,
        "alice": {"id": d1["expert_id"], "key": d1["api_key"]},
        "bob": {"id": d2["expert_id"], "key": d2["api_key"]},
    }
