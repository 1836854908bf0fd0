"""Tests for soft claims, confirmation and reservation cancellation."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from assignmint.background import release_expired_reservations
from assignmint.db_models import Task, TaskStatus
from assignmint.errors import (
    NotReservedByExpert,
    PreconditionFailed,
    ReservationExpired,
    TaskClosed,
    TaskNotFound,
    TaskNotOpen,
    TooManyReservations,
)
from assignmint.services import reservations
from assignmint.services.reservations import (
    cancel_reservation,
    confirm_claim,
    count_active_reservations,
    get_task_reservation,
    soft_claim,
)
from assignmint.services.store import atomic_update_task, get_task
from assignmint.services.tasks import cancel_task, create_task
from assignmint.utils import ensure_utc, utcnow
from tests.conftest import make_expert


async def _task(session, subject="Math"):
    return await create_task(session, subject, 50.0, first_wave=False)


async def _expire(session, tid: str) -> None:
    """Backdate a live reservation so it has already lapsed."""
    await atomic_update_task(session, tid, reserved_until=utcnow() - timedelta(minutes=1))
    await session.commit()


@pytest.mark.asyncio
async def test_soft_claim_reserves_for_fifteen_minutes(session):
    e1 = await make_expert(session, "e1")
    task = await _task(session)

    before = utcnow()
    task = await soft_claim(session, task.id, e1.id)
    assert task.status == TaskStatus.reserved
    assert task.reserved_by == e1.id
    reserved_until = ensure_utc(task.reserved_until)
    assert before + timedelta(minutes=15) <= reserved_until <= utcnow() + timedelta(minutes=15)


@pytest.mark.asyncio
async def test_soft_claim_missing_task(session):
    e1 = await make_expert(session, "e1")
    with pytest.raises(TaskNotFound):
        await soft_claim(session, "tk_missing", e1.id)


@pytest.mark.asyncio
async def test_soft_claim_requires_open(session):
    e1 = await make_expert(session, "e1")
    e2 = await make_expert(session, "e2")
    task = await _task(session)
    await soft_claim(session, task.id, e1.id)

    with pytest.raises(TaskNotOpen, match="reserved"):
        await soft_claim(session, task.id, e2.id)
    # Holding it already does not let the same expert reserve it twice
    with pytest.raises(TaskNotOpen):
        await soft_claim(session, task.id, e1.id)


@pytest.mark.asyncio
async def test_reservation_cap(session):
    e1 = await make_expert(session, "e1")
    tasks = [await _task(session) for _ in range(4)]

    for task in tasks[:3]:
        await soft_claim(session, task.id, e1.id)
    assert await count_active_reservations(session, e1.id) == 3

    with pytest.raises(TooManyReservations) as exc_info:
        await soft_claim(session, tasks[3].id, e1.id)
    assert exc_info.value.limit == 3
    assert (await get_task(session, tasks[3].id)).status == TaskStatus.open

    # An expired hold no longer counts toward the cap
    await _expire(session, tasks[0].id)
    assert await count_active_reservations(session, e1.id) == 2
    await soft_claim(session, tasks[3].id, e1.id)


@pytest.mark.asyncio
async def test_concurrent_soft_claims_only_one_wins(db):
    async with db() as s:
        experts = [await make_expert(s, f"e{i}") for i in range(3)]
        task = await _task(s)

    async def claim(expert_id):
        async with db() as s:
            return await soft_claim(s, task.id, expert_id)

    results = await asyncio.gather(*(claim(e.id) for e in experts), return_exceptions=True)

    winners = [r for r in results if isinstance(r, Task)]
    losers = [r for r in results if not isinstance(r, Task)]
    assert len(winners) == 1
    assert all(isinstance(r, TaskNotOpen) for r in losers), losers

    async with db() as s:
        stored = await get_task(s, task.id)
    assert stored.status == TaskStatus.reserved
    assert stored.reserved_by == winners[0].reserved_by


@pytest.mark.asyncio
async def test_confirm_claim(session):
    e1 = await make_expert(session, "e1")
    task = await _task(session)
    await soft_claim(session, task.id, e1.id)

    with pytest.raises(NotReservedByExpert):
        await confirm_claim(session, task.id, "someone-else")

    task = await confirm_claim(session, task.id, e1.id)
    assert task.status == TaskStatus.claimed
    assert task.expert_id == e1.id
    assert task.claimed_at is not None
    assert task.reserved_by is None
    assert task.reserved_until is None
    assert task.next_wave_at is None


@pytest.mark.asyncio
async def test_confirm_claim_only_once(db):
    async with db() as s:
        e1 = await make_expert(s, "e1")
        task = await _task(s)
        await soft_claim(s, task.id, e1.id)

    async def confirm():
        async with db() as s:
            return await confirm_claim(s, task.id, e1.id)

    results = await asyncio.gather(confirm(), confirm(), return_exceptions=True)
    assert sum(isinstance(r, Task) for r in results) == 1
    assert any(isinstance(r, NotReservedByExpert) for r in results)


@pytest.mark.asyncio
async def test_confirm_requires_reservation(session):
    e1 = await make_expert(session, "e1")
    task = await _task(session)
    with pytest.raises(NotReservedByExpert):
        await confirm_claim(session, task.id, e1.id)


@pytest.mark.asyncio
async def test_expired_reservation(session):
    e1 = await make_expert(session, "e1")
    e2 = await make_expert(session, "e2")
    task = await _task(session)
    await soft_claim(session, task.id, e1.id)
    await _expire(session, task.id)

    with pytest.raises(ReservationExpired):
        await confirm_claim(session, task.id, e1.id)
    with pytest.raises(ReservationExpired):
        await cancel_reservation(session, task.id, e1.id)
    # Lapsed but not yet swept: still not open
    with pytest.raises(TaskNotOpen):
        await soft_claim(session, task.id, e2.id)

    assert await release_expired_reservations(session) == 1
    task = await soft_claim(session, task.id, e2.id)
    assert task.reserved_by == e2.id


@pytest.mark.asyncio
async def test_cancel_reservation(session):
    e1 = await make_expert(session, "e1")
    e2 = await make_expert(session, "e2")
    task = await _task(session)
    await soft_claim(session, task.id, e1.id)

    with pytest.raises(NotReservedByExpert):
        await cancel_reservation(session, task.id, e2.id)

    task = await cancel_reservation(session, task.id, e1.id)
    assert task.status == TaskStatus.open
    assert task.reserved_by is None
    assert task.reserved_until is None
    assert await count_active_reservations(session, e1.id) == 0

    task = await soft_claim(session, task.id, e2.id)
    assert task.reserved_by == e2.id


@pytest.mark.asyncio
async def test_get_task_reservation(session):
    e1 = await make_expert(session, "e1")
    task = await _task(session)
    assert await get_task_reservation(session, task.id) is None

    await soft_claim(session, task.id, e1.id)
    held = await get_task_reservation(session, task.id)
    assert held["reserved_by"] == e1.id
    assert 14 * 60_000 < held["time_remaining_ms"] <= 15 * 60_000

    await _expire(session, task.id)
    held = await get_task_reservation(session, task.id)
    assert held["time_remaining_ms"] == 0

    with pytest.raises(TaskNotFound):
        await get_task_reservation(session, "tk_missing")


@pytest.mark.asyncio
async def test_cancel_task(session):
    e1 = await make_expert(session, "e1")
    reserved = await _task(session)
    claimed = await _task(session)
    await soft_claim(session, reserved.id, e1.id)
    await soft_claim(session, claimed.id, e1.id)
    await confirm_claim(session, claimed.id, e1.id)

    task = await cancel_task(session, reserved.id)
    assert task.status == TaskStatus.cancelled
    assert task.reserved_by is None

    with pytest.raises(TaskClosed):
        await cancel_task(session, claimed.id)
    with pytest.raises(TaskNotOpen):
        await soft_claim(session, reserved.id, e1.id)


# ---------------------------------------------------------------------------
# Lost conditional writes
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_soft_claim_retries_lost_write_once(session, monkeypatch):
    expert_id = (await make_expert(session, "e1")).id
    tid = (await _task(session)).id
    calls = []

    async def lose_first(session, tid, *expected, **mutation):
        calls.append(tid)
        if len(calls) == 1:
            raise PreconditionFailed()
        await atomic_update_task(session, tid, *expected, **mutation)

    monkeypatch.setattr(reservations, "atomic_update_task", lose_first)
    held = await soft_claim(session, tid, expert_id)

    assert len(calls) == 2
    assert held.status == TaskStatus.reserved
    assert held.reserved_by == expert_id


@pytest.mark.asyncio
async def test_soft_claim_gives_up_after_second_lost_write(session, monkeypatch):
    expert_id = (await make_expert(session, "e1")).id
    tid = (await _task(session)).id
    calls = []

    async def always_lose(session, tid, *expected, **mutation):
        calls.append(tid)
        raise PreconditionFailed()

    monkeypatch.setattr(reservations, "atomic_update_task", always_lose)
    with pytest.raises(PreconditionFailed):
        await soft_claim(session, tid, expert_id)

    assert len(calls) == 2
    assert (await get_task(session, tid)).status == TaskStatus.open
