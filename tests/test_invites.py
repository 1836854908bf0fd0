"""Tests for candidate selection and invite waves."""

from __future__ import annotations

from datetime import timedelta

import pytest

from assignmint.db_models import InviteStatus
from assignmint.errors import (
    InviteClosed,
    InviteNotFound,
    PreconditionFailed,
    TaskNotFound,
    Unauthorized,
)
from assignmint.events import event_bus
from assignmint.services import invites as invite_service
from assignmint.services.candidates import get_eligible_experts
from assignmint.services.invites import (
    get_expert_invites,
    get_task_invites,
    issue_wave,
    update_invite_status,
)
from assignmint.services.store import atomic_update_task, get_task
from assignmint.services.tasks import create_task
from assignmint.utils import ensure_utc, utcnow
from tests.conftest import make_expert


async def _task(session, subject="Math", price=50.0, **kw):
    return await create_task(
        session,
        subject,
        price,
        deadline_at=utcnow() + timedelta(hours=48),
        first_wave=False,
        **kw,
    )


# ---------------------------------------------------------------------------
# Candidate selection
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_eligible_by_subject(session):
    e1 = await make_expert(session, "e1", ["Math"], 30, 80, rating_avg=4.8)
    await make_expert(session, "e2", ["History"])
    task = await _task(session)

    eligible = await get_eligible_experts(session, task)
    assert [e.id for e in eligible] == [e1.id]


@pytest.mark.asyncio
async def test_eligibility_needs_rating_history(session):
    await make_expert(session, "low", ["Math"], rating_avg=2.5)
    await make_expert(session, "new", ["Math"], rating_count=1)
    ok = await make_expert(session, "ok", ["Math"], rating_avg=3.0, rating_count=3)
    task = await _task(session)

    eligible = await get_eligible_experts(session, task)
    assert [e.id for e in eligible] == [ok.id]


@pytest.mark.asyncio
async def test_eligibility_matches_whole_subject(session):
    await make_expert(session, "applied", ["Applied Math"])
    task = await _task(session)
    assert await get_eligible_experts(session, task) == []


# ---------------------------------------------------------------------------
# Waves
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_first_wave_invites_eligible_expert(session):
    e1 = await make_expert(session, "e1", ["Math"], 30, 80, rating_avg=4.8)
    await make_expert(session, "e2", ["History"])
    task = await _task(session)

    before = utcnow()
    invites = await issue_wave(session, task.id)
    assert len(invites) == 1
    assert invites[0].expert_id == e1.id
    assert invites[0].status == InviteStatus.sent
    assert invites[0].wave == 1
    assert invites[0].score > 0

    task = await get_task(session, task.id)
    assert task.invited_now == 1
    assert task.current_wave == 1
    next_wave_at = ensure_utc(task.next_wave_at)
    assert before + timedelta(minutes=14) < next_wave_at <= utcnow() + timedelta(minutes=15)


@pytest.mark.asyncio
async def test_waves_invite_best_first_without_repeats(session):
    best = await make_expert(session, "best", ["Math"], rating_avg=4.9)
    mid = await make_expert(session, "mid", ["Math"], rating_avg=4.3)
    low = await make_expert(session, "low", ["Math"], rating_avg=3.6)
    task = await _task(session)

    first = await issue_wave(session, task.id, 2)
    assert [i.expert_id for i in first] == [best.id, mid.id]

    second = await issue_wave(session, task.id, 2)
    assert [i.expert_id for i in second] == [low.id]
    assert second[0].wave == 2

    task = await get_task(session, task.id)
    assert task.invited_now == 3
    assert task.current_wave == 2

    invites = await get_task_invites(session, task.id)
    assert len({i.expert_id for i in invites}) == 3


@pytest.mark.asyncio
async def test_exhausted_pool_stops_expansion(session):
    await make_expert(session, "only", ["Math"])
    task = await _task(session)

    assert len(await issue_wave(session, task.id)) == 1
    assert await issue_wave(session, task.id) == []

    task = await get_task(session, task.id)
    assert task.next_wave_at is None
    assert task.current_wave == 1
    assert task.invited_now == 1


@pytest.mark.asyncio
async def test_wave_for_unknown_task(session):
    with pytest.raises(TaskNotFound):
        await issue_wave(session, "tk_missing")


@pytest.mark.asyncio
async def test_no_candidates_sends_nothing(session):
    task = await _task(session, subject="Chemistry")
    assert await issue_wave(session, task.id) == []
    task = await get_task(session, task.id)
    assert task.current_wave == 0
    assert task.invited_now == 0


@pytest.mark.asyncio
async def test_notification_failure_keeps_invites(session, monkeypatch):
    await make_expert(session, "e1", ["Math"])
    task = await _task(session)

    def broken_publish(expert_id, event):
        raise RuntimeError("bus down")

    monkeypatch.setattr(event_bus, "publish", broken_publish)
    invites = await issue_wave(session, task.id)
    assert len(invites) == 1
    assert len(await get_task_invites(session, task.id)) == 1


@pytest.mark.asyncio
async def test_wave_publishes_invite_event(session):
    e1 = await make_expert(session, "e1", ["Math"])
    task = await _task(session)

    queue = event_bus.subscribe(e1.id)
    try:
        invites = await issue_wave(session, task.id)
        event = queue.get_nowait()
    finally:
        event_bus.unsubscribe(e1.id, queue)

    assert event.type == "task_invite"
    assert event.task_id == task.id
    assert event.data["invite_id"] == invites[0].id


@pytest.mark.asyncio
async def test_wave_retries_lost_write_once(session, monkeypatch):
    expert_id = (await make_expert(session, "e1")).id
    tid = (await _task(session)).id
    calls = []

    async def lose_first(session, tid, *expected, **mutation):
        calls.append(tid)
        if len(calls) == 1:
            raise PreconditionFailed()
        await atomic_update_task(session, tid, *expected, **mutation)

    monkeypatch.setattr(invite_service, "atomic_update_task", lose_first)
    invites = await issue_wave(session, tid)

    assert len(calls) == 2
    assert [i.expert_id for i in invites] == [expert_id]
    # The first attempt's invites were rolled back
    assert len(await get_task_invites(session, tid)) == 1
    task = await get_task(session, tid)
    assert task.current_wave == 1
    assert task.invited_now == 1


@pytest.mark.asyncio
async def test_create_task_sends_first_wave(session):
    await make_expert(session, "e1", ["Math"])
    task = await create_task(session, "Math", 40.0)
    assert task.current_wave == 1
    assert task.invited_now == 1


# ---------------------------------------------------------------------------
# Invite responses
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_accept_invite(session):
    e1 = await make_expert(session, "e1", ["Math"])
    task = await _task(session)
    [invite] = await issue_wave(session, task.id)

    updated = await update_invite_status(session, invite.id, InviteStatus.accepted, e1.id)
    assert updated.status == InviteStatus.accepted
    assert updated.responded_at is not None


@pytest.mark.asyncio
async def test_invite_response_errors(session):
    e1 = await make_expert(session, "e1", ["Math"])
    other = await make_expert(session, "other", ["History"])
    task = await _task(session)
    [invite] = await issue_wave(session, task.id)

    with pytest.raises(InviteNotFound):
        await update_invite_status(session, "iv_missing", "accepted", e1.id)
    with pytest.raises(Unauthorized):
        await update_invite_status(session, invite.id, "accepted", other.id)
    with pytest.raises(ValueError):
        await update_invite_status(session, invite.id, "sent", e1.id)

    await update_invite_status(session, invite.id, "declined", e1.id)
    with pytest.raises(InviteClosed):
        await update_invite_status(session, invite.id, "accepted", e1.id)


@pytest.mark.asyncio
async def test_expert_invites_filter(session):
    e1 = await make_expert(session, "e1", ["Math"])
    t1 = await _task(session)
    t2 = await _task(session)
    [i1] = await issue_wave(session, t1.id)
    await issue_wave(session, t2.id)
    await update_invite_status(session, i1.id, "accepted", e1.id)

    assert len(await get_expert_invites(session, e1.id)) == 2
    sent = await get_expert_invites(session, e1.id, "sent")
    assert [i.task_id for i in sent] == [t2.id]
    accepted = await get_expert_invites(session, e1.id, InviteStatus.accepted)
    assert [i.task_id for i in accepted] == [t1.id]
