"""Invite waves: rank eligible experts, persist invites, advance matching metadata."""

from __future__ import annotations

import logging
from datetime import timedelta

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from assignmint.config import settings
from assignmint.db_models import Invite, InviteStatus, Task
from assignmint.errors import InviteClosed, PreconditionFailed, Unauthorized
from assignmint.events import Event, event_bus
from assignmint.ids import invite_id as make_invite_id
from assignmint.scoring import rank_experts
from assignmint.services.candidates import get_eligible_experts
from assignmint.services.store import (
    atomic_update_task,
    create_invite,
    get_invite,
    get_task,
    invited_expert_ids,
    query_invites,
    update_invite,
)
from assignmint.utils import isoformat, status_str, utcnow

logger = logging.getLogger("assignmint.invites")

RESPONSE_STATUSES = (InviteStatus.accepted, InviteStatus.declined)


def invite_to_dict(invite: Invite) -> dict:
    return {
        "invite_id": invite.id,
        "task_id": invite.task_id,
        "expert_id": invite.expert_id,
        "wave": invite.wave,
        "score": round(invite.score, 4),
        "status": status_str(invite.status),
        "sent_at": isoformat(invite.sent_at),
        "responded_at": isoformat(invite.responded_at),
    }


async def issue_wave(
    session: AsyncSession, tid: str, max_invites: int | None = None
) -> list[Invite]:
    """Invite the next-best uninvited experts for a task.

    Invites and the task's matching metadata are written in one transaction,
    guarded by the task's current wave number so two concurrent waves cannot
    both apply. A lost race is retried once against fresh state.
    """
    if max_invites is None:
        max_invites = settings.default_wave_size
    try:
        invites = await _write_wave(session, tid, max_invites)
    except (PreconditionFailed, OperationalError) as exc:
        await session.rollback()
        logger.info("Wave for task %s hit %s, retrying", tid, type(exc).__name__)
        invites = await _write_wave(session, tid, max_invites)

    if invites:
        _notify_invites(invites)
    return invites


async def _write_wave(session: AsyncSession, tid: str, max_invites: int) -> list[Invite]:
    task = await get_task(session, tid)

    experts = await get_eligible_experts(session, task)
    if not experts:
        logger.info("No eligible experts for task %s (%s)", tid, task.subject)
        return []

    now = utcnow()
    already_invited = await invited_expert_ids(session, tid)
    ranked = rank_experts(task, experts, settings.scoring_weights, now)
    selected = [r for r in ranked if r.expert.id not in already_invited][: max(max_invites, 0)]

    if not selected:
        await _mark_exhausted(session, task)
        return []

    wave = task.current_wave + 1
    invites = [
        Invite(
            id=make_invite_id(),
            task_id=tid,
            expert_id=r.expert.id,
            wave=wave,
            score=r.total,
            status=InviteStatus.sent,
            sent_at=now,
        )
        for r in selected
    ]
    for invite in invites:
        create_invite(session, invite)

    try:
        await atomic_update_task(
            session,
            tid,
            Task.current_wave == task.current_wave,
            invited_now=Task.invited_now + len(invites),
            current_wave=wave,
            next_wave_at=now + timedelta(minutes=settings.wave_interval_minutes),
        )
        await session.commit()
    except IntegrityError as exc:
        # Another wave invited one of these experts first
        raise PreconditionFailed() from exc

    logger.info(
        "Issued wave %d for task %s: %d invites (%s)",
        wave,
        tid,
        len(invites),
        ", ".join(i.expert_id for i in invites),
    )
    return invites


async def _mark_exhausted(session: AsyncSession, task: Task) -> None:
    """Nobody left to invite: clear next_wave_at so expansion stops revisiting."""
    if task.next_wave_at is None:
        return
    try:
        await atomic_update_task(
            session, task.id, Task.current_wave == task.current_wave, next_wave_at=None
        )
    except PreconditionFailed:
        # A concurrent wave moved the task on; its schedule stands
        await session.rollback()
        return
    await session.commit()
    logger.info("Candidate pool exhausted for task %s after wave %d", task.id, task.current_wave)


def _notify_invites(invites: list[Invite]) -> None:
    """Best-effort notification. Never fails the wave that created the invites."""
    for invite in invites:
        try:
            event_bus.publish(
                invite.expert_id,
                Event(
                    type="task_invite",
                    task_id=invite.task_id,
                    data={"invite_id": invite.id, "wave": invite.wave, "score": invite.score},
                ),
            )
        except Exception:
            logger.exception(
                "Failed to notify expert %s of invite %s", invite.expert_id, invite.id
            )


async def update_invite_status(
    session: AsyncSession, iid: str, status: InviteStatus | str, expert_id: str
) -> Invite:
    """Record the addressed expert's answer to an invite."""
    status = InviteStatus(status)
    if status not in RESPONSE_STATUSES:
        raise ValueError(f"Invite status must be accepted or declined, not {status.value}")

    invite = await get_invite(session, iid)
    if invite.expert_id != expert_id:
        raise Unauthorized()
    if invite.status != InviteStatus.sent:
        raise InviteClosed(status_str(invite.status))

    try:
        await update_invite(
            session,
            iid,
            Invite.expert_id == expert_id,
            Invite.status == InviteStatus.sent,
            status=status,
            responded_at=utcnow(),
        )
    except PreconditionFailed:
        await session.rollback()
        invite = await get_invite(session, iid)
        raise InviteClosed(status_str(invite.status)) from None
    await session.commit()

    logger.info("Invite %s %s by expert %s", iid, status.value, expert_id)
    return await get_invite(session, iid)


async def get_task_invites(session: AsyncSession, tid: str) -> list[Invite]:
    return await query_invites(session, Invite.task_id == tid)


async def get_expert_invites(
    session: AsyncSession, expert_id: str, status: InviteStatus | str | None = None
) -> list[Invite]:
    conditions = [Invite.expert_id == expert_id]
    if status is not None:
        conditions.append(Invite.status == InviteStatus(status))
    return await query_invites(session, *conditions)
