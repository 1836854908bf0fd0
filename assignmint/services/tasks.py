"""Task intake and cancellation for the service-facing API."""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from assignmint.db_models import Task, TaskStatus
from assignmint.errors import PreconditionFailed, TaskClosed
from assignmint.ids import task_id as make_task_id
from assignmint.services.invites import issue_wave
from assignmint.services.store import atomic_update_task, get_task
from assignmint.utils import ensure_utc, isoformat, status_str, utcnow

logger = logging.getLogger("assignmint.tasks")

CANCELLABLE = (TaskStatus.open, TaskStatus.reserved)


def task_to_dict(task: Task) -> dict:
    reservation = None
    if task.status == TaskStatus.reserved:
        reserved_until = ensure_utc(task.reserved_until)
        remaining = (reserved_until - utcnow()).total_seconds() if reserved_until else 0
        reservation = {
            "reserved_by": task.reserved_by,
            "reserved_until": isoformat(reserved_until),
            "time_remaining_ms": max(0, int(remaining * 1000)),
        }
    return {
        "task_id": task.id,
        "title": task.title,
        "description": task.description,
        "subject": task.subject,
        "price": task.price,
        "deadline_at": isoformat(task.deadline_at),
        "status": status_str(task.status),
        "poster_id": task.poster_id,
        "expert_id": task.expert_id,
        "reservation": reservation,
        "matching": {
            "invited_now": task.invited_now,
            "current_wave": task.current_wave,
            "next_wave_at": isoformat(task.next_wave_at),
        },
        "created_at": isoformat(task.created_at),
        "claimed_at": isoformat(task.claimed_at),
    }


async def create_task(
    session: AsyncSession,
    subject: str,
    price: float,
    deadline_at: datetime | None = None,
    title: str = "",
    description: str | None = None,
    poster_id: str | None = None,
    first_wave: bool = True,
) -> Task:
    """Store a new open task and send its first invite wave."""
    task = Task(
        id=make_task_id(),
        poster_id=poster_id,
        title=title,
        description=description,
        subject=subject,
        price=price,
        deadline_at=deadline_at,
        status=TaskStatus.open,
    )
    session.add(task)
    await session.commit()
    logger.info("Created task %s (%s, %.2f)", task.id, subject, price)

    if first_wave:
        await issue_wave(session, task.id)
    return await get_task(session, task.id)


async def cancel_task(session: AsyncSession, tid: str) -> Task:
    """Withdraw a task that nobody has claimed yet, dropping any live hold."""
    task = await get_task(session, tid)
    if task.status not in CANCELLABLE:
        raise TaskClosed(status_str(task.status))

    try:
        await atomic_update_task(
            session,
            tid,
            Task.status.in_(CANCELLABLE),
            status=TaskStatus.cancelled,
            reserved_by=None,
            reserved_until=None,
            next_wave_at=None,
        )
    except PreconditionFailed:
        await session.rollback()
        task = await get_task(session, tid)
        raise TaskClosed(status_str(task.status)) from None
    await session.commit()

    logger.info("Cancelled task %s", tid)
    return await get_task(session, tid)
