"""Soft-claim reservations: open -> reserved -> claimed, reserved -> open on expiry/cancel.

Each transition is one conditional UPDATE whose WHERE clause re-checks the
precondition, so two experts can never both hold or claim the same task.
When a conditional write matches no row the task is re-read to explain why;
if the fresh state still satisfies the precondition the failure was transient
and the operation is retried once from scratch.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from typing import TypeVar

from sqlalchemy import func
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased
from sqlmodel import select

from assignmint.config import settings
from assignmint.db_models import Task, TaskStatus
from assignmint.errors import (
    NotReservedByExpert,
    PreconditionFailed,
    ReservationExpired,
    TaskNotOpen,
    TooManyReservations,
)
from assignmint.services.store import atomic_update_task, get_task
from assignmint.utils import ensure_utc, isoformat, status_str, utcnow

logger = logging.getLogger("assignmint.reservations")

T = TypeVar("T")

_CLEARED = {"reserved_by": None, "reserved_until": None}


async def _retry_once(session: AsyncSession, op: Callable[[], Awaitable[T]], label: str) -> T:
    """Run ``op``; on a transient store failure roll back and run it once more."""
    try:
        return await op()
    except (PreconditionFailed, OperationalError) as exc:
        await session.rollback()
        logger.info("%s hit a transient failure (%s), retrying once", label, type(exc).__name__)
    return await op()


def _active_hold_count(expert_id: str, now: datetime):
    """Scalar subquery: the expert's unexpired reservations across all tasks."""
    held = aliased(Task)
    return (
        select(func.count())
        .select_from(held)
        .where(
            held.reserved_by == expert_id,
            held.status == TaskStatus.reserved,
            held.reserved_until > now,
        )
        .scalar_subquery()
    )


async def count_active_reservations(session: AsyncSession, expert_id: str) -> int:
    result = await session.execute(select(_active_hold_count(expert_id, utcnow())))
    return result.scalar_one()


def _check_holder(task: Task, expert_id: str, now: datetime) -> None:
    if task.status != TaskStatus.reserved or task.reserved_by != expert_id:
        raise NotReservedByExpert()
    reserved_until = ensure_utc(task.reserved_until)
    if reserved_until is None or now >= reserved_until:
        raise ReservationExpired()


def _holder_conditions(expert_id: str, now: datetime) -> tuple:
    return (
        Task.status == TaskStatus.reserved,
        Task.reserved_by == expert_id,
        Task.reserved_until > now,
    )


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


async def soft_claim(session: AsyncSession, tid: str, expert_id: str) -> Task:
    """Reserve an open task for ``expert_id`` for the configured hold window."""

    async def attempt() -> Task:
        task = await get_task(session, tid)
        if task.status != TaskStatus.open:
            raise TaskNotOpen(status_str(task.status))

        limit = settings.max_active_reservations
        now = utcnow()
        if await count_active_reservations(session, expert_id) >= limit:
            raise TooManyReservations(limit)

        reserved_until = now + timedelta(minutes=settings.reservation_minutes)
        try:
            await atomic_update_task(
                session,
                tid,
                Task.status == TaskStatus.open,
                _active_hold_count(expert_id, now) < limit,
                status=TaskStatus.reserved,
                reserved_by=expert_id,
                reserved_until=reserved_until,
            )
        except PreconditionFailed:
            await session.rollback()
            await _explain_soft_claim_miss(session, tid, expert_id)
            raise
        await session.commit()
        return await get_task(session, tid)

    task = await _retry_once(session, attempt, f"soft_claim({tid})")
    logger.info(
        "Task %s soft-claimed by expert %s until %s", tid, expert_id, isoformat(task.reserved_until)
    )
    return task


async def _explain_soft_claim_miss(session: AsyncSession, tid: str, expert_id: str) -> None:
    """Turn a lost conditional write into the precise domain error, if any."""
    task = await get_task(session, tid)
    if task.status != TaskStatus.open:
        raise TaskNotOpen(status_str(task.status))
    limit = settings.max_active_reservations
    if await count_active_reservations(session, expert_id) >= limit:
        raise TooManyReservations(limit)


async def confirm_claim(session: AsyncSession, tid: str, expert_id: str) -> Task:
    """Turn the expert's live reservation into a permanent assignment."""

    async def attempt() -> Task:
        now = utcnow()
        task = await get_task(session, tid)
        _check_holder(task, expert_id, now)
        try:
            await atomic_update_task(
                session,
                tid,
                *_holder_conditions(expert_id, now),
                status=TaskStatus.claimed,
                expert_id=expert_id,
                claimed_at=now,
                next_wave_at=None,
                **_CLEARED,
            )
        except PreconditionFailed:
            await session.rollback()
            _check_holder(await get_task(session, tid), expert_id, utcnow())
            raise
        await session.commit()
        return await get_task(session, tid)

    task = await _retry_once(session, attempt, f"confirm_claim({tid})")
    logger.info("Task %s claimed by expert %s", tid, expert_id)
    return task


async def cancel_reservation(session: AsyncSession, tid: str, expert_id: str) -> Task:
    """Give a live reservation back; the task returns to ``open``."""

    async def attempt() -> Task:
        now = utcnow()
        task = await get_task(session, tid)
        _check_holder(task, expert_id, now)
        try:
            await atomic_update_task(
                session,
                tid,
                *_holder_conditions(expert_id, now),
                status=TaskStatus.open,
                **_CLEARED,
            )
        except PreconditionFailed:
            await session.rollback()
            _check_holder(await get_task(session, tid), expert_id, utcnow())
            raise
        await session.commit()
        return await get_task(session, tid)

    task = await _retry_once(session, attempt, f"cancel_reservation({tid})")
    logger.info("Reservation on task %s cancelled by expert %s", tid, expert_id)
    return task


async def get_task_reservation(session: AsyncSession, tid: str) -> dict | None:
    """Current hold on a task with its countdown, or None when not reserved."""
    task = await get_task(session, tid)
    if task.status != TaskStatus.reserved:
        return None

    reserved_until = ensure_utc(task.reserved_until)
    remaining_ms = 0
    if reserved_until is not None:
        remaining_ms = max(0, int((reserved_until - utcnow()).total_seconds() * 1000))
    return {
        "task_id": task.id,
        "reserved_by": task.reserved_by,
        "reserved_until": isoformat(reserved_until),
        "time_remaining_ms": remaining_ms,
    }
