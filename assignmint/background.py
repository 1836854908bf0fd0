"""Background sweeps: release expired reservations, widen invite waves."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import sessionmaker

from assignmint.config import settings
from assignmint.db_models import Task, TaskStatus
from assignmint.errors import PreconditionFailed
from assignmint.services.invites import issue_wave
from assignmint.services.store import atomic_update_task, query_tasks
from assignmint.utils import utcnow

logger = logging.getLogger("assignmint.background")

SweepJob = Callable[[AsyncSession], Awaitable[int]]


async def release_expired_reservations(session: AsyncSession) -> int:
    """Return tasks whose hold lapsed to ``open``.

    Each row is re-checked inside its UPDATE, so a task confirmed or
    re-reserved after the query is left alone.
    """
    now = utcnow()
    tasks = await query_tasks(
        session, Task.status == TaskStatus.reserved, Task.reserved_until < now
    )

    released = 0
    for task in tasks:
        try:
            await atomic_update_task(
                session,
                task.id,
                Task.status == TaskStatus.reserved,
                Task.reserved_until < now,
                status=TaskStatus.open,
                reserved_by=None,
                reserved_until=None,
            )
        except PreconditionFailed:
            logger.debug("Task %s changed before release, skipping", task.id)
            continue
        except Exception:
            logger.exception("Failed to release reservation on task %s", task.id)
            continue
        released += 1
        logger.info("Released expired reservation on task %s (was %s)", task.id, task.reserved_by)

    if released:
        await session.commit()
    return released


def wave_size_for(task: Task) -> int:
    """Invites to send in the task's next wave.

    ``wave_targets`` are cumulative totals. The next wave tops the task up to
    the first target above ``invited_now``, never past the invite ceiling.
    Zero means every target has been reached.
    """
    targets = settings.wave_targets or [settings.default_wave_size]
    for target in targets:
        target = min(target, settings.invite_ceiling)
        if target > task.invited_now:
            return target - task.invited_now
    return 0


async def _finish_expansion(session: AsyncSession, tid: str, invited_now: int) -> None:
    """Take a task that reached its last wave target off the expansion schedule."""
    try:
        await atomic_update_task(session, tid, Task.invited_now == invited_now, next_wave_at=None)
    except PreconditionFailed:
        # A concurrent wave moved the task on; its schedule stands
        await session.rollback()
        return
    await session.commit()
    logger.info("Task %s reached its last wave target (%d invited)", tid, invited_now)


async def process_expansions(session: AsyncSession) -> int:
    """Send the next wave for open tasks whose ``next_wave_at`` has passed."""
    now = utcnow()
    tasks = await query_tasks(
        session,
        Task.status == TaskStatus.open,
        Task.next_wave_at != None,  # noqa: E711
        Task.next_wave_at <= now,
    )

    # A rollback expires every loaded row, so read what the loop needs up front
    due = [(task.id, task.invited_now, wave_size_for(task)) for task in tasks]

    expanded = 0
    for tid, invited_now, size in due:
        try:
            if size == 0:
                await _finish_expansion(session, tid, invited_now)
                continue
            invites = await issue_wave(session, tid, size)
        except Exception:
            await session.rollback()
            logger.exception("Ring expansion failed for task %s", tid)
            continue
        if invites:
            expanded += 1
            logger.info("Expanded task %s to wave %d (+%d)", tid, invites[0].wave, len(invites))
    return expanded


class ExpansionScheduler:
    """Owns the two periodic sweep loops.

    ``start()`` is a no-op while running. ``stop()`` wakes sleeping loops at
    once and waits for any sweep already in flight to finish, so no store call
    is started after it returns.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        *,
        interval_seconds: float | None = None,
        release_job: SweepJob = release_expired_reservations,
        expand_job: SweepJob = process_expansions,
    ) -> None:
        self._session_factory = session_factory
        self.interval_seconds = (
            settings.scheduler_interval_seconds if interval_seconds is None else interval_seconds
        )
        self._jobs: dict[str, SweepJob] = {"release": release_job, "expand": expand_job}
        self._tasks: list[asyncio.Task] = []
        self._stopping = asyncio.Event()

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    def start(self) -> None:
        if self._tasks:
            return
        self._stopping = asyncio.Event()
        self._tasks = [
            asyncio.create_task(self._loop(name, job), name=f"assignmint-{name}")
            for name, job in self._jobs.items()
        ]
        logger.info("Scheduler started (every %ss)", self.interval_seconds)

    async def stop(self) -> None:
        if not self._tasks:
            return
        self._stopping.set()
        tasks, self._tasks = self._tasks, []
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Scheduler stopped")

    def status(self) -> dict:
        return {
            "running": self.running,
            "jobs": len(self._tasks),
            "interval_seconds": self.interval_seconds,
        }

    async def run_once(self) -> dict[str, int]:
        """Run both sweeps immediately, in order."""
        counts = {}
        for name, job in self._jobs.items():
            counts[name] = await self._run_job(name, job)
        return counts

    async def _run_job(self, name: str, job: SweepJob) -> int:
        try:
            async with self._session_factory() as session:
                count = await job(session)
        except Exception:
            logger.exception("Background %s sweep error", name)
            return 0
        if count:
            logger.info("BG %s: %d", name, count)
        return count

    async def _loop(self, name: str, job: SweepJob) -> None:
        stopping = self._stopping
        while not stopping.is_set():
            await self._run_job(name, job)
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(stopping.wait(), timeout=self.interval_seconds)
