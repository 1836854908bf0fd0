"""Persistence primitives the matching engine is built on.

The engine only touches the database through these helpers. The linchpin is
``atomic_update_task``: a single conditional ``UPDATE`` whose WHERE clause
carries the caller's precondition, so check-and-mutate is atomic with respect
to every other writer of the same task row.
"""

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from assignmint.db_models import Expert, Invite, Task
from assignmint.errors import InviteNotFound, PreconditionFailed, TaskNotFound
from assignmint.utils import utcnow


async def get_task(session: AsyncSession, tid: str) -> Task:
    # populate_existing: conditional UPDATEs bypass the identity map
    task = await session.get(Task, tid, populate_existing=True)
    if not task:
        raise TaskNotFound()
    return task


async def query_experts(session: AsyncSession, *conditions) -> list[Expert]:
    result = await session.execute(
        select(Expert).where(*conditions).order_by(Expert.created_at.asc(), Expert.id.asc())
    )
    return list(result.scalars().all())


async def atomic_update_task(session: AsyncSession, tid: str, *expected, **mutation) -> None:
    """Apply ``mutation`` to task ``tid`` only if every ``expected`` clause holds.

    Raises PreconditionFailed when no row matched. The caller owns the commit.
    """
    mutation.setdefault("updated_at", utcnow())
    stmt = (
        update(Task)
        .where(Task.id == tid, *expected)
        .values(**mutation)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    if result.rowcount == 0:
        raise PreconditionFailed()


async def query_tasks(session: AsyncSession, *conditions, limit: int | None = None) -> list[Task]:
    query = select(Task).where(*conditions).order_by(Task.created_at.asc())
    # Sweeps may reuse a session that loaded these rows before a conditional UPDATE
    query = query.execution_options(populate_existing=True)
    if limit is not None:
        query = query.limit(limit)
    result = await session.execute(query)
    return list(result.scalars().all())


def create_invite(session: AsyncSession, invite: Invite) -> str:
    session.add(invite)
    return invite.id


async def get_invite(session: AsyncSession, iid: str) -> Invite:
    invite = await session.get(Invite, iid, populate_existing=True)
    if not invite:
        raise InviteNotFound()
    return invite


async def query_invites(session: AsyncSession, *conditions) -> list[Invite]:
    result = await session.execute(
        select(Invite).where(*conditions).order_by(Invite.sent_at.asc(), Invite.id.asc())
    )
    return list(result.scalars().all())


async def invited_expert_ids(session: AsyncSession, tid: str) -> set[str]:
    result = await session.execute(select(Invite.expert_id).where(Invite.task_id == tid))
    return {row[0] for row in result.fetchall()}


async def update_invite(session: AsyncSession, iid: str, *expected, **mutation) -> None:
    """Conditional invite update, same contract as ``atomic_update_task``."""
    stmt = (
        update(Invite)
        .where(Invite.id == iid, *expected)
        .values(**mutation)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    if result.rowcount == 0:
        raise PreconditionFailed()
