"""Coarse eligibility pre-filter for a task's candidate experts."""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession

from assignmint.config import settings
from assignmint.db_models import Expert, Task
from assignmint.scoring import expert_subjects
from assignmint.services.store import query_experts


async def get_eligible_experts(session: AsyncSession, task: Task) -> list[Expert]:
    """Experts listing the task's subject with enough rating history.

    Returns an empty list when nobody qualifies. Fine-grained fit is left to
    the scoring step.
    """
    candidates = await query_experts(
        session,
        # Subjects are a JSON list; LIKE narrows, the exact check below decides
        Expert.subjects.contains(f'"{task.subject}"'),
        Expert.rating_avg >= settings.eligible_min_rating,
        Expert.rating_count >= settings.eligible_min_rating_count,
    )
    return [e for e in candidates if task.subject in expert_subjects(e)]
