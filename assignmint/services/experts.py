"""Expert registration and profile upkeep."""

from __future__ import annotations

import json
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from assignmint.auth import hash_key, key_fingerprint
from assignmint.db_models import Expert
from assignmint.ids import api_key
from assignmint.ids import expert_id as make_expert_id
from assignmint.scoring import expert_subjects
from assignmint.utils import isoformat, safe_json_loads

logger = logging.getLogger("assignmint.experts")

STAT_FIELDS = (
    "rating_avg",
    "rating_count",
    "accept_rate",
    "median_response_minutes",
    "completed_by_subject",
)


def expert_to_dict(expert: Expert) -> dict:
    return {
        "expert_id": expert.id,
        "name": expert.name,
        "subjects": sorted(expert_subjects(expert)),
        "min_price": expert.min_price,
        "max_price": expert.max_price,
        "level": expert.level,
        "rating_avg": expert.rating_avg,
        "rating_count": expert.rating_count,
        "accept_rate": expert.accept_rate,
        "median_response_minutes": expert.median_response_minutes,
        "completed_by_subject": safe_json_loads(expert.completed_by_subject) or {},
        "created_at": isoformat(expert.created_at),
    }


async def register_expert(
    session: AsyncSession,
    name: str,
    subjects: list[str],
    min_price: float | None = None,
    max_price: float | None = None,
    level: str = "UG",
    median_response_minutes: float = 60.0,
    webhook_url: str | None = None,
    webhook_secret: str | None = None,
) -> dict:
    """Register an expert. Returns the expert id and the raw API key (shown once)."""
    key = api_key()
    expert = Expert(
        id=make_expert_id(),
        name=name,
        key_hash=hash_key(key),
        key_fingerprint=key_fingerprint(key),
        subjects=json.dumps(sorted(set(subjects))),
        min_price=min_price,
        max_price=max_price,
        level=level,
        median_response_minutes=median_response_minutes,
        webhook_url=webhook_url,
        webhook_secret=webhook_secret,
    )
    session.add(expert)
    await session.commit()
    logger.info("Registered expert %s (%s)", expert.id, ", ".join(sorted(set(subjects))))
    return {"expert_id": expert.id, "api_key": key}


async def update_expert_stats(session: AsyncSession, eid: str, **stats) -> Expert | None:
    """Apply reputation figures computed elsewhere. Unknown fields are rejected."""
    unknown = set(stats) - set(STAT_FIELDS)
    if unknown:
        raise ValueError(f"Unknown expert stats: {', '.join(sorted(unknown))}")

    expert = await session.get(Expert, eid)
    if not expert:
        return None
    for name, value in stats.items():
        if value is None:
            continue
        if name == "completed_by_subject":
            value = json.dumps(value)
        setattr(expert, name, value)
    session.add(expert)
    await session.commit()
    return expert
