"""SQLModel table definitions for Assignmint."""

from __future__ import annotations

import enum
from datetime import UTC, datetime

from sqlalchemy import Index
from sqlmodel import Field, SQLModel


class TaskStatus(str, enum.Enum):
    open = "open"
    reserved = "reserved"
    claimed = "claimed"
    in_progress = "in_progress"
    completed = "completed"
    cancelled = "cancelled"


class InviteStatus(str, enum.Enum):
    sent = "sent"
    accepted = "accepted"
    declined = "declined"


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Expert(SQLModel, table=True):
    __tablename__ = "experts"
    __table_args__ = (Index("ix_experts_rating", "rating_avg", "rating_count"),)

    id: str = Field(primary_key=True)
    name: str
    key_hash: str = ""
    key_fingerprint: str = Field(default="", index=True)
    subjects: str = "[]"  # JSON-encoded list
    min_price: float | None = None
    max_price: float | None = None
    level: str = Field(default="UG")
    rating_avg: float = Field(default=0.0)
    rating_count: int = Field(default=0)
    accept_rate: float = Field(default=0.5)
    median_response_minutes: float = Field(default=60.0)
    completed_by_subject: str = "{}"  # JSON-encoded {subject: count}
    webhook_url: str | None = None
    webhook_secret: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)


class Task(SQLModel, table=True):
    __tablename__ = "tasks"
    __table_args__ = (
        Index("ix_tasks_status_reserved_until", "status", "reserved_until"),
        Index("ix_tasks_status_next_wave_at", "status", "next_wave_at"),
    )

    id: str = Field(primary_key=True)
    poster_id: str | None = Field(default=None, index=True)
    title: str = ""
    description: str | None = None
    subject: str = Field(index=True)
    price: float
    deadline_at: datetime | None = None
    status: TaskStatus = Field(default=TaskStatus.open, index=True)
    reserved_by: str | None = Field(default=None, foreign_key="experts.id", index=True)
    reserved_until: datetime | None = None
    expert_id: str | None = Field(default=None, foreign_key="experts.id", index=True)
    invited_now: int = Field(default=0)
    current_wave: int = Field(default=0)
    next_wave_at: datetime | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    claimed_at: datetime | None = None


class Invite(SQLModel, table=True):
    __tablename__ = "invites"
    __table_args__ = (Index("ix_invites_task_expert", "task_id", "expert_id", unique=True),)

    id: str = Field(primary_key=True)
    task_id: str = Field(foreign_key="tasks.id", index=True)
    expert_id: str = Field(foreign_key="experts.id", index=True)
    wave: int = Field(default=1)
    score: float = Field(default=0.0)
    status: InviteStatus = Field(default=InviteStatus.sent, index=True)
    sent_at: datetime = Field(default_factory=_utcnow)
    responded_at: datetime | None = None
