"""Pydantic models for request/response schemas."""

from __future__ import annotations

import re
from datetime import UTC, datetime
from urllib.parse import urlparse

from pydantic import BaseModel, Field, field_validator, model_validator

_SUBJECT_RE = re.compile(r"^[\w][\w &+.-]*$")


def _validate_subject(subject: str) -> str:
    subject = subject.strip()
    if not subject or len(subject) > 80 or not _SUBJECT_RE.match(subject):
        raise ValueError(f"Invalid subject '{subject[:80]}'")
    return subject


class ExpertRegisterRequest(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    subjects: list[str] = Field(min_length=1, max_length=20)
    min_price: float | None = Field(default=None, ge=0)
    max_price: float | None = Field(default=None, ge=0)
    level: str = Field(default="UG", max_length=20)
    median_response_minutes: float = Field(default=60.0, ge=0)
    webhook_url: str | None = Field(default=None, max_length=2000)
    webhook_secret: str | None = Field(default=None, max_length=500)

    @field_validator("subjects")
    @classmethod
    def validate_subjects(cls, v: list[str]) -> list[str]:
        return [_validate_subject(s) for s in v]

    @field_validator("webhook_url")
    @classmethod
    def validate_webhook_url(cls, v: str | None) -> str | None:
        if v is None:
            return v
        parsed = urlparse(v)
        if parsed.scheme not in ("http", "https") or not parsed.hostname:
            raise ValueError("Webhook URL must be an http(s) URL")
        return v

    @model_validator(mode="after")
    def check_price_range(self) -> ExpertRegisterRequest:
        if (
            self.min_price is not None
            and self.max_price is not None
            and self.min_price > self.max_price
        ):
            raise ValueError("min_price must not exceed max_price")
        return self


class ExpertRegisterResponse(BaseModel):
    expert_id: str
    api_key: str
    message: str = "Save your API key: it cannot be recovered."


class ExpertStatsRequest(BaseModel):
    rating_avg: float | None = Field(default=None, ge=0, le=5)
    rating_count: int | None = Field(default=None, ge=0)
    accept_rate: float | None = Field(default=None, ge=0, le=1)
    median_response_minutes: float | None = Field(default=None, ge=0)
    completed_by_subject: dict[str, int] | None = None


class TaskCreateRequest(BaseModel):
    subject: str
    price: float = Field(gt=0)
    deadline_at: datetime | None = None
    title: str = Field(default="", max_length=300)
    description: str | None = Field(default=None, max_length=50_000)
    poster_id: str | None = Field(default=None, max_length=100)

    @field_validator("subject")
    @classmethod
    def validate_subject(cls, v: str) -> str:
        return _validate_subject(v)

    @field_validator("deadline_at")
    @classmethod
    def normalise_deadline(cls, v: datetime | None) -> datetime | None:
        if v is None:
            return v
        # Stored as naive UTC; convert offsets before the tzinfo is dropped
        return v.astimezone(UTC) if v.tzinfo else v.replace(tzinfo=UTC)


class WaveRequest(BaseModel):
    max_invites: int | None = Field(default=None, ge=1, le=100)


class ReservationResponse(BaseModel):
    task_id: str
    reserved_by: str | None = None
    reserved_until: str | None = None
    time_remaining_ms: int = 0


class InviteResponse(BaseModel):
    invite_id: str
    task_id: str
    expert_id: str
    wave: int
    score: float
    status: str
    sent_at: str | None = None
    responded_at: str | None = None


class SchedulerStatusResponse(BaseModel):
    running: bool
    jobs: int
    interval_seconds: float


class ErrorResponse(BaseModel):
    error: str
    code: str | None = None
