"""Webhook delivery of bus events to experts that registered a URL."""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import json
import logging

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from assignmint.config import settings
from assignmint.db_models import Expert
from assignmint.events import Event

logger = logging.getLogger("assignmint.webhooks")


def sign_payload(body: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def build_payload(expert_id: str, event: Event) -> bytes:
    return json.dumps(
        {"type": event.type, "expert_id": expert_id, "task_id": event.task_id, **event.data},
        sort_keys=True,
    ).encode()


async def deliver_webhook(
    expert_id: str,
    event: Event,
    session: AsyncSession,
    client: httpx.AsyncClient | None = None,
) -> bool:
    """POST the event to the expert's webhook. Returns True on a 2xx response."""
    expert = await session.get(Expert, expert_id)
    if not expert or not expert.webhook_url:
        return False

    body = build_payload(expert_id, event)
    headers = {"Content-Type": "application/json", "X-Assignmint-Event": event.type}
    if expert.webhook_secret:
        headers["X-Assignmint-Signature"] = f"sha256={sign_payload(body, expert.webhook_secret)}"

    owns_client = client is None
    if owns_client:
        client = httpx.AsyncClient(timeout=settings.webhook_timeout_seconds)
    try:
        for attempt in range(1, settings.webhook_max_retries + 1):
            try:
                resp = await client.post(expert.webhook_url, content=body, headers=headers)
                if resp.is_success:
                    return True
                logger.warning(
                    "Webhook %s for %s returned %d (attempt %d)",
                    event.type,
                    expert_id,
                    resp.status_code,
                    attempt,
                )
            except httpx.HTTPError as exc:
                logger.warning(
                    "Webhook %s for %s failed: %s (attempt %d)", event.type, expert_id, exc, attempt
                )
            if attempt < settings.webhook_max_retries:
                await asyncio.sleep(2 ** (attempt - 1))
    finally:
        if owns_client:
            await client.aclose()
    return False
