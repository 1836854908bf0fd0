"""Bearer-key authentication.

Expert keys are stored as bcrypt hashes. A short SHA-256 fingerprint of the key
is indexed so a request costs one lookup and one bcrypt check. The service key
(``ASSIGNMINT_ADMIN_KEY``) guards task intake and admin routes.
"""

from __future__ import annotations

import hashlib
import secrets

import bcrypt
from fastapi import Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from assignmint.config import settings
from assignmint.database import get_db_session
from assignmint.db_models import Expert

BEARER_PREFIX = "Bearer "


def hash_key(raw_key: str) -> str:
    return bcrypt.hashpw(raw_key.encode(), bcrypt.gensalt()).decode()


def verify_key(raw_key: str, stored_hash: str) -> bool:
    return bcrypt.checkpw(raw_key.encode(), stored_hash.encode())


def key_fingerprint(raw_key: str) -> str:
    return hashlib.sha256(raw_key.encode()).hexdigest()[:16]


def _bearer_token(request: Request) -> str | None:
    header = request.headers.get("Authorization", "")
    if header.startswith(BEARER_PREFIX):
        return header[len(BEARER_PREFIX) :]
    return None


def _require_bearer(request: Request) -> str:
    token = _bearer_token(request)
    if token is None:
        raise HTTPException(status_code=401, detail="Missing or invalid Authorization header")
    return token


def _is_admin_token(token: str | None) -> bool:
    if token is None or settings.admin_key is None:
        return False
    return secrets.compare_digest(token, settings.admin_key)


async def get_current_expert(
    request: Request,
    session: AsyncSession = Depends(get_db_session),
) -> Expert:
    raw_key = _require_bearer(request)
    result = await session.execute(
        select(Expert).where(Expert.key_fingerprint == key_fingerprint(raw_key))
    )
    expert = result.scalar_one_or_none()
    if expert is None or not expert.key_hash or not verify_key(raw_key, expert.key_hash):
        raise HTTPException(status_code=401, detail="Invalid API key")
    return expert


AuthExpert = Depends(get_current_expert)


def is_admin(request: Request) -> bool:
    return _is_admin_token(_bearer_token(request))


async def verify_admin_key(request: Request) -> None:
    if settings.admin_key is None:
        raise HTTPException(status_code=501, detail="Admin API not configured")
    if not _is_admin_token(_require_bearer(request)):
        raise HTTPException(status_code=403, detail="Invalid admin key")
