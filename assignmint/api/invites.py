"""Expert invite inbox routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from assignmint.auth import AuthExpert
from assignmint.config import settings
from assignmint.content import render_response
from assignmint.database import get_db_session
from assignmint.db_models import Expert, InviteStatus
from assignmint.models import ErrorResponse, InviteResponse
from assignmint.rate_limit import limiter
from assignmint.services.invites import get_expert_invites, invite_to_dict, update_invite_status

router = APIRouter()


@router.get("/v1/invites", responses={400: {"model": ErrorResponse}})
@limiter.limit(settings.rate_limit_read)
async def my_invites(
    request: Request,
    expert: Expert = AuthExpert,
    session=Depends(get_db_session),
    status: str | None = None,
):
    """Invites addressed to you. Filter with ?status=sent|accepted|declined."""
    if status is not None and status not in InviteStatus.__members__:
        return render_response(request, {"error": f"Unknown status '{status}'"}, status_code=400)
    invites = await get_expert_invites(session, expert.id, status)
    return render_response(
        request, {"expert_id": expert.id, "invites": [invite_to_dict(i) for i in invites]}
    )


async def _respond(request: Request, invite_id: str, status: InviteStatus, expert: Expert, session):
    invite = await update_invite_status(session, invite_id, status, expert.id)
    return render_response(request, InviteResponse(**invite_to_dict(invite)))


@router.post(
    "/v1/invites/{invite_id}/accept",
    response_model=InviteResponse,
    responses={
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
)
@limiter.limit(settings.rate_limit_claim)
async def accept_invite(
    request: Request, invite_id: str, expert: Expert = AuthExpert, session=Depends(get_db_session)
):
    """Accept an invite. Reserve the task separately to hold it."""
    return await _respond(request, invite_id, InviteStatus.accepted, expert, session)


@router.post(
    "/v1/invites/{invite_id}/decline",
    response_model=InviteResponse,
    responses={
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
)
@limiter.limit(settings.rate_limit_claim)
async def decline_invite(
    request: Request, invite_id: str, expert: Expert = AuthExpert, session=Depends(get_db_session)
):
    """Decline an invite."""
    return await _respond(request, invite_id, InviteStatus.declined, expert, session)
