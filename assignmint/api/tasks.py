"""Task and reservation routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from assignmint.auth import AuthExpert, get_current_expert, is_admin, verify_admin_key
from assignmint.config import settings
from assignmint.content import parse_body, render_response
from assignmint.database import get_db_session
from assignmint.db_models import Expert, Invite
from assignmint.errors import TaskNotFound
from assignmint.models import (
    ErrorResponse,
    ReservationResponse,
    TaskCreateRequest,
)
from assignmint.rate_limit import limiter
from assignmint.services.invites import get_task_invites, invite_to_dict
from assignmint.services.reservations import (
    cancel_reservation,
    confirm_claim,
    get_task_reservation,
    soft_claim,
)
from assignmint.services.store import get_task, query_invites
from assignmint.services.tasks import cancel_task, create_task, task_to_dict

router = APIRouter()


async def _can_view(session: AsyncSession, task_id: str, expert: Expert) -> bool:
    task = await get_task(session, task_id)
    if expert.id in (task.reserved_by, task.expert_id):
        return True
    invites = await query_invites(session, Invite.task_id == task_id, Invite.expert_id == expert.id)
    return bool(invites)


@router.post(
    "/v1/tasks",
    responses={400: {"model": ErrorResponse}, 403: {"model": ErrorResponse}},
)
@limiter.limit(settings.rate_limit_admin)
async def post_task(
    request: Request, _=Depends(verify_admin_key), session=Depends(get_db_session)
):
    """Create an open task and send its first invite wave. Service key only."""
    body = await parse_body(request)
    try:
        req = TaskCreateRequest(**body)
    except ValidationError:
        return render_response(request, {"error": "Invalid request body"}, status_code=400)

    task = await create_task(
        session,
        req.subject,
        req.price,
        deadline_at=req.deadline_at,
        title=req.title,
        description=req.description,
        poster_id=req.poster_id,
    )
    return render_response(
        request,
        task_to_dict(task),
        status_code=201,
        headers={"X-Task-Id": task.id, "X-Status": task.status.value},
    )


@router.get("/v1/tasks/{task_id}", responses={404: {"model": ErrorResponse}})
@limiter.limit(settings.rate_limit_read)
async def read_task(request: Request, task_id: str, session=Depends(get_db_session)):
    """Task status and matching progress for invited experts, the holder and the assignee."""
    if not is_admin(request):
        expert = await get_current_expert(request, session)
        # 404 for both "not found" and "not yours" to prevent task ID enumeration
        if not await _can_view(session, task_id, expert):
            raise TaskNotFound()
    task = await get_task(session, task_id)
    return render_response(request, task_to_dict(task))


@router.post("/v1/tasks/{task_id}/cancel", responses={404: {"model": ErrorResponse}})
@limiter.limit(settings.rate_limit_admin)
async def cancel(
    request: Request, task_id: str, _=Depends(verify_admin_key), session=Depends(get_db_session)
):
    """Withdraw an unclaimed task. Service key only."""
    task = await cancel_task(session, task_id)
    return render_response(request, task_to_dict(task))


@router.get("/v1/tasks/{task_id}/invites", responses={404: {"model": ErrorResponse}})
@limiter.limit(settings.rate_limit_admin)
async def task_invites(
    request: Request, task_id: str, _=Depends(verify_admin_key), session=Depends(get_db_session)
):
    """Every invite sent for a task, oldest first. Service key only."""
    await get_task(session, task_id)
    invites = await get_task_invites(session, task_id)
    return render_response(
        request, {"task_id": task_id, "invites": [invite_to_dict(i) for i in invites]}
    )


# ---------------------------------------------------------------------------
# Reservations
# ---------------------------------------------------------------------------


@router.post(
    "/v1/tasks/{task_id}/reserve",
    responses={
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        429: {"model": ErrorResponse},
    },
)
@limiter.limit(settings.rate_limit_claim)
async def reserve(
    request: Request, task_id: str, expert: Expert = AuthExpert, session=Depends(get_db_session)
):
    """Soft-claim an open task. The hold lapses unless confirmed in time."""
    task = await soft_claim(session, task_id, expert.id)
    return render_response(
        request,
        task_to_dict(task),
        headers={"X-Task-Id": task.id, "X-Status": task.status.value},
    )


@router.post(
    "/v1/tasks/{task_id}/confirm",
    responses={
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        410: {"model": ErrorResponse},
    },
)
@limiter.limit(settings.rate_limit_claim)
async def confirm(
    request: Request, task_id: str, expert: Expert = AuthExpert, session=Depends(get_db_session)
):
    """Turn your live reservation into the permanent assignment."""
    task = await confirm_claim(session, task_id, expert.id)
    return render_response(
        request,
        task_to_dict(task),
        headers={"X-Task-Id": task.id, "X-Status": task.status.value},
    )


@router.post(
    "/v1/tasks/{task_id}/release",
    responses={
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        410: {"model": ErrorResponse},
    },
)
@limiter.limit(settings.rate_limit_claim)
async def release(
    request: Request, task_id: str, expert: Expert = AuthExpert, session=Depends(get_db_session)
):
    """Give back your reservation so other experts can claim the task."""
    task = await cancel_reservation(session, task_id, expert.id)
    return render_response(request, task_to_dict(task))


@router.get(
    "/v1/tasks/{task_id}/reservation",
    response_model=ReservationResponse,
    responses={404: {"model": ErrorResponse}},
)
@limiter.limit(settings.rate_limit_read)
async def reservation(request: Request, task_id: str, session=Depends(get_db_session)):
    """Current hold and countdown. 404 when the task is not reserved or not visible."""
    if not is_admin(request):
        expert = await get_current_expert(request, session)
        if not await _can_view(session, task_id, expert):
            raise TaskNotFound()
    held = await get_task_reservation(session, task_id)
    if held is None:
        return render_response(request, {"error": "Task is not reserved"}, status_code=404)
    return render_response(request, ReservationResponse(**held))
