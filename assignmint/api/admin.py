"""Admin routes: manual waves, reputation stats, scheduler control."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import ValidationError

from assignmint.auth import verify_admin_key
from assignmint.background import ExpansionScheduler
from assignmint.config import settings
from assignmint.content import parse_body, render_response
from assignmint.database import get_db_session
from assignmint.models import (
    ErrorResponse,
    ExpertStatsRequest,
    SchedulerStatusResponse,
    WaveRequest,
)
from assignmint.rate_limit import limiter
from assignmint.services.experts import expert_to_dict, update_expert_stats
from assignmint.services.invites import invite_to_dict, issue_wave

router = APIRouter()


def get_scheduler(request: Request) -> ExpansionScheduler:
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        raise HTTPException(status_code=503, detail="Scheduler not initialised")
    return scheduler


@router.post(
    "/v1/admin/tasks/{task_id}/waves",
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
@limiter.limit(settings.rate_limit_admin)
async def admin_issue_wave(
    request: Request, task_id: str, _=Depends(verify_admin_key), session=Depends(get_db_session)
):
    """Send the next invite wave for a task now."""
    body = await parse_body(request)
    try:
        req = WaveRequest(**body)
    except ValidationError:
        return render_response(request, {"error": "Invalid request body"}, status_code=400)

    invites = await issue_wave(session, task_id, req.max_invites)
    return render_response(
        request,
        {
            "task_id": task_id,
            "invited": len(invites),
            "invites": [invite_to_dict(i) for i in invites],
        },
    )


@router.patch(
    "/v1/admin/experts/{expert_id}",
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
@limiter.limit(settings.rate_limit_admin)
async def admin_update_expert(
    request: Request, expert_id: str, _=Depends(verify_admin_key), session=Depends(get_db_session)
):
    """Record reputation figures computed by the ratings system."""
    body = await parse_body(request)
    try:
        req = ExpertStatsRequest(**body)
    except ValidationError:
        return render_response(request, {"error": "Invalid request body"}, status_code=400)

    expert = await update_expert_stats(session, expert_id, **req.model_dump(exclude_none=True))
    if not expert:
        return render_response(request, {"error": "Expert not found"}, status_code=404)
    return render_response(request, expert_to_dict(expert))


@router.get("/v1/admin/scheduler", response_model=SchedulerStatusResponse)
@limiter.limit(settings.rate_limit_admin)
async def scheduler_status(request: Request, _=Depends(verify_admin_key)):
    return render_response(request, get_scheduler(request).status())


@router.post("/v1/admin/scheduler/start", response_model=SchedulerStatusResponse)
@limiter.limit(settings.rate_limit_admin)
async def scheduler_start(request: Request, _=Depends(verify_admin_key)):
    scheduler = get_scheduler(request)
    scheduler.start()
    return render_response(request, scheduler.status())


@router.post("/v1/admin/scheduler/stop", response_model=SchedulerStatusResponse)
@limiter.limit(settings.rate_limit_admin)
async def scheduler_stop(request: Request, _=Depends(verify_admin_key)):
    scheduler = get_scheduler(request)
    await scheduler.stop()
    return render_response(request, scheduler.status())


@router.post("/v1/admin/scheduler/run")
@limiter.limit(settings.rate_limit_admin)
async def scheduler_run(request: Request, _=Depends(verify_admin_key)):
    """Run the release and expansion sweeps once, right now."""
    counts = await get_scheduler(request).run_once()
    return render_response(request, {"released": counts["release"], "expanded": counts["expand"]})
