"""Expert registration and profile routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from pydantic import ValidationError

from assignmint.auth import AuthExpert
from assignmint.config import settings
from assignmint.content import parse_body, render_response
from assignmint.database import get_db_session
from assignmint.db_models import Expert
from assignmint.models import ErrorResponse, ExpertRegisterRequest, ExpertRegisterResponse
from assignmint.rate_limit import limiter
from assignmint.services.experts import expert_to_dict, register_expert

router = APIRouter()


@router.post(
    "/v1/experts",
    response_model=ExpertRegisterResponse,
    responses={400: {"model": ErrorResponse}},
)
@limiter.limit(settings.rate_limit_register)
async def register(request: Request, session=Depends(get_db_session)):
    """Register as an expert. Returns the API key once."""
    body = await parse_body(request)
    try:
        req = ExpertRegisterRequest(**body)
    except ValidationError:
        return render_response(request, {"error": "Invalid request body"}, status_code=400)

    result = await register_expert(
        session,
        req.name,
        req.subjects,
        min_price=req.min_price,
        max_price=req.max_price,
        level=req.level,
        median_response_minutes=req.median_response_minutes,
        webhook_url=req.webhook_url,
        webhook_secret=req.webhook_secret,
    )
    return render_response(request, ExpertRegisterResponse(**result), status_code=201)


@router.get("/v1/me", responses={401: {"model": ErrorResponse}})
@limiter.limit(settings.rate_limit_read)
async def me(request: Request, expert: Expert = AuthExpert):
    """Your expert profile as the matching engine sees it."""
    return render_response(request, expert_to_dict(expert))
