"""Mount all API routes."""

from fastapi import APIRouter

from assignmint.api.admin import router as admin_router
from assignmint.api.events import router as events_router
from assignmint.api.experts import router as experts_router
from assignmint.api.invites import router as invites_router
from assignmint.api.tasks import router as tasks_router

api_router = APIRouter()
api_router.include_router(experts_router, tags=["experts"])
api_router.include_router(tasks_router, tags=["tasks"])
api_router.include_router(invites_router, tags=["invites"])
api_router.include_router(events_router, tags=["events"])
api_router.include_router(admin_router, tags=["admin"])
