"""Assignmint: expert matching and task reservation service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import HTTPException
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.orm import sessionmaker

from assignmint import __version__
from assignmint.api.router import api_router
from assignmint.background import ExpansionScheduler
from assignmint.config import settings
from assignmint.content import render_response
from assignmint.database import close_db, get_session_factory, init_db
from assignmint.errors import MatchingError
from assignmint.events import Event, event_bus
from assignmint.rate_limit import limiter
from assignmint.webhooks import deliver_webhook

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("assignmint")


def _webhook_sender(session_factory: sessionmaker):
    async def send(expert_id: str, event: Event) -> None:
        async with session_factory() as session:
            await deliver_webhook(expert_id, event, session)

    return send


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db(settings.database_url)
    logger.info("Database ready: %s", settings.database_url)

    session_factory = get_session_factory()
    event_bus.set_webhook_callback(_webhook_sender(session_factory))

    app.state.scheduler = ExpansionScheduler(session_factory)
    if settings.scheduler_enabled:
        app.state.scheduler.start()
    else:
        logger.info("Scheduler disabled; use /v1/admin/scheduler to run sweeps")

    yield

    await app.state.scheduler.stop()
    event_bus.set_webhook_callback(None)
    await event_bus.close()
    await close_db()
    logger.info("Shutdown complete")


app = FastAPI(
    title="Assignmint",
    description="Expert matching and task reservation engine",
    version=__version__,
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)

app.include_router(api_router)


@app.exception_handler(MatchingError)
async def matching_error_handler(request: Request, exc: MatchingError):
    return render_response(
        request,
        {"error": exc.detail, "code": exc.code},
        status_code=exc.status_code,
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return render_response(request, {"error": exc.detail}, status_code=exc.status_code)


@app.get("/health")
async def health(request: Request):
    scheduler = getattr(request.app.state, "scheduler", None)
    return {
        "status": "ok",
        "version": __version__,
        "scheduler": scheduler.status() if scheduler else None,
    }


def main():
    import uvicorn

    uvicorn.run("assignmint.main:app", host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
