import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from corex.config import settings
from corex.errors import TrackerError
from corex.logging_config import setup_logging
from corex.tracker.activities_router import router as activities_router
from corex.tracker.goals_router import router as goals_router
from corex.tracker.groups_router import router as groups_router
from corex.tracker.users_router import router as users_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    if settings.create_schema:
        from corex.db import engine
        from corex.tracker.schema import create_all

        await create_all(engine)
        logger.info("Database schema ensured")
    yield


app = FastAPI(title="CoreX Tracker", version="0.1.0", lifespan=lifespan)
app.include_router(users_router)
app.include_router(activities_router)
app.include_router(goals_router)
app.include_router(groups_router)


@app.exception_handler(TrackerError)
async def tracker_error_handler(request: Request, exc: TrackerError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "error_code": exc.error_code},
    )


@app.get("/")
async def root() -> dict:
    return {
        "status": "ok",
        "docs": "/docs",
        "health": "/health",
        "tracker": {
            "profile": "/users/me",
            "activities": "/activities",
            "goals": "/goals",
            "goal_progress": "/goals/{id}/progress",
            "accept_goal": "/goals/accept",
            "groups": "/groups",
            "join_group": "/groups/join",
            "invite": "/groups/{id}/invite",
            "share_goal": "/groups/{id}/goals/{goal_id}/share",
        },
    }


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}
