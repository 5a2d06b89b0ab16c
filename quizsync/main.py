"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from quizsync.api import health_router, progress_router, sync_router, users_router
from quizsync.config import settings
from quizsync.context import QuizSyncContext
from quizsync.errors import (
    InvalidAppError,
    InvalidEventError,
    InvalidUserError,
    NoCurrentUserError,
    QuizSyncError,
    UnknownUserError,
)
from quizsync.schemas.common import ErrorResponse

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else settings.LOG_LEVEL,
    format="%(asctime)s  %(name)-25s  %(levelname)-8s  %(message)s",
)
logger = logging.getLogger(__name__)

_ERROR_STATUS = {
    InvalidUserError: 400,
    InvalidAppError: 400,
    UnknownUserError: 404,
    NoCurrentUserError: 409,
    InvalidEventError: 422,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("quizsync starting…")
    # Tests install their own context before startup.
    owns_context = getattr(app.state, "context", None) is None
    if owns_context:
        app.state.context = QuizSyncContext(settings)
    yield
    if owns_context:
        app.state.context.close()
        app.state.context = None
    logger.info("quizsync shut down")


app = FastAPI(
    title="quizsync API",
    description="Offline-first progress tracking and cloud sync for quiz apps",
    version="0.1.0",
    lifespan=lifespan,
)

# ── Middleware ─────────────────────────────────────────────────────────────────

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Errors ────────────────────────────────────────────────────────────────────


@app.exception_handler(QuizSyncError)
async def quizsync_error_handler(request: Request, exc: QuizSyncError):
    code = _ERROR_STATUS.get(type(exc), 400)
    body = ErrorResponse(error_code=exc.error_code, message=str(exc))
    return JSONResponse(status_code=code, content=body.model_dump())


# ── Routers ───────────────────────────────────────────────────────────────────

app.include_router(health_router, tags=["Health"])
app.include_router(users_router, prefix="/api/users", tags=["Users"])
app.include_router(progress_router, prefix="/api/apps", tags=["Progress"])
app.include_router(sync_router, prefix="/api/apps", tags=["Sync"])


@app.get("/")
async def root():
    return {
        "name": "quizsync API",
        "version": "0.1.0",
        "docs": "/docs",
        "health": "/health",
    }
