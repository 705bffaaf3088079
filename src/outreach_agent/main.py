"""FastAPI application entry point."""

from __future__ import annotations

from contextlib import asynccontextmanager
from http import HTTPStatus
from typing import Any, AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from outreach_agent import __version__
from outreach_agent.api import callbacks, health, media, webhooks
from outreach_agent.api.rate_limits import limiter
from outreach_agent.config import get_settings, require_valid_settings
from outreach_agent.core.exceptions import OutreachAgentError
from outreach_agent.core.logging import get_logger, setup_logging
from outreach_agent.db.session import close_db, init_db
from outreach_agent.dependencies import (
    get_call_executor,
    get_campaign_dispatcher,
    get_conversation_service,
    get_reminder_dispatcher,
    get_session_arena,
    get_transcript_analyzer,
    get_voice_provider,
)


def _error_response(status_code: int, error: str, message: str, **extra: Any) -> JSONResponse:
    """JSON error body shared by every handler: ``{"error", "message", ...}``."""
    return JSONResponse(status_code=status_code, content={"error": error, "message": message, **extra})


def _error_type(status_code: int) -> str:
    """``404`` -> ``"not_found"``; unknown codes map to ``"error"``."""
    try:
        return HTTPStatus(status_code).name.lower()
    except ValueError:
        return "error"


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    return _error_response(
        429,
        "rate_limit_exceeded",
        "Too many requests, slow down.",
        detail=str(exc.detail),
    )


def outreach_error_handler(request: Request, exc: OutreachAgentError) -> JSONResponse:
    """Map application errors to their HTTP status and error code."""
    if exc.status_code >= 500:
        get_logger(__name__).error(
            "Request failed",
            error=str(exc),
            error_code=exc.error_code,
            path=request.url.path,
        )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return _error_response(
        exc.status_code,
        _error_type(exc.status_code),
        str(exc.detail),
    )


def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """422 listing each offending field (body prefix stripped)."""
    fields = [
        {
            "field": ".".join(str(part) for part in error["loc"] if part != "body") or "request",
            "message": error["msg"],
            "type": error["type"],
        }
        for error in exc.errors()
    ]
    return _error_response(422, "validation_error", "Request validation failed", details=fields)


def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last resort 500. The exception text is only exposed in debug mode."""
    get_logger(__name__).error(
        "Unhandled exception",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
        method=request.method,
    )
    message = str(exc) if get_settings().debug else "An internal error occurred"
    return _error_response(500, "internal_error", message)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager.

    Startup order: logging, settings validation, database, then the
    dispatch loops. Shutdown stops the loops before releasing anything
    they use.
    """
    settings = get_settings()
    setup_logging(
        level=settings.log_level,
        json_output=settings.log_json,
        instance_id=settings.instance_id,
    )
    log = get_logger(__name__)

    require_valid_settings()

    log.info(
        "Starting Outreach Agent",
        version=__version__,
        environment=settings.environment,
        instance_id=settings.instance_id,
        provider=settings.telephony.provider,
        conversation_enabled=settings.conversation.enabled,
    )

    log.info("Initializing database")
    await init_db()
    log.info("Database initialized successfully")

    loops = {}
    if settings.scheduler.reminders_enabled:
        loops["reminders"] = get_reminder_dispatcher()
    if settings.scheduler.campaigns_enabled:
        loops["campaigns"] = get_campaign_dispatcher()
    for loop in loops.values():
        await loop.start()
    app.state.loops = loops

    yield

    log.info("Shutting down Outreach Agent")
    for name, loop in loops.items():
        await loop.stop()
        log.info("Scheduler stopped", scheduler=name)

    await get_call_executor().close()

    closed = await get_session_arena().close_all()
    log.info("Conversation sessions closed", count=closed)

    conversation = get_conversation_service()
    if conversation is not None:
        await conversation.close()
    await get_transcript_analyzer().close()

    await get_voice_provider().close()

    await close_db()
    log.info("Database connections closed")


_EXCEPTION_HANDLERS = (
    (RateLimitExceeded, rate_limit_exceeded_handler),
    (OutreachAgentError, outreach_error_handler),
    (RequestValidationError, validation_exception_handler),
    (StarletteHTTPException, http_exception_handler),
    (Exception, general_exception_handler),
)


def create_app() -> FastAPI:
    """Build the app: handlers, limiter and the four routers."""
    settings = get_settings()
    show_docs = settings.debug

    app = FastAPI(
        title="Outreach Agent",
        description="Outbound appointment reminder and campaign call dispatcher",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if show_docs else None,
        redoc_url="/redoc" if show_docs else None,
    )
    app.state.loops = {}
    app.state.limiter = limiter

    for exc_class, handler in _EXCEPTION_HANDLERS:
        app.add_exception_handler(exc_class, handler)

    app.include_router(health.router, tags=["Health"])
    app.include_router(media.router, tags=["Media Stream"])
    app.include_router(webhooks.router, prefix="/api", tags=["Webhooks"])
    app.include_router(callbacks.router, prefix="/api", tags=["Agent Callbacks"])
    return app


app = create_app()


def run() -> None:
    """Run the application with uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "outreach_agent.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
