import logging
from contextlib import asynccontextmanager
from typing import Optional

import socketio
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from slowapi.errors import RateLimitExceeded
from starlette.middleware.base import BaseHTTPMiddleware

import errors
from config import Settings
from context import AppContext
from dependencies import limiter
from logging_setup import setup_logging
from realtime import RealtimeGateway, create_socket_server
from schemas import format_validation_errors

# Routers
from routers.attachments import router as attachments_router
from routers.auth import router as auth_router
from routers.tasks import router as tasks_router

logger = logging.getLogger(__name__)


# Custom Rate Limit Handler
def custom_rate_limit_handler(request: Request, exc: RateLimitExceeded):
    limit_info = str(exc.limit.limit) if getattr(exc, "limit", None) else "rate"
    return JSONResponse(
        status_code=429,
        content={"detail": f"Too many requests ({limit_info} exceeded). Please wait a moment.", "code": "RATE_LIMITED"},
    )


def task_tracker_error_handler(request: Request, exc: errors.TaskTrackerError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "code": exc.code})


def request_validation_handler(request: Request, exc: RequestValidationError):
    error = errors.ValidationError(format_validation_errors(exc.errors()))
    return task_tracker_error_handler(request, error)


def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return task_tracker_error_handler(request, errors.InternalError())


# Custom Middleware for Security Headers
class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["Content-Security-Policy"] = "default-src 'self'; script-src 'self'; style-src 'self' 'unsafe-inline';"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-XSS-Protection"] = "1; mode=block"
        return response


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the FastAPI app with its AppContext and Socket.IO gateway.

    The context (engine, session factory, token service, storage) lives on
    ``app.state.context``; the Socket.IO server on ``app.state.sio``. Serve
    ``socketio.ASGIApp(app.state.sio, app)`` to expose both (see ``asgi_app``).
    """
    settings = settings or Settings.from_env()
    setup_logging(settings.log_level)
    context = AppContext.from_settings(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        context.close()

    app = FastAPI(title="Task Tracker", lifespan=lifespan)
    app.state.context = context
    # Rate Limiter Setup (limiter imported from dependencies)
    app.state.limiter = limiter

    app.add_exception_handler(RateLimitExceeded, custom_rate_limit_handler)
    app.add_exception_handler(errors.TaskTrackerError, task_tracker_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware,
        # Explicit origins only, cookies need credentials
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )
    app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.allowed_hosts)

    # Include Routers
    app.include_router(auth_router, prefix=settings.api_prefix)
    app.include_router(tasks_router, prefix=settings.api_prefix)
    app.include_router(attachments_router, prefix=settings.api_prefix)

    # Uploaded files, stored under a generated name
    app.mount(settings.uploads_url_prefix, StaticFiles(directory=settings.upload_dir), name="uploads")

    sio = create_socket_server(context)
    gateway = RealtimeGateway(context, sio)
    gateway.register()
    app.state.sio = sio
    app.state.gateway = gateway

    logger.info("Task tracker app created (api prefix %s)", settings.api_prefix)
    return app


def create_asgi_app(settings: Optional[Settings] = None) -> socketio.ASGIApp:
    app = create_app(settings)
    return socketio.ASGIApp(app.state.sio, other_asgi_app=app)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:create_asgi_app", factory=True, host="0.0.0.0", port=8000)
