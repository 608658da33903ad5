import logging
import math
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from .config import get_settings
from .api.deps import close_clients
from .api.routers import event as event_router
from .api.routers import waitlist as waitlist_router
from .api.routers import health as health_router
from .api.routers import metrics as metrics_router
from .domain.errors import RateLimited, RegistrationError
from .observability.logging import setup_logging
from .middleware.request_context import RequestContextMiddleware
from .observability.metrics import MetricsHTTPMiddleware
import uvicorn

settings = get_settings()
setup_logging()
log = logging.getLogger("app.errors")

ALLOWED_ORIGINS = [
    "https://kandiegang.com",
    "https://www.kandiegang.com",
    settings.FRONTEND_ORIGIN,
]

_HTTP_MESSAGES = {404: "Not found.", 405: "Method not allowed."}


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await close_clients()


async def registration_error_handler(request: Request, exc: RegistrationError):
    headers = None
    if isinstance(exc, RateLimited):
        headers = {"Retry-After": str(math.ceil(settings.RL_WINDOW_MS / 1000))}
    if exc.status_code >= 500:
        log.warning("request_failed", extra={"path": request.url.path, "status": exc.status_code, "error": exc.message})
    return JSONResponse({"error": exc.message}, status_code=exc.status_code, headers=headers)


async def http_error_handler(request: Request, exc: StarletteHTTPException):
    message = _HTTP_MESSAGES.get(exc.status_code, str(exc.detail))
    return JSONResponse({"error": message}, status_code=exc.status_code, headers=getattr(exc, "headers", None))


async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse({"error": "Invalid request."}, status_code=400)


async def unhandled_error_handler(request: Request, exc: Exception):
    log.exception("unhandled_error", extra={"path": request.url.path})
    return JSONResponse({"error": "Something went wrong. Please try again later."}, status_code=500)


def create_app() -> FastAPI:
    app = FastAPI(title=settings.APP_NAME, debug=settings.DEBUG, lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Waitlist-Secret", settings.REQUEST_ID_HEADER],
        expose_headers=[settings.REQUEST_ID_HEADER, "Retry-After"],
    )

    # then the custom middlewares
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(MetricsHTTPMiddleware)

    app.add_exception_handler(RegistrationError, registration_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    app.include_router(health_router.router)
    app.include_router(event_router.router)
    app.include_router(waitlist_router.router)
    if settings.METRICS_ENABLED:
        app.include_router(metrics_router.router)

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run("eventsignup.main:app", host=settings.APP_HOST, port=settings.APP_PORT, reload=settings.DEBUG)
