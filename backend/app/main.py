from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.routes import (
    assignments,
    baseline,
    health,
    schedule,
    structure,
    substitutions,
)
from app.core.config import get_settings
from app.core.exceptions import AppError
from app.core.middleware import RequestLoggingMiddleware, RequestSizeLimitMiddleware
from app.db.bootstrap import ensure_runtime_schema

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    ensure_runtime_schema()
    logger.info("STARTUP | %s | prefix=%s", settings.project_name, settings.api_prefix)
    yield


async def app_error_handler(request: Request, exc: AppError):
    content = {"success": False, "message": exc.message, "details": exc.details}
    if exc.conflicts:
        content["conflicts"] = exc.conflicts
    if exc.status_code >= 500:
        logger.error("APP ERROR | %s %s | %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=content)


app = FastAPI(title=settings.project_name, lifespan=lifespan)
app.add_exception_handler(AppError, app_error_handler)

app.add_middleware(RequestSizeLimitMiddleware, max_bytes=settings.max_request_size_bytes)
app.add_middleware(RequestLoggingMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router, prefix=settings.api_prefix, tags=["health"])
app.include_router(structure.router, prefix=settings.api_prefix, tags=["structure"])
app.include_router(assignments.router, prefix=settings.api_prefix, tags=["assignments"])
app.include_router(baseline.router, prefix=settings.api_prefix, tags=["baseline"])
app.include_router(schedule.router, prefix=settings.api_prefix, tags=["schedule"])
app.include_router(substitutions.router, prefix=settings.api_prefix, tags=["substitutions"])
