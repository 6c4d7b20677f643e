import logging
import shutil
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from reelrender.api import files, render
from reelrender.api.deps import RenderServiceDep
from reelrender.config import get_settings
from reelrender.constants.error_codes import get_error_spec
from reelrender.exceptions import ReelRenderError
from reelrender.schemas.envelope import ErrorInfo, ErrorResponse
from reelrender.services.render_service import get_render_service

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # Startup: probe the primary engine once
    service = get_render_service()
    if service.primary is None:
        logger.warning(f"[RENDER] Primary engine unavailable ({service.primary_unavailable_reason}); using ffmpeg fallback")
    else:
        logger.info(f"[RENDER] Primary engine: {service.primary.name}")
    yield
    # Shutdown
    await service.shutdown()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error_response(status_code: int, detail: str, error: ErrorInfo) -> JSONResponse:
    body = ErrorResponse(detail=detail, error=error)
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(body.model_dump(exclude_none=True)),
    )


@app.exception_handler(ReelRenderError)
async def reelrender_exception_handler(request: Request, exc: ReelRenderError) -> JSONResponse:
    return _error_response(exc.status_code, exc.message, exc.to_error_info())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed render requests are rejected before a job exists."""
    spec = get_error_spec("VALIDATION_ERROR")
    errors = exc.errors()
    if errors:
        first_error = errors[0]
        loc = " -> ".join(str(x) for x in first_error.get("loc", []))
        msg = first_error.get("msg", "Validation error")
        message = f"{loc}: {msg}" if loc else msg
    else:
        message = "Request validation failed"

    error = ErrorInfo(
        code="VALIDATION_ERROR",
        message=message,
        retryable=spec.get("retryable", False),
        suggested_fix=spec.get("suggested_fix"),
    )
    return _error_response(400, message, error)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
    )


# Global exception handler to ensure errors return proper JSON
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled exception: {exc}")
    spec = get_error_spec("INTERNAL_ERROR")
    error = ErrorInfo(
        code="INTERNAL_ERROR",
        message="Internal server error",
        retryable=spec.get("retryable", False),
        suggested_fix=spec.get("suggested_fix"),
    )
    return _error_response(500, "Internal server error", error)


# Routers
app.include_router(render.router, prefix="/api", tags=["render"])
app.include_router(files.router, tags=["files"])


@app.get("/health")
async def health_check(service: RenderServiceDep) -> dict[str, Any]:
    return {
        "status": "healthy",
        "service": settings.app_name,
        "version": settings.app_version,
        "remotion": service.primary is not None,
        "ffmpeg": shutil.which(settings.ffmpeg_path) is not None,
    }
