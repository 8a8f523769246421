import hmac
import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from starlette.middleware.base import BaseHTTPMiddleware

from objectanalyzer import __version__
from objectanalyzer.api.routes import limiter, router
from objectanalyzer.config import settings
from objectanalyzer.database import init_db
from objectanalyzer.exceptions import PipelineStageError
from objectanalyzer.schemas.error import ErrorResponse

logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

_AUTH_EXEMPT_PATHS = ("/api/health", "/docs", "/openapi.json", "/redoc")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables and load scoring weights at startup."""
    from objectanalyzer.modules.risk_scoring import load_scoring_config

    init_db()
    load_scoring_config()
    if settings.API_KEY is None:
        logger.warning("API_KEY is not set; every request is accepted")
    elif len(settings.API_KEY) < settings.API_KEY_MIN_LENGTH:
        logger.warning("API_KEY is shorter than %d characters", settings.API_KEY_MIN_LENGTH)
    yield


app = FastAPI(
    title="ObjectAnalyzer",
    description=(
        "Threat-intel aggregation: stages reported objects, merges them into "
        "per-object intel records and scores untrusted IPv4 addresses."
    ),
    version=__version__,
    lifespan=lifespan,
)


# API key authentication middleware
class APIKeyMiddleware(BaseHTTPMiddleware):
    """Shared-secret check on the X-API-Key header. If API_KEY is unset, all requests pass."""

    async def dispatch(self, request: Request, call_next):
        if settings.API_KEY is not None:
            if request.url.path not in _AUTH_EXEMPT_PATHS:
                api_key = request.headers.get("X-API-Key")
                if not hmac.compare_digest(api_key or "", settings.API_KEY):
                    return JSONResponse(
                        status_code=401,
                        content=ErrorResponse(detail="Invalid or missing API key", code="unauthorized").model_dump(),
                    )
        return await call_next(request)


app.add_middleware(APIKeyMiddleware)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.include_router(router, prefix="/api")


# ── Structured error handlers ─────────────────────────────────────────────────

@app.exception_handler(PipelineStageError)
async def pipeline_error_handler(request: Request, exc: PipelineStageError):
    body = ErrorResponse(
        detail=str(exc.cause),
        code="pipeline_stage_failed",
        stage=exc.stage,
        summary=exc.summary,
    )
    return JSONResponse(status_code=500, content=body.model_dump())


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(detail=str(exc), code="validation_error").model_dump(),
    )


@app.exception_handler(Exception)
async def general_error_handler(request: Request, exc: Exception):
    logger.error("Unhandled exception on %s %s:\n%s", request.method, request.url.path, traceback.format_exc())
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(detail="An unexpected error occurred.", code="internal_error").model_dump(),
    )
