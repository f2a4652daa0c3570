import os

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import __version__
from .core.logging import configure_logging, get_logger, get_trace_id
from .core.middleware import TraceIDMiddleware
from .core.rate_limit import RateLimitMiddleware
from .core.tracing import (
    StatusCode,
    configure_tracing,
    get_trace_id_from_context,
    instrument_fastapi,
    record_exception,
    set_span_status,
    shutdown_tracing,
)
from .routes import chat, health, metrics, tasks
from .services.errors import ERROR_RESPONSES, GENERIC_ERROR_MESSAGE, DispatchError, ErrorKind
from .services.orchestration import get_orchestrator

# JSON output in production (containerized), console output in development
log_level = os.getenv("LOG_LEVEL", "INFO")
json_output = os.getenv("LOG_JSON", "true").lower() == "true"
configure_logging(log_level=log_level, json_output=json_output)

logger = get_logger(__name__)

configure_tracing()

app = FastAPI(
    title="AI Dispatcher API",
    description="Routes prompts to a fast completion backend or an agentic task backend",
    version=__version__,
)

# must be added before CORS and trace middleware so 429s carry their headers
app.add_middleware(RateLimitMiddleware)

# CORS for local dev; restrict in production
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# must be added after CORS middleware
app.add_middleware(TraceIDMiddleware)

instrument_fastapi(app)

_HTTP_ERROR_CODES = {
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
}


def _error_body(detail: str, status_code: int, error: str) -> JSONResponse:
    trace_id = get_trace_id() or get_trace_id_from_context()
    response = JSONResponse(
        status_code=status_code,
        content={
            "detail": detail,
            "error": error,
            "status_code": status_code,
            "trace_id": trace_id,
        },
    )
    if trace_id:
        response.headers["X-Trace-ID"] = trace_id
    return response


@app.on_event("startup")
async def startup_event():
    """Start the task retention sweep."""
    logger.info("app_startup_started")
    orchestrator = get_orchestrator()
    if not orchestrator.fast.is_configured:
        logger.warning("app_startup_fast_backend_unconfigured", message="GEMINI_API_KEY is not set")
    if not orchestrator.agentic.is_configured:
        logger.warning("app_startup_agentic_backend_unconfigured", message="MANUS_API_KEY is not set")
    await orchestrator.start()
    logger.info("app_startup_completed")


@app.on_event("shutdown")
async def shutdown_event():
    """Stop background work and flush traces."""
    logger.info("app_shutdown_started")
    await get_orchestrator().stop()
    shutdown_tracing()
    logger.info("app_shutdown_completed")


@app.exception_handler(DispatchError)
async def dispatch_error_handler(request: Request, exc: DispatchError):
    """Render a classified dispatch failure with its sanitized message."""
    status_code = exc.http_status
    set_span_status(StatusCode.ERROR if status_code >= 500 else StatusCode.OK, exc.kind.value)
    log = logger.error if status_code >= 500 else logger.warning
    log(
        "dispatch_error",
        kind=exc.kind.value,
        category=exc.category.value,
        backend=exc.backend,
        detail=exc.detail,
        status_code=status_code,
        path=request.url.path,
    )
    return _error_body(exc.user_message, status_code, exc.kind.value)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed bodies are reported like any other invalid prompt."""
    logger.warning(
        "request_validation_failed",
        errors=str(exc.errors()),
        path=request.url.path,
    )
    status_code, message = ERROR_RESPONSES[ErrorKind.VALIDATION]
    return _error_body(message, status_code, ErrorKind.VALIDATION.value)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions."""
    set_span_status(StatusCode.ERROR if exc.status_code >= 500 else StatusCode.OK, str(exc.detail))
    logger.warning(
        "http_exception",
        status_code=exc.status_code,
        detail=exc.detail,
        path=request.url.path,
        method=request.method,
    )
    return _error_body(
        str(exc.detail),
        exc.status_code,
        _HTTP_ERROR_CODES.get(exc.status_code, "http_error"),
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle general exceptions."""
    record_exception(exc)
    set_span_status(StatusCode.ERROR, str(exc))
    logger.error(
        "unhandled_exception",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
        method=request.method,
        exc_info=True,
    )
    return _error_body(GENERIC_ERROR_MESSAGE, 500, "internal_error")


app.include_router(chat.router, prefix="/api", tags=["Chat"])
app.include_router(tasks.router, prefix="/api", tags=["Tasks"])
app.include_router(health.router, prefix="/health", tags=["Health"])
app.include_router(metrics.router, prefix="/metrics", tags=["Metrics"])
