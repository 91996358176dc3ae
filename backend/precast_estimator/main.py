"""
Precast Quotation API
FastAPI surface over the stateless quotation engine: pricing, freight,
assembly and the commercial summary. No persistence, no sessions.
"""
import logging
import sys
import time

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from precast_estimator import config
from precast_estimator.api.quotation_routes import router as quotation_router
from precast_estimator.services.errors import CalculationTimeout, QuoteEngineError
from precast_estimator.services.logging_config import setup_logging
from precast_estimator.services.middleware import RequestTimingMiddleware
from precast_estimator.services.perf_monitor import tracker as perf_tracker

setup_logging(level=config.LOG_LEVEL, json_output=config.LOG_FORMAT != "text")
logger = logging.getLogger("precast-api")

# Record process start time for uptime calculation
_PROCESS_START = time.monotonic()


app = FastAPI(
    title="Precast Quotation API",
    version=config.API_VERSION,
    description="Quotation and freight-logistics engine for precast concrete pieces",
)


# ---------------------------------------------------------------------------
# Security Headers Middleware
# ---------------------------------------------------------------------------
class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Adds standard security headers to every response."""
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        return response


cors_origins = [o.strip() for o in config.CORS_ORIGINS.split(",") if o.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Accept", "X-Request-ID"],
)
app.add_middleware(SecurityHeadersMiddleware)
# Request timing + X-Request-ID must be outermost so it wraps all other middleware
app.add_middleware(RequestTimingMiddleware)

app.include_router(quotation_router)


# ---------------------------------------------------------------------------
# Engine errors -> JSON
# ---------------------------------------------------------------------------
@app.exception_handler(QuoteEngineError)
async def quote_engine_error_handler(request: Request, exc: QuoteEngineError):
    status = 504 if isinstance(exc, CalculationTimeout) else 422
    logger.warning(
        "quotation rejected: %s",
        exc.detail,
        extra={
            "error_code": exc.code,
            "request_id": getattr(request.state, "request_id", None),
        },
    )
    return JSONResponse(status_code=status, content=exc.as_dict())


@app.get("/health")
async def health_check():
    return {"status": "active", "version": config.API_VERSION}


@app.get("/metrics")
async def metrics():
    """
    Calculation throughput, average duration, per-stage timings and error
    counts from the in-process PerformanceTracker, plus process memory.
    """
    uptime_seconds = round(time.monotonic() - _PROCESS_START, 1)

    memory_mb: float = 0.0
    try:
        import resource  # Unix only
        usage = resource.getrusage(resource.RUSAGE_SELF)
        # ru_maxrss is in kilobytes on Linux, bytes on macOS
        if sys.platform == "darwin":
            memory_mb = round(usage.ru_maxrss / (1024 * 1024), 2)
        else:
            memory_mb = round(usage.ru_maxrss / 1024, 2)
    except ImportError:
        memory_mb = 0.0

    snapshot = perf_tracker.get_metrics()
    return {
        "uptime_seconds": uptime_seconds,
        "memory_usage_mb": memory_mb,
        **snapshot,
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("precast_estimator.main:app", host="0.0.0.0", port=8000, reload=True)
