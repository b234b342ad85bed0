"""
Main FastAPI application for the Caseflow backend.
Handles CORS, request logging middleware, lifespan events, and router registration.
"""
import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from caseflow.config import settings
from caseflow.database import close_db, init_db
from caseflow.routers import cases, health, prompts
from caseflow.services.analysis_invoker import AnalysisInvoker
from caseflow.services.processing_leases import ProcessingLeaseRegistry

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Startup / shutdown helpers
# ---------------------------------------------------------------------------

async def _check_database() -> bool:
    """Initialise DB tables and verify the connection.  Returns True on success."""
    try:
        await init_db()
        logger.info("✓ Database connection OK")
        return True
    except Exception as exc:
        logger.error("✗ Database connection failed: %s", exc)
        raise


async def _check_analysis_service() -> bool:
    """Check the analysis service. Never raises; a missing service only warns."""
    reachable = await AnalysisInvoker().check_health()
    if reachable:
        logger.info("✓ Analysis service reachable at %s", settings.AI_SERVICE_URL)
    else:
        logger.warning(
            "⚠ Analysis service not reachable at %s; cases will end in error until it is up",
            settings.AI_SERVICE_URL,
        )
    return reachable


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown event handler."""
    logger.info("=" * 60)
    logger.info("  Starting Caseflow backend …")
    logger.info("=" * 60)

    # 1. Database (required; raises on failure)
    await _check_database()

    # 2. Analysis service (optional; logs warnings but continues)
    await _check_analysis_service()

    logger.info("=" * 60)
    logger.info("  Caseflow backend ready on http://%s:%d", settings.HOST, settings.PORT)
    logger.info("  Swagger UI : http://%s:%d/docs", settings.HOST, settings.PORT)
    logger.info("  Health     : http://%s:%d/api/health", settings.HOST, settings.PORT)
    logger.info("=" * 60)

    yield  # ← server is running

    logger.info("Shutting down Caseflow backend …")
    await close_db()
    logger.info("✓ Shutdown complete.")


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Caseflow API",
    description=(
        "**Caseflow** turns uploaded assessment documents into an AI analysis "
        "report and a structured, section-addressable view of it.\n\n"
        "Key endpoints:\n"
        "- `POST /api/cases`: create a case\n"
        "- `POST /api/cases/{id}/process`: upload documents and run analysis\n"
        "- `GET  /api/cases/{id}/processing`: progress of a running analysis\n"
        "- `GET  /api/cases/{id}/report`: parsed report sections\n"
        "- `POST /api/prompts/lookup-table`: extract a lookup table from prompt text\n"
    ),
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

# One registry per application; guards concurrent processing of a case
app.state.leases = ProcessingLeaseRegistry()


# ---------------------------------------------------------------------------
# CORS
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_allowed_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Request / response logging middleware
# ---------------------------------------------------------------------------

@app.middleware("http")
async def log_requests(request: Request, call_next):
    """
    Log every request with method, path, status code, and elapsed time.
    Attaches an ``X-Process-Time`` header (milliseconds) to every response.
    """
    t0 = time.monotonic()
    response = await call_next(request)
    elapsed_ms = round((time.monotonic() - t0) * 1000, 2)

    # Skip noisy polling from the frontend
    if request.url.path not in ("/api/health", "/api/health/", "/") and not request.url.path.endswith(
        "/processing"
    ):
        logger.info(
            "%s %s → %d  (%.2f ms)",
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
        )

    response.headers["X-Process-Time"] = f"{elapsed_ms}ms"
    return response


# ---------------------------------------------------------------------------
# Global exception handler
# ---------------------------------------------------------------------------

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Return a structured JSON error for any unhandled exception."""
    logger.error(
        "Unhandled exception on %s %s: %s",
        request.method,
        request.url.path,
        exc,
        exc_info=True,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "detail": "Internal server error",
            "error": str(exc),
            "path": str(request.url.path),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    )


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------

app.include_router(health.router,   prefix="/api/health",  tags=["Health"])
app.include_router(cases.router,    prefix="/api/cases",   tags=["Cases"])
app.include_router(prompts.router,  prefix="/api/prompts", tags=["Prompts"])


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------

@app.get("/", tags=["Root"], include_in_schema=False)
async def root():
    """API root; returns basic service info."""
    return {
        "name": "Caseflow API",
        "version": "0.1.0",
        "description": "Assessment case analysis backend",
        "docs": "/docs",
        "health": "/api/health",
        "endpoints": {
            "cases": "/api/cases",
            "prompts": "/api/prompts",
        },
    }


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "caseflow.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=True,
        log_level="info",
    )
