"""
FastAPI application entry point
"""
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from blockserved.core.config import settings
from blockserved.api.v1.api import api_router
from blockserved.core.logger import logger
from blockserved.db.database import init_db
from blockserved.middleware.client_context import ClientContextMiddleware
from blockserved.middleware.correlation import CorrelationMiddleware
from blockserved.services.background_jobs import shutdown_scheduler, start_scheduler

app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
    openapi_url="/openapi.json" if settings.DEBUG else None,
)

# ── Routers ───────────────────────────────────────────────────────────────────
app.include_router(api_router, prefix="/api")

# ── Request context middleware (added before CORS so CORS wraps them) ─────────
app.add_middleware(ClientContextMiddleware)
app.add_middleware(CorrelationMiddleware)

# ── CORS ──────────────────────────────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_origin_regex=settings.CORS_ORIGIN_REGEX,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Correlation-ID", "Content-Disposition"],
)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    correlation_id = getattr(request.state, "correlation_id", None)
    logger.exception(
        "Unhandled error on %s %s (correlation_id=%s)",
        request.method, request.url.path, correlation_id,
    )
    return JSONResponse(
        status_code=500,
        content={"success": False, "detail": "Internal server error", "correlationId": correlation_id},
    )


@app.get("/")
def read_root():
    logger.info("Root endpoint accessed")
    return {"message": "BlockServed API is running", "version": "1.0.0", "network": settings.TRON_NETWORK}


@app.get("/health")
def health_check():
    return {"status": "healthy"}


# ── Startup / Shutdown ────────────────────────────────────────────────────────

@app.on_event("startup")
async def startup_event():
    init_db()
    if settings.SCHEDULER_ENABLED:
        start_scheduler()
    else:
        logger.info("Background scheduler disabled")
    logger.info("BlockServed API started (network=%s)", settings.TRON_NETWORK)


@app.on_event("shutdown")
async def shutdown_event():
    shutdown_scheduler()
    logger.info("BlockServed API shutdown")
