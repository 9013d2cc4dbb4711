"""
FastAPI application main module.
Wires storage, the verification queue and workers, and the payout gateways
into the app, plus request logging, error rendering and health checks.
"""
from fastapi import FastAPI, Request, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse, Response
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
import mimetypes
import time
import uuid
import os
from contextlib import asynccontextmanager

from ecopoints import __version__
from ecopoints.api.v1 import api_router
from ecopoints.config import QUEUE_SETTINGS, VERIFICATION_SETTINGS
from ecopoints.database import Base, SessionLocal, engine
from ecopoints.errors import EcoPointsError
from ecopoints.gateways import PayoutGatewayService
from ecopoints.jobs.worker_verification import VerificationWorker, create_queue, enqueue_verification
from ecopoints.services.media import FfmpegMediaProber
from ecopoints.services.submission_ledger import requeue_pending
from ecopoints.storage import LocalFileStorage, create_storage
from ecopoints.utils import setup_logging, get_logger
from ecopoints.utils.circuit_breaker import GATEWAY_CIRCUIT_BREAKER

# Setup logging before creating the app
setup_logging(
    log_level=os.getenv("LOG_LEVEL", "INFO"),
    log_file=os.getenv("LOG_FILE", "logs/app.log"),
    enable_console=True
)

logger = get_logger(__name__)


def _requeue_unfinished(queue) -> int:
    """Re-enqueue submissions a previous process left unfinished (queued or uncredited)."""
    session = SessionLocal()
    try:
        ids = requeue_pending(session)
    finally:
        session.close()
    for submission_id in ids:
        enqueue_verification(queue, submission_id, correlation_id="startup-requeue")
    return len(ids)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Components already placed on ``app.state`` (tests) are kept as they are.
    """
    logger.info("Application startup initiated")
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables ready")

    state = app.state
    if getattr(state, "storage", None) is None:
        state.storage = create_storage()
    if getattr(state, "gateways", None) is None:
        state.gateways = PayoutGatewayService()
    if getattr(state, "verification_queue", None) is None:
        state.verification_queue = create_queue()

    worker = None
    if VERIFICATION_SETTINGS.get("start_worker", True):
        worker = VerificationWorker(state.verification_queue, state.storage, FfmpegMediaProber())
        worker.start()
        requeued = _requeue_unfinished(state.verification_queue)
        logger.info("Verification workers started", requeued_submissions=requeued)
    state.verification_worker = worker

    logger.info("Application startup completed successfully")
    try:
        yield
    finally:
        logger.info("Application shutdown initiated")
        state.verification_queue.shutdown()
        if worker is not None:
            worker.stop(timeout=5)
        logger.info("Application shutdown completed")


app = FastAPI(
    title="EcoPoints Waste Collection Rewards",
    description="""
    Tourists film themselves dropping waste at registered collection points,
    earn points for verified videos and cash them out.

    ## Flow
    * **Upload** the raw video to `POST /api/v1/submissions/media`
    * **Submit** it with location and capture time; verification runs in the background
    * **Moderators** approve or reject what the automatic check could not decide
    * **Cash out** points through Stripe, PayPal, bank transfer, crypto or UPI

    ## Authentication
    Use Bearer token authentication with the API key returned at registration:
    ```
    Authorization: Bearer <api_key>
    ```
    """,
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/api/v1/openapi.json",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(GZipMiddleware, minimum_size=1000)


@app.middleware("http")
async def add_request_context_and_logging(request: Request, call_next):
    """
    Attach a request ID, time the request and log start / completion.
    """
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id
    start_time = time.time()

    logger.info(
        "Request started",
        method=request.method,
        path=request.url.path,
        user_agent=request.headers.get("User-Agent"),
        remote_addr=request.client.host if request.client else "unknown",
        request_id=request_id
    )

    response = await call_next(request)

    process_time_ms = round((time.time() - start_time) * 1000, 2)
    response.headers["X-Request-ID"] = request_id
    response.headers["X-Process-Time"] = str(process_time_ms)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"

    logger.info(
        "Request completed",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        process_time_ms=process_time_ms,
        request_id=request_id
    )
    return response


@app.exception_handler(EcoPointsError)
async def domain_exception_handler(request: Request, exc: EcoPointsError):
    """Render domain errors with their HTTP status and machine-readable code."""
    request_id = getattr(request.state, "request_id", "unknown")
    log = logger.error if exc.http_status >= 500 else logger.warning
    log(
        "Domain error",
        error_code=exc.error_code,
        category=exc.category,
        error=exc.message,
        request_id=request_id,
        path=request.url.path,
        method=request.method
    )
    return JSONResponse(
        status_code=exc.http_status,
        content={
            "success": False,
            "message": exc.message,
            "error_code": exc.error_code,
            "request_id": request_id
        }
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    request_id = getattr(request.state, "request_id", "unknown")
    errors = exc.errors()
    logger.warning(
        "Request validation failed",
        errors=str(errors),
        request_id=request_id,
        path=request.url.path,
        method=request.method
    )
    return JSONResponse(
        status_code=422,
        content={
            "success": False,
            "message": "Request validation failed",
            "error_code": "request_validation_failed",
            "details": [{k: v for k, v in e.items() if k in ("loc", "msg", "type")} for e in errors],
            "request_id": request_id
        }
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    request_id = getattr(request.state, "request_id", "unknown")
    logger.warning(
        "HTTP exception",
        status_code=exc.status_code,
        detail=str(exc.detail),
        request_id=request_id,
        path=request.url.path,
        method=request.method
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "message": exc.detail,
            "request_id": request_id
        },
        headers=getattr(exc, "headers", None)
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    request_id = getattr(request.state, "request_id", "unknown")
    logger.error(
        "Unhandled exception",
        error=str(exc),
        error_type=type(exc).__name__,
        request_id=request_id,
        path=request.url.path,
        method=request.method,
        exc_info=True
    )
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "message": "Internal server error",
            "request_id": request_id
        }
    )


@app.get("/media/{key:path}", tags=["media"], summary="Signed media download")
async def serve_media(
    key: str,
    request: Request,
    expires: int = Query(...),
    signature: str = Query(...),
):
    """Serves files from local storage for URLs produced by ``signed_url``."""
    storage = getattr(request.app.state, "storage", None)
    if not isinstance(storage, LocalFileStorage) or not storage.verify_signed(key, expires, signature):
        raise StarletteHTTPException(status_code=404, detail="Media not found")
    data = storage.fetch(key)
    media_type = mimetypes.guess_type(key)[0] or "application/octet-stream"
    return Response(content=data, media_type=media_type)


@app.get("/health", tags=["health"], summary="Basic health check")
async def health_check():
    """Basic health check endpoint for load balancers."""
    return {
        "status": "healthy",
        "service": "ecopoints",
        "version": __version__,
        "timestamp": time.time(),
        "queue_backend": "redis" if QUEUE_SETTINGS.get("use_redis", False) else "memory",
    }


@app.get("/health/detailed", tags=["health"], summary="Detailed health check")
async def detailed_health_check(request: Request):
    """Database, queue, worker and gateway breaker status."""
    health_status = {
        "status": "healthy",
        "service": "ecopoints",
        "version": __version__,
        "timestamp": time.time(),
        "checks": {}
    }

    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        health_status["checks"]["database"] = "healthy"
    except SQLAlchemyError as e:
        health_status["checks"]["database"] = f"unhealthy: {e}"
        health_status["status"] = "degraded"
    finally:
        db.close()

    state = request.app.state
    queue = getattr(state, "verification_queue", None)
    if queue is not None:
        snap = queue.snapshot()
        health_status["checks"]["queue"] = {
            k: v for k, v in snap.items() if k in {"backend", "depth", "ready", "scheduled", "redis_active"}
        }
        if QUEUE_SETTINGS.get("use_redis", False) and not snap.get("redis_active", False):
            health_status["status"] = "degraded"

    worker = getattr(state, "verification_worker", None)
    health_status["checks"]["verification_worker"] = worker.snapshot() if worker is not None else "disabled"
    health_status["checks"]["gateway_breakers"] = GATEWAY_CIRCUIT_BREAKER.snapshot()
    return health_status


@app.get("/", tags=["root"])
async def root():
    """API root endpoint with basic information."""
    return {
        "message": "EcoPoints Waste Collection Rewards API",
        "version": __version__,
        "documentation": "/docs",
        "health_check": "/health",
        "api_base": "/api/v1"
    }


app.include_router(api_router, prefix="/api/v1")

if __name__ == "__main__":
    import uvicorn

    logger.info("Starting development server")
    uvicorn.run(
        "ecopoints.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        reload_dirs=["ecopoints"],
        log_level="info",
        access_log=True
    )
