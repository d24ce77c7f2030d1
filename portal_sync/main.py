from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from contextlib import asynccontextmanager
import asyncio
import logging
import uuid

from .config import settings
from .database import create_tables, SessionLocal
from .utils.logging_config import setup_logging, set_request_context, clear_request_context

from .routers import sync

logger = logging.getLogger(__name__)


def drain_once() -> None:
    """One drain pass with a fresh DB session; used by the background loop"""
    from .services.portal_session import PortalSessionStore, SessionContext
    from .services.queue_drainer import QueueDrainer

    db = SessionLocal()
    try:
        session = SessionContext.from_store(
            PortalSessionStore(db),
            identity_email=settings.portal_identity_email or None
        )
        result = QueueDrainer(db).drain(session)
        if result.processed:
            logger.info(f"Sync worker: {result.processed} processed, {result.remaining} remaining")
    finally:
        db.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    setup_logging(level=settings.log_level, json_format=settings.log_json)

    logger.info("Starting portal-sync...")
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"Portal API: {settings.portal_api_base_url}")

    create_tables()

    # ==========================================
    # BACKGROUND SYNC QUEUE WORKER
    # ==========================================
    worker_task = None
    worker_running = True
    worker_logger = logging.getLogger("sync_worker")

    async def run_sync_worker():
        poll_interval = settings.worker_poll_interval
        worker_logger.info(f"Sync worker started (interval: {poll_interval}s)")

        while worker_running:
            try:
                await asyncio.to_thread(drain_once)
            except Exception as e:
                worker_logger.error(f"Sync worker error: {e}")

            await asyncio.sleep(poll_interval)

    if settings.portal_sync_enabled:
        worker_task = asyncio.create_task(run_sync_worker())
    else:
        logger.warning("Portal sync disabled, background worker not started")

    yield

    logger.info("Shutting down portal-sync...")
    worker_running = False
    if worker_task:
        worker_task.cancel()
        try:
            await worker_task
        except asyncio.CancelledError:
            pass
        worker_logger.info("Sync worker stopped")


app = FastAPI(
    title="Portal Sync API",
    description="Dual-write sync between the Portal and the local mirror",
    version="1.0.0",
    lifespan=lifespan
)


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"],
)


# Request ID Middleware
class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4())[:8])
        request.state.request_id = request_id
        set_request_context(request_id)
        try:
            response = await call_next(request)
        finally:
            clear_request_context()
        response.headers["X-Request-ID"] = request_id
        return response


app.add_middleware(RequestIdMiddleware)


app.include_router(sync.router)


@app.get("/")
async def root():
    return {
        "message": "Portal Sync API",
        "version": "1.0.0",
        "docs": "/docs",
        "status": "running"
    }


@app.get("/health")
async def health_check():
    return {"status": "healthy"}
