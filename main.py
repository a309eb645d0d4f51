"""
main.py
FastAPI application entry point.
Registers routers, middleware, exception handlers and the startup/shutdown
lifecycle (DB, Redis, startup expiry sweep).
"""

import json
import logging
import os
import time
import traceback
import uuid
from contextlib import asynccontextmanager
from logging import LogRecord

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import AsyncSessionLocal, close_db, get_db, init_db
from config.redis_client import close_redis, get_redis, init_redis
from config.settings import settings
from services.booking.router import router as booking_router
from services.booking.scheduler import BookingExpiryScheduler
from services.branch.router import router as branch_router
from services.notification.dispatcher import get_notifier
from services.notification.router import router as notification_router
from shared.utils.exceptions import BookingPlatformError


# ── Logging ──────────────────────────────────────────────────

class JSONFormatter(logging.Formatter):
    """JSON log formatter for structured logging."""

    def format(self, record: LogRecord) -> str:
        log_data = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "instance": os.getenv("INSTANCE_NAME", "unknown"),
        }
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data, ensure_ascii=False)


def configure_logging() -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter())
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(logging.DEBUG if settings.DEBUG else logging.INFO)


configure_logging()
logger = logging.getLogger(__name__)


# ── Lifespan (startup/shutdown) ───────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle handler."""
    logger.info("🚀 Starting clinic booking API...")

    await init_db()
    logger.info("✅ Database connected")

    await init_redis()
    logger.info("✅ Redis connected")

    # Seed the clinic branches, only in dev
    if settings.APP_ENV == "development":
        await seed_initial_data()

    # Hourly sweeps run from Celery beat (tasks/booking_tasks.py)
    if settings.BOOKING_EXPIRY_SWEEP_ON_STARTUP:
        await BookingExpiryScheduler(notifier=get_notifier()).run_at_startup()

    logger.info(f"🏥 {settings.APP_NAME} v{settings.APP_VERSION} is ready!")
    yield

    await close_redis()
    await close_db()
    logger.info("👋 Server shutdown complete")


# ── App Factory ───────────────────────────────────────────────

def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="""
## Clinic Appointment Booking API

- **Branches**: operating hours, slot generation, availability
- **Bookings**: request → confirm → check-in → check-out, with reschedule, cancel and no-show
- **Expiry**: unconfirmed requests whose slot has passed are removed hourly
- **Notifications**: email, WhatsApp and voice, queued through Celery; in-app inbox

### Authentication
Protected endpoints require `Authorization: Bearer <access_token>`.

### Roles
- `USER`: book, reschedule, cancel, check in/out and rate own appointments
- `STAFF` / `ADMIN`: confirm, reschedule, check in/out, mark no-show, cancel; manage branches
        """,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # ── Middleware (outermost first) ──────────────────────────────
    app.add_middleware(TrustedHostMiddleware, allowed_hosts=["*"])
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Process-Time"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        """Add unique X-Request-ID to every request for tracing."""
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    @app.middleware("http")
    async def process_time_middleware(request: Request, call_next):
        """Track and expose request processing time."""
        start = time.perf_counter()
        response = await call_next(request)
        process_time = round((time.perf_counter() - start) * 1000, 2)
        response.headers["X-Process-Time"] = f"{process_time}ms"
        return response

    @app.middleware("http")
    async def rate_limit_middleware(request: Request, call_next):
        """
        Per-IP fixed window for unauthenticated requests.
        Authenticated traffic is limited upstream (NGINX). Fails open if Redis is down.
        """
        skip_paths = {"/health", "/docs", "/redoc", "/openapi.json", "/metrics"}
        if request.url.path in skip_paths:
            return await call_next(request)

        if request.headers.get("Authorization", "").startswith("Bearer "):
            return await call_next(request)

        try:
            from config.redis_client import RedisCache, redis_client
            if redis_client:
                client_ip = request.client.host if request.client else "unknown"
                allowed = await RedisCache(redis_client).check_rate_limit(
                    f"rate:unauth:{client_ip}", settings.RATE_LIMIT_UNAUTH_PER_MINUTE
                )
                if not allowed:
                    logger.warning(f"Rate limit exceeded for IP {client_ip}")
                    return JSONResponse(
                        status_code=429,
                        content={"detail": "Rate limit exceeded. Please slow down."},
                        headers={"Retry-After": "60"},
                    )
        except Exception as e:
            logger.error(f"Rate limit check failed: {e}")

        return await call_next(request)

    # ── Exception Handlers ─────────────────────────────────────────

    @app.exception_handler(BookingPlatformError)
    async def domain_exception_handler(request: Request, exc: BookingPlatformError):
        request_id = getattr(request.state, "request_id", None)
        logger.info(f"[{request_id}] {exc.code}: {exc.detail}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Catch-all exception handler. Never expose stack traces in production."""
        request_id = getattr(request.state, "request_id", None)
        logger.error(f"[{request_id}] Exception: {exc}", exc_info=True)

        detail = "An internal server error occurred"
        content = {"detail": detail, "request_id": request_id}
        if settings.DEBUG:
            content["detail"] = str(exc)
            content["traceback"] = traceback.format_exc()
        return JSONResponse(status_code=500, content=content)

    # ── Routes ────────────────────────────────────────────────────

    @app.get("/health", tags=["Health"], include_in_schema=False)
    async def health_check(
        db: AsyncSession = Depends(get_db),
        redis=Depends(get_redis),
    ):
        checks = {"status": "ok", "version": settings.APP_VERSION}

        try:
            await db.execute(text("SELECT 1"))
            checks["database"] = "ok"
        except Exception:
            checks["database"] = "error"
            checks["status"] = "degraded"

        try:
            await redis.ping()
            checks["redis"] = "ok"
        except Exception:
            checks["redis"] = "error"
            checks["status"] = "degraded"

        status_code = 200 if checks["status"] == "ok" else 503
        return JSONResponse(content=checks, status_code=status_code)

    @app.get("/", include_in_schema=False)
    async def root():
        return {
            "name": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "docs": "/docs",
            "health": "/health",
        }

    app.include_router(branch_router)
    app.include_router(booking_router)
    app.include_router(notification_router)

    # ── Prometheus Metrics ─────────────────────────────────────────
    Instrumentator().instrument(app).expose(app, endpoint="/metrics", tags=["Monitoring"])

    return app


# ── Dev Data Seeder ───────────────────────────────────────────

SEED_BRANCHES = [
    {
        "name": "Jubilee Hills",
        "address": {
            "line1": "Plot No. 1207, Road No. 36",
            "line2": "Jubilee Hills",
            "city": "Hyderabad",
            "state": "Telangana",
            "pincode": "500033",
        },
        "contact": {"phone": ["7070701099"], "email": "jubileehills@zennara.in"},
        "description": "Flagship clinic with full dermatology and aesthetics suite.",
        "amenities": ["Parking", "Wheelchair Access", "Pharmacy"],
        "display_order": 1,
    },
    {
        "name": "Kokapet",
        "address": {
            "line1": "Narsingi-Kokapet Road",
            "line2": "Kokapet",
            "city": "Hyderabad",
            "state": "Telangana",
            "pincode": "500075",
        },
        "contact": {"phone": ["7070701099"], "email": "kokapet@zennara.in"},
        "description": "Clinic serving the Financial District and Gandipet area.",
        "amenities": ["Parking", "Wheelchair Access"],
        "display_order": 2,
    },
    {
        "name": "Kondapur",
        "address": {
            "line1": "Botanical Garden Road",
            "line2": "Kondapur",
            "city": "Hyderabad",
            "state": "Telangana",
            "pincode": "500084",
        },
        "contact": {"phone": ["7070701099"], "email": "kondapur@zennara.in"},
        "description": "Clinic near HITEC City.",
        "amenities": ["Parking"],
        "display_order": 3,
    },
]


async def seed_initial_data(session_factory=AsyncSessionLocal) -> int:
    """Seed the three clinic branches on first run (development only). Returns rows added."""
    from sqlalchemy import func, select

    from shared.models.models import Branch
    from shared.utils.schedule import default_operating_hours

    async with session_factory() as db:
        count = await db.scalar(select(func.count(Branch.id)))
        if count and count > 0:
            return 0

        for data in SEED_BRANCHES:
            db.add(Branch(operating_hours=default_operating_hours(), slot_duration=30, **data))

        await db.commit()
        logger.info(f"✅ Seeded {len(SEED_BRANCHES)} branches")
        return len(SEED_BRANCHES)


# ── Entry Point ───────────────────────────────────────────────

app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        workers=1 if settings.DEBUG else settings.WORKERS,
        log_level="debug" if settings.DEBUG else "info",
        access_log=True,
    )
