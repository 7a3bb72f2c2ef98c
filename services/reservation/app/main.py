import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.utils import get_openapi
from fastapi.responses import JSONResponse
from app.core.database import Base, engine
from app.models import booking, ledger, slot, tenant, waitlist  # noqa: F401  registers tables
from app.routers import admin, public
from app.consumers import handle_reminder_sent, handle_waitlist_expire_requested
from app.services.errors import ReservationError
from app.services.payment_verifier import StripePaymentVerifier
from shared import EventConsumer, EventPublisher, NotificationDispatcher, cleanup_consumer, load_service_config
import asyncio
import logging

# Configure logging
if not logging.root.handlers:
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
logger = logging.getLogger(__name__)

tags_metadata = [
    {
        "name": "Public booking",
        "description": "Availability, booking creation, deposits and waitlist for a business's booking page.",
    },
    {
        "name": "Admin",
        "description": "Booking lifecycle and waitlist management for the business's staff.",
    },
]

_CONFIG = load_service_config("reservation")
_ROOT_PATH = os.getenv("APP_ROOT_PATH", "")
_EVENT_PUBLISHER = EventPublisher(_CONFIG.redis.url, _CONFIG.redis.stream) if _CONFIG.redis.url else None
_NOTIFICATION_PUBLISHER = (
    EventPublisher(_CONFIG.redis.url, _CONFIG.redis.notification_stream) if _CONFIG.redis.url else None
)

# Consumer instance
_consumer: EventConsumer | None = None
_consumer_task: asyncio.Task | None = None


@asynccontextmanager
async def app_lifespan(app: FastAPI):
    """Database bootstrap plus the scheduler event consumer."""
    global _consumer, _consumer_task

    # Database startup with retries
    logger.info("Starting Reservation Service...")
    for attempt in range(10):
        try:
            await asyncio.to_thread(Base.metadata.create_all, bind=engine)
            break
        except Exception as e:
            if attempt < 9:
                logger.warning(f"Database unavailable, retrying... attempt {attempt + 1}: {e}")
                await asyncio.sleep(2.0)
            else:
                logger.error("Database unavailable after 10 attempts, giving up.")
                raise

    if _CONFIG.redis.url:
        _consumer = EventConsumer(
            redis_url=_CONFIG.redis.url,
            stream_name=_CONFIG.redis.scheduler_stream,
            group_name="reservation-service",
            consumer_name="reservation-worker-1",
        )
        _consumer.register_handler("reminder.sent", handle_reminder_sent)
        _consumer.register_handler("waitlist.expire_requested", handle_waitlist_expire_requested)

        _consumer_task = asyncio.create_task(_consumer.start())
        logger.info("Scheduler event consumer started")

    yield

    await cleanup_consumer(_consumer, _consumer_task, logger)
    logger.info("Reservation Service stopped")

lifespan = app_lifespan

app = FastAPI(
    title="Reservation Service",
    version="0.1.0",
    description="Slot reservation, pricing, instrument redemption and booking lifecycle.",
    openapi_tags=tags_metadata,
    root_path=_ROOT_PATH,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS configuration with smart defaults
raw_origins = os.getenv("CORS_ORIGINS", "")

if raw_origins:
    origins = [o.strip() for o in raw_origins.split(",") if o.strip()]
else:
    is_dev = os.getenv("ENVIRONMENT", "development") in ["development", "dev", "test"]
    if is_dev:
        origins = ["*"]
        logger.warning("CORS_ORIGINS not set. Using wildcard (*) for development. Set CORS_ORIGINS in production!")
    else:
        logger.error("CORS_ORIGINS not configured! Set CORS_ORIGINS environment variable.")
        origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.state.config = _CONFIG
app.state.reservation_settings = _CONFIG.reservation
app.state.event_publisher = _EVENT_PUBLISHER
app.state.notifier = NotificationDispatcher(_NOTIFICATION_PUBLISHER)
app.state.payment_verifier = StripePaymentVerifier(currency=_CONFIG.reservation.deposit_currency)


@app.exception_handler(ReservationError)
async def reservation_error_handler(request: Request, exc: ReservationError):
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_payload()))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={
            "error": "Invalid request",
            "code": "VALIDATION_ERROR",
            "details": jsonable_encoder(exc.errors(), exclude={"ctx", "input"}),
        },
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


def custom_openapi_schema():
    if app.openapi_schema:
        return app.openapi_schema
    schema = get_openapi(
        title=app.title,
        version=app.version,
        description=app.description,
        routes=app.routes,
    )
    schema["openapi"] = "3.0.3"
    app.openapi_schema = schema
    return app.openapi_schema


app.openapi = custom_openapi_schema

app.include_router(public.router)
app.include_router(admin.router)


@app.get("/")
def root():
    return {
        "service": "reservation",
        "status": "ok",
        "docs_url": "/docs",
        "config": {
            "redis_stream": _CONFIG.redis.stream,
        },
    }


@app.get("/health")
def health():
    return {"status": "ok"}
