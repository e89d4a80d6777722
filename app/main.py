import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from app.api.router import api_router
from app.config import settings
from app.core.database import init_db


def setup_logging() -> None:
    """Configure application logging."""
    # Format: timestamp - level - logger name - message
    log_format = "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s"
    date_format = "%H:%M:%S"

    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format=log_format,
        datefmt=date_format,
        stream=sys.stdout,
        force=True,
    )

    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("stripe").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    # Webhook outcomes are logged by the handlers themselves
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    """Application lifespan: startup and shutdown events."""
    setup_logging()
    logger.info("Subscription service starting up")
    if not settings.stripe_webhook_secret:
        logger.warning("STRIPE_WEBHOOK_SECRET not set; Stripe webhooks will be rejected")
    if not settings.revenuecat_webhook_secret:
        logger.warning("REVENUECAT_WEBHOOK_SECRET not set; RevenueCat webhooks will be rejected")
    if settings.webhook_signature_tolerance_seconds is None:
        logger.info("Webhook signatures are verified without a timestamp freshness window")
    if settings.debug:
        await init_db()
    yield
    logger.info("Subscription service shutting down")


app = FastAPI(
    title="Subscription Reconciler API",
    description="Converges Stripe and RevenueCat webhooks into one subscription per principal",
    version="0.1.0",
    lifespan=lifespan,
)

# Trust X-Forwarded-Proto from the TLS-terminating reverse proxy
app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=["*"])

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log failed HTTP requests, skipping OPTIONS preflight and health checks."""
    if request.method == "OPTIONS" or request.url.path == "/health":
        return await call_next(request)

    response = await call_next(request)

    if response.status_code >= 400:
        logger.info(f"{request.method} {request.url.path} -> {response.status_code}")

    return response


# Include API routes
app.include_router(api_router)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}
