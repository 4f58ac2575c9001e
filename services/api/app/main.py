"""
Phantom API — entry point.

Startup sequence:
  1. Load settings (fails fast without UPDATE_SECRET)
  2. Configure OTel tracing (→ Jaeger via OTLP)
  3. Create tables if not present
  4. Start the daily similarity-rebuild scheduler
  5. Expose Prometheus /metrics endpoint
"""
import logging

from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app
from sqlalchemy.exc import SQLAlchemyError

from app.config import settings
from app.database import engine, init_db
from app.scheduler import start_scheduler, stop_scheduler
from app.similarity import SimilarityRebuildError
from app.telemetry import setup_tracing, instrument_app
from app.routers import posts, recommendations, subscriptions, users

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)

# Set up tracing before the app is created so all imports are instrumented
setup_tracing()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage startup and shutdown of the DB pool and the scheduler."""
    logger.info("Starting Phantom API (env=%s)", settings.environment)

    await init_db()
    start_scheduler()

    logger.info("API ready.")
    yield

    logger.info("Shutting down...")
    stop_scheduler()
    await engine.dispose()


app = FastAPI(
    title="Phantom API",
    description=(
        "Content-subscription platform: creators, paid posts, subscriptions "
        "and user-similarity recommendations."
    ),
    version="1.0.0",
    lifespan=lifespan,
)

# ── Routers ────────────────────────────────────────────────────────────────
app.include_router(users.router, prefix="/users", tags=["Users"])
app.include_router(users.creators_router, prefix="/creators", tags=["Creators"])
app.include_router(posts.router, prefix="/posts", tags=["Posts"])
app.include_router(
    subscriptions.router, prefix="/subscriptions", tags=["Subscriptions"]
)
app.include_router(
    subscriptions.preferences_router, prefix="/preferences", tags=["Preferences"]
)
app.include_router(
    recommendations.router, prefix="/recommendations", tags=["Recommendations"]
)
app.include_router(recommendations.admin_router, tags=["Admin"])


# ── Error handling ────────────────────────────────────────────────────────
# Store failures surface as a generic 500; details stay in the logs.
@app.exception_handler(SQLAlchemyError)
@app.exception_handler(SimilarityRebuildError)
async def internal_error_handler(request: Request, exc: Exception):
    logger.error(
        "Unhandled %s on %s %s: %s",
        type(exc).__name__, request.method, request.url.path, exc,
        exc_info=exc,
    )
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# ── Prometheus metrics endpoint ────────────────────────────────────────────
# Mounted at /metrics — scraped by Prometheus
metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)

# ── OTel FastAPI instrumentation ──────────────────────────────────────────
instrument_app(app)


@app.get("/health", tags=["Health"])
async def health():
    return {"status": "ok", "service": settings.service_name}
