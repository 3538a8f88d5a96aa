import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from config.logging_config import setup_logging
from config.settings import get_settings
from services.assessment_engine.controller import build_controller
from src.cache.connection import close_redis
from src.messaging.kafka_client import flush_producer
from src.middleware.rate_limit import RateLimitingMiddleware
from src.routers import assessment as assessment_router
from src.services.session_store import build_session_store

settings = get_settings()

# Configure logging VERY early
setup_logging(settings.log_level)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Neurlyn assessment API starting up...")
    yield
    logger.info("Neurlyn assessment API shutting down...")
    flush_producer(timeout=5.0)
    await close_redis()
    logger.info("Neurlyn assessment API stopped gracefully.")


app = FastAPI(title="Neurlyn Adaptive Assessment API", lifespan=lifespan)

# One controller per process; sessions live in the store, not here
app.state.session_store = build_session_store(settings)
app.state.controller = build_controller(settings, app.state.session_store)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
if settings.rate_limit_enabled:
    app.add_middleware(RateLimitingMiddleware, limit_per_minute=settings.rate_limit_per_minute)

# --- Include Routers ---
app.include_router(assessment_router.router, prefix="/api/v1/adaptive", tags=["adaptive-assessment"])


@app.get("/health", tags=["Health Check"])
async def health():
    """Liveness check."""
    return {"status": "ok", "message": "Neurlyn adaptive assessment engine is running."}


@app.get("/health/store", tags=["Health Check"])
async def health_check_store():
    """
    Session store health check. Returns 503 when the store cannot be reached.
    """
    store = app.state.session_store
    if not await store.ping():
        logger.error("Session store health check failed")
        raise HTTPException(status_code=503, detail="Session store unavailable")
    return {"status": "ok", "store": type(store).__name__}


if __name__ == "__main__":
    import uvicorn
    # Better to run with `uvicorn main:app --reload` from the project root directory
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
