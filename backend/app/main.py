"""
FastAPI application entrypoint.

Lifespan:
  • On startup: verify DB connectivity.
  • On shutdown: close the upstream HTTP client, dispose the engine.

Routers:
  • /api/v1     OpenAI-compatible inference API (Bearer nai_ keys)
  • /api/keys   key management (dashboard session)
  • /api        analytics, usage, dashboard stats (dashboard session)
  • /health     shallow liveness probe
"""

import logging
from contextlib import asynccontextmanager
from collections.abc import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from app.core.config import settings
from app.core.database import engine
from app.core.errors import GatewayError
from app.routers.analytics import router as analytics_router
from app.routers.inference import router as inference_router
from app.routers.keys import router as keys_router
from app.services.llm_client import close_inference_client

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)


# ── Lifespan ────────────────────────────────────────────────
@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Startup / shutdown lifecycle."""

    # Startup: verify the DB is reachable
    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
        logger.info("Database connection verified ✓")
    except Exception:
        logger.warning(
            "Could not reach the database on startup. "
            "The app will start, but requests will fail until the DB is available."
        )

    logger.info("Proxying inference to %s", settings.LLM_BASE_URL)

    yield  # ← application runs here

    # Shutdown: upstream client first, then the connection pool
    await close_inference_client()
    await engine.dispose()
    logger.info("Database engine disposed ✓")


# ── App ─────────────────────────────────────────────────────
app = FastAPI(
    title=settings.APP_NAME,
    version="0.1.0",
    description=(
        "API-key-gated inference gateway: an OpenAI-compatible proxy "
        "with per-key usage accounting and dashboard analytics."
    ),
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Errors ──────────────────────────────────────────────────
@app.exception_handler(GatewayError)
async def gateway_error_handler(_request: Request, exc: GatewayError) -> JSONResponse:
    """Render the error taxonomy as {"error": ..., ...} bodies."""
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_body(),
        headers=exc.headers,
    )


# Mount routers
app.include_router(inference_router, prefix="/api/v1")
app.include_router(keys_router, prefix="/api/keys")
app.include_router(analytics_router, prefix="/api")


# ── Health check ────────────────────────────────────────────
@app.get(
    "/health",
    tags=["System"],
    summary="Liveness probe",
)
async def health_check() -> dict[str, str]:
    """Shallow health check. Confirms the process is alive."""
    return {"status": "healthy"}
