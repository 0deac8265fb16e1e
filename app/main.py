"""
Slotlink: capacity-aware redirect links.
Main application entry point.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.resolve import router as resolve_router
from app.api.links import router as links_router
from app.api.candidates import router as candidates_router
from app.api.admin import router as admin_router
from app.middleware.security import SecurityHeadersMiddleware
from app.config import get_settings

import structlog

structlog.configure(
    processors=[
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        structlog.dev.ConsoleRenderer() if get_settings().debug else structlog.processors.JSONRenderer(),
    ],
)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("slotlink_starting", base_url=get_settings().base_url)
    yield
    logger.info("slotlink_shutting_down")


app = FastAPI(
    title="Slotlink",
    description="One public link, many capacity-limited destinations. First group with room wins.",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs" if get_settings().debug else None,
    redoc_url="/redoc" if get_settings().debug else None,
    openapi_url="/openapi.json" if get_settings().debug else None,
)

# Security headers on every response
app.add_middleware(SecurityHeadersMiddleware)

# The resolve endpoint is called from the public landing page
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["GET", "POST", "PUT", "PATCH"],
    allow_headers=["X-API-Key", "Content-Type"],
)

# --- Routes ---
app.include_router(resolve_router)
app.include_router(links_router)
app.include_router(candidates_router)
app.include_router(admin_router)


@app.get("/health")
async def health():
    return {"status": "ok", "service": "slotlink", "version": "0.1.0"}
