"""
FastAPI application entry point
"""
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from taleforge.config import settings, validate_config
from taleforge.routers import combat_router

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Create the FastAPI app
app = FastAPI(
    title="Taleforge Combat API",
    description="Turn-based combat engine for AI-narrated encounters",
    version="0.1.0",
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routers
app.include_router(combat_router, prefix=settings.api_prefix, tags=["Combat"])


@app.on_event("startup")
async def startup_event():
    """Check configuration on startup"""
    if validate_config():
        logger.info("configuration OK")
    else:
        logger.warning("configuration invalid; check the COMBAT_* environment variables")
    logger.info("API docs: http://localhost:8000/docs")


@app.get("/")
async def root():
    """Root"""
    return {
        "message": "Taleforge Combat API",
        "version": "0.1.0",
        "docs": "/docs",
    }


@app.get("/health")
async def health():
    return {"status": "ok"}
