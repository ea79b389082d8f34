"""
Polychat Backend - FastAPI Application
"""
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from polychat.core.config import settings
from polychat.core.logging import setup_logging, get_logger
from polychat.core.database import init_db
from polychat.api import conversations, data, messages, providers

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    setup_logging()
    logger.info("Starting Polychat Backend", version="1.0.0")
    await init_db()
    logger.info("Database initialized")

    yield

    # Shutdown
    logger.info("Shutting down Polychat Backend")


app = FastAPI(
    title="Polychat API",
    description="Multi-provider chat with branching conversation history",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(conversations.router, prefix="/api/conversations", tags=["conversations"])
app.include_router(messages.router, prefix="/api/messages", tags=["messages"])
app.include_router(data.router, prefix="/api/data", tags=["data"])
app.include_router(providers.router, prefix="/api/providers", tags=["providers"])


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "polychat-backend"}
