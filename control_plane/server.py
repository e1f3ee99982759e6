"""
HTTP server for the voice bot control plane.

The bot is built from the environment when the app starts and shut down
(leaving every room) when it stops.
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI

from logging_setup import get_logger, Component
from observability.event_store import event_store
from voice_bot.bot import create_voice_bot

from .control_api import router as control_router, set_voice_bot

logger = get_logger(Component.CONTROL_PLANE)


@asynccontextmanager
async def lifespan(app: FastAPI):
    bot = create_voice_bot()
    set_voice_bot(bot)
    logger.info("Control plane started")
    try:
        yield
    finally:
        await bot.shutdown()
        set_voice_bot(None)
        logger.info("Control plane stopped")


app = FastAPI(title="Voice Bot Control Plane", lifespan=lifespan)
app.include_router(control_router)


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "ok", "component": "control_plane", "events": event_store.get_stats()}
