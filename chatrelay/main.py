# chatrelay/main.py

from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from chatrelay.core import state
from chatrelay.core.config import settings
from chatrelay.core.logging import setup_logging, get_logger
from chatrelay.api.routes import root, health, metrics, rooms
from chatrelay.api import websocket as websocket_module

# Configure logging first
setup_logging()
logger = get_logger(__name__)

# FastAPI app
app = FastAPI(title="Chat Relay - room-scoped broadcast")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# REST routes
app.include_router(root.router)
app.include_router(health.router)
app.include_router(metrics.router)
app.include_router(rooms.router)

# WebSocket routes
app.include_router(websocket_module.router)


@app.on_event("startup")
async def startup_event():
    logger.info("🚀 Relay starting - backplane: %s", state.backplane.name)
    await state.backplane.start(state.relay.deliver)


@app.on_event("shutdown")
async def on_shutdown():
    await state.backplane.close()
    logger.info("Relay stopped")


def run() -> None:
    import uvicorn
    uvicorn.run("chatrelay.main:app", host="0.0.0.0", port=8000)


if __name__ == "__main__":
    run()
