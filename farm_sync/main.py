"""FastAPI application entry point."""
import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Coroutine, Optional, Set

import uvicorn
from fastapi import FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from farm_sync import dependencies
from farm_sync.routes import alerts, control, live
from farm_sync.sync import FarmSyncSession
from farm_sync.websocket import websocket_manager

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

poll_task: Optional[asyncio.Task] = None
_pending_broadcasts: Set[asyncio.Task] = set()


def _schedule(coro: Coroutine[Any, Any, Any]) -> None:
    """Run a broadcast coroutine without blocking the dispatcher."""
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        coro.close()
        return
    task = loop.create_task(coro)
    _pending_broadcasts.add(task)
    task.add_done_callback(_pending_broadcasts.discard)


def attach_ui_broadcasts(session: FarmSyncSession) -> None:
    """Forward routed messages and state changes to UI WebSocket clients."""
    session.dispatcher.on_routed(lambda message: _schedule(websocket_manager.broadcast_routed(message)))
    session.connection.on_lifecycle(
        lambda state, error: _schedule(websocket_manager.broadcast_connection_state(state.value, error))
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    global poll_task

    session = FarmSyncSession(dependencies.get_config_loader())
    attach_ui_broadcasts(session)
    dependencies.set_session(session)

    try:
        await session.refresh_devices()
        await session.start()
        poll_task = asyncio.create_task(session.poll_forever())
        logger.info("✅ Sync session started")
    except Exception as e:
        logger.error(f"❌ Error starting sync session: {e}", exc_info=True)
        raise

    try:
        yield
    finally:
        logger.info("🛑 Shutting down sync session")
        if poll_task and not poll_task.done():
            poll_task.cancel()
            try:
                await asyncio.wait_for(poll_task, timeout=5.0)
            except asyncio.TimeoutError:
                logger.warning("⚠️  Bulk pull task did not cancel within 5 second timeout")
            except asyncio.CancelledError:
                logger.info("✅ Bulk pull task cancelled")
        poll_task = None

        await session.stop()
        dependencies.set_session(None)
        logger.info("✅ Shutdown complete")


app = FastAPI(title="Farm Sync API", version="1.0.0", lifespan=lifespan)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle unhandled exceptions in request handlers."""
    logger.error(
        f"❌ Unhandled exception in {request.method} {request.url.path}: {exc}",
        exc_info=True
    )
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "detail": "An error occurred"}
    )


app.add_middleware(
    CORSMiddleware,
    allow_origins=dependencies.get_config_loader().get_frontend_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(live.router)
app.include_router(alerts.router)
app.include_router(control.router)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    try:
        session = dependencies.get_session()
    except HTTPException:
        session = None
    return {
        "status": "ok",
        "timestamp": datetime.now().isoformat(),
        "connection": session.connection.state.value if session else "not started",
        "poll_task": "running" if poll_task and not poll_task.done() else "stopped",
    }


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """WebSocket endpoint for real-time updates to the UI."""
    await websocket_manager.connect(websocket)
    try:
        while True:
            # Keep connection alive; answer pings
            data = await websocket.receive_text()
            if data == "ping":
                await websocket.send_text("pong")
    except WebSocketDisconnect:
        websocket_manager.disconnect(websocket)


if __name__ == "__main__":
    uvicorn.run(
        "farm_sync.main:app",
        host="0.0.0.0",
        port=8000,
    )
