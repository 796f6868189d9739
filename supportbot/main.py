import asyncio
import os

import uvicorn
from fastapi import FastAPI
from fastapi.responses import JSONResponse

from supportbot.config import get_settings
from supportbot.logging_config import get_logger, setup_logging
from supportbot.routers import admin
from supportbot.runtime import BotRuntime
from supportbot.services.stream_service import StreamExhaustedError

setup_logging(os.environ.get("LOG_LEVEL", "INFO"))

app = FastAPI(
    title="Community Support Bot",
    description="Multi-tenant support bot for community chat feeds",
    version="0.1.0",
)
app.state.runtime = None

app.include_router(admin.router)

logger = get_logger("main")


def _is_startup_enabled() -> bool:
    return not os.environ.get("PYTEST_CURRENT_TEST")


def _exit_on_stream_exhausted(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    if isinstance(task.exception(), StreamExhaustedError):
        logger.error("Stream reconnect attempts exhausted, exiting for supervisor restart")
        os._exit(1)


@app.on_event("startup")
async def start_runtime() -> None:
    if not _is_startup_enabled():
        return
    settings = get_settings()
    setup_logging(settings.log_level)
    runtime = BotRuntime(settings)
    app.state.runtime = runtime
    if not settings.bot_worker_enabled:
        logger.info("Bot worker disabled, serving admin API only")
        return
    await runtime.start()
    runtime.stream_task.add_done_callback(_exit_on_stream_exhausted)


@app.on_event("shutdown")
async def stop_runtime() -> None:
    runtime = app.state.runtime
    if runtime is None:
        return
    await runtime.stop()
    app.state.runtime = None


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/health/ready")
async def ready():
    runtime = app.state.runtime
    if runtime is None or not runtime.is_running or not runtime.stream.connected:
        return JSONResponse(status_code=503, content={"status": "not_ready"})
    return {"status": "ready"}


def run() -> None:
    """``supportbot-api``: serve the admin API with the bot running in-process."""
    uvicorn.run(
        "supportbot.main:app",
        host=os.environ.get("HOST", "0.0.0.0"),
        port=int(os.environ.get("PORT", "8000")),
    )
