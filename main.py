import sys
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from finchat.api.routes import router
from finchat.config import get_settings
from finchat.deps import close_repository, get_repository, get_sessions

settings = get_settings()


def configure_logging(level: str) -> None:
    logger.remove()
    logger.add(sys.stderr, level=level, format="{time:HH:mm:ss} | {level:<7} | {name} | {message}")


async def start_bot(app: FastAPI) -> None:
    """Start Telegram polling when a bot token is configured."""
    if not settings.telegram_bot_token:
        logger.warning("TELEGRAM_BOT_TOKEN not set, chat is available over HTTP only")
        return

    from finchat.bot.handler import build_bot_app

    bot_app = build_bot_app()
    await bot_app.initialize()
    await bot_app.start()
    await bot_app.updater.start_polling(drop_pending_updates=True)
    app.state.bot = bot_app
    logger.info("Telegram bot polling")


async def stop_bot(app: FastAPI) -> None:
    bot_app = getattr(app.state, "bot", None)
    if bot_app is None:
        return
    await bot_app.updater.stop()
    await bot_app.stop()
    await bot_app.shutdown()
    app.state.bot = None
    logger.info("Telegram bot stopped")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Ledger and sessions exist before the first request
    get_repository()
    app.state.sessions = get_sessions()
    logger.info("Ledger ready at {}", settings.db_path or "<memory>")
    await start_bot(app)
    try:
        yield
    finally:
        await stop_bot(app)
        close_repository()


configure_logging(settings.log_level)

app = FastAPI(title="Finchat", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started) * 1000
    logger.info(
        "{} {} -> {} ({:.1f} ms)",
        request.method,
        request.url.path,
        response.status_code,
        elapsed_ms,
    )
    return response


app.include_router(router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())
