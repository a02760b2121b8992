"""
ChatRelay - Main FastAPI Application
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .api import telegram_router
from .channels.telegram import TelegramBot
from .config import settings
from .core.dispatcher import Dispatcher
from .core.logging_config import setup_logging
from .core.orchestrator import ConversationOrchestrator
from .llm.factory import create_llm_provider
from .middleware import RequestLoggingMiddleware
from .storage.session_store import SessionStore

# Logger will be initialized after setup_logging() is called
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events."""
    # Startup: any failure here aborts the process
    setup_logging(settings)
    settings.validate_required()

    store = SessionStore.from_url(settings.database_url)
    await store.initialize()
    logger.info("Session store initialized")

    bot = TelegramBot(
        token=settings.telegram_bot_token,
        api_base=settings.telegram_api_base,
        webhook_secret=settings.telegram_webhook_secret,
    )
    llm_provider = create_llm_provider(
        provider=settings.llm_provider,
        api_key=settings.completion_api_key,
        base_url=settings.llm_base_url,
        timeout=settings.llm_timeout,
        log_calls=settings.log_llm_calls,
        model_map=settings.llm_model_map,
    )
    orchestrator = ConversationOrchestrator(
        store, llm_provider, bot, typing_interval=settings.typing_interval_seconds
    )
    dispatcher = Dispatcher(orchestrator, store, bot)

    app.state.store = store
    app.state.telegram_bot = bot
    app.state.dispatcher = dispatcher

    if settings.telegram_mode == "webhook":
        await bot.set_webhook(settings.telegram_webhook_url)
    else:
        await bot.delete_webhook()
        dispatcher.start_polling(bot, timeout=settings.telegram_polling_timeout)

    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    logger.info(f"Telegram mode: {settings.telegram_mode}")
    logger.info(f"LLM provider: {settings.llm_provider}")
    logger.info(f"Log level: {settings.log_level.upper()}")
    yield
    # Shutdown
    logger.info(f"Shutting down {settings.app_name}")
    await dispatcher.shutdown()
    await store.close()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Telegram relay to an LLM chat completion service, gated by access keys",
    lifespan=lifespan
)

if settings.log_api_requests:
    app.add_middleware(RequestLoggingMiddleware)

app.include_router(telegram_router)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "app": settings.app_name,
        "version": settings.app_version,
        "status": "running",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    dispatcher = getattr(app.state, "dispatcher", None)
    return {
        "status": "healthy",
        "telegram_mode": settings.telegram_mode,
        "pending_messages": dispatcher.pending if dispatcher else 0,
        "version": settings.app_version,
    }


def run():
    """Console entry point."""
    import uvicorn
    uvicorn.run(
        "chatrelay.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug
    )


if __name__ == "__main__":
    run()
