"""Application factory for the FastAPI service."""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .chat_client import ChatClient
from .config import Settings, get_settings
from .routers.voice import router as voice_router
from .services.tts_service import TTSService
from .services.voice_chat_service import VoiceChatService
from .services.voice_session import VoiceConnectionManager

logger = logging.getLogger(__name__)


def _configure_logging() -> None:
    """Configure logging based on LOG_LEVEL environment variable."""
    # Load .env file first to ensure LOG_FILE is available
    load_dotenv()

    log_level_str = os.getenv("LOG_LEVEL", "INFO").upper()
    log_level = getattr(logging, log_level_str, logging.INFO)

    formatter = logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    handlers: list[logging.Handler] = []

    log_file = os.getenv("LOG_FILE")
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    # Always add console handler
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    handlers.append(console_handler)

    logging.basicConfig(
        level=log_level,
        handlers=handlers,
        force=True,  # Override any existing configuration
    )

    logging.getLogger("voicechat").setLevel(log_level)
    logging.getLogger("uvicorn").setLevel(log_level)
    logging.getLogger("uvicorn.access").setLevel(log_level)
    logging.getLogger("uvicorn.error").setLevel(log_level)

    # Quiet down noisy HTTP client logs unless debugging
    if log_level > logging.DEBUG:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    # Configure logging first thing
    _configure_logging()

    settings = settings or get_settings()

    chat_client = ChatClient(settings)
    voice_chat_service = VoiceChatService(chat_client, settings)
    tts_service = TTSService(settings)
    voice_manager = VoiceConnectionManager()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        try:
            yield
        finally:
            try:
                await voice_manager.disconnect_all()
            except Exception as exc:
                logger.warning("Error closing voice sessions: %s", exc)
            await ChatClient.aclose_shared()
            await TTSService.close_http_client()

    app = FastAPI(
        title="Streaming Voice Chat",
        version="0.1.0",
        description="Speaks language-model replies sentence by sentence.",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.voice_chat_service = voice_chat_service
    app.state.tts_service = tts_service
    app.state.voice_manager = voice_manager

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(voice_router)

    @app.get("/health", tags=["health"])
    async def healthcheck() -> dict[str, object]:
        return {
            "status": "ok",
            "chat_model": settings.chat_model,
            "tts_model": settings.tts_model,
            "active_clients": len(voice_manager.active_connections),
        }

    return app


__all__ = ["create_app"]
