"""Application factory for the voice assistant service."""

from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import Settings, get_settings
from .routers.voice_assistant import router as voice_router
from .services.openai_client import create_openai_client
from .services.turn_pipeline import TurnPipeline
from .services.voice_session import VoiceConnectionManager

_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


def configure_logging(settings: Settings) -> int:
    """Configure logging from settings and the LOG_LEVEL environment variable."""
    # Load .env file first to ensure LOG_LEVEL is available
    load_dotenv()

    if settings.debug:
        log_level = logging.DEBUG
    else:
        log_level_str = os.getenv("LOG_LEVEL", "INFO").upper()
        log_level = getattr(logging, log_level_str, logging.INFO)

    handlers: list[logging.Handler] = []

    if settings.log_file:
        settings.log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(settings.log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(_LOG_FORMAT, datefmt=_LOG_DATEFMT))
        handlers.append(file_handler)

    # Always add console handler
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(logging.Formatter(_LOG_FORMAT, datefmt=_LOG_DATEFMT))
    handlers.append(console_handler)

    logging.basicConfig(
        level=log_level,
        handlers=handlers,
        force=True,  # Override any existing configuration
    )

    logging.getLogger("voice_assistant").setLevel(log_level)
    logging.getLogger("uvicorn").setLevel(log_level)
    logging.getLogger("uvicorn.error").setLevel(log_level)

    # Quiet down noisy third-party libraries
    for name in ("httpx", "httpcore", "openai"):
        logging.getLogger(name).setLevel(
            log_level if log_level <= logging.DEBUG else logging.WARNING
        )

    return log_level


def create_app() -> FastAPI:
    settings = get_settings()

    # Configure logging first thing
    configure_logging(settings)

    manager = VoiceConnectionManager()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        settings.recordings_path.mkdir(parents=True, exist_ok=True)
        client = create_openai_client(settings)
        pipeline = TurnPipeline.from_settings(settings, client=client)
        pipeline.set_event_callback(manager.publish)
        app.state.pipeline = pipeline
        logging.info(
            f"Voice pipeline ready (model={settings.generation_model}, "
            f"api={settings.generation_api}, context={settings.context_mode})"
        )
        try:
            yield
        finally:
            # Add timeout to prevent hanging during shutdown (especially in tests)
            try:
                await asyncio.wait_for(pipeline.shutdown(), timeout=10.0)
            except asyncio.TimeoutError:
                logging.warning("Pipeline shutdown timed out after 10s")
            except Exception as exc:
                logging.warning("Error during pipeline shutdown: %s", exc)
            await client.close()

    app = FastAPI(
        title="Voice Assistant Backend",
        version="0.1.0",
        description="Conversational voice turns powered by OpenAI speech and text models.",
        lifespan=lifespan,
    )

    app.state.voice_manager = manager

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(voice_router)

    @app.get("/health", tags=["health"])
    async def healthcheck() -> dict[str, str | int]:
        return {
            "status": "ok",
            "generation_model": settings.generation_model,
            "clients": len(manager.clients),
        }

    return app


__all__ = ["configure_logging", "create_app"]
