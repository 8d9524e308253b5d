"""
FastAPI app factory.

Responsibilities:
- Create and configure FastAPI app
- Set up middleware
- Initialize shared resources (OpenAI client, caption service)
- Register routes
- Stop every caption session on shutdown
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from openai import AsyncOpenAI

import observability.logger as logger
from capture.source import StreamFrameSource
from config import AppConfig
from context.history import RecentHistory
from dispatch.transcriber import OpenAITranscriber
from server.broadcaster import EventBroadcaster
from server.routes import register_routes
from session.service import CaptionService


def create_app(
    config: AppConfig | None = None,
    *,
    service: CaptionService | None = None,
    broadcaster: EventBroadcaster | None = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    `service` / `broadcaster` may be injected (tests); otherwise they are
    built from config.
    """
    config = config or AppConfig.load_from_env()
    logger.configure(enabled=config.enable_json_logs)

    broadcaster = broadcaster or EventBroadcaster()
    if service is None:
        service = build_caption_service(config=config, sink=broadcaster)

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        yield
        await service.stop_all()

    app = FastAPI(title="Live Caption API", lifespan=lifespan)

    app.state.config = config
    app.state.caption_service = service
    app.state.broadcaster = broadcaster

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # tighten later
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_routes(app)

    return app


def build_caption_service(*, config: AppConfig, sink: EventBroadcaster) -> CaptionService:
    """Wire the production collaborators."""
    if not config.openai_api_key:
        raise RuntimeError("OPENAI_API_KEY environment variable not set")

    client = AsyncOpenAI(api_key=config.openai_api_key)
    return CaptionService(
        source=StreamFrameSource.from_config(config),
        transcriber=OpenAITranscriber(client=client, model=config.transcription_model),
        sink=sink,
        history=RecentHistory(),
        settings=config.pipeline,
        base_prompt=config.transcription_prompt,
    )
