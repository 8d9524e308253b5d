"""
Route registration for the caption API.

Responsibilities:
- Channel start/stop control
- Chat message ingest (the chat-room collaborator posts here)
- Follow-up ingest (correction/translation collaborators post here)
- WebSocket fan-out of caption events
- Pull dependencies from app.state
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Literal

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, Field

from observability.logger import log_event
from server.broadcaster import EventBroadcaster
from session.service import CaptionService


class ChatMessageIn(BaseModel):
    """Body of POST /channels/{channel}/messages."""
    username: str
    text: str = Field(min_length=1)


class FollowUpIn(BaseModel):
    """Body of POST /channels/{channel}/transcriptions/{id}/follow-up."""
    kind: Literal["corrected", "translation"]
    text: str = Field(min_length=1)


def _service(app: FastAPI) -> CaptionService:
    return app.state.caption_service


def _validate_channel(channel: str) -> str:
    name = channel.strip().lower()
    if not name or not name.replace("_", "").isalnum():
        raise HTTPException(status_code=422, detail="invalid channel name")
    return name


def register_routes(app: FastAPI) -> None:
    """Register all routes on the FastAPI app."""
    @app.get("/health")
    async def health() -> dict[str, Any]: # pyright: ignore[reportUnusedFunction]
        return {
            "status": "ok",
            "active_channels": list(_service(app).active_channels),
        }

    @app.post("/channels/{channel}/start")
    async def start_channel(channel: str) -> dict[str, Any]: # pyright: ignore[reportUnusedFunction]
        name = _validate_channel(channel)
        session = await _service(app).start(name)
        return {"channel": name, "state": session.state.value}

    @app.post("/channels/{channel}/stop")
    async def stop_channel(channel: str) -> dict[str, Any]: # pyright: ignore[reportUnusedFunction]
        name = _validate_channel(channel)
        stopped = await _service(app).stop(name)
        return {"channel": name, "stopped": stopped}

    @app.post("/channels/{channel}/messages")
    async def post_chat_message(channel: str, body: ChatMessageIn) -> dict[str, Any]: # pyright: ignore[reportUnusedFunction]
        name = _validate_channel(channel)
        msg = _service(app).record_chat(name, body.username, body.text)
        return {"channel": name, "ts": msg.ts}

    @app.post("/channels/{channel}/transcriptions/{utterance_id}/follow-up")
    async def post_follow_up( # pyright: ignore[reportUnusedFunction]
        channel: str, utterance_id: int, body: FollowUpIn
    ) -> dict[str, Any]:
        name = _validate_channel(channel)
        _service(app).publish_follow_up(name, utterance_id, body.kind, body.text)
        return {"channel": name, "id": utterance_id}

    @app.websocket("/ws")
    async def websocket_endpoint(ws: WebSocket) -> None: # pyright: ignore[reportUnusedFunction]
        await ws.accept()

        broadcaster: EventBroadcaster = app.state.broadcaster
        queue = broadcaster.subscribe()
        receiver = asyncio.create_task(_drain_client(ws))

        try:
            while True:
                getter = asyncio.create_task(queue.get())
                done, _ = await asyncio.wait(
                    {getter, receiver}, return_when=asyncio.FIRST_COMPLETED
                )
                if receiver in done:
                    getter.cancel()
                    break
                await ws.send_text(json.dumps(getter.result(), ensure_ascii=False))

        except WebSocketDisconnect:
            pass

        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "event_type": "WS_FATAL_ERROR",
                "exception": type(exc).__name__,
                "message": str(exc),
            })

        finally:
            broadcaster.unsubscribe(queue)
            receiver.cancel()
            await asyncio.gather(receiver, return_exceptions=True)


async def _drain_client(ws: WebSocket) -> None:
    """Consume (and ignore) client frames; returns when the client leaves."""
    try:
        while True:
            msg = await ws.receive()
            if msg.get("type") == "websocket.disconnect":
                return
    except WebSocketDisconnect:
        return
