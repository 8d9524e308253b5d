"""
Transcription service contract and OpenAI implementation.

This module is deliberately "dumb":
- Accepts one WAV file (bytes) plus an optional prompt
- Calls the remote recognizer once
- Returns the raw text

Must NOT:
- Retry
- Filter or merge results
- Know about VAD, sessions, or concurrency limits
"""

from __future__ import annotations

from typing import Protocol

from openai import AsyncOpenAI, OpenAIError

from constants import TRANSCRIPTION_MODEL


class TranscriptionError(RuntimeError):
    """Raised when the remote recognizer call fails for any reason."""


class Transcriber(Protocol):
    """Remote speech-to-text for one self-contained audio file."""

    async def transcribe(self, wav_bytes: bytes, *, prompt: str | None = None) -> str:
        ...


class OpenAITranscriber:
    """
    Transcriber backed by the OpenAI audio transcription endpoint.

    Network, auth, rate-limit and server errors are opaque to callers:
    they all surface as TranscriptionError.
    """

    def __init__(
        self,
        *,
        client: AsyncOpenAI,
        model: str = TRANSCRIPTION_MODEL,
        language: str | None = None,
    ) -> None:
        self._client = client
        self._model = model
        self._language = language

    async def transcribe(self, wav_bytes: bytes, *, prompt: str | None = None) -> str:
        kwargs: dict[str, str] = {}
        if prompt:
            kwargs["prompt"] = prompt
        if self._language:
            kwargs["language"] = self._language

        try:
            response = await self._client.audio.transcriptions.create(
                model=self._model,
                file=("audio.wav", wav_bytes, "audio/wav"),
                **kwargs,  # type: ignore[arg-type]
            )
        except OpenAIError as e:
            raise TranscriptionError(f"{type(e).__name__}: {e}") from e

        return response.text or ""
