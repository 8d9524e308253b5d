"""
Frame source: resolve a channel and start its decoder group.

This is the single "open a capture attempt" step the session supervisor
calls. Resolution failures surface as CaptureError subclasses exactly like
spawn failures, so the supervisor handles both through one path.
"""

from __future__ import annotations

from typing import Protocol

from capture.process import (
    DecodeProcess,
    SubprocessPipeline,
    ffmpeg_pcm_args,
    streamlink_args,
)
from capture.resolver import StaticStreamResolver, StreamResolver, TwitchStreamResolver
from config import AppConfig, CaptureMode
from constants import TWITCH_PAGE_URL


class FrameSource(Protocol):
    """Opens one capture attempt for a channel."""

    async def open(self, channel: str) -> DecodeProcess:
        ...


class StreamFrameSource:
    """
    Default frame source.

    hls:
        resolver -> ffmpeg reading the HLS URL directly (one process).
    streamlink:
        page URL -> streamlink | ffmpeg (owned process pair).
    """

    def __init__(
        self,
        *,
        mode: CaptureMode = "hls",
        resolver: StreamResolver | None = None,
        ffmpeg_path: str = "ffmpeg",
        streamlink_path: str = "streamlink",
    ) -> None:
        self._mode = mode
        if resolver is None:
            resolver = (
                StaticStreamResolver(TWITCH_PAGE_URL)
                if mode == "streamlink"
                else TwitchStreamResolver()
            )
        self._resolver = resolver
        self._ffmpeg_path = ffmpeg_path
        self._streamlink_path = streamlink_path

    @classmethod
    def from_config(cls, config: AppConfig) -> StreamFrameSource:
        resolver: StreamResolver | None = None
        if config.capture_mode == "hls":
            resolver = TwitchStreamResolver(client_id=config.twitch_client_id)
        return cls(
            mode=config.capture_mode,
            resolver=resolver,
            ffmpeg_path=config.ffmpeg_path,
            streamlink_path=config.streamlink_path,
        )

    async def open(self, channel: str) -> DecodeProcess:
        url = await self._resolver.resolve_audio_url(channel)

        if self._mode == "streamlink":
            stages = [
                streamlink_args(url, streamlink_path=self._streamlink_path),
                ffmpeg_pcm_args("pipe:0", ffmpeg_path=self._ffmpeg_path),
            ]
        else:
            stages = [ffmpeg_pcm_args(url, ffmpeg_path=self._ffmpeg_path)]

        return await SubprocessPipeline.spawn(stages, channel=channel)
