"""
Live stream resolution.

Resolves a channel name to a playable audio-only HLS URL:
1. Ask the Twitch GQL API for a playback access token.
2. Fetch the usher master playlist with that token.
3. Pick the audio_only variant (fallback: the last listed variant).

Errors:
- StreamOffline: no token (channel not live)
- ResolutionError: HTTP failure or no usable variant
"""

from __future__ import annotations

from typing import Protocol

import httpx

from capture.errors import ResolutionError, StreamOffline
from constants import (
    RESOLVER_TIMEOUT_S,
    TWITCH_GQL_URL,
    TWITCH_USHER_URL,
    TWITCH_WEB_CLIENT_ID,
)
from observability.metrics import timed


_ACCESS_TOKEN_QUERY = """
query PlaybackAccessToken($login: String!) {
  streamPlaybackAccessToken(
    channelName: $login,
    params: {platform: "web", playerBackend: "mediaplayer", playerType: "site"}
  ) {
    value
    signature
  }
}
"""


class StreamResolver(Protocol):
    """Anything that can turn a channel into a playable URL."""

    async def resolve_audio_url(self, channel: str) -> str:
        ...


def select_audio_variant(playlist: str) -> str:
    """
    Pick the stream URL from an HLS master playlist.

    Prefers the URI following an audio_only variant tag; otherwise returns
    the last URI in the playlist (lowest quality on Twitch).

    Raises:
        ResolutionError if the playlist contains no URI lines.
    """
    lines = [line.strip() for line in playlist.splitlines()]

    for i, line in enumerate(lines):
        if "audio_only" not in line:
            continue
        for candidate in lines[i + 1:]:
            if candidate and not candidate.startswith("#"):
                return candidate

    for line in reversed(lines):
        if line and not line.startswith("#"):
            return line

    raise ResolutionError("no audio stream URL found in playlist")


class TwitchStreamResolver:
    """
    Resolver backed by the public Twitch web endpoints.

    An httpx.AsyncClient may be injected (tests use httpx.MockTransport);
    otherwise one is created per call.
    """

    def __init__(
        self,
        *,
        client_id: str = TWITCH_WEB_CLIENT_ID,
        http_client: httpx.AsyncClient | None = None,
        timeout_s: float = RESOLVER_TIMEOUT_S,
    ) -> None:
        self._client_id = client_id
        self._http = http_client
        self._timeout_s = timeout_s

    async def resolve_audio_url(self, channel: str) -> str:
        with timed("stream_resolution_latency", channel=channel):
            if self._http is not None:
                return await self._resolve(self._http, channel)
            async with httpx.AsyncClient(timeout=self._timeout_s) as client:
                return await self._resolve(client, channel)

    async def _resolve(self, client: httpx.AsyncClient, channel: str) -> str:
        token = await self._fetch_access_token(client, channel)

        try:
            res = await client.get(
                TWITCH_USHER_URL.format(channel=channel),
                params={
                    "sig": token["signature"],
                    "token": token["value"],
                    "player_backend": "mediaplayer",
                    "allow_source": "true",
                    "allow_audio_only": "true",
                },
            )
        except httpx.HTTPError as e:
            raise ResolutionError(f"usher request failed: {e}") from e

        if res.status_code != 200:
            raise ResolutionError(f"usher API error: {res.status_code}")

        return select_audio_variant(res.text)

    async def _fetch_access_token(
        self, client: httpx.AsyncClient, channel: str
    ) -> dict[str, str]:
        try:
            res = await client.post(
                TWITCH_GQL_URL,
                headers={"Client-ID": self._client_id},
                json={
                    "query": _ACCESS_TOKEN_QUERY,
                    "variables": {"login": channel},
                },
            )
        except httpx.HTTPError as e:
            raise ResolutionError(f"GQL request failed: {e}") from e

        if res.status_code != 200:
            raise ResolutionError(f"Twitch GQL API error: {res.status_code}")

        try:
            payload = res.json()
        except ValueError as e:
            raise ResolutionError("GQL response is not JSON") from e

        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, (dict, type(None))):
            raise ResolutionError("unexpected GQL response shape")
        token = (data or {}).get("streamPlaybackAccessToken")
        if token is not None and not isinstance(token, dict):
            raise ResolutionError("unexpected access token shape")
        if not token or not token.get("value") or not token.get("signature"):
            raise StreamOffline(f"stream {channel!r} is offline or token unavailable")
        return token


class StaticStreamResolver:
    """
    Resolver that formats a fixed URL template.

    Used in streamlink mode, where the capture tool resolves the page URL
    itself, and for direct URLs in tools.
    """

    def __init__(self, template: str) -> None:
        self._template = template

    async def resolve_audio_url(self, channel: str) -> str:
        return self._template.format(channel=channel)
