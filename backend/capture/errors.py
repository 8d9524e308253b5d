"""
Capture failure taxonomy.

Every CaptureError is a transient fault from the supervisor's point of view:
it tears the attempt down and schedules a backoff restart.
"""

from __future__ import annotations


class CaptureError(RuntimeError):
    """Base class for failures that end one capture attempt."""


class StreamOffline(CaptureError):
    """The channel is not live (no playback access token)."""


class ResolutionError(CaptureError):
    """The playlist-resolution API failed or returned no usable stream."""


class SpawnError(CaptureError):
    """A decoder process failed to start."""


class DecoderExited(CaptureError):
    """The decoder ran and then stopped producing audio."""

    def __init__(self, returncode: int | None) -> None:
        super().__init__(f"decoder exited (returncode={returncode})")
        self.returncode = returncode
