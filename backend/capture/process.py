"""
Decoder process supervision.

A capture attempt runs one or two child processes:
- hls mode:        ffmpeg -i <url> -> PCM on stdout
- streamlink mode: streamlink <page> audio_only -O | ffmpeg -i pipe:0 -> PCM

Either way the group is owned by a single SubprocessPipeline with a single
terminate() that kills every stage and closes the intervening pipe, so a
torn-down attempt never leaves a zombie behind.
"""

from __future__ import annotations

import asyncio
import os
import time
from typing import Protocol, Sequence

from capture.errors import SpawnError
from constants import AUDIO_CHANNELS, AUDIO_SAMPLE_RATE_HZ
from observability.logger import log_event


_TERMINATE_GRACE_S = 2.0
_EXIT_WAIT_S = 5.0


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


class DecodeProcess(Protocol):
    """The part of a decoder group the session supervisor relies on."""

    async def read(self, max_bytes: int) -> bytes:
        """Next chunk of PCM; b"" once the output stream has ended."""
        ...

    async def wait(self) -> int | None:
        """Exit status of the final stage (None if unknown)."""
        ...

    async def terminate(self) -> None:
        """Kill every stage. Idempotent."""
        ...


# ---------------------------------------------------------------------
# Command lines
# ---------------------------------------------------------------------

def ffmpeg_pcm_args(source: str, *, ffmpeg_path: str = "ffmpeg") -> list[str]:
    """ffmpeg argv producing mono/16 kHz/s16le PCM on stdout."""
    return [
        ffmpeg_path,
        "-i", source,
        "-ac", str(AUDIO_CHANNELS),
        "-ar", str(AUDIO_SAMPLE_RATE_HZ),
        "-f", "s16le",
        "-loglevel", "error",
        "pipe:1",
    ]


def streamlink_args(page_url: str, *, streamlink_path: str = "streamlink") -> list[str]:
    """streamlink argv writing the audio-only stream to stdout."""
    return [streamlink_path, page_url, "audio_only", "-O"]


# ---------------------------------------------------------------------
# Process group
# ---------------------------------------------------------------------

class SubprocessPipeline:
    """
    An owned chain of child processes connected stdout -> stdin.

    Only the final stage's stdout is exposed; every stage's stderr is
    drained into the JSONL log.
    """

    def __init__(
        self,
        procs: list[asyncio.subprocess.Process],
        names: list[str],
        *,
        channel: str | None = None,
    ) -> None:
        self._procs = procs
        self._names = names
        self._channel = channel
        self._terminated = False
        self._stderr_tasks = [
            asyncio.create_task(self._drain_stderr(proc, name))
            for proc, name in zip(procs, names)
        ]

    @classmethod
    async def spawn(
        cls,
        stages: Sequence[Sequence[str]],
        *,
        channel: str | None = None,
    ) -> SubprocessPipeline:
        """
        Start every stage, wiring each stdout into the next stdin.

        Raises:
            SpawnError if any stage fails to start; already-started stages
            are killed first. The same cleanup runs if spawn() is cancelled.
        """
        if not stages:
            raise ValueError("at least one stage is required")

        procs: list[asyncio.subprocess.Process] = []
        stdin_fd: int | None = None

        try:
            for index, argv in enumerate(stages):
                is_last = index == len(stages) - 1
                next_read_fd: int | None = None
                write_fd: int | None = None
                if not is_last:
                    next_read_fd, write_fd = os.pipe()

                try:
                    proc = await asyncio.create_subprocess_exec(
                        *argv,
                        stdin=stdin_fd if stdin_fd is not None else asyncio.subprocess.DEVNULL,
                        stdout=asyncio.subprocess.PIPE if is_last else write_fd,
                        stderr=asyncio.subprocess.PIPE,
                    )
                except BaseException:
                    if next_read_fd is not None:
                        os.close(next_read_fd)
                    raise
                finally:
                    # The children hold their own copies of these ends
                    if write_fd is not None:
                        os.close(write_fd)
                    if stdin_fd is not None:
                        os.close(stdin_fd)
                        stdin_fd = None

                procs.append(proc)
                stdin_fd = next_read_fd

        except OSError as e:
            for proc in procs:
                await _kill(proc)
            raise SpawnError(f"failed to start {stages[len(procs)][0]!r}: {e}") from e
        except BaseException:
            # Cancelled between stages: started stages must not outlive the caller
            await asyncio.shield(asyncio.gather(*(_kill(proc) for proc in procs)))
            raise

        names = [os.path.basename(argv[0]) for argv in stages]
        log_event({
            "ts_ms": _now_ms(),
            "event_type": "DECODER_SPAWNED",
            "channel": channel,
            "stages": names,
            "pids": [p.pid for p in procs],
        })
        return cls(procs, names, channel=channel)

    # ------------------------------------------------------------------
    # DecodeProcess
    # ------------------------------------------------------------------

    async def read(self, max_bytes: int) -> bytes:
        stdout = self._procs[-1].stdout
        assert stdout is not None
        return await stdout.read(max_bytes)

    async def wait(self) -> int | None:
        try:
            return await asyncio.wait_for(self._procs[-1].wait(), _EXIT_WAIT_S)
        except asyncio.TimeoutError:
            return None

    async def terminate(self) -> None:
        if self._terminated:
            return
        self._terminated = True

        for proc in self._procs:
            await _kill(proc)

        for task in self._stderr_tasks:
            task.cancel()
        await asyncio.gather(*self._stderr_tasks, return_exceptions=True)

        log_event({
            "ts_ms": _now_ms(),
            "event_type": "DECODER_TERMINATED",
            "channel": self._channel,
            "returncodes": [p.returncode for p in self._procs],
        })

    @property
    def returncodes(self) -> list[int | None]:
        return [p.returncode for p in self._procs]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _drain_stderr(self, proc: asyncio.subprocess.Process, name: str) -> None:
        if proc.stderr is None:
            return
        while True:
            line = await proc.stderr.readline()
            if not line:
                return
            msg = line.decode("utf-8", errors="replace").strip()
            if msg:
                log_event({
                    "ts_ms": _now_ms(),
                    "event_type": "DECODER_STDERR",
                    "channel": self._channel,
                    "stage": name,
                    "message": msg,
                })


async def _kill(proc: asyncio.subprocess.Process) -> None:
    """Terminate, then kill after a grace period; always reap."""
    if proc.returncode is not None:
        return
    try:
        proc.terminate()
    except ProcessLookupError:
        pass
    try:
        await asyncio.wait_for(proc.wait(), _TERMINATE_GRACE_S)
        return
    except asyncio.TimeoutError:
        pass
    try:
        proc.kill()
    except ProcessLookupError:
        pass
    await proc.wait()
