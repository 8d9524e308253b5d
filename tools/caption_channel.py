# tools/caption_channel.py
"""
Caption one live channel from the command line.

Prints every caption event as one JSON line (pipeline logs go to stdout too
unless --quiet). Ctrl-C stops the session cleanly.

    python tools/caption_channel.py somechannel --mode streamlink
"""
import argparse
import asyncio
import json
import os

from dotenv import load_dotenv
from openai import AsyncOpenAI

import observability.logger as logger
from capture.source import StreamFrameSource
from config import AppConfig
from dispatch.transcriber import OpenAITranscriber
from session.events import CaptionEvent, TranscriptionStopped, event_to_json
from session.service import CaptionService


def print_event(event: CaptionEvent) -> None:
    print(json.dumps(event_to_json(event), ensure_ascii=False), flush=True)


async def main(channel: str, mode: str | None, quiet: bool) -> None:
    config = AppConfig.load_from_env()
    logger.configure(enabled=config.enable_json_logs and not quiet)

    stopped = asyncio.Event()

    def sink(event: CaptionEvent) -> None:
        print_event(event)
        if isinstance(event, TranscriptionStopped):
            stopped.set()

    source = StreamFrameSource.from_config(config)
    if mode:
        source = StreamFrameSource(
            mode=mode,  # type: ignore[arg-type]
            ffmpeg_path=config.ffmpeg_path,
            streamlink_path=config.streamlink_path,
        )

    service = CaptionService(
        source=source,
        transcriber=OpenAITranscriber(
            client=AsyncOpenAI(api_key=os.getenv("OPENAI_API_KEY")),
            model=config.transcription_model,
        ),
        sink=sink,
        settings=config.pipeline,
        base_prompt=config.transcription_prompt,
    )

    await service.start(channel)
    try:
        await stopped.wait()
    finally:
        await service.stop_all()


if __name__ == "__main__":
    load_dotenv()
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("channel")
    parser.add_argument("--mode", choices=("hls", "streamlink"), default=None)
    parser.add_argument("--quiet", action="store_true", help="suppress pipeline logs")
    args = parser.parse_args()
    try:
        asyncio.run(main(args.channel.lower(), args.mode, args.quiet))
    except KeyboardInterrupt:
        pass
