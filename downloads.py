"""Streaming yt-dlp output straight into the HTTP response.

The child process lives exactly as long as the response: it is killed when
the client disconnects, when the response task is cancelled, or when the body
iterator is closed early for any other reason.
"""
from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Awaitable, Callable, Dict, Optional
from urllib.parse import quote

from starlette.responses import StreamingResponse
from starlette.types import Receive, Scope, Send

from errors import InvalidRequest, ToolExecutionError
from media_tools import (
    YTDLP,
    ToolRunner,
    build_print_filename_args,
    build_stream_args,
    sanitize_filename,
    terminate_process,
)
from settings import DEFAULT_CHUNK_SIZE

logger = logging.getLogger("soundbox.downloads")

# Awaited before every chunk; returning True stops the stream.
CancellationCheck = Callable[[], Awaitable[bool]]


def content_disposition(filename: str) -> str:
    quoted = quote(filename)
    if quoted != filename:
        return f"attachment; filename*=utf-8''{quoted}"
    return f'attachment; filename="{filename}"'


def media_type_for(audio_only: bool) -> str:
    return "audio/mpeg" if audio_only else "video/mp4"


async def derive_filename(runner: ToolRunner, url: str, format_id: str, audio_only: bool) -> str:
    """Ask yt-dlp for "<title>.<ext>", falling back to download.<ext>."""
    ext = "mp3" if audio_only else "mp4"
    result = await runner.run(YTDLP, build_print_filename_args(url, format_id, ext))
    lines = [line.strip() for line in result.stdout_text.splitlines() if line.strip()]
    if not lines:
        return f"download.{ext}"
    return sanitize_filename(lines[0])


async def log_stderr(process: asyncio.subprocess.Process, tool: str = YTDLP) -> None:
    if process.stderr is None:
        return
    while True:
        line = await process.stderr.readline()
        if not line:
            break
        text = line.decode("utf-8", "ignore").rstrip()
        if text:
            logger.info("%s: %s", tool, text)


async def stream_process_output(
    process: asyncio.subprocess.Process,
    is_cancelled: Optional[CancellationCheck] = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> AsyncIterator[bytes]:
    """Yield stdout chunks as produced; the process is killed on every exit path."""
    drain = asyncio.ensure_future(log_stderr(process))
    finished = False
    try:
        if process.stdout is None:
            return
        while True:
            if is_cancelled is not None and await is_cancelled():
                logger.info("Client went away, stopping pid %s", process.pid)
                return
            chunk = await process.stdout.read(chunk_size)
            if not chunk:
                break
            yield chunk

        returncode = await process.wait()
        finished = True
        if returncode != 0:
            # Headers are already sent; the body just ends short.
            logger.warning("yt-dlp exited with %s mid-stream (pid %s)", returncode, process.pid)
    finally:
        if not finished:
            terminate_process(process)
        if not drain.done():
            drain.cancel()


class ProcessStreamingResponse(StreamingResponse):
    """StreamingResponse over a child's stdout that never outlives the request."""

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        media_type: str,
        filename: str,
        is_cancelled: Optional[CancellationCheck] = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        self.process = process
        headers: Dict[str, str] = {"Content-Disposition": content_disposition(filename)}
        super().__init__(
            stream_process_output(process, is_cancelled, chunk_size),
            status_code=200,
            media_type=media_type,
            headers=headers,
        )

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            terminate_process(self.process)


class DownloadService:
    def __init__(self, runner: ToolRunner, chunk_size: int = DEFAULT_CHUNK_SIZE) -> None:
        self.runner = runner
        self.chunk_size = chunk_size

    async def download(
        self,
        url: Optional[str],
        format_id: Optional[str],
        audio_only: bool = False,
        is_cancelled: Optional[CancellationCheck] = None,
    ) -> ProcessStreamingResponse:
        if url is None or not url.strip() or format_id is None or not format_id.strip():
            raise InvalidRequest("URL and formatId are required")

        try:
            filename = await derive_filename(self.runner, url, format_id, audio_only)
            process = await self.runner.spawn(YTDLP, build_stream_args(url, format_id, audio_only))
        except ToolExecutionError as exc:
            raise ToolExecutionError("Download failed", error=exc.error or exc.message, status_code=500) from exc

        return ProcessStreamingResponse(
            process,
            media_type=media_type_for(audio_only),
            filename=filename,
            is_cancelled=is_cancelled,
            chunk_size=self.chunk_size,
        )
