"""Argument builders and process spawning for yt-dlp and ffmpeg.

Tools are always started without a shell, with stdin closed and both output
streams piped back to the caller.
"""
from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import List, Sequence

from errors import ToolUnavailable
from settings import Settings

logger = logging.getLogger("soundbox.tools")

YTDLP = "yt-dlp"
FFMPEG = "ffmpeg"

if os.name == "nt":
    INVALID_FILENAME_CHARS = '<>:"/\\|?*' + "".join(chr(code) for code in range(32))
else:
    INVALID_FILENAME_CHARS = "/\0"


@dataclass
class ToolResult:
    returncode: int
    stdout: bytes
    stderr: bytes

    @property
    def stdout_text(self) -> str:
        return self.stdout.decode("utf-8", "ignore")

    @property
    def stderr_text(self) -> str:
        return self.stderr.decode("utf-8", "ignore").strip()


def build_list_formats_args(url: str) -> List[str]:
    return ["-F", url]


def build_print_filename_args(url: str, format_id: str, ext: str) -> List[str]:
    return ["-f", format_id, "--print", f"%(title)s.{ext}", url]


def build_stream_args(url: str, format_id: str, audio_only: bool) -> List[str]:
    """yt-dlp writes the selected media to stdout; video formats get the best audio muxed in."""
    selector = format_id if audio_only else f"{format_id}+bestaudio"
    return ["-f", selector, "-o", "-", url]


def build_extract_audio_args(source_path: str, output_path: str, bitrate: str) -> List[str]:
    return ["-i", source_path, "-b:a", bitrate, "-vn", output_path, "-y"]


def sanitize_filename(name: str) -> str:
    """Replace every character the host filesystem rejects in a file name with an underscore."""
    return "".join("_" if char in INVALID_FILENAME_CHARS else char for char in name)


class ToolRunner:
    """Starts the configured executables as child processes."""

    def __init__(self, settings: Settings) -> None:
        self.executables = {YTDLP: settings.ytdlp_bin, FFMPEG: settings.ffmpeg_bin}

    async def spawn(self, tool: str, args: Sequence[str]) -> asyncio.subprocess.Process:
        executable = self.executables[tool]
        cmd = [executable, *args]
        logger.debug("Starting %s: %s", tool, cmd)
        try:
            return await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise ToolUnavailable(f"{tool} is not installed or not in PATH", error=str(exc)) from exc

    async def run(self, tool: str, args: Sequence[str]) -> ToolResult:
        """Run to completion, draining stdout and stderr concurrently."""
        process = await self.spawn(tool, args)
        stdout, stderr = await process.communicate()
        return ToolResult(process.returncode, stdout or b"", stderr or b"")


def terminate_process(process: asyncio.subprocess.Process) -> None:
    """Kill a still-running child; errors are ignored."""
    if process.returncode is not None:
        return
    try:
        process.kill()
    except ProcessLookupError:
        pass
    except OSError as exc:
        logger.warning("Could not kill process %s: %s", process.pid, exc)
