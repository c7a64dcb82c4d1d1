"""Format listing via ``yt-dlp -F`` with a process-lifetime cache."""
from __future__ import annotations

import logging
import re
import threading
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from errors import InvalidRequest, ToolExecutionError
from media_tools import YTDLP, ToolRunner, build_list_formats_args

logger = logging.getLogger("soundbox.formats")

# "<numeric id> <ext> <WxH or similar>", further columns ignored
FORMAT_LINE = re.compile(r"^(?P<id>\d+)\s+(?P<ext>[A-Za-z0-9]+)\s+(?P<res>[\dx+]+)(?=\s|$)")


class FormatRecord(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    format_id: str = Field(alias="formatId")
    extension: str
    resolution: str


class FormatsCache:
    """Per-URL listing results kept until process restart.

    One instance is created per application and cleared on shutdown. Keys are
    exact, case-sensitive URLs; the last writer for a key wins.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, Tuple[FormatRecord, ...]] = {}
        self._lock = threading.Lock()

    def get(self, url: str) -> Optional[Tuple[FormatRecord, ...]]:
        with self._lock:
            return self._entries.get(url)

    def put(self, url: str, formats: List[FormatRecord]) -> Tuple[FormatRecord, ...]:
        entry = tuple(formats)
        with self._lock:
            self._entries[url] = entry
        return entry

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, url: object) -> bool:
        with self._lock:
            return url in self._entries


def parse_formats(output: str) -> List[FormatRecord]:
    """Pick format rows out of ``yt-dlp -F`` output, in printed order."""
    formats: List[FormatRecord] = []
    for line in output.splitlines():
        match = FORMAT_LINE.match(line)
        if match:
            formats.append(
                FormatRecord(
                    format_id=match.group("id"),
                    extension=match.group("ext"),
                    resolution=match.group("res"),
                )
            )
    return formats


class FormatListingService:
    def __init__(self, runner: ToolRunner, cache: FormatsCache) -> None:
        self.runner = runner
        self.cache = cache

    async def get_formats(self, url: Optional[str]) -> Tuple[FormatRecord, ...]:
        if url is None or not url.strip():
            raise InvalidRequest("URL is required")

        cached = self.cache.get(url)
        if cached is not None:
            return cached

        try:
            result = await self.runner.run(YTDLP, build_list_formats_args(url))
        except ToolExecutionError as exc:
            exc.status_code = 400
            raise

        if result.returncode != 0:
            logger.warning("yt-dlp -F exited with %s for %s", result.returncode, url)
            raise ToolExecutionError("yt-dlp failed", error=result.stderr_text, status_code=400)

        return self.cache.put(url, parse_formats(result.stdout_text))
