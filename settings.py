"""Environment-driven configuration for the SoundBox API."""
from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass, field
from typing import List, Optional

DEFAULT_CHUNK_SIZE = 1024 * 256
DEFAULT_BITRATE = "192k"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"


def _env_int(name: str, default: int, minimum: int = 1) -> int:
    try:
        return max(int(os.getenv(name, str(default)) or default), minimum)
    except (TypeError, ValueError):
        return default


def _env_list(name: str, default: str) -> List[str]:
    raw = os.getenv(name, default) or default
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass
class Settings:
    ytdlp_bin: str = "yt-dlp"
    ffmpeg_bin: str = "ffmpeg"
    scratch_dir: str = field(default_factory=lambda: os.path.join(tempfile.gettempdir(), "SoundBoxUploads"))
    chunk_size: int = DEFAULT_CHUNK_SIZE
    default_bitrate: str = DEFAULT_BITRATE
    cors_origins: List[str] = field(default_factory=lambda: ["http://localhost:4200"])
    static_dir: Optional[str] = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        defaults = cls()
        return cls(
            ytdlp_bin=os.getenv("SOUNDBOX_YTDLP_BIN") or defaults.ytdlp_bin,
            ffmpeg_bin=os.getenv("SOUNDBOX_FFMPEG_BIN") or defaults.ffmpeg_bin,
            scratch_dir=os.getenv("SOUNDBOX_SCRATCH_DIR") or defaults.scratch_dir,
            chunk_size=_env_int("SOUNDBOX_CHUNK_SIZE", DEFAULT_CHUNK_SIZE),
            default_bitrate=(os.getenv("SOUNDBOX_DEFAULT_BITRATE") or DEFAULT_BITRATE).strip(),
            cors_origins=_env_list("SOUNDBOX_CORS_ORIGINS", "http://localhost:4200"),
            static_dir=os.getenv("SOUNDBOX_STATIC_DIR") or None,
            log_level=(os.getenv("SOUNDBOX_LOG_LEVEL") or "INFO").upper(),
        )


def configure_logging(level: str = "INFO") -> None:
    """Console logging for the service; a no-op when the root logger is already set up."""
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)
