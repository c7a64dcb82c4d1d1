import sys
from pathlib import Path
from typing import List, Optional

import pytest
from fastapi.testclient import TestClient

# Ensure tests can import the top-level modules regardless of how pytest is invoked.
ROOT = Path(__file__).resolve().parents[1]
ROOT_STR = str(ROOT)
if ROOT_STR not in sys.path:
    sys.path.insert(0, ROOT_STR)

import server  # noqa: E402
from conversion import InlineLauncher  # noqa: E402
from settings import Settings  # noqa: E402


class FakeTool:
    """Executable /bin/sh script standing in for yt-dlp or ffmpeg; records its argv."""

    def __init__(self, directory: Path, name: str, body: str) -> None:
        self.path = directory / name
        self.calls_path = directory / f"{name}.calls"
        self.path.write_text(
            f'#!/bin/sh\necho "$*" >> "{self.calls_path}"\n{body}\n', encoding="utf-8"
        )
        self.path.chmod(0o755)

    def calls(self) -> List[str]:
        if not self.calls_path.exists():
            return []
        return self.calls_path.read_text().splitlines()


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def make_tool(tmp_path):
    tools_dir = tmp_path / "bin"
    tools_dir.mkdir()

    def _make(name: str, body: str = "") -> FakeTool:
        return FakeTool(tools_dir, name, body)

    return _make


@pytest.fixture
def scratch_dir(tmp_path) -> Path:
    return tmp_path / "scratch"


@pytest.fixture
def make_client(tmp_path, scratch_dir):
    def _make(ytdlp: Optional[FakeTool] = None, ffmpeg: Optional[FakeTool] = None, **overrides) -> TestClient:
        settings = Settings(
            ytdlp_bin=str(ytdlp.path) if ytdlp else str(tmp_path / "missing-yt-dlp"),
            ffmpeg_bin=str(ffmpeg.path) if ffmpeg else str(tmp_path / "missing-ffmpeg"),
            scratch_dir=str(scratch_dir),
            chunk_size=4,
            **overrides,
        )
        return TestClient(server.create_app(settings, launcher=InlineLauncher()))

    return _make
