"""Upload-to-mp3 conversion through ffmpeg inside a per-request scratch directory."""
from __future__ import annotations

import logging
import os
import shutil
import uuid
from concurrent.futures import ThreadPoolExecutor
from typing import Any, BinaryIO, Callable, Optional

from fastapi import UploadFile
from starlette.background import BackgroundTask
from starlette.concurrency import run_in_threadpool
from starlette.responses import FileResponse

from errors import InvalidRequest, SoundBoxError, ToolExecutionError
from media_tools import FFMPEG, ToolRunner, build_extract_audio_args
from settings import DEFAULT_BITRATE

logger = logging.getLogger("soundbox.conversion")


class BackgroundLauncher:
    """Fire-and-forget runner for best-effort work such as scratch cleanup.

    ``launch`` returns immediately; exceptions raised by the work are logged
    and discarded.
    """

    def __init__(self, max_workers: int = 2) -> None:
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="soundbox-bg")

    def launch(self, func: Callable[..., Any], *args: Any) -> None:
        self._executor.submit(self._run, func, *args)

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)

    @staticmethod
    def _run(func: Callable[..., Any], *args: Any) -> None:
        try:
            func(*args)
        except Exception as exc:
            logger.warning("Background task %s failed: %s", getattr(func, "__name__", func), exc)


class InlineLauncher(BackgroundLauncher):
    """Runs launched work synchronously; for tests."""

    def __init__(self) -> None:
        pass

    def launch(self, func: Callable[..., Any], *args: Any) -> None:
        self._run(func, *args)

    def shutdown(self) -> None:
        pass


class ScratchWorkspace:
    """Uniquely named directory owned by a single conversion request."""

    def __init__(self, path: str) -> None:
        self.path = path

    @classmethod
    def create(cls, root: str) -> "ScratchWorkspace":
        path = os.path.join(root, uuid.uuid4().hex)
        os.makedirs(path)
        return cls(path)

    def file_path(self, name: str) -> str:
        return os.path.join(self.path, name)

    def remove(self) -> None:
        if os.path.isdir(self.path):
            shutil.rmtree(self.path)
            logger.debug("Removed scratch workspace %s", self.path)


def safe_upload_name(filename: Optional[str]) -> str:
    name = os.path.basename((filename or "").replace("\\", "/")).strip()
    if name in ("", ".", ".."):
        return "upload"
    return name


def audio_output_name(source_name: str) -> str:
    return os.path.splitext(source_name)[0] + ".mp3"


def upload_size(upload: UploadFile) -> int:
    if upload.size is not None:
        return upload.size
    handle: BinaryIO = upload.file
    position = handle.tell()
    handle.seek(0, os.SEEK_END)
    size = handle.tell()
    handle.seek(position)
    return size


def _copy_upload(upload: UploadFile, destination: str) -> None:
    upload.file.seek(0)
    with open(destination, "wb") as handle:
        shutil.copyfileobj(upload.file, handle)


class AudioConversionService:
    def __init__(self, runner: ToolRunner, scratch_root: str, launcher: BackgroundLauncher) -> None:
        self.runner = runner
        self.scratch_root = scratch_root
        self.launcher = launcher

    async def convert_to_audio(self, upload: Optional[UploadFile], bitrate: str = DEFAULT_BITRATE) -> FileResponse:
        if upload is None or upload_size(upload) == 0:
            raise InvalidRequest("No video uploaded")

        bitrate = (bitrate or "").strip() or DEFAULT_BITRATE
        os.makedirs(self.scratch_root, exist_ok=True)
        workspace = ScratchWorkspace.create(self.scratch_root)
        try:
            source_name = safe_upload_name(upload.filename)
            source_path = workspace.file_path(source_name)
            await run_in_threadpool(_copy_upload, upload, source_path)

            output_name = audio_output_name(source_name)
            output_path = workspace.file_path(output_name)
            result = await self.runner.run(FFMPEG, build_extract_audio_args(source_path, output_path, bitrate))
            if result.returncode != 0:
                logger.warning("ffmpeg exited with %s converting %s", result.returncode, source_name)

            if not os.path.exists(output_path):
                raise ToolExecutionError(
                    "Conversion failed, no output file created",
                    error=result.stderr_text[-2000:] or None,
                    status_code=500,
                )

            return FileResponse(
                path=output_path,
                media_type="audio/mpeg",
                filename=output_name,
                background=BackgroundTask(self.launcher.launch, workspace.remove),
            )
        except SoundBoxError:
            self.launcher.launch(workspace.remove)
            raise
        except Exception as exc:
            logger.exception("Conversion failed")
            self.launcher.launch(workspace.remove)
            raise ToolExecutionError("Conversion failed", error=str(exc), status_code=500) from exc
