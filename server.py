"""FastAPI backend for SoundBox.

This service exposes three endpoints under /api/SoundBox:
- POST /get-formats      : lists the formats yt-dlp offers for a URL (cached)
- GET  /download         : streams the selected format straight from yt-dlp
- POST /convert-to-audio : converts an uploaded video to mp3 with ffmpeg

Run with:
    uvicorn server:app --host 0.0.0.0 --port 8000
"""
from __future__ import annotations

import os
import subprocess
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, File, Form, Query, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.types import Scope
from yt_dlp.version import __version__ as YT_DLP_VERSION

from conversion import AudioConversionService, BackgroundLauncher
from downloads import DownloadService
from errors import SoundBoxError
from formats import FormatListingService, FormatRecord, FormatsCache
from media_tools import ToolRunner
from settings import Settings, configure_logging

API_PREFIX = "/api/SoundBox"


class SpaStaticFiles(StaticFiles):
    """Serves the built front-end; unknown paths get index.html so client-side routes load."""

    async def get_response(self, path: str, scope: Scope):
        try:
            return await super().get_response(path, scope)
        except StarletteHTTPException as exc:
            if exc.status_code != 404:
                raise
            return await super().get_response("index.html", scope)


class DownloadRequest(BaseModel):
    url: Optional[str] = None


def get_formats_service(request: Request) -> FormatListingService:
    state = request.app.state
    return FormatListingService(state.runner, state.formats_cache)


def get_download_service(request: Request) -> DownloadService:
    state = request.app.state
    return DownloadService(state.runner, chunk_size=state.settings.chunk_size)


def get_conversion_service(request: Request) -> AudioConversionService:
    state = request.app.state
    return AudioConversionService(state.runner, state.settings.scratch_dir, state.launcher)


router = APIRouter(prefix=API_PREFIX)


@router.post("/get-formats", response_model=List[FormatRecord])
async def get_formats(
    payload: DownloadRequest,
    service: FormatListingService = Depends(get_formats_service),
):
    """Return the available formats for the URL, invoking yt-dlp only on a cache miss."""
    return list(await service.get_formats(payload.url))


@router.get("/download")
async def download(
    request: Request,
    url: Optional[str] = Query(None, description="Video URL to download"),
    format_id: Optional[str] = Query(None, alias="formatId", description="yt-dlp format identifier"),
    audio_only: bool = Query(False, alias="audioOnly", description="Stream the format as audio/mpeg"),
    service: DownloadService = Depends(get_download_service),
):
    """
    Stream the selected format back to the client.

    - yt-dlp runs as a child process writing media bytes to stdout
    - its stderr is tailed into the service log, never into the body
    - the child is killed as soon as the client disconnects
    """
    return await service.download(url, format_id, audio_only, is_cancelled=request.is_disconnected)


@router.post("/convert-to-audio")
async def convert_to_audio(
    video_file: Optional[UploadFile] = File(None, alias="videoFile"),
    bitrate: Optional[str] = Form(None),
    service: AudioConversionService = Depends(get_conversion_service),
):
    """Convert the uploaded video to mp3 and return the file."""
    return await service.convert_to_audio(video_file, bitrate or "")


def healthcheck(request: Request) -> Dict[str, Any]:
    """Return service readiness and tool versions."""
    settings: Settings = request.app.state.settings
    ffmpeg_version = None
    try:
        proc = subprocess.run([settings.ffmpeg_bin, "-version"], capture_output=True, text=True, timeout=2)
        if proc.returncode == 0 and proc.stdout:
            ffmpeg_version = proc.stdout.splitlines()[0]
    except (OSError, subprocess.SubprocessError):
        ffmpeg_version = None

    return {
        "status": "ok",
        "yt_dlp": YT_DLP_VERSION,
        "ffmpeg": ffmpeg_version or "missing",
    }


async def soundbox_error_handler(request: Request, exc: SoundBoxError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = "; ".join(
        f"{'.'.join(str(part) for part in error.get('loc', ()))}: {error.get('msg', '')}" for error in exc.errors()
    )
    return JSONResponse(status_code=400, content={"message": "Invalid request", "error": errors})


def create_app(settings: Optional[Settings] = None, launcher: Optional[BackgroundLauncher] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    launcher = launcher or BackgroundLauncher()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        app.state.formats_cache.clear()
        app.state.launcher.shutdown()

    app = FastAPI(title="SoundBox API", version="1.0.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.runner = ToolRunner(settings)
    app.state.formats_cache = FormatsCache()
    app.state.launcher = launcher

    # The frontend reads the suggested file name from Content-Disposition
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Content-Disposition"],
    )
    app.add_exception_handler(SoundBoxError, soundbox_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)

    app.include_router(router)
    app.add_api_route("/api/health", healthcheck, methods=["GET"])

    if settings.static_dir and os.path.isdir(settings.static_dir):
        app.mount("/", SpaStaticFiles(directory=settings.static_dir, html=True), name="static")

    return app


_settings = Settings.from_env()
configure_logging(_settings.log_level)
app = create_app(_settings)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "server:app",
        host=os.getenv("SOUNDBOX_HOST", "0.0.0.0"),
        port=int(os.getenv("SOUNDBOX_PORT", "8000") or "8000"),
        reload=False,
    )
