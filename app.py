from __future__ import annotations

import os
import re
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from pydantic import BaseModel

import browse
import db
import media
import scanner
from config import STATE, artifacts_dir, configure_logging, log
from errors import NotFound, ValidationError

# Artifacts are immutable per video id, so clients may cache them for 30 days.
ARTIFACT_CACHE_SECONDS = 2592000
_ARTIFACT_NAME_RE = re.compile(r"^\d+(?:_preview)?\.(?:jpg|gif)$")


def api_success(data=None, message: str = "OK", status_code: int = 200):
    return JSONResponse({"status": "success", "message": message, "data": data}, status_code=status_code)


def api_error(message: str, status_code: int = 400, data=None):
    return JSONResponse({"status": "error", "message": message, "data": data}, status_code=status_code)


def raise_api_error(message: str, status_code: int = 400, data=None):
    raise HTTPException(status_code=status_code, detail={"status": "error", "message": message, "data": data})


@asynccontextmanager
async def lifespan(app_obj: FastAPI):
    configure_logging()
    db.init(STATE["db_path"])
    media.set_process_concurrency(STATE["ffmpeg_concurrency"])
    artifacts_dir()
    log("api", f"startup root={STATE['root']} db={db.path()} artifacts={STATE['artifacts_dir']}")
    if STATE.get("scan_on_startup"):
        scanner.start_background_scan()
    yield


app = FastAPI(title="LocalTube", version="1.0", lifespan=lifespan)
api = APIRouter(prefix="/api")


# -----------------------------
# CORS: allow the UI from other hosts during development.
# Configure via CORS_ALLOW_ORIGINS (comma-separated). Defaults to *.
# -----------------------------
def _cors_origins() -> list[str]:
    v = os.environ.get("CORS_ALLOW_ORIGINS")
    if not v or not v.strip():
        return ["*"]
    out = [part.strip() for part in v.split(",") if part.strip()]
    return out or ["*"]


app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    if isinstance(exc.detail, dict):
        return JSONResponse(exc.detail, status_code=exc.status_code)
    return api_error(str(exc.detail), status_code=exc.status_code)


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return api_error(exc.message, status_code=400)


@app.exception_handler(NotFound)
async def not_found_handler(request: Request, exc: NotFound):
    return api_error(exc.message, status_code=404)


class CategoryUpdate(BaseModel):  # type: ignore
    category: str


class RatingUpdate(BaseModel):  # type: ignore
    rating: int


@api.get("/health")
def health():
    return api_success({
        "ok": True,
        "root": str(STATE.get("root")),
        "ffmpeg": media.ffmpeg_available(),
        "ffprobe": media.ffprobe_available(),
        "scan": scanner.scan_status()["running"],
    })


@api.post("/rescan")
def rescan():
    started = scanner.start_background_scan()
    log("api", f"rescan requested started={int(started)}")
    if started:
        return api_success({"started": True}, message="Scan started", status_code=202)
    return api_success({"started": False}, message="Scan already running", status_code=202)


@api.get("/scan/status")
def scan_status():
    return api_success(scanner.scan_status())


@api.post("/prune")
def prune():
    return api_success(scanner.prune_missing())


@api.get("/browse")
def browse_folder(
    path: str = Query(default=""),
    sort: str = Query(default=browse.DEFAULT_SORT),
    limit: int = Query(default=browse.DEFAULT_LIMIT),
    offset: int = Query(default=0),
):
    return api_success(browse.browse(path, sort=sort, limit=limit, offset=offset))


@api.get("/videos")
def list_videos(
    search: Optional[str] = Query(default=None),
    category: Optional[str] = Query(default=None),
    folder: Optional[str] = Query(default=None),
    sort: str = Query(default=browse.DEFAULT_SORT),
    limit: int = Query(default=browse.DEFAULT_LIMIT),
    offset: int = Query(default=0),
):
    return api_success(
        browse.list_videos(search=search, category=category, folder=folder, sort=sort, limit=limit, offset=offset)
    )


@api.get("/folders")
def list_folders(parent: Optional[str] = Query(default=None)):
    return api_success(browse.list_folders(parent))


@api.get("/categories")
def list_categories():
    return api_success(browse.list_categories())


@api.get("/video/{video_id}")
def get_video(video_id: int):
    return api_success(browse.get_video(video_id))


@api.put("/video/{video_id}/category")
def set_category(video_id: int, payload: CategoryUpdate):
    return api_success(browse.set_category(video_id, payload.category))


@api.put("/video/{video_id}/rating")
def set_rating(video_id: int, payload: RatingUpdate):
    return api_success(browse.set_rating(video_id, payload.rating))


app.include_router(api)


@app.get("/thumbnails/{name}", include_in_schema=False)
def serve_artifact(name: str):
    if not _ARTIFACT_NAME_RE.match(name):
        raise_api_error("not found", status_code=404)
    fp = Path(STATE["artifacts_dir"]) / name
    if not fp.is_file():
        raise_api_error("not found", status_code=404)
    media_type = "image/gif" if name.endswith(".gif") else "image/jpeg"
    return FileResponse(
        str(fp),
        media_type=media_type,
        headers={
            "Cache-Control": f"public, max-age={ARTIFACT_CACHE_SECONDS}",
            "X-Content-Type-Options": "nosniff",
        },
    )


if __name__ == "__main__":  # pragma: no cover
    try:
        import uvicorn  # type: ignore
    except ImportError:
        sys.stderr.write("[app] Missing dependency: uvicorn. Install with: pip install uvicorn\n")
        sys.exit(1)
    host = os.environ.get("HOST", "127.0.0.1")
    try:
        port = int(os.environ.get("PORT", "3001") or 3001)
    except ValueError:
        port = 3001
    uvicorn.run("app:app", host=host, port=port)
