"""
ffprobe/ffmpeg adapters: duration probe, thumbnail and animated preview.

Every external process goes through _run(), which enforces the global
process cap (FFMPEG_CONCURRENCY) and the per-call time limit
(FFMPEG_TIMELIMIT). Artifacts are written once per video id under the
configured artifacts directory and referenced as /thumbnails/<file>.
"""
from __future__ import annotations

import json
import math
import os
import shutil
import subprocess
import threading
import time
from pathlib import Path
from typing import Optional

from PIL import Image, ImageOps, UnidentifiedImageError

from config import STATE, artifacts_dir, log
from errors import PreviewError, ProbeError, ThumbnailError

ARTIFACT_URL_PREFIX = "/thumbnails"
THUMB_SIZE = (320, 180)
THUMB_POSITION = 0.10
PREVIEW_START = 5
PREVIEW_SECONDS = 3
PREVIEW_WIDTH = 320
PREVIEW_FPS = 10


def _tool(name: str) -> Optional[str]:
    """Resolve an executable from an env override (FFMPEG/FFPROBE) or PATH."""
    return os.environ.get(name.upper()) or shutil.which(name)


def ffmpeg_available() -> bool:
    return bool(_tool("ffmpeg"))


def ffprobe_available() -> bool:
    return bool(_tool("ffprobe"))


# -----------------------------
# Global process concurrency gate
# -----------------------------
_PROC_SEM = threading.BoundedSemaphore(int(STATE.get("ffmpeg_concurrency") or 4))
_PROC_SEM_GUARD = threading.Lock()


def set_process_concurrency(new_val: int) -> int:
    """Swap the process gate; callers capture a local reference before acquire/release."""
    global _PROC_SEM
    target = max(1, min(16, int(new_val)))
    with _PROC_SEM_GUARD:
        _PROC_SEM = threading.BoundedSemaphore(target)
        STATE["ffmpeg_concurrency"] = target
    return target


def _run(cmd: list[str]) -> subprocess.CompletedProcess:
    """
    Run an external tool under the global concurrency cap and time limit.
    Raises RuntimeError on timeout; OSError propagates when the binary cannot start.
    """
    tl = int(STATE.get("ffmpeg_timelimit") or 0)
    local_sem = _PROC_SEM
    local_sem.acquire()
    try:
        if tl > 0:
            return subprocess.run(cmd, capture_output=True, text=True, timeout=tl)
        return subprocess.run(cmd, capture_output=True, text=True)
    except subprocess.TimeoutExpired as te:
        raise RuntimeError(f"subprocess timed out after {tl}s: {' '.join(cmd[:4])}...") from te
    finally:
        local_sem.release()


def _stderr_tail(proc: subprocess.CompletedProcess, limit: int = 600) -> str:
    err = (proc.stderr or "").strip()
    return err if len(err) <= limit else err[-limit:]


def artifact_url(name: str) -> str:
    return f"{ARTIFACT_URL_PREFIX}/{name}"


def thumbnail_path(video_id: int) -> Path:
    return artifacts_dir() / f"{int(video_id)}.jpg"


def preview_path(video_id: int) -> Path:
    return artifacts_dir() / f"{int(video_id)}_preview.gif"


def remove_artifacts(video_id: int) -> None:
    for p in (thumbnail_path(video_id), preview_path(video_id)):
        p.unlink(missing_ok=True)


# -----------------------------
# Probe
# -----------------------------
def extract_duration(ffprobe_json: Optional[dict]) -> Optional[float]:
    if not isinstance(ffprobe_json, dict):
        return None
    d = (ffprobe_json.get("format") or {}).get("duration")
    if d is None:
        return None
    try:
        return float(d)
    except (TypeError, ValueError):
        return None


def probe_seconds(video: Path) -> float:
    """Exact duration in seconds as reported by ffprobe."""
    exe = _tool("ffprobe")
    if not exe:
        raise ProbeError("ffprobe not available")
    cmd = [exe, "-v", "error", "-print_format", "json", "-show_format", str(video)]
    try:
        proc = _run(cmd)
    except (OSError, RuntimeError) as e:
        raise ProbeError(f"ffprobe failed for {video}: {e}") from e
    if proc.returncode != 0:
        raise ProbeError(f"ffprobe exit {proc.returncode} for {video}: {_stderr_tail(proc)}")
    try:
        payload = json.loads(proc.stdout or "{}")
    except json.JSONDecodeError as e:
        raise ProbeError(f"ffprobe returned invalid json for {video}") from e
    dur = extract_duration(payload)
    if dur is None or math.isnan(dur) or dur < 0:
        raise ProbeError(f"no duration reported for {video}")
    return dur


def probe_duration(video: Path) -> int:
    """Whole seconds, rounded down."""
    return int(math.floor(probe_seconds(video)))


# -----------------------------
# Thumbnail
# -----------------------------
def generate_thumbnail(video: Path, video_id: int, *, duration: Optional[float] = None) -> str:
    """
    Grab the frame at 10% of the timeline and fit it into a 320x180 JPEG
    (letterboxed). Returns the artifact reference.
    """
    exe = _tool("ffmpeg")
    if not exe:
        raise ThumbnailError("ffmpeg not available")
    if duration is None:
        try:
            duration = probe_seconds(video)
        except ProbeError as e:
            raise ThumbnailError(f"cannot place thumbnail without a duration: {e.message}") from e
    if not duration or duration <= 0:
        raise ThumbnailError(f"zero-duration input: {video}")
    try:
        out = thumbnail_path(video_id)
    except OSError as e:
        raise ThumbnailError(f"artifacts directory unavailable: {e}") from e
    frame = out.with_name(f"{int(video_id)}.frame.jpg")
    t = float(duration) * THUMB_POSITION
    cmd = [
        exe, "-y", "-loglevel", "error",
        "-ss", f"{t:.3f}",
        "-i", str(video),
        "-frames:v", "1",
        "-q:v", "2",
        str(frame),
    ]
    log("ffmpeg", f"thumbnail start id={video_id} path={video} time={t:.3f}s")
    t0 = time.time()
    try:
        try:
            proc = _run(cmd)
        except (OSError, RuntimeError) as e:
            raise ThumbnailError(f"ffmpeg failed for {video}: {e}") from e
        if proc.returncode != 0 or not frame.exists():
            raise ThumbnailError(f"ffmpeg exit {proc.returncode} for {video}: {_stderr_tail(proc)}")
        try:
            with Image.open(frame) as img:
                boxed = ImageOps.pad(img.convert("RGB"), THUMB_SIZE, color=(0, 0, 0))
            boxed.save(out, format="JPEG", quality=85)
        except (OSError, UnidentifiedImageError, ValueError) as e:
            raise ThumbnailError(f"unreadable frame for {video}: {e}") from e
    finally:
        frame.unlink(missing_ok=True)
    log("ffmpeg", f"thumbnail end id={video_id} elapsed={time.time() - t0:.3f}s out={out}")
    return artifact_url(out.name)


# -----------------------------
# Preview
# -----------------------------
def _render_preview(video: Path, video_id: int) -> str:
    exe = _tool("ffmpeg")
    if not exe:
        raise PreviewError("ffmpeg not available")
    out = preview_path(video_id)
    cmd = [
        exe, "-y", "-loglevel", "error",
        "-ss", str(PREVIEW_START),
        "-t", str(PREVIEW_SECONDS),
        "-i", str(video),
        "-vf", f"scale={PREVIEW_WIDTH}:-1,fps={PREVIEW_FPS}",
        "-loop", "0",
        str(out),
    ]
    try:
        proc = _run(cmd)
    except (OSError, RuntimeError) as e:
        raise PreviewError(f"ffmpeg failed for {video}: {e}") from e
    if proc.returncode != 0 or not out.exists() or out.stat().st_size == 0:
        out.unlink(missing_ok=True)
        raise PreviewError(f"ffmpeg exit {proc.returncode} for {video}: {_stderr_tail(proc)}")
    return artifact_url(out.name)


def generate_preview(video: Path, video_id: int) -> Optional[str]:
    """3s looping GIF from the 5s mark, 320px wide at 10fps. None on any failure."""
    try:
        ref = _render_preview(video, video_id)
    except (PreviewError, OSError) as e:
        log("ffmpeg", f"preview skipped id={video_id} reason={e}")
        return None
    log("ffmpeg", f"preview end id={video_id} out={ref}")
    return ref
