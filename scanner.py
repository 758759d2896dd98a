"""
Library synchronization: walk the media root, reconcile it into the catalog and
derive duration/thumbnail/preview for newly discovered videos.

The walk itself runs on the calling thread so a folder row always exists
before any video below it is inserted. Derivation (ffprobe/ffmpeg) is pushed to
a bounded thread pool. Errors are contained per entry: one bad file or one
unreadable directory never aborts the rest of the scan.
"""
from __future__ import annotations

import concurrent.futures
import os
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Union

import db
import media
from config import STATE, log, log_exception
from db import catalog
from errors import ProbeError, StoreConflict, ThumbnailError

MAX_ERROR_FILES = 200


def is_video_file(name: str, exts: Optional[set[str]] = None) -> bool:
    """Case-insensitive match of the final extension against the allow-list."""
    allowed = exts if exts is not None else STATE.get("media_exts") or set()
    return os.path.splitext(name)[1].lower() in allowed


def _rel_join(parent: str, name: str) -> str:
    return f"{parent}/{name}" if parent else name


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class _Scan:
    """Transient state of one synchronize() call."""

    def __init__(self, root: Path, workers: int) -> None:
        self.root = root
        self.workers = workers
        self.exts = set(STATE.get("media_exts") or ())
        self.excluded = {
            Path(p).resolve()
            for p in (STATE.get("state_dir"), STATE.get("artifacts_dir"))
            if p
        }
        self.stats: Dict[str, Any] = {
            "root": str(root),
            "started_at": _utc_now(),
            "completed_at": None,
            "folders": 0,
            "videos": 0,
            "skipped": 0,
            "derived": 0,
            "errors": 0,
            "error_files": [],
        }
        self._lock = threading.Lock()
        # Caps queued work items so a huge tree does not pile up futures in memory.
        self._slots = threading.BoundedSemaphore(workers * 4)
        self.pool = concurrent.futures.ThreadPoolExecutor(max_workers=workers, thread_name_prefix="derive")
        self.conn = db.connect()

    def bump(self, key: str, n: int = 1) -> None:
        with self._lock:
            self.stats[key] += n

    def error(self, path: Union[str, Path]) -> None:
        with self._lock:
            self.stats["errors"] += 1
            if len(self.stats["error_files"]) < MAX_ERROR_FILES:
                self.stats["error_files"].append(str(path))

    def submit(self, video_id: int, path: Path) -> None:
        self._slots.acquire()
        try:
            fut = self.pool.submit(self._derive_job, video_id, path)
        except RuntimeError:
            self._slots.release()
            raise
        fut.add_done_callback(lambda _f: self._slots.release())

    def _derive_job(self, video_id: int, path: Path) -> None:
        try:
            result = derive_video(video_id, path)
            self.bump("derived")
            if result["failed"]:
                self.error(path)
        except Exception:
            log_exception("scan", f"derive failed id={video_id} path={path}")
            self.error(path)

    def close(self) -> None:
        try:
            self.pool.shutdown(wait=True)
        finally:
            self.conn.close()


def derive_video(video_id: int, path: Path) -> Dict[str, Any]:
    """
    Probe duration, render thumbnail and preview, then store whichever of them
    succeeded. A failed thumbnail or preview never blocks the other fields.
    The returned "failed" list names steps that broke unexpectedly.
    """
    fields: Dict[str, Any] = {"duration": None, "thumbnail": None, "preview_path": None}
    failed: list[str] = []
    seconds: Optional[float] = None
    try:
        seconds = media.probe_seconds(path)
        fields["duration"] = int(seconds)
    except ProbeError as e:
        log("scan", f"probe failed id={video_id} reason={e.message}")
    if seconds is not None:
        try:
            fields["thumbnail"] = media.generate_thumbnail(path, video_id, duration=seconds)
        except ThumbnailError as e:
            log("scan", f"thumbnail failed id={video_id} reason={e.message}")
        except Exception:
            log_exception("scan", f"thumbnail crashed id={video_id} path={path}")
            failed.append("thumbnail")
    else:
        log("scan", f"thumbnail skipped id={video_id} reason=duration-unknown")
    fields["preview_path"] = media.generate_preview(path, video_id)
    with db.session() as conn:
        catalog.update_video_artifacts(conn, video_id, **fields)
    return {**fields, "failed": failed}


def _index_folder(scan: _Scan, rel: str, name: str, parent_rel: str) -> None:
    with scan.conn:
        created = catalog.insert_folder_if_absent(scan.conn, rel, name, parent_rel or None)
    if created:
        scan.bump("folders")
        log("scan", f"folder added path={rel}")


def _index_file(scan: _Scan, entry: os.DirEntry, rel_dir: str) -> None:
    abs_path = str(Path(entry.path).resolve())
    if catalog.get_video_by_path(scan.conn, abs_path) is not None:
        scan.bump("skipped")
        return
    size = entry.stat().st_size
    try:
        with scan.conn:
            video_id = catalog.insert_video(
                scan.conn,
                filename=entry.name,
                path=abs_path,
                relative_path=_rel_join(rel_dir, entry.name),
                folder_path=rel_dir or None,
                title=os.path.splitext(entry.name)[0],
                size=size,
            )
            catalog.increment_folder_count(scan.conn, rel_dir or None)
    except StoreConflict:
        # Another scan indexed it between the lookup and the insert.
        scan.bump("skipped")
        return
    scan.bump("videos")
    log("scan", f"video added id={video_id} path={abs_path} size={size}")
    scan.submit(video_id, Path(abs_path))


def _scan_dir(scan: _Scan, directory: Path, rel_dir: str) -> None:
    try:
        with os.scandir(directory) as it:
            entries = sorted(it, key=lambda e: e.name)
    except OSError:
        log_exception("scan", f"cannot read directory path={directory}")
        scan.error(directory)
        return
    for entry in entries:
        if entry.name.startswith("."):
            continue
        try:
            if entry.is_dir(follow_symlinks=False):
                if Path(entry.path).resolve() in scan.excluded:
                    continue
                rel = _rel_join(rel_dir, entry.name)
                _index_folder(scan, rel, entry.name, rel_dir)
                _scan_dir(scan, Path(entry.path), rel)
            elif entry.is_file() and is_video_file(entry.name, scan.exts):
                _index_file(scan, entry, rel_dir)
        except Exception:
            log_exception("scan", f"entry failed path={entry.path}")
            scan.error(entry.path)


def synchronize(root: Union[str, Path, None] = None, *, workers: Optional[int] = None) -> Dict[str, Any]:
    """
    Reconcile the directory tree under `root` into the catalog and return scan stats.
    Safe to re-run: existing folders and videos are left untouched.
    """
    base = Path(root if root is not None else STATE["root"]).expanduser().resolve()
    n_workers = max(1, int(workers or STATE.get("scan_workers") or 1))
    scan = _Scan(base, n_workers)
    log("scan", f"scan start root={base} workers={n_workers}")
    try:
        _scan_dir(scan, base, "")
    finally:
        scan.close()
    scan.stats["completed_at"] = _utc_now()
    s = scan.stats
    log(
        "scan",
        f"scan end root={base} folders={s['folders']} videos={s['videos']} "
        f"skipped={s['skipped']} derived={s['derived']} errors={s['errors']}",
    )
    return s


# -----------------------------
# Background trigger (fire-and-continue)
# -----------------------------
_SCAN_MTX = threading.Lock()
_SCAN_THREAD: Optional[threading.Thread] = None
_LAST_STATS: Optional[Dict[str, Any]] = None
_LAST_ERROR: Optional[str] = None


def _background_scan(root: Optional[Path], workers: Optional[int]) -> None:
    global _LAST_STATS, _LAST_ERROR
    try:
        _LAST_STATS = synchronize(root, workers=workers)
        _LAST_ERROR = None
    except Exception as e:
        log_exception("scan", "background scan failed")
        _LAST_ERROR = str(e)


def start_background_scan(root: Union[str, Path, None] = None, *, workers: Optional[int] = None) -> bool:
    """Start synchronize() on a daemon thread. Returns False when one is already running."""
    global _SCAN_THREAD
    with _SCAN_MTX:
        if _SCAN_THREAD is not None and _SCAN_THREAD.is_alive():
            return False
        th = threading.Thread(
            target=_background_scan,
            args=(Path(root) if root is not None else None, workers),
            name="library-scan",
            daemon=True,
        )
        _SCAN_THREAD = th
        th.start()
        return True


def wait_for_background_scan(timeout: Optional[float] = None) -> bool:
    """Join the running background scan, if any. Returns True when none is left running."""
    th = _SCAN_THREAD
    if th is not None:
        th.join(timeout)
        return not th.is_alive()
    return True


def scan_status() -> Dict[str, Any]:
    th = _SCAN_THREAD
    return {
        "running": bool(th is not None and th.is_alive()),
        "last": _LAST_STATS,
        "error": _LAST_ERROR,
    }


# -----------------------------
# Opt-in prune (mark-and-sweep)
# -----------------------------
def prune_missing(root: Union[str, Path, None] = None) -> Dict[str, int]:
    """
    Remove videos whose file is gone (with their artifacts) and folders whose
    directory is gone and that no longer hold videos or subfolders.
    Never called by synchronize().
    """
    base = Path(root if root is not None else STATE["root"]).expanduser().resolve()
    removed = {"videos": 0, "folders": 0}
    with db.session() as conn:
        videos = list(catalog.iter_video_paths(conn))
    for video_id, path, folder_path in videos:
        if Path(path).exists():
            continue
        try:
            with db.session() as conn:
                if not catalog.delete_video(conn, video_id):
                    continue
                catalog.increment_folder_count(conn, folder_path, -1)
            media.remove_artifacts(video_id)
        except (sqlite3.Error, OSError):
            log_exception("scan", f"prune video failed id={video_id} path={path}")
            continue
        removed["videos"] += 1
        log("scan", f"pruned video id={video_id} path={path}")

    with db.session() as conn:
        folders = catalog.select_folders(conn)
    # Deepest first so emptied parents become removable in the same pass.
    for folder in sorted(folders, key=lambda f: f["path"].count("/"), reverse=True):
        rel = folder["path"]
        if (base / rel).is_dir():
            continue
        try:
            with db.session() as conn:
                if catalog.folder_has_dependents(conn, rel):
                    continue
                if catalog.delete_folder(conn, rel):
                    removed["folders"] += 1
                    log("scan", f"pruned folder path={rel}")
        except sqlite3.Error:
            log_exception("scan", f"prune folder failed path={rel}")
    return removed
