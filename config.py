"""Runtime configuration and logging helpers shared by the server, scanner and tools."""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

LOGGER_NAME = "localtube"

DEFAULT_MEDIA_EXTS = {".mp4", ".webm", ".mov", ".avi", ".mkv", ".m4v"}
ALL_CATEGORIES = "All"


def _env_int(name: str, default: int) -> int:
    try:
        v = os.environ.get(name)
        return int(v) if v is not None and str(v).strip() != "" else int(default)
    except ValueError:
        return int(default)


def _env_on(name: str, default: bool = False) -> bool:
    v = os.environ.get(name)
    if v is None:
        return default
    return str(v).strip().lower() in ("1", "true", "yes")


def _env_path(*names: str) -> Optional[Path]:
    for name in names:
        v = os.environ.get(name)
        if v and v.strip():
            return Path(v).expanduser().resolve()
    return None


def media_exts() -> set[str]:
    """
    Allowed video extensions (lowercased with dot).
    Configure via MEDIA_EXTS env (comma-separated).
    """
    env = os.environ.get("MEDIA_EXTS")
    if env:
        out: set[str] = set()
        for part in env.split(","):
            s = part.strip().lower()
            if not s:
                continue
            if not s.startswith("."):
                s = "." + s
            out.add(s)
        if out:
            return out
    return set(DEFAULT_MEDIA_EXTS)


# Global runtime state. Tests swap entries in and out of this dict.
STATE: Dict[str, Any] = {}


def load_state() -> Dict[str, Any]:
    """(Re)populate STATE from the environment and return it."""
    root = _env_path("MEDIA_ROOT", "VIDEOS_DIR") or (Path.home() / "Videos")
    state_dir = _env_path("STATE_DIR") or (root / ".localtube")
    STATE["root"] = root
    STATE["state_dir"] = state_dir
    STATE["db_path"] = _env_path("DB_PATH") or (state_dir / "localtube.db")
    STATE["artifacts_dir"] = _env_path("THUMBNAILS_DIR") or (state_dir / "thumbnails")
    STATE["scan_workers"] = max(1, _env_int("SCAN_WORKERS", os.cpu_count() or 2))
    STATE["ffmpeg_concurrency"] = max(1, min(16, _env_int("FFMPEG_CONCURRENCY", 4)))
    STATE["ffmpeg_timelimit"] = max(0, _env_int("FFMPEG_TIMELIMIT", 600))
    STATE["scan_on_startup"] = _env_on("SCAN_ON_STARTUP", True)
    STATE["media_exts"] = media_exts()
    return STATE


load_state()


def artifacts_dir() -> Path:
    d = Path(STATE["artifacts_dir"])
    d.mkdir(parents=True, exist_ok=True)
    return d


# ------------------------------------------------------------
# Logging categories (coarse grained, opt-in / opt-out)
#   LOG_ALL=0 disables every category unless explicitly enabled.
#   Per-category env vars override: LOG_SCAN, LOG_FFMPEG, LOG_QUERY, LOG_API
# ------------------------------------------------------------
def log_enabled(cat: str) -> bool:
    base_on = str(os.environ.get("LOG_ALL", "1")).lower() not in ("0", "false", "no")
    specific = os.environ.get(f"LOG_{cat.upper()}")
    if specific is not None:
        return str(specific).lower() in ("1", "true", "yes")
    return base_on


def logger() -> logging.Logger:
    return logging.getLogger(LOGGER_NAME)


def log(cat: str, msg: str, *, level: int = logging.INFO) -> None:
    """Emit an application log line for a given category."""
    if not log_enabled(cat):
        return
    logger().log(level, "[%s] %s", cat, msg)


def log_exception(cat: str, msg: str) -> None:
    """Like log() at ERROR level, with the active exception's traceback attached."""
    if not log_enabled(cat):
        return
    logger().exception("[%s] %s", cat, msg)


def configure_logging(level: int = logging.INFO) -> None:
    lg = logger()
    if lg.handlers:
        return
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    lg.addHandler(handler)
    lg.setLevel(level)
