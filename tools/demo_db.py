#!/usr/bin/env python3
"""Create a small demo catalog (no media files needed) for UI work and screenshots."""
from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import db  # noqa: E402
from db import catalog  # noqa: E402
from errors import StoreConflict  # noqa: E402

DEMO_FOLDERS = ["Movies", "TV Shows", "Documentaries", "Music Videos"]

DEMO_VIDEOS: List[Dict[str, Any]] = [
    {"filename": "sample_movie_1.mp4", "folder": "Movies", "title": "Sample Movie 1",
     "duration": 7200, "size": 1073741824, "play_count": 45, "rating": 5, "category": "Action"},
    {"filename": "sample_movie_2.mp4", "folder": "Movies", "title": "Sample Movie 2",
     "duration": 6300, "size": 805306368, "play_count": 23, "rating": 4, "category": "Comedy"},
    {"filename": "documentary_nature.mp4", "folder": "Documentaries", "title": "Nature Documentary",
     "duration": 3600, "size": 536870912, "play_count": 67, "rating": 5, "category": "Documentary"},
    {"filename": "tv_show_s01e01.mp4", "folder": "TV Shows", "title": "TV Show S01E01",
     "duration": 2700, "size": 402653184, "play_count": 89, "rating": 4, "category": "TV Series"},
    {"filename": "music_video_1.mp4", "folder": "Music Videos", "title": "Music Video 1",
     "duration": 240, "size": 67108864, "play_count": 156, "rating": 3, "category": "Music"},
]


def seed(db_path: Path, *, media_prefix: str = "/videos") -> Dict[str, int]:
    """Insert the demo rows; rows already present are left alone."""
    db.init(db_path)
    added = {"folders": 0, "videos": 0}
    with db.session() as conn:
        for name in DEMO_FOLDERS:
            if catalog.insert_folder_if_absent(conn, name, name, None):
                added["folders"] += 1
        for v in DEMO_VIDEOS:
            rel = f"{v['folder']}/{v['filename']}"
            try:
                catalog.insert_video(
                    conn,
                    filename=v["filename"],
                    path=f"{media_prefix.rstrip('/')}/{rel}",
                    relative_path=rel,
                    folder_path=v["folder"],
                    title=v["title"],
                    size=v["size"],
                    duration=v["duration"],
                    category=v["category"],
                    rating=v["rating"],
                    play_count=v["play_count"],
                )
            except StoreConflict:
                continue
            catalog.increment_folder_count(conn, v["folder"])
            added["videos"] += 1
    return added


def main(argv: Optional[list[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Create a demo catalog database")
    ap.add_argument("--db", default=str(ROOT / "data" / "demo.db"), help="Output SQLite path")
    ap.add_argument("--media-prefix", default="/videos", help="Absolute prefix used for the fake video paths")
    args = ap.parse_args(argv)
    out = Path(args.db).expanduser().resolve()
    added = seed(out, media_prefix=args.media_prefix)
    print(f"[demo] {out}: folders+={added['folders']} videos+={added['videos']}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
