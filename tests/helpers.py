from pathlib import Path
from typing import Optional

import db
from db import catalog


def write_video(root: Path, rel: str, payload: bytes = b"00") -> Path:
    p = root / rel
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_bytes(payload)
    return p


def add_folder(path: str) -> None:
    parent, _, name = path.rpartition("/")
    with db.session() as conn:
        catalog.insert_folder_if_absent(conn, path, name, parent or None)


def add_video(
    rel: str,
    *,
    created_at: Optional[str] = None,
    rating: Optional[int] = None,
    play_count: Optional[int] = None,
    category: Optional[str] = None,
    title: Optional[str] = None,
) -> int:
    """Insert a catalog row directly (no file on disk) and bump its folder count."""
    folder, _, filename = rel.rpartition("/")
    with db.session() as conn:
        vid = catalog.insert_video(
            conn,
            filename=filename,
            path=f"/media/{rel}",
            relative_path=rel,
            folder_path=folder or None,
            title=title or filename.rsplit(".", 1)[0],
            size=2,
            created_at=created_at,
            rating=rating,
            play_count=play_count,
            category=category,
        )
        catalog.increment_folder_count(conn, folder or None)
    return vid


def folder_counts() -> dict:
    """{folder path: (stored video_count, actual number of rows)}"""
    with db.session() as conn:
        rows = conn.execute(
            "SELECT f.path, f.video_count, "
            "(SELECT COUNT(*) FROM videos v WHERE v.folder_path = f.path) AS actual "
            "FROM folders f"
        ).fetchall()
    return {r["path"]: (r["video_count"], r["actual"]) for r in rows}


def table_count(table: str) -> int:
    with db.session() as conn:
        return conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
