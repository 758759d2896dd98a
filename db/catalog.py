"""
Catalog query interface over the folders and videos tables.

All functions take an open connection so callers decide the transaction
boundaries (db.session() for plain work, db.transaction() where a read and a
write must not interleave with other writers). Counter columns are only ever
changed with in-place `x = x + n` updates.
"""
from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from typing import Any, Iterator, Optional

from errors import StoreConflict

# Descending sorts put NULLs last everywhere; id DESC keeps paging stable on ties.
SORT_CLAUSES: dict[str, str] = {
    "recent": "created_at DESC, id DESC",
    "rating": "rating DESC NULLS LAST, created_at DESC, id DESC",
    "views": "play_count DESC NULLS LAST, created_at DESC, id DESC",
}

# Sentinel: do not scope a video query by folder at all.
ANY_FOLDER: Any = object()

_ARTIFACT_COLUMNS = ("duration", "thumbnail", "preview_path")


def now_ts() -> str:
    """UTC timestamp in the same text layout as the schema defaults."""
    dt = datetime.now(timezone.utc)
    return dt.strftime("%Y-%m-%d %H:%M:%S.") + f"{dt.microsecond // 1000:03d}"


def _dicts(rows: list[sqlite3.Row]) -> list[dict[str, Any]]:
    return [dict(r) for r in rows]


# -----------------------------
# Folders
# -----------------------------
def get_folder(conn: sqlite3.Connection, path: str) -> Optional[dict[str, Any]]:
    row = conn.execute("SELECT * FROM folders WHERE path = ?", (path,)).fetchone()
    return dict(row) if row is not None else None


def insert_folder_if_absent(conn: sqlite3.Connection, path: str, name: str, parent_path: Optional[str]) -> bool:
    """Insert a folder row unless one already has this path. Returns True when inserted."""
    cur = conn.execute(
        "INSERT OR IGNORE INTO folders (path, name, parent_path) VALUES (?, ?, ?)",
        (path, name, parent_path),
    )
    return cur.rowcount == 1


def increment_folder_count(conn: sqlite3.Connection, path: Optional[str], delta: int = 1) -> None:
    if not path:
        # Videos directly under the root have no folder row.
        return
    conn.execute("UPDATE folders SET video_count = video_count + ? WHERE path = ?", (int(delta), path))


def select_folders(conn: sqlite3.Connection, parent: Any = ANY_FOLDER) -> list[dict[str, Any]]:
    """
    parent=ANY_FOLDER -> every folder; parent in (None, "") -> root folders;
    otherwise the direct children of `parent`. Always ordered by name.
    """
    if parent is ANY_FOLDER:
        rows = conn.execute("SELECT * FROM folders ORDER BY name ASC, path ASC").fetchall()
    elif not parent:
        rows = conn.execute("SELECT * FROM folders WHERE parent_path IS NULL ORDER BY name ASC, path ASC").fetchall()
    else:
        rows = conn.execute(
            "SELECT * FROM folders WHERE parent_path = ? ORDER BY name ASC, path ASC", (parent,)
        ).fetchall()
    return _dicts(rows)


def folder_has_dependents(conn: sqlite3.Connection, path: str) -> bool:
    row = conn.execute(
        "SELECT EXISTS(SELECT 1 FROM folders WHERE parent_path = ?) "
        "OR EXISTS(SELECT 1 FROM videos WHERE folder_path = ?)",
        (path, path),
    ).fetchone()
    return bool(row[0])


def delete_folder(conn: sqlite3.Connection, path: str) -> bool:
    return conn.execute("DELETE FROM folders WHERE path = ?", (path,)).rowcount == 1


# -----------------------------
# Videos
# -----------------------------
def get_video(conn: sqlite3.Connection, video_id: int) -> Optional[dict[str, Any]]:
    row = conn.execute("SELECT * FROM videos WHERE id = ?", (int(video_id),)).fetchone()
    return dict(row) if row is not None else None


def get_video_by_path(conn: sqlite3.Connection, path: str) -> Optional[dict[str, Any]]:
    row = conn.execute("SELECT * FROM videos WHERE path = ?", (path,)).fetchone()
    return dict(row) if row is not None else None


def insert_video(
    conn: sqlite3.Connection,
    *,
    filename: str,
    path: str,
    relative_path: str,
    folder_path: Optional[str],
    title: str,
    size: Optional[int],
    duration: Optional[int] = None,
    category: Optional[str] = None,
    rating: Optional[int] = None,
    play_count: Optional[int] = None,
    created_at: Optional[str] = None,
) -> int:
    """
    Insert a video row and return its id.
    Raises StoreConflict when a row with the same path already exists.
    """
    cols = ["filename", "path", "relative_path", "folder_path", "title", "size", "duration"]
    vals: list[Any] = [filename, path, relative_path, folder_path, title, size, duration]
    for col, val in (("category", category), ("rating", rating), ("play_count", play_count), ("created_at", created_at)):
        if val is not None:
            cols.append(col)
            vals.append(val)
    sql = f"INSERT OR IGNORE INTO videos ({', '.join(cols)}) VALUES ({', '.join('?' for _ in cols)})"
    cur = conn.execute(sql, vals)
    if cur.rowcount != 1:
        raise StoreConflict("video", path)
    return int(cur.lastrowid)


def update_video_artifacts(conn: sqlite3.Connection, video_id: int, **fields: Any) -> bool:
    """Set whichever of duration/thumbnail/preview_path are given and not None."""
    updates = {k: v for k, v in fields.items() if k in _ARTIFACT_COLUMNS and v is not None}
    unknown = set(fields) - set(_ARTIFACT_COLUMNS)
    if unknown:
        raise ValueError(f"not artifact columns: {sorted(unknown)}")
    if not updates:
        return False
    assignments = ", ".join(f"{k} = ?" for k in updates)
    cur = conn.execute(f"UPDATE videos SET {assignments} WHERE id = ?", (*updates.values(), int(video_id)))
    return cur.rowcount == 1


def record_play(conn: sqlite3.Connection, video_id: int) -> bool:
    cur = conn.execute(
        "UPDATE videos SET play_count = play_count + 1, last_played = ? WHERE id = ?",
        (now_ts(), int(video_id)),
    )
    return cur.rowcount == 1


def update_rating(conn: sqlite3.Connection, video_id: int, rating: int) -> bool:
    cur = conn.execute("UPDATE videos SET rating = ? WHERE id = ?", (int(rating), int(video_id)))
    return cur.rowcount == 1


def update_category(conn: sqlite3.Connection, video_id: int, category: str) -> bool:
    cur = conn.execute("UPDATE videos SET category = ? WHERE id = ?", (category, int(video_id)))
    return cur.rowcount == 1


def delete_video(conn: sqlite3.Connection, video_id: int) -> bool:
    return conn.execute("DELETE FROM videos WHERE id = ?", (int(video_id),)).rowcount == 1


def iter_video_paths(conn: sqlite3.Connection) -> Iterator[tuple[int, str, Optional[str]]]:
    for row in conn.execute("SELECT id, path, folder_path FROM videos ORDER BY id"):
        yield int(row["id"]), str(row["path"]), row["folder_path"]


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def video_where(
    *,
    folder: Any = ANY_FOLDER,
    search: Optional[str] = None,
    category: Optional[str] = None,
) -> tuple[str, list[Any]]:
    """Build the WHERE clause (including the keyword, or empty) and its params."""
    conds: list[str] = []
    params: list[Any] = []
    if search:
        conds.append("casefold(title) LIKE ? ESCAPE '\\'")
        params.append(f"%{_escape_like(search.casefold())}%")
    elif folder is not ANY_FOLDER:
        if not folder:
            conds.append("folder_path IS NULL")
        else:
            conds.append("folder_path = ?")
            params.append(folder)
    if category:
        conds.append("category = ?")
        params.append(category)
    where = (" WHERE " + " AND ".join(conds)) if conds else ""
    return where, params


def select_videos(
    conn: sqlite3.Connection,
    *,
    where: str,
    params: list[Any],
    sort: str,
    limit: int,
    offset: int,
) -> tuple[list[dict[str, Any]], int]:
    """Return (page of rows, total rows matching `where`), both read from one snapshot."""
    order = SORT_CLAUSES[sort]
    if not conn.in_transaction:
        conn.execute("BEGIN")
    rows = conn.execute(
        f"SELECT * FROM videos{where} ORDER BY {order} LIMIT ? OFFSET ?",
        (*params, int(limit), int(offset)),
    ).fetchall()
    total = conn.execute(f"SELECT COUNT(*) FROM videos{where}", params).fetchone()[0]
    return _dicts(rows), int(total)


def distinct_categories(conn: sqlite3.Connection) -> list[str]:
    rows = conn.execute("SELECT DISTINCT category FROM videos WHERE category IS NOT NULL ORDER BY category").fetchall()
    return [str(r[0]) for r in rows]
