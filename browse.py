"""Read side of the catalog: browse, listings, categories, and per-video edits."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

import db
from config import ALL_CATEGORIES, log
from db import catalog
from errors import NotFound, ValidationError

DEFAULT_SORT = "recent"
DEFAULT_LIMIT = 50
MAX_PAGE_SIZE = 500
RATING_MIN = 1
RATING_MAX = 5


def normalize_sort(sort: Optional[str]) -> str:
    key = (sort or DEFAULT_SORT).strip().lower()
    if key not in catalog.SORT_CLAUSES:
        raise ValidationError(f"unknown sort '{sort}' (expected one of {', '.join(catalog.SORT_CLAUSES)})")
    return key


def _page(limit: Any, offset: Any) -> tuple[int, int]:
    try:
        lim = int(limit)
        off = int(offset)
    except (TypeError, ValueError) as e:
        raise ValidationError("limit and offset must be integers") from e
    if lim < 1 or lim > MAX_PAGE_SIZE:
        raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}")
    if off < 0:
        raise ValidationError("offset must be >= 0")
    return lim, off


def normalize_folder(folder_path: Optional[str]) -> str:
    return "/".join(p for p in (folder_path or "").split("/") if p)


def build_breadcrumbs(folder_path: Optional[str]) -> List[Dict[str, str]]:
    """
    Root-to-leaf (name, cumulative path) pairs derived from the path string alone:
    "Movies/Action" -> [{"name": "Movies", "path": "Movies"},
                        {"name": "Action", "path": "Movies/Action"}]
    """
    crumbs: List[Dict[str, str]] = []
    current = ""
    for part in normalize_folder(folder_path).split("/"):
        if not part:
            continue
        current = f"{current}/{part}" if current else part
        crumbs.append({"name": part, "path": current})
    return crumbs


def browse(
    folder_path: Optional[str] = "",
    sort: Optional[str] = DEFAULT_SORT,
    limit: Any = DEFAULT_LIMIT,
    offset: Any = 0,
) -> Dict[str, Any]:
    """Child folders, a page of the folder's own videos, and breadcrumbs for `folder_path`."""
    key = normalize_sort(sort)
    lim, off = _page(limit, offset)
    folder = normalize_folder(folder_path)
    where, params = catalog.video_where(folder=folder)
    with db.session() as conn:
        folders = catalog.select_folders(conn, folder)
        videos, total = catalog.select_videos(conn, where=where, params=params, sort=key, limit=lim, offset=off)
    log("query", f"browse path={folder!r} sort={key} limit={lim} offset={off} total={total}")
    return {
        "folders": folders,
        "videos": videos,
        "breadcrumbs": build_breadcrumbs(folder),
        "current_path": folder,
        "total": total,
        "limit": lim,
        "offset": off,
    }


def list_videos(
    search: Optional[str] = None,
    category: Optional[str] = None,
    folder: Optional[str] = None,
    sort: Optional[str] = DEFAULT_SORT,
    limit: Any = DEFAULT_LIMIT,
    offset: Any = 0,
) -> Dict[str, Any]:
    """
    Catalog-wide listing. `search` (case-insensitive title substring) takes
    precedence over `folder`; `category` is exact and ignored when "All".
    """
    key = normalize_sort(sort)
    lim, off = _page(limit, offset)
    term = (search or "").strip() or None
    cat = category if category and category != ALL_CATEGORIES else None
    scope: Any = catalog.ANY_FOLDER if folder is None else normalize_folder(folder)
    where, params = catalog.video_where(folder=scope, search=term, category=cat)
    with db.session() as conn:
        videos, total = catalog.select_videos(conn, where=where, params=params, sort=key, limit=lim, offset=off)
    log("query", f"videos search={term!r} category={cat!r} folder={folder!r} sort={key} total={total}")
    return {"videos": videos, "total": total, "limit": lim, "offset": off}


def list_folders(parent: Optional[str] = None) -> List[Dict[str, Any]]:
    """All folders (parent=None), root folders (parent="") or the children of `parent`."""
    scope: Any = catalog.ANY_FOLDER if parent is None else normalize_folder(parent)
    with db.session() as conn:
        return catalog.select_folders(conn, scope)


def list_categories() -> List[str]:
    with db.session() as conn:
        cats = catalog.distinct_categories(conn)
    return [ALL_CATEGORIES, *cats]


def get_video(video_id: int) -> Dict[str, Any]:
    """
    Fetch a video and record a play: play_count + 1 and last_played = now,
    in the same transaction as the read.
    """
    with db.transaction() as conn:
        if not catalog.record_play(conn, video_id):
            raise NotFound("video", video_id)
        row = catalog.get_video(conn, video_id)
    if row is None:
        raise NotFound("video", video_id)
    return row


def set_rating(video_id: int, rating: Any) -> Dict[str, Any]:
    if isinstance(rating, bool) or not isinstance(rating, int):
        raise ValidationError("rating must be an integer")
    if rating < RATING_MIN or rating > RATING_MAX:
        raise ValidationError(f"Rating must be between {RATING_MIN} and {RATING_MAX}")
    with db.session() as conn:
        if not catalog.update_rating(conn, video_id, rating):
            raise NotFound("video", video_id)
    return {"id": int(video_id), "rating": rating}


def set_category(video_id: int, category: Any) -> Dict[str, Any]:
    value = category.strip() if isinstance(category, str) else ""
    if not value:
        raise ValidationError("category must be a non-empty string")
    with db.session() as conn:
        if not catalog.update_category(conn, video_id, value):
            raise NotFound("video", video_id)
    return {"id": int(video_id), "category": value}
