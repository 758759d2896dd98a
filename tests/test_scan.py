import os
import threading
from pathlib import Path

import config
import db
import scanner
from db import catalog

from .helpers import folder_counts, table_count, write_video


def _videos():
    with db.session() as conn:
        return {r["relative_path"]: dict(r) for r in conn.execute("SELECT * FROM videos")}


def _folders():
    with db.session() as conn:
        return {r["path"]: dict(r) for r in conn.execute("SELECT * FROM folders")}


def test_scan_indexes_tree(media_root, fake_media):
    write_video(media_root, "Movies/Action/a.mp4")
    write_video(media_root, "Movies/Action/b.MKV")
    write_video(media_root, "Movies/c.webm")
    write_video(media_root, "root.mov")

    stats = scanner.synchronize()

    assert stats["folders"] == 2
    assert stats["videos"] == 4
    assert stats["errors"] == 0
    assert stats["derived"] == 4
    assert stats["completed_at"] is not None

    folders = _folders()
    assert folders["Movies"]["parent_path"] is None
    assert folders["Movies/Action"]["parent_path"] == "Movies"
    assert folders["Movies/Action"]["name"] == "Action"
    assert folders["Movies/Action"]["video_count"] == 2
    assert folders["Movies"]["video_count"] == 1

    videos = _videos()
    a = videos["Movies/Action/a.mp4"]
    assert a["filename"] == "a.mp4"
    assert a["title"] == "a"
    assert a["folder_path"] == "Movies/Action"
    assert a["path"] == str((media_root / "Movies/Action/a.mp4").resolve())
    assert a["size"] == 2
    assert a["duration"] == 42
    assert a["thumbnail"] == f"/thumbnails/{a['id']}.jpg"
    assert a["preview_path"] == f"/thumbnails/{a['id']}_preview.gif"
    assert a["play_count"] == 0
    assert a["rating"] == 0
    assert a["category"] == "Uncategorized"
    assert videos["root.mov"]["folder_path"] is None


def test_rescan_is_idempotent(media_root, fake_media):
    write_video(media_root, "Shows/s01e01.mp4")
    write_video(media_root, "Shows/s01e02.mp4")
    scanner.synchronize()
    before_videos = _videos()
    before_folders = _folders()
    derive_calls = len(fake_media)

    stats = scanner.synchronize()

    assert stats["videos"] == 0
    assert stats["folders"] == 0
    assert stats["skipped"] == 2
    assert _videos() == before_videos
    assert _folders() == before_folders
    # Known videos are never re-derived.
    assert len(fake_media) == derive_calls


def test_rescan_picks_up_new_files_only(media_root, fake_media):
    write_video(media_root, "Shows/a.mp4")
    scanner.synchronize()
    write_video(media_root, "Shows/b.mp4")
    stats = scanner.synchronize()
    assert stats["videos"] == 1
    assert stats["skipped"] == 1
    assert folder_counts()["Shows"] == (2, 2)


def test_video_count_matches_rows(media_root, fake_media):
    for i in range(5):
        write_video(media_root, f"A/clip{i}.mp4")
    for i in range(3):
        write_video(media_root, f"A/B/clip{i}.mp4")
    write_video(media_root, "C/readme.txt")
    scanner.synchronize()
    scanner.synchronize()
    counts = folder_counts()
    assert counts == {"A": (5, 5), "A/B": (3, 3), "C": (0, 0)}


def test_non_video_and_hidden_entries_skipped(media_root, fake_media):
    write_video(media_root, "notes.txt")
    write_video(media_root, "cover.jpg")
    write_video(media_root, "noext")
    write_video(media_root, ".hidden.mp4")
    write_video(media_root, ".cache/x.mp4")
    write_video(media_root, "ok.M4V")
    stats = scanner.synchronize()
    assert stats["videos"] == 1
    assert list(_videos()) == ["ok.M4V"]
    assert ".cache" not in _folders()


def test_state_dir_inside_root_is_not_scanned(media_root, fake_media):
    state_dir = media_root / "_state"
    config.STATE["state_dir"] = state_dir
    config.STATE["artifacts_dir"] = state_dir / "thumbnails"
    write_video(media_root, "_state/thumbnails/1_preview.mp4")
    write_video(media_root, "keep.mp4")
    scanner.synchronize()
    assert list(_videos()) == ["keep.mp4"]
    assert "_state" not in _folders()


def test_zero_byte_file_indexed_without_artifacts(media_root, monkeypatch):
    # Real adapters: with or without ffmpeg installed, an empty file yields no duration.
    monkeypatch.setitem(config.STATE, "ffmpeg_timelimit", 20)
    write_video(media_root, "empty.mp4", payload=b"")
    stats = scanner.synchronize()
    assert stats["videos"] == 1
    row = _videos()["empty.mp4"]
    assert row["size"] == 0
    assert row["duration"] is None
    assert row["thumbnail"] is None
    assert row["preview_path"] is None


def test_probe_failure_skips_thumbnail_and_continues(media_root, fake_media):
    write_video(media_root, "corrupt.mp4")
    write_video(media_root, "fine.mp4")
    stats = scanner.synchronize()
    assert stats["videos"] == 2
    videos = _videos()
    assert videos["corrupt.mp4"]["duration"] is None
    assert videos["corrupt.mp4"]["thumbnail"] is None
    assert videos["fine.mp4"]["duration"] == 42
    thumbs = [c for c in fake_media if c[0] == "thumbnail"]
    assert [c[2].name for c in thumbs] == ["fine.mp4"]


def test_preview_failure_keeps_thumbnail(media_root, fake_media):
    write_video(media_root, "nopreview.mp4")
    scanner.synchronize()
    row = _videos()["nopreview.mp4"]
    assert row["duration"] == 42
    assert row["thumbnail"] == f"/thumbnails/{row['id']}.jpg"
    assert row["preview_path"] is None


def test_thumbnail_crash_keeps_duration_and_preview(media_root, fake_media, monkeypatch):
    import media

    def boom(path, video_id, *, duration=None):
        raise RuntimeError("unexpected")

    monkeypatch.setattr(media, "generate_thumbnail", boom)
    write_video(media_root, "x.mp4")
    write_video(media_root, "y.mp4")
    stats = scanner.synchronize()
    assert stats["videos"] == 2
    assert stats["errors"] == 2
    assert len(stats["error_files"]) == 2
    assert table_count("videos") == 2
    for row in _videos().values():
        assert row["duration"] == 42
        assert row["thumbnail"] is None
        assert row["preview_path"] == f"/thumbnails/{row['id']}_preview.gif"


def test_blocked_artifacts_dir_still_records_duration(media_root, monkeypatch):
    import media

    blocker = media_root.parent / "blocker"
    blocker.write_bytes(b"")
    monkeypatch.setitem(config.STATE, "artifacts_dir", blocker / "thumbs")
    monkeypatch.setattr(media, "_tool", lambda name: f"/usr/bin/{name}")
    monkeypatch.setattr(media, "probe_seconds", lambda path: 42.7)
    monkeypatch.setattr(media, "generate_preview", lambda path, video_id: None)
    write_video(media_root, "clip.mp4")

    stats = scanner.synchronize()

    assert stats["videos"] == 1
    assert stats["errors"] == 0
    row = _videos()["clip.mp4"]
    assert row["duration"] == 42
    assert row["thumbnail"] is None
    assert row["preview_path"] is None


def test_unreadable_directory_does_not_abort_scan(media_root, fake_media, monkeypatch):
    write_video(media_root, "Locked/secret.mp4")
    write_video(media_root, "Open/visible.mp4")
    locked = str((media_root / "Locked").resolve())
    real_scandir = os.scandir

    def scandir(path="."):
        if str(path) == locked:
            raise PermissionError(13, "Permission denied", str(path))
        return real_scandir(path)

    monkeypatch.setattr(os, "scandir", scandir)
    stats = scanner.synchronize()
    assert stats["errors"] == 1
    assert stats["error_files"] == [locked]
    assert list(_videos()) == ["Open/visible.mp4"]
    # The folder row itself is known even though its contents were not.
    assert "Locked" in _folders()


def test_concurrent_synchronize_creates_no_duplicates(media_root, fake_media):
    for d in ("A", "B", "A/C"):
        for i in range(4):
            write_video(media_root, f"{d}/v{i}.mp4")
    results = []
    errors = []

    def run():
        try:
            results.append(scanner.synchronize(workers=2))
        except Exception as e:  # pragma: no cover - surfaced by the assert below
            errors.append(e)

    threads = [threading.Thread(target=run) for _ in range(3)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(60)

    assert errors == []
    assert table_count("videos") == 12
    assert table_count("folders") == 3
    assert sum(r["videos"] for r in results) == 12
    assert sum(r["folders"] for r in results) == 3
    assert all(stored == actual for stored, actual in folder_counts().values())


def test_background_scan_runs_once_at_a_time(media_root, fake_media, monkeypatch):
    gate = threading.Event()
    real_sync = scanner.synchronize

    def slow_sync(root=None, *, workers=None):
        gate.wait(10)
        return real_sync(root, workers=workers)

    monkeypatch.setattr(scanner, "synchronize", slow_sync)
    write_video(media_root, "a.mp4")

    assert scanner.start_background_scan() is True
    assert scanner.start_background_scan() is False
    assert scanner.scan_status()["running"] is True
    gate.set()
    assert scanner.wait_for_background_scan(10) is True

    status = scanner.scan_status()
    assert status["running"] is False
    assert status["error"] is None
    assert status["last"]["videos"] == 1
    assert scanner.start_background_scan() is True
    assert scanner.wait_for_background_scan(10) is True


def test_prune_removes_missing_videos_and_folders(media_root, fake_media):
    keep = write_video(media_root, "Keep/a.mp4")
    gone = write_video(media_root, "Gone/Deep/b.mp4")
    also_gone = write_video(media_root, "Keep/c.mp4")
    scanner.synchronize()

    gone.unlink()
    also_gone.unlink()
    (media_root / "Gone" / "Deep").rmdir()
    (media_root / "Gone").rmdir()

    # A plain rescan never removes anything.
    scanner.synchronize()
    assert table_count("videos") == 3

    removed = scanner.prune_missing()
    assert removed == {"videos": 2, "folders": 2}
    assert list(_videos()) == ["Keep/a.mp4"]
    assert set(_folders()) == {"Keep"}
    assert folder_counts()["Keep"] == (1, 1)
    assert keep.exists()


def test_prune_removes_artifact_files(media_root, fake_media):
    import media

    clip = write_video(media_root, "a.mp4")
    scanner.synchronize()
    vid = _videos()["a.mp4"]["id"]
    thumb = media.thumbnail_path(vid)
    thumb.write_bytes(b"jpg")
    clip.unlink()
    assert scanner.prune_missing()["videos"] == 1
    assert not thumb.exists()


def test_is_video_file_case_insensitive():
    exts = {".mp4", ".mkv"}
    assert scanner.is_video_file("A.MP4", exts)
    assert scanner.is_video_file("b.Mkv", exts)
    assert not scanner.is_video_file("c.mp4.txt", exts)
    assert not scanner.is_video_file("mp4", exts)


def test_catalog_lookup_by_absolute_path(media_root, fake_media):
    p = write_video(media_root, "Sub/z.mp4")
    scanner.synchronize()
    with db.session() as conn:
        row = catalog.get_video_by_path(conn, str(Path(p).resolve()))
    assert row is not None and row["relative_path"] == "Sub/z.mp4"
