from pathlib import Path

import pytest
from fastapi.testclient import TestClient

import config
import db
import media
from errors import ProbeError


@pytest.fixture()
def media_root(tmp_path):
    """Isolate the library root, catalog database and artifacts dir per test."""
    original_state = dict(config.STATE)
    try:
        original_db_file = db.path()
    except RuntimeError:
        original_db_file = None
    root = tmp_path / "library"
    root.mkdir()
    state_dir = tmp_path / ".state"
    config.STATE.update(
        root=root,
        state_dir=state_dir,
        db_path=state_dir / "localtube.db",
        artifacts_dir=state_dir / "thumbnails",
        scan_workers=2,
        scan_on_startup=False,
        media_exts=set(config.DEFAULT_MEDIA_EXTS),
    )
    db.init(config.STATE["db_path"])
    try:
        yield root
    finally:
        config.STATE.clear()
        config.STATE.update(original_state)
        if original_db_file is not None:
            db.configure(original_db_file)


@pytest.fixture()
def fake_media(monkeypatch):
    """
    Replace the ffprobe/ffmpeg adapters with deterministic fakes.
    Files whose name contains "corrupt" fail probing; "nopreview" fails the preview.
    Returns the list of (kind, video_id, path) calls made.
    """
    calls = []

    def probe_seconds(path: Path) -> float:
        calls.append(("probe", None, Path(path)))
        if "corrupt" in Path(path).name:
            raise ProbeError(f"invalid data: {path}")
        return 42.7

    def generate_thumbnail(path: Path, video_id: int, *, duration=None) -> str:
        calls.append(("thumbnail", video_id, Path(path)))
        return media.artifact_url(f"{video_id}.jpg")

    def generate_preview(path: Path, video_id: int):
        calls.append(("preview", video_id, Path(path)))
        if "nopreview" in Path(path).name:
            return None
        return media.artifact_url(f"{video_id}_preview.gif")

    monkeypatch.setattr(media, "probe_seconds", probe_seconds)
    monkeypatch.setattr(media, "generate_thumbnail", generate_thumbnail)
    monkeypatch.setattr(media, "generate_preview", generate_preview)
    return calls


@pytest.fixture()
def client(media_root):
    import app

    with TestClient(app.app) as test_client:
        yield test_client
