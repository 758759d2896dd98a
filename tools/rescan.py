#!/usr/bin/env python3
"""
CLI to synchronize a media root into the catalog without running the server.

Usage:
    python tools/rescan.py \
        --root /path/to/videos \
        [--db /path/to/localtube.db] \
        [--workers 4] [--prune] [--json]

Notes:
- Respects MEDIA_ROOT / DB_PATH / THUMBNAILS_DIR if set; flags override.
- Requires ffmpeg/ffprobe for durations and artifacts; without them videos are
  still indexed, with those fields left empty.
"""
from __future__ import annotations

import argparse
import json
import os
import sys
from pathlib import Path
from typing import Any, Dict, Optional

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import db  # noqa: E402
import media  # noqa: E402
import scanner  # noqa: E402
from config import STATE, configure_logging, load_state  # noqa: E402


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Index a video library into the catalog")
    ap.add_argument("--root", default=os.environ.get("MEDIA_ROOT"), help="Directory containing media files")
    ap.add_argument("--db", default=None, help="SQLite catalog path (default: DB_PATH or <root>/.localtube/localtube.db)")
    ap.add_argument("--artifacts", default=None, help="Directory for thumbnails/previews (default: THUMBNAILS_DIR)")
    ap.add_argument("--workers", type=int, default=None, help="Max parallel derivation workers")
    ap.add_argument("--ffmpeg-timelimit", type=int, default=None, help="Hard cap for each ffmpeg/ffprobe call in seconds (0 disables)")
    ap.add_argument("--prune", action="store_true", help="After scanning, drop catalog rows whose files are gone")
    ap.add_argument("--json", action="store_true", help="Print the scan stats as JSON")
    return ap


def run(args: argparse.Namespace) -> Dict[str, Any]:
    if args.root:
        os.environ["MEDIA_ROOT"] = str(Path(args.root).expanduser().resolve())
    load_state()
    if args.db:
        STATE["db_path"] = Path(args.db).expanduser().resolve()
    if args.artifacts:
        STATE["artifacts_dir"] = Path(args.artifacts).expanduser().resolve()
    if args.ffmpeg_timelimit is not None:
        STATE["ffmpeg_timelimit"] = max(0, int(args.ffmpeg_timelimit))
    media.set_process_concurrency(STATE["ffmpeg_concurrency"])
    db.init(STATE["db_path"])
    stats = scanner.synchronize(STATE["root"], workers=args.workers)
    if args.prune:
        stats["pruned"] = scanner.prune_missing(STATE["root"])
    return stats


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    root = Path(args.root).expanduser().resolve() if args.root else None
    if root is None or not root.is_dir():
        print(f"[cli] Root not found or not a dir: {root}", file=sys.stderr)
        return 2
    configure_logging()
    stats = run(args)
    if args.json:
        print(json.dumps(stats, indent=2))
    else:
        print(
            f"[cli] folders+={stats['folders']} videos+={stats['videos']} skipped={stats['skipped']} "
            f"derived={stats['derived']} errors={stats['errors']}"
        )
        if "pruned" in stats:
            print(f"[cli] pruned videos={stats['pruned']['videos']} folders={stats['pruned']['folders']}")
    return 1 if stats["errors"] else 0


if __name__ == "__main__":
    sys.exit(main())
