"""
Devboard: command-line front end

Usage:
    devboard list [--group ID]                # print the tiles of a view
    devboard add ~/src/shop --url http://localhost:5173
    devboard reorder <id> 0 --group <gid>     # move to front of a folder view
    devboard screenshot <id>                  # capture a thumbnail
    devboard export backup.json
"""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from .config import Config
from .dashboard import Dashboard
from .errors import DevboardError
from .host import TerminalUI
from .store import ProjectStore
from .sync_slot import SqliteSyncSlot


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="devboard",
        description="Curated dashboard of local development projects",
    )
    ap.add_argument("--config", default=None, help="Path to config.yaml")
    ap.add_argument("--storage-dir", default=None, help="Override storage directory")
    ap.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = ap.add_subparsers(dest="command", required=True)

    p = sub.add_parser("list", help="List projects of a view")
    p.add_argument("--group", default=None, help="Folder id (default: All Projects)")

    p = sub.add_parser("add", help="Add a project folder")
    p.add_argument("folder", nargs="?", default=None)
    p.add_argument("--name", default=None)
    p.add_argument("--url", default=None)
    p.add_argument("--group", default=None)

    sub.add_parser("add-current", help="Add the current directory")

    p = sub.add_parser("edit", help="Edit a project interactively")
    p.add_argument("id")

    p = sub.add_parser("rm", help="Remove a project")
    p.add_argument("id")
    p.add_argument("-y", "--yes", action="store_true", help="Do not ask for confirmation")

    p = sub.add_parser("move", help="Put a project into a folder (omit --group for none)")
    p.add_argument("id")
    p.add_argument("--group", default=None)

    p = sub.add_parser("reorder", help="Move a project to a position within a view")
    p.add_argument("id")
    p.add_argument("index", type=int)
    p.add_argument("--group", default=None)

    p = sub.add_parser("group-add", help="Create a folder")
    p.add_argument("name", nargs="?", default=None)

    p = sub.add_parser("group-rename", help="Rename a folder")
    p.add_argument("id")
    p.add_argument("name", nargs="?", default=None)

    p = sub.add_parser("group-rm", help="Delete a folder (projects stay)")
    p.add_argument("id")

    p = sub.add_parser("import", help="Replace the dashboard with a JSON export")
    p.add_argument("path")

    p = sub.add_parser("export", help="Write the dashboard to a JSON file")
    p.add_argument("path")

    p = sub.add_parser("thumbnail", help="Use an existing image as thumbnail")
    p.add_argument("id")
    p.add_argument("image")

    p = sub.add_parser("screenshot", help="Capture a thumbnail with a headless browser")
    p.add_argument("id")
    p.add_argument("--url", default=None)

    p = sub.add_parser("screenshot-missing", help="Capture thumbnails that do not exist yet")
    p.add_argument("--max", type=int, default=None)

    p = sub.add_parser("tile-size", help="Set the tile size in pixels (120-600)")
    p.add_argument("px")

    p = sub.add_parser("open", help="Open a project folder in the editor")
    p.add_argument("id")

    return ap


def print_view(dashboard: Dashboard, group_id: Optional[str]) -> None:
    snapshot = dashboard.view(group_id)
    groups = {g["id"]: g["name"] for g in snapshot.groups}
    title = groups.get(group_id, group_id) if group_id else "All Projects"
    print(f"{title} ({len(snapshot.projects)} projects, tiles {snapshot.tile_px}px)")
    for p in snapshot.projects:
        folders = ", ".join(groups.get(gid, gid) for gid in p["groupIds"]) or "-"
        thumb = "🖼" if p.get("thumbnailUri") else " "
        print(f"  {p['order']:>3} {thumb} {p['id']}  {p['name']}  [{folders}]")
        print(f"        {p['folderPath']}" + (f"  {p['url']}" if p.get("url") else ""))
    if snapshot.groups:
        print("Folders:")
        for g in snapshot.groups:
            print(f"  {g['order']:>3}   {g['id']}  {g['name']}")


def run(args: argparse.Namespace, dashboard: Dashboard) -> int:
    cmd = args.command

    if cmd == "list":
        if dashboard.config.auto_screenshot_on_missing:
            asyncio.run(dashboard.screenshot_missing())
        print_view(dashboard, args.group)
    elif cmd == "add":
        project = dashboard.add_project(args.folder, args.name, args.url, args.group)
        if project is None:
            return 1
        print(project.id)
    elif cmd == "add-current":
        print(dashboard.add_current_folder().id)
    elif cmd == "edit":
        dashboard.edit_project(args.id)
    elif cmd == "rm":
        if not dashboard.delete_project(args.id, confirm=not args.yes):
            return 1
    elif cmd == "move":
        dashboard.move_project(args.id, args.group)
    elif cmd == "reorder":
        dashboard.reorder_project(args.id, args.index, args.group)
    elif cmd == "group-add":
        group = dashboard.add_group(args.name)
        if group is None:
            return 1
        print(group.id)
    elif cmd == "group-rename":
        if dashboard.rename_group(args.id, args.name) is None:
            return 1
    elif cmd == "group-rm":
        dashboard.delete_group(args.id)
    elif cmd == "import":
        dashboard.import_state(args.path)
    elif cmd == "export":
        dashboard.export_state(args.path)
    elif cmd == "thumbnail":
        dashboard.set_thumbnail(args.id, args.image)
    elif cmd == "screenshot":
        path = asyncio.run(dashboard.generate_screenshot(args.id, args.url))
        if path is None:
            return 1
        dashboard.ui.info(f"Screenshot generated: {path}")
    elif cmd == "screenshot-missing":
        count = asyncio.run(dashboard.screenshot_missing(args.max))
        dashboard.ui.info(f"Generated {count} screenshot(s)")
    elif cmd == "tile-size":
        print(dashboard.set_tile_px(args.px))
    elif cmd == "open":
        if not dashboard.open_project(args.id):
            return 1
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    cfg = Config.load(args.config)
    if args.storage_dir:
        cfg.storage_dir = args.storage_dir
        cfg.sync_db = ""
        cfg.resolve_paths()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else getattr(logging, cfg.log_level.upper(), logging.INFO),
        format="%(asctime)s [devboard] %(levelname)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    store = ProjectStore(cfg.storage_dir, SqliteSyncSlot(cfg.sync_db))
    dashboard = Dashboard(store, TerminalUI(), cfg)
    try:
        return run(args, dashboard)
    except (DevboardError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
