"""
Dashboard orchestrator.

Turns user actions into ProjectStore mutations and screenshot captures,
and renders ViewSnapshots for the presentation layer. User input comes
from a HostUI; the store stays the only owner of project state.

A thumbnail reference is persisted only after a capture succeeded.
"""
import logging
import os
import re
import shlex
import shutil
import subprocess
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse
from urllib.request import url2pathname

from .config import Config
from .errors import CaptureError, DevboardError, NotFoundError, StorageError
from .host import HostUI
from .schema import APPEND_AT_END, Project, ProjectGroup, new_id
from .screenshot import ScreenshotOptions, take_screenshot
from .store import ProjectStore

logger = logging.getLogger(__name__)

TILE_PX_KEY = "devboard.tilePx"
DEFAULT_TILE_PX = 320
MIN_TILE_PX = 120
MAX_TILE_PX = 600

DEFAULT_CAPTURE_URL = "http://localhost:3000"

_WINDOWS_ABS_RE = re.compile(r"^[A-Za-z]:\\")


@dataclass
class ViewSnapshot:
    """What the presentation layer needs to draw one view."""
    group_id: Optional[str]
    projects: List[Dict[str, Any]]
    groups: List[Dict[str, Any]]
    tile_px: int


class Dashboard:
    """Wires user actions to the store and the screenshot manager."""

    def __init__(self, store: ProjectStore, ui: HostUI, config: Config):
        self.store = store
        self.ui = ui
        self.config = config
        self.thumbnails_dir = Path(config.thumbnails_dir).absolute()

    # ──────────────────────────────────────────
    # Lookups
    # ──────────────────────────────────────────

    def _require_project(self, project_id: str) -> Project:
        project = self.store.get_project(project_id)
        if project is None:
            raise NotFoundError(f"No project with id {project_id}")
        return project

    def _require_group(self, group_id: str) -> ProjectGroup:
        group = self.store.get_group(group_id)
        if group is None:
            raise NotFoundError(f"No folder with id {group_id}")
        return group

    def thumbnail_path(self, project_id: str) -> Path:
        return self.thumbnails_dir / f"{project_id}.png"

    # ──────────────────────────────────────────
    # View
    # ──────────────────────────────────────────

    def thumbnail_src(self, project: Project) -> Optional[str]:
        """
        Map a stored thumbnail reference to a file:// URI with a ?v=<mtime>
        cache buster. Unrecognized references fall back to thumbnails/<id>.png.
        """
        raw = project.thumbnail_uri
        if not raw:
            return None
        try:
            if raw.startswith("file:"):
                path = Path(url2pathname(urlparse(raw).path))
            elif raw.startswith("/") or _WINDOWS_ABS_RE.match(raw):
                path = Path(raw)
            else:
                path = self.thumbnail_path(project.id)
            uri = path.as_uri()
        except ValueError:
            return raw
        try:
            return f"{uri}?v={int(path.stat().st_mtime * 1000)}"
        except OSError:
            return uri

    def view(self, group_id: Optional[str] = None) -> ViewSnapshot:
        projects = []
        for p in self.store.list_projects(group_id):
            data = p.to_dict()
            src = self.thumbnail_src(p)
            if src:
                data["thumbnailUri"] = src
            projects.append(data)
        return ViewSnapshot(
            group_id=group_id,
            projects=projects,
            groups=[g.to_dict() for g in self.store.list_groups()],
            tile_px=self.tile_px,
        )

    @property
    def tile_px(self) -> int:
        try:
            value = self.store.sync_slot.get(TILE_PX_KEY)
        except StorageError as e:
            logger.warning(f"Cannot read tile size: {e}")
            return DEFAULT_TILE_PX
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        return DEFAULT_TILE_PX

    def set_tile_px(self, value: Any) -> int:
        """Clamp to [120, 600] (non-numbers reset to 320) and remember it."""
        try:
            px = int(value) or DEFAULT_TILE_PX
        except (TypeError, ValueError):
            px = DEFAULT_TILE_PX
        px = max(MIN_TILE_PX, min(px, MAX_TILE_PX))
        try:
            self.store.sync_slot.update(TILE_PX_KEY, px)
        except StorageError as e:
            logger.error(f"Cannot save tile size: {e}")
        return px

    # ──────────────────────────────────────────
    # Projects
    # ──────────────────────────────────────────

    def add_project(
        self,
        folder_path: Optional[str] = None,
        name: Optional[str] = None,
        url: Optional[str] = None,
        group_id: Optional[str] = None,
    ) -> Optional[Project]:
        """Add a project, asking the UI for whatever was not given. None if cancelled."""
        if group_id:
            self._require_group(group_id)
        if folder_path is None:
            folder_path = self.ui.pick_folder("Select project folder")
            if not folder_path:
                return None
        default_name = os.path.basename(os.path.normpath(folder_path)) or folder_path
        if name is None:
            name = self.ui.prompt("Project name", default_name) or default_name
        if url is None:
            url = self.ui.prompt("Project URL (optional)")

        project = Project(
            id=new_id(),
            name=name,
            folder_path=folder_path,
            url=url or None,
            group_ids=[group_id] if group_id else [],
            order=APPEND_AT_END,
        )
        self.store.upsert_project(project)
        logger.info(f"Added project {project.id} ({name})")
        return self.store.get_project(project.id)

    def add_current_folder(self, cwd: Optional[str] = None) -> Project:
        folder = os.path.abspath(cwd or os.getcwd())
        name = os.path.basename(folder) or folder
        return self.add_project(folder, name=name, url="")

    def update_project(self, project_id: str, **changes: Any) -> Project:
        """Apply field changes (name, folder_path, url, group_ids, thumbnail_uri)."""
        project = replace(self._require_project(project_id), **changes)
        self.store.upsert_project(project)
        return self.store.get_project(project_id)

    def edit_project(self, project_id: str) -> Project:
        """Interactive edit of name, folder and URL."""
        project = self._require_project(project_id)
        name = self.ui.prompt("Project name", project.name) or project.name
        folder_path = project.folder_path
        if self.ui.confirm(f"Pick a new folder (current: {folder_path})?"):
            folder_path = self.ui.pick_folder("Select project folder") or folder_path
        url = self.ui.prompt("Project URL (optional)", project.url or "")
        return self.update_project(
            project_id, name=name, folder_path=folder_path, url=url or None
        )

    def delete_project(self, project_id: str, confirm: bool = True) -> bool:
        self._require_project(project_id)
        if confirm and not self.ui.confirm("Delete this project from dashboard?"):
            return False
        self.store.delete_project(project_id)
        logger.info(f"Deleted project {project_id}")
        return True

    def move_project(self, project_id: str, group_id: Optional[str]) -> Project:
        """Make the project a member of exactly group_id (None = no folder)."""
        if group_id:
            self._require_group(group_id)
        return self.update_project(project_id, group_ids=[group_id] if group_id else [])

    def reorder_project(self, project_id: str, to_index: int, group_id: Optional[str] = None) -> None:
        self.store.reorder_project(project_id, to_index, group_id)

    def open_project(self, project_id: str) -> bool:
        """Launch the configured editor on the project folder."""
        project = self._require_project(project_id)
        if self.config.confirm_on_open and not self.ui.confirm(f"Open {project.name}?"):
            return False
        command = shlex.split(self.config.editor_command) + [project.folder_path]
        try:
            subprocess.Popen(
                command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
        except OSError as e:
            raise DevboardError(f"Cannot launch {command[0]}: {e}") from e
        logger.info(f"Opened {project.folder_path} with {command[0]}")
        return True

    # ──────────────────────────────────────────
    # Groups
    # ──────────────────────────────────────────

    def add_group(self, name: Optional[str] = None) -> Optional[ProjectGroup]:
        name = name or self.ui.prompt("Folder name")
        if not name:
            return None
        group = ProjectGroup(id=new_id(), name=name, order=APPEND_AT_END)
        self.store.upsert_group(group)
        return self.store.get_group(group.id)

    def rename_group(self, group_id: str, name: Optional[str] = None) -> Optional[ProjectGroup]:
        group = self._require_group(group_id)
        name = name or self.ui.prompt("New folder name", group.name)
        if not name:
            return None
        self.store.upsert_group(replace(group, name=name))
        return self.store.get_group(group_id)

    def delete_group(self, group_id: str) -> None:
        self._require_group(group_id)
        self.store.delete_group(group_id)

    # ──────────────────────────────────────────
    # Import / export
    # ──────────────────────────────────────────

    def import_state(self, source: str) -> None:
        self.store.import_from(source)
        self.ui.info(f"Dashboard imported from {source}")

    def export_state(self, destination: str) -> None:
        self.store.export_to(destination)
        self.ui.info(f"Dashboard exported to {destination}")

    # ──────────────────────────────────────────
    # Thumbnails
    # ──────────────────────────────────────────

    def set_thumbnail(self, project_id: str, image_path: str) -> Project:
        """Copy an existing image verbatim into thumbnails/<id>.png."""
        self._require_project(project_id)
        dest = self.thumbnail_path(project_id)
        dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(image_path, dest)
        return self.update_project(project_id, thumbnail_uri=str(dest))

    async def generate_screenshot(
        self, project_id: str, url: Optional[str] = None, interactive: bool = True
    ) -> Optional[Path]:
        """
        Capture the project's URL into its thumbnail. Prompts for a URL
        (and remembers it) when the project has none. CaptureError propagates.
        """
        project = self._require_project(project_id)
        url = url or project.url
        if not url and interactive:
            url = self.ui.prompt("Enter URL to screenshot", DEFAULT_CAPTURE_URL)
        if not url:
            return None
        if url != project.url:
            project = self.update_project(project_id, url=url)

        options = ScreenshotOptions(
            url=url,
            out_path=str(self.thumbnail_path(project_id)),
            window_size=self.config.screenshot_window_size,
            custom_paths=self.config.screenshot_browser_paths,
            timeout_ms=self.config.screenshot_timeout_ms,
        )
        path = await take_screenshot(options, self.ui.pick_binary if interactive else None)

        if self.store.get_project(project_id) is not None:
            self.update_project(project_id, thumbnail_uri=str(path))
        return path

    async def screenshot_missing(self, max_count: Optional[int] = None) -> int:
        """Capture thumbnails for projects with a URL but no image file yet."""
        if max_count is None:
            max_count = self.config.auto_screenshot_max_per_load
        if max_count <= 0:
            return 0

        count = 0
        for project in self.store.list_projects():
            if not project.url or self.thumbnail_path(project.id).exists():
                continue
            try:
                await self.generate_screenshot(project.id, interactive=False)
            except CaptureError as e:
                logger.warning(f"Auto screenshot skipped for {project.name}: {e}")
                continue
            count += 1
            if count >= max_count:
                break
        return count
