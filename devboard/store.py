"""
Project storage backend (JSON file + sync slot mirror).

ProjectStore owns the canonical StoredState. Every mutation is applied to a
copy, reindexed, written to both backends and only then adopted. Backend
write failures are logged and swallowed: the in-memory state stays
authoritative for the session.

Single writer: callers must serialize mutations (one operation at a time,
one process per storage directory).
"""
import copy
import json
import logging
from pathlib import Path
from typing import Any, List, Optional, Union

from .errors import StorageReadError, StorageWriteError, ImportParseError
from .schema import (
    Project,
    ProjectGroup,
    StoredState,
    SCHEMA_VERSION,
    is_valid_state,
    migrate_state,
    order_key,
    reindex,
)
from .sync_slot import SyncSlot, SqliteSyncSlot

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def write_json_atomic(path: Path, data: Any) -> None:
    """Pretty-print data to path via a temp file + rename."""
    tmp_file = path.with_name(path.name + ".tmp")
    with open(tmp_file, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)
    tmp_file.replace(path)


class ProjectStore:
    """Dual-backed store for projects and groups."""

    SYNC_KEY = "devboard.state"
    FILE_NAME = "projects.json"

    def __init__(self, storage_dir: PathLike, sync_slot: Optional[SyncSlot] = None):
        """Open the store under storage_dir and load state (never raises on bad data)."""
        self.storage_dir = Path(storage_dir).expanduser()
        self.storage_dir.mkdir(parents=True, exist_ok=True)
        self.storage_file = self.storage_dir / self.FILE_NAME
        if sync_slot is None:
            sync_slot = SqliteSyncSlot(str(self.storage_dir / "sync.db"))
        self.sync_slot = sync_slot
        self._state = self._load()

    # ──────────────────────────────────────────
    # Load / save
    # ──────────────────────────────────────────

    def _load(self) -> StoredState:
        """
        Startup protocol:
            1. sync slot, if it holds a valid state → mirror to file
            2. file, if present and parseable → mirror to sync slot
            3. fresh empty state persisted to both
        """
        state = self._read_sync_slot()
        if state is not None:
            logger.info("Loaded project state from sync slot")
            self._write_file_logged(state)
            return state

        state = self._read_file()
        if state is not None:
            logger.info(f"Loaded project state from {self.storage_file}")
            self._write_sync_slot_logged(state)
            return state

        logger.info("No stored project state, starting empty")
        initial = StoredState(version=SCHEMA_VERSION)
        self._save(initial)
        return initial

    def _read_sync_slot(self) -> Optional[StoredState]:
        try:
            raw = self.sync_slot.get(self.SYNC_KEY)
            if not is_valid_state(raw):
                return None
            return StoredState.from_dict(migrate_state(raw))
        except (StorageReadError, KeyError, TypeError, ValueError, RecursionError) as e:
            logger.warning(f"Ignoring sync slot state: {e}")
            return None

    def _read_file(self) -> Optional[StoredState]:
        if not self.storage_file.exists():
            return None
        try:
            raw = json.loads(self.storage_file.read_text(encoding="utf-8"))
            if not is_valid_state(raw):
                raise StorageReadError(f"{self.storage_file} has no projects list")
            return StoredState.from_dict(migrate_state(raw))
        except (OSError, StorageReadError, KeyError, TypeError, ValueError, RecursionError) as e:
            logger.warning(f"Ignoring {self.storage_file}: {e}")
            return None

    def _write_file(self, state: StoredState) -> None:
        try:
            write_json_atomic(self.storage_file, state.to_dict())
        except OSError as e:
            raise StorageWriteError(f"Failed to write {self.storage_file}: {e}") from e

    def _write_file_logged(self, state: StoredState) -> None:
        try:
            self._write_file(state)
        except StorageWriteError as e:
            logger.error(str(e))

    def _write_sync_slot_logged(self, state: StoredState) -> None:
        try:
            self.sync_slot.update(self.SYNC_KEY, state.to_dict())
        except StorageWriteError as e:
            logger.error(str(e))

    def _save(self, next_state: StoredState) -> None:
        """Write next_state to both backends (best effort) and adopt it."""
        self._write_file_logged(next_state)
        self._write_sync_slot_logged(next_state)
        self._state = next_state

    def _draft(self) -> StoredState:
        return copy.deepcopy(self._state)

    # ──────────────────────────────────────────
    # Reads
    # ──────────────────────────────────────────

    def get_all(self) -> StoredState:
        """Snapshot of the canonical state; mutating it has no effect on the store."""
        return copy.deepcopy(self._state)

    def get_project(self, project_id: str) -> Optional[Project]:
        project = self._state.find_project(project_id)
        return copy.deepcopy(project) if project else None

    def get_group(self, group_id: str) -> Optional[ProjectGroup]:
        group = self._state.find_group(group_id)
        return copy.deepcopy(group) if group else None

    def list_projects(self, group_id: Optional[str] = None) -> List[Project]:
        """Projects visible in a view (None = All Projects), in order."""
        visible = [p for p in self._state.projects if p.in_group(group_id)]
        return copy.deepcopy(sorted(visible, key=order_key))

    def list_groups(self) -> List[ProjectGroup]:
        return copy.deepcopy(sorted(self._state.groups, key=order_key))

    # ──────────────────────────────────────────
    # Project mutations
    # ──────────────────────────────────────────

    def upsert_project(self, project: Project) -> None:
        """Replace the project with the same id, or append it."""
        if not project.id:
            raise ValueError("Project id must not be empty")
        project = copy.deepcopy(project)
        if project.group_ids is None:
            project.group_ids = []
        state = self._draft()
        for i, existing in enumerate(state.projects):
            if existing.id == project.id:
                state.projects[i] = project
                break
        else:
            state.projects.append(project)
        reindex(state.projects)
        self._save(state)

    def delete_project(self, project_id: str) -> None:
        state = self._draft()
        state.projects = [p for p in state.projects if p.id != project_id]
        reindex(state.projects)
        self._save(state)

    def reorder_project(
        self, project_id: str, to_index: int, context_group_id: Optional[str] = None
    ) -> None:
        """
        Move a project to to_index within the view of context_group_id
        (None = All Projects). Projects outside the view keep their slots;
        membership is not changed. Unknown ids are a no-op.
        """
        state = self._draft()
        all_ordered = sorted(state.projects, key=order_key)
        subset = [p for p in all_ordered if p.in_group(context_group_id)]

        current = next((i for i, p in enumerate(subset) if p.id == project_id), -1)
        if current < 0:
            logger.debug(
                f"Reorder ignored: {project_id} not in view {context_group_id or 'all'}"
            )
            return

        moved = subset.pop(current)
        clamped = max(0, min(to_index, len(subset)))
        subset.insert(clamped, moved)

        subset_ids = {p.id for p in subset}
        reordered = iter(subset)
        merged = [next(reordered) if p.id in subset_ids else p for p in all_ordered]
        for i, p in enumerate(merged):
            p.order = i
        state.projects = merged
        self._save(state)

    # ──────────────────────────────────────────
    # Group mutations
    # ──────────────────────────────────────────

    def upsert_group(self, group: ProjectGroup) -> None:
        if not group.id:
            raise ValueError("Group id must not be empty")
        group = copy.deepcopy(group)
        state = self._draft()
        for i, existing in enumerate(state.groups):
            if existing.id == group.id:
                state.groups[i] = group
                break
        else:
            state.groups.append(group)
        reindex(state.groups)
        self._save(state)

    def delete_group(self, group_id: str) -> None:
        """Remove a group and strip it from every project's membership."""
        state = self._draft()
        for p in state.projects:
            p.group_ids = [gid for gid in p.group_ids if gid != group_id]
        state.groups = [g for g in state.groups if g.id != group_id]
        reindex(state.groups)
        reindex(state.projects)
        self._save(state)

    # ──────────────────────────────────────────
    # Import / export
    # ──────────────────────────────────────────

    def export_to(self, destination: PathLike) -> None:
        """Write {version, projects, groups} to destination. OSError propagates."""
        write_json_atomic(Path(destination), self._state.to_dict())
        logger.info(f"Exported {len(self._state.projects)} projects to {destination}")

    def import_from(self, source: PathLike) -> None:
        """
        Replace canonical state wholesale with the contents of source.
        Raises ImportParseError (state untouched) if it cannot be read or parsed.
        """
        try:
            raw = json.loads(Path(source).read_text(encoding="utf-8"))
        except OSError as e:
            raise ImportParseError(f"Cannot read {source}: {e}") from e
        except (ValueError, RecursionError) as e:
            raise ImportParseError(f"{source} is not valid JSON: {e}") from e

        if not isinstance(raw, dict):
            raise ImportParseError(f"{source} does not contain a dashboard object")
        try:
            state = StoredState.from_dict(migrate_state(raw))
        except (KeyError, TypeError, ValueError, RecursionError) as e:
            raise ImportParseError(f"{source} has malformed entries: {e}") from e

        reindex(state.groups)
        reindex(state.projects)
        self._save(state)
        logger.info(
            f"Imported {len(state.projects)} projects and {len(state.groups)} groups from {source}"
        )
