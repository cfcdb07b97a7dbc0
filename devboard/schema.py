"""
Dashboard entity model.

  StoredState
    ├── projects: [Project]   (dense order 0..n-1, multi-group membership)
    └── groups:   [ProjectGroup] (dense order 0..n-1)

New entities carry APPEND_AT_END until the store reindexes them into a
concrete position. The on-disk format uses camelCase keys; legacy records
with a single `groupId` are upgraded by migrate_record() before parsing.
"""
from enum import Enum
from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any, Tuple, Union
import random
import string
import time


SCHEMA_VERSION = 1


class AppendAtEnd(Enum):
    """Order placeholder: resolved to "after everything else" on reindex."""
    MARKER = "append"

    def __repr__(self) -> str:
        return "APPEND_AT_END"


APPEND_AT_END = AppendAtEnd.MARKER

Order = Union[int, AppendAtEnd]


def new_id() -> str:
    """Sortable-ish unique ID: base36 ms timestamp + 8 random base36 chars."""
    alphabet = string.digits + string.ascii_lowercase
    ts = int(time.time() * 1000)
    stamp = ""
    while ts:
        ts, rem = divmod(ts, 36)
        stamp = alphabet[rem] + stamp
    rand = "".join(random.choice(alphabet) for _ in range(8))
    return f"{stamp or '0'}-{rand}"


def _parse_order(value: Any) -> Order:
    if isinstance(value, bool) or value is None:
        return APPEND_AT_END
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return APPEND_AT_END


def _unique(ids: List[str]) -> List[str]:
    seen = set()
    out = []
    for gid in ids:
        if gid not in seen:
            seen.add(gid)
            out.append(gid)
    return out


@dataclass
class Project:
    """A local project folder shown as one dashboard tile."""

    id: str
    name: str
    folder_path: str
    url: Optional[str] = None
    group_ids: List[str] = field(default_factory=list)  # membership, not ownership
    order: Order = APPEND_AT_END
    thumbnail_uri: Optional[str] = None  # opaque location reference

    def in_group(self, group_id: Optional[str]) -> bool:
        """True if visible in the view for group_id (None = All Projects)."""
        return group_id is None or group_id in self.group_ids

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "folderPath": self.folder_path,
        }
        if self.url is not None:
            data["url"] = self.url
        data["groupIds"] = list(self.group_ids)
        data["order"] = self.order
        if self.thumbnail_uri is not None:
            data["thumbnailUri"] = self.thumbnail_uri
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Project":
        """Build from an already-migrated record. Raises KeyError without an id."""
        group_ids = data.get("groupIds") or []
        if not isinstance(group_ids, list):
            raise TypeError(f"groupIds must be a list, got {type(group_ids).__name__}")
        url = data.get("url")
        thumb = data.get("thumbnailUri")
        return cls(
            id=str(data["id"]),
            name=str(data.get("name", "")),
            folder_path=str(data.get("folderPath", "")),
            url=str(url) if url else None,
            group_ids=_unique([str(g) for g in group_ids]),
            order=_parse_order(data.get("order")),
            thumbnail_uri=str(thumb) if thumb else None,
        )


@dataclass
class ProjectGroup:
    """A user-defined folder of projects."""

    id: str
    name: str
    order: Order = APPEND_AT_END

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "order": self.order}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProjectGroup":
        return cls(
            id=str(data["id"]),
            name=str(data.get("name", "")),
            order=_parse_order(data.get("order")),
        )


@dataclass
class StoredState:
    """Unit of persistence, import and export."""

    version: int = SCHEMA_VERSION
    projects: List[Project] = field(default_factory=list)
    groups: List[ProjectGroup] = field(default_factory=list)

    def find_project(self, project_id: str) -> Optional[Project]:
        for p in self.projects:
            if p.id == project_id:
                return p
        return None

    def find_group(self, group_id: str) -> Optional[ProjectGroup]:
        for g in self.groups:
            if g.id == group_id:
                return g
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "projects": [p.to_dict() for p in self.projects],
            "groups": [g.to_dict() for g in self.groups],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StoredState":
        """
        Build from a migrated dict. Missing version/projects/groups take
        defaults; malformed entries raise KeyError, TypeError or ValueError.
        """
        if not isinstance(data, dict):
            raise TypeError(f"State must be an object, got {type(data).__name__}")
        projects = data.get("projects") or []
        groups = data.get("groups") or []
        if not isinstance(projects, list) or not isinstance(groups, list):
            raise TypeError("projects and groups must be lists")
        if not all(isinstance(entry, dict) for entry in projects + groups):
            raise TypeError("projects and groups entries must be objects")
        version = data.get("version")
        return cls(
            version=int(version) if version is not None else SCHEMA_VERSION,
            projects=[Project.from_dict(p) for p in projects],
            groups=[ProjectGroup.from_dict(g) for g in groups],
        )


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Legacy migration (loose dicts, before from_dict)
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def migrate_record(record: Dict[str, Any]) -> Dict[str, Any]:
    """
    Upgrade a raw project record in place: single `groupId` becomes a
    one-element (or empty) `groupIds` list and the legacy key is dropped.
    Idempotent.
    """
    if record.get("groupIds") is None:
        legacy = record.get("groupId")
        record["groupIds"] = [] if legacy is None else [legacy]
    record.pop("groupId", None)
    return record


def migrate_state(data: Dict[str, Any]) -> Dict[str, Any]:
    """Apply record migrations to every project of a raw state dict, in place."""
    for record in data.get("projects") or []:
        if isinstance(record, dict):
            migrate_record(record)
    return data


def is_valid_state(data: Any) -> bool:
    """Structural check used on load: an object with a list-typed `projects`."""
    return isinstance(data, dict) and isinstance(data.get("projects"), list)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Ordering
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def order_key(item: Union[Project, ProjectGroup]) -> Tuple[int, int]:
    """Sort key placing APPEND_AT_END after every numeric order."""
    if isinstance(item.order, AppendAtEnd):
        return (1, 0)
    return (0, item.order)


def reindex(items: list) -> list:
    """Stable-sort by order and rewrite orders to 0..n-1, in place."""
    items.sort(key=order_key)
    for i, item in enumerate(items):
        item.order = i
    return items
