"""
Tests for ProjectStore: load protocol, mirroring, ordering operations,
group integrity, import/export.
"""
import json
import logging
import random
import sqlite3

import pytest

from devboard import store as store_module
from devboard.errors import ImportParseError, StorageWriteError
from devboard.schema import APPEND_AT_END, Project, ProjectGroup, StoredState
from devboard.store import ProjectStore
from devboard.sync_slot import MemorySyncSlot, SqliteSyncSlot


def make_project(pid, groups=None, order=APPEND_AT_END, **kwargs):
    return Project(
        id=pid,
        name=kwargs.pop("name", pid.upper()),
        folder_path=kwargs.pop("folder_path", f"/src/{pid}"),
        group_ids=list(groups or []),
        order=order,
        **kwargs,
    )


def project_ids(store, group_id=None):
    return [p.id for p in store.list_projects(group_id)]


def assert_dense(items):
    assert sorted(i.order for i in items) == list(range(len(items)))


class CountingSlot(MemorySyncSlot):
    def __init__(self, initial=None):
        self.writes = 0
        super().__init__(initial)

    def update(self, key, value):
        self.writes += 1
        super().update(key, value)


class FailingSlot(MemorySyncSlot):
    def update(self, key, value):
        raise StorageWriteError("sync slot offline")


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Load protocol
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestLoad:

    def test_fresh_store_persists_empty_state(self, tmp_path, slot):
        store = ProjectStore(tmp_path, slot)
        state = store.get_all()
        assert state == StoredState(version=1, projects=[], groups=[])

        on_disk = json.loads((tmp_path / "projects.json").read_text(encoding="utf-8"))
        assert on_disk == {"version": 1, "projects": [], "groups": []}
        assert slot.get(ProjectStore.SYNC_KEY) == on_disk

    def test_file_is_pretty_printed(self, tmp_path, slot):
        ProjectStore(tmp_path, slot)
        text = (tmp_path / "projects.json").read_text(encoding="utf-8")
        assert text.startswith("{\n  ")

    def test_sync_slot_preferred_and_mirrored_to_file(self, tmp_path):
        (tmp_path / "projects.json").write_text(json.dumps({
            "version": 1,
            "projects": [{"id": "file", "name": "f", "folderPath": "/f", "groupIds": [], "order": 0}],
            "groups": [],
        }))
        slot = MemorySyncSlot({ProjectStore.SYNC_KEY: {
            "version": 1,
            "projects": [{"id": "synced", "name": "s", "folderPath": "/s", "groupIds": [], "order": 0}],
            "groups": [],
        }})

        store = ProjectStore(tmp_path, slot)

        assert project_ids(store) == ["synced"]
        on_disk = json.loads((tmp_path / "projects.json").read_text())
        assert [p["id"] for p in on_disk["projects"]] == ["synced"]

    def test_file_used_when_slot_empty_and_mirrored_to_slot(self, tmp_path, slot):
        (tmp_path / "projects.json").write_text(json.dumps({
            "version": 1,
            "projects": [{"id": "a", "name": "A", "folderPath": "/a", "groupIds": [], "order": 0}],
            "groups": [{"id": "g1", "name": "Work", "order": 0}],
        }))

        store = ProjectStore(tmp_path, slot)

        assert project_ids(store) == ["a"]
        mirrored = slot.get(ProjectStore.SYNC_KEY)
        assert mirrored["projects"][0]["id"] == "a"
        assert mirrored["groups"][0]["name"] == "Work"

    def test_structurally_invalid_slot_falls_through_to_file(self, tmp_path):
        (tmp_path / "projects.json").write_text(json.dumps({
            "version": 1,
            "projects": [{"id": "a", "name": "A", "folderPath": "/a", "groupIds": [], "order": 0}],
            "groups": [],
        }))
        slot = MemorySyncSlot({ProjectStore.SYNC_KEY: {"projects": "not a list"}})

        store = ProjectStore(tmp_path, slot)
        assert project_ids(store) == ["a"]

    def test_corrupt_file_starts_empty(self, tmp_path, slot):
        (tmp_path / "projects.json").write_text("{ this is not json")
        store = ProjectStore(tmp_path, slot)
        assert store.get_all().projects == []
        # The empty state replaced the corrupt file
        assert json.loads((tmp_path / "projects.json").read_text())["projects"] == []

    def test_malformed_entries_start_empty(self, tmp_path, slot):
        (tmp_path / "projects.json").write_text(json.dumps({"projects": [{"name": "no id"}]}))
        store = ProjectStore(tmp_path, slot)
        assert store.get_all().projects == []

    def test_corrupt_sqlite_value_falls_through(self, tmp_path):
        db = tmp_path / "sync.db"
        slot = SqliteSyncSlot(str(db))
        conn = sqlite3.connect(str(db))
        conn.execute(
            "INSERT INTO sync_state (key, value, updated_at) VALUES (?, ?, ?)",
            (ProjectStore.SYNC_KEY, "{broken", "2024-01-01T00:00:00+00:00"),
        )
        conn.commit()
        conn.close()

        store = ProjectStore(tmp_path, slot)
        assert store.get_all().projects == []
        assert slot.get(ProjectStore.SYNC_KEY)["version"] == 1

    def test_garbage_sync_database_falls_through_to_file(self, tmp_path, caplog):
        (tmp_path / "sync.db").write_bytes(b"this is not a sqlite database" * 100)
        (tmp_path / "projects.json").write_text(json.dumps({
            "version": 1,
            "projects": [{"id": "a", "name": "A", "folderPath": "/a", "groupIds": [], "order": 0}],
            "groups": [],
        }))

        store = ProjectStore(tmp_path)
        assert project_ids(store) == ["a"]

        with caplog.at_level(logging.ERROR, logger="devboard.store"):
            store.upsert_project(make_project("b"))
        assert project_ids(store) == ["a", "b"]
        on_disk = json.loads((tmp_path / "projects.json").read_text())
        assert [p["id"] for p in on_disk["projects"]] == ["a", "b"]
        assert "sync slot" in caplog.text

    def test_deeply_nested_file_starts_empty(self, tmp_path, slot):
        depth = 200000
        (tmp_path / "projects.json").write_text(
            '{"projects": ' + "[" * depth + "]" * depth + "}"
        )
        store = ProjectStore(tmp_path, slot)
        assert store.get_all().projects == []

    def test_legacy_group_id_migrated_on_load(self, tmp_path, slot):
        (tmp_path / "projects.json").write_text(json.dumps({
            "version": 1,
            "projects": [
                {"id": "a", "name": "A", "folderPath": "/a", "groupId": "g1", "order": 0},
                {"id": "b", "name": "B", "folderPath": "/b", "groupId": None, "order": 1},
            ],
            "groups": [{"id": "g1", "name": "Work", "order": 0}],
        }))

        store = ProjectStore(tmp_path, slot)

        assert store.get_project("a").group_ids == ["g1"]
        assert store.get_project("b").group_ids == []
        mirrored = slot.get(ProjectStore.SYNC_KEY)["projects"]
        assert all("groupId" not in p for p in mirrored)

    def test_default_sync_slot_is_sqlite(self, tmp_path):
        store = ProjectStore(tmp_path)
        assert isinstance(store.sync_slot, SqliteSyncSlot)
        assert (tmp_path / "sync.db").exists()

    def test_state_survives_reopen(self, tmp_path):
        store = ProjectStore(tmp_path)
        store.upsert_project(make_project("a"))
        store.upsert_group(ProjectGroup(id="g1", name="Work"))

        reopened = ProjectStore(tmp_path)
        assert reopened.get_all() == store.get_all()


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Save failures
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestSaveFailures:

    def test_file_write_failure_is_logged_not_raised(self, store, slot, monkeypatch, caplog):
        def broken_write(path, data):
            raise OSError("disk full")

        monkeypatch.setattr(store_module, "write_json_atomic", broken_write)
        with caplog.at_level(logging.ERROR, logger="devboard.store"):
            store.upsert_project(make_project("a"))

        assert project_ids(store) == ["a"]
        assert slot.get(ProjectStore.SYNC_KEY)["projects"][0]["id"] == "a"
        assert "disk full" in caplog.text

    def test_sync_slot_failure_is_logged_not_raised(self, tmp_path, caplog):
        with caplog.at_level(logging.ERROR, logger="devboard.store"):
            store = ProjectStore(tmp_path, FailingSlot())
            store.upsert_project(make_project("a"))

        assert project_ids(store) == ["a"]
        on_disk = json.loads((tmp_path / "projects.json").read_text())
        assert on_disk["projects"][0]["id"] == "a"
        assert "sync slot offline" in caplog.text


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Projects
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestProjects:

    def test_upsert_appends_with_dense_order(self, store):
        for pid in ("a", "b", "c"):
            store.upsert_project(make_project(pid))
        assert project_ids(store) == ["a", "b", "c"]
        assert [p.order for p in store.list_projects()] == [0, 1, 2]

    def test_upsert_replaces_in_place(self, store):
        for pid in ("a", "b", "c"):
            store.upsert_project(make_project(pid))
        edited = store.get_project("b")
        edited.name = "Renamed"
        store.upsert_project(edited)

        assert project_ids(store) == ["a", "b", "c"]
        assert store.get_project("b").name == "Renamed"
        assert len(store.get_all().projects) == 3

    def test_upsert_with_append_marker_moves_to_end(self, store):
        for pid in ("a", "b", "c"):
            store.upsert_project(make_project(pid))
        store.upsert_project(make_project("a", order=APPEND_AT_END))
        assert project_ids(store) == ["b", "c", "a"]

    def test_upsert_normalizes_missing_membership(self, store):
        p = make_project("a")
        p.group_ids = None
        store.upsert_project(p)
        assert store.get_project("a").group_ids == []

    def test_upsert_rejects_empty_id(self, store):
        with pytest.raises(ValueError):
            store.upsert_project(make_project(""))

    def test_delete_reindexes(self, store):
        for pid in ("a", "b", "c"):
            store.upsert_project(make_project(pid))
        store.delete_project("b")
        assert project_ids(store) == ["a", "c"]
        assert [p.order for p in store.list_projects()] == [0, 1]

    def test_snapshots_do_not_alias_canonical_state(self, store):
        given = make_project("a")
        store.upsert_project(given)
        given.name = "mutated after upsert"

        snapshot = store.get_all()
        snapshot.projects[0].name = "mutated snapshot"
        store.get_project("a").group_ids.append("g9")

        assert store.get_project("a").name == "A"
        assert store.get_project("a").group_ids == []

    def test_persisted_to_both_backends(self, tmp_path, slot):
        store = ProjectStore(tmp_path, slot)
        store.upsert_project(make_project("a", url="http://localhost:3000"))

        on_disk = json.loads((tmp_path / "projects.json").read_text())
        assert on_disk == slot.get(ProjectStore.SYNC_KEY)
        assert on_disk["projects"] == [{
            "id": "a", "name": "A", "folderPath": "/src/a",
            "url": "http://localhost:3000", "groupIds": [], "order": 0,
        }]


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Reorder
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestReorder:

    @pytest.fixture
    def abc(self, store):
        store.upsert_group(ProjectGroup(id="g1", name="Work"))
        store.upsert_project(make_project("a", ["g1"]))
        store.upsert_project(make_project("b"))
        store.upsert_project(make_project("c", ["g1"]))
        return store

    def test_group_view_keeps_outsiders_in_their_slots(self, abc):
        abc.reorder_project("a", 1, "g1")
        assert project_ids(abc, "g1") == ["c", "a"]
        # b was in slot 1 and stays there
        assert project_ids(abc) == ["c", "b", "a"]
        assert_dense(abc.get_all().projects)

    def test_all_view_move_to_front(self, abc):
        abc.reorder_project("c", 0)
        assert project_ids(abc) == ["c", "a", "b"]

    def test_all_view_move_to_end(self, abc):
        abc.reorder_project("a", 2)
        assert project_ids(abc) == ["b", "c", "a"]

    def test_index_clamped(self, abc):
        abc.reorder_project("a", 99, "g1")
        assert project_ids(abc, "g1") == ["c", "a"]
        abc.reorder_project("a", -5, "g1")
        assert project_ids(abc, "g1") == ["a", "c"]
        assert project_ids(abc) == ["a", "b", "c"]

    def test_membership_unchanged(self, abc):
        abc.reorder_project("a", 1, "g1")
        assert abc.get_project("a").group_ids == ["g1"]
        assert abc.get_project("b").group_ids == []

    def test_unknown_id_is_noop(self, tmp_path):
        slot = CountingSlot()
        store = ProjectStore(tmp_path, slot)
        store.upsert_project(make_project("a"))
        writes = slot.writes
        before = (tmp_path / "projects.json").read_text()

        store.reorder_project("missing", 0)

        assert slot.writes == writes
        assert (tmp_path / "projects.json").read_text() == before

    def test_project_outside_view_is_noop(self, abc):
        before = abc.get_all()
        abc.reorder_project("b", 0, "g1")
        assert abc.get_all() == before

    def test_multi_group_interleaving(self, store):
        for gid in ("g1", "g2"):
            store.upsert_group(ProjectGroup(id=gid, name=gid))
        store.upsert_project(make_project("a", ["g1"]))
        store.upsert_project(make_project("b", ["g1", "g2"]))
        store.upsert_project(make_project("c", ["g2"]))
        store.upsert_project(make_project("d", ["g1"]))
        store.upsert_project(make_project("e", ["g2"]))

        store.reorder_project("e", 0, "g2")

        assert project_ids(store, "g2") == ["e", "b", "c"]
        assert project_ids(store, "g1") == ["a", "b", "d"]
        assert project_ids(store) == ["a", "e", "b", "d", "c"]


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Groups
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestGroups:

    def test_upsert_and_rename(self, store):
        store.upsert_group(ProjectGroup(id="g1", name="Work"))
        store.upsert_group(ProjectGroup(id="g2", name="Play"))
        renamed = store.get_group("g1")
        renamed.name = "Clients"
        store.upsert_group(renamed)

        assert [(g.id, g.name, g.order) for g in store.list_groups()] == [
            ("g1", "Clients", 0),
            ("g2", "Play", 1),
        ]

    def test_upsert_rejects_empty_id(self, store):
        with pytest.raises(ValueError):
            store.upsert_group(ProjectGroup(id="", name="x"))

    def test_delete_strips_membership(self, store):
        for gid in ("g1", "g2", "g3"):
            store.upsert_group(ProjectGroup(id=gid, name=gid))
        store.upsert_project(make_project("a", ["g1", "g2"]))
        store.upsert_project(make_project("b", ["g2"]))
        store.upsert_project(make_project("c"))

        store.delete_group("g2")

        state = store.get_all()
        assert [g.id for g in state.groups] == ["g1", "g3"]
        assert_dense(state.groups)
        assert_dense(state.projects)
        known = {g.id for g in state.groups}
        for p in state.projects:
            assert set(p.group_ids) <= known
        assert store.get_project("a").group_ids == ["g1"]
        assert store.get_project("b").group_ids == []
        assert project_ids(store, "g2") == []


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Dense ordering under arbitrary operation sequences
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_dense_ordering_invariant(store):
    rng = random.Random(1234)
    groups = ["g1", "g2", "g3"]
    next_id = 0

    for _ in range(300):
        state = store.get_all()
        project_ids_now = [p.id for p in state.projects]
        group_ids_now = [g.id for g in state.groups]
        op = rng.choice(["add", "add", "edit", "delete", "reorder", "reorder",
                         "group_add", "group_delete"])

        if op == "add":
            next_id += 1
            member = rng.sample(group_ids_now, k=min(len(group_ids_now), rng.randint(0, 2)))
            store.upsert_project(make_project(f"p{next_id}", member))
        elif op == "edit" and project_ids_now:
            p = store.get_project(rng.choice(project_ids_now))
            p.name += "!"
            store.upsert_project(p)
        elif op == "delete" and project_ids_now:
            store.delete_project(rng.choice(project_ids_now))
        elif op == "reorder" and project_ids_now:
            context = rng.choice([None] + group_ids_now)
            store.reorder_project(rng.choice(project_ids_now), rng.randint(-2, 12), context)
        elif op == "group_add":
            store.upsert_group(ProjectGroup(id=rng.choice(groups), name="g"))
        elif op == "group_delete" and group_ids_now:
            store.delete_group(rng.choice(group_ids_now))

        state = store.get_all()
        assert_dense(state.projects)
        assert_dense(state.groups)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Import / export
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestImportExport:

    def test_export_writes_canonical_state(self, store, tmp_path):
        store.upsert_group(ProjectGroup(id="g1", name="Work"))
        store.upsert_project(make_project("a", ["g1"]))
        dest = tmp_path / "export.json"

        store.export_to(dest)

        data = json.loads(dest.read_text(encoding="utf-8"))
        assert data == store.get_all().to_dict()
        assert set(data) == {"version", "projects", "groups"}

    def test_import_replaces_wholesale(self, store, tmp_path):
        store.upsert_project(make_project("y"))
        store.upsert_project(make_project("z"))
        source = tmp_path / "import.json"
        source.write_text(json.dumps({
            "version": 2,
            "projects": [{"id": "x", "name": "X", "folderPath": "/x", "groupIds": [], "order": 0}],
            "groups": [],
        }))

        store.import_from(source)

        state = store.get_all()
        assert state.version == 2
        assert [p.id for p in state.projects] == ["x"]
        assert store.sync_slot.get(ProjectStore.SYNC_KEY)["projects"][0]["id"] == "x"

    def test_import_defaults_and_reindexes(self, store, tmp_path):
        source = tmp_path / "import.json"
        source.write_text(json.dumps({
            "projects": [
                {"id": "b", "name": "B", "folderPath": "/b", "order": 40},
                {"id": "a", "name": "A", "folderPath": "/a", "groupId": "g1", "order": 5},
            ],
        }))

        store.import_from(source)

        state = store.get_all()
        assert state.version == 1
        assert state.groups == []
        assert [(p.id, p.order) for p in sorted(state.projects, key=lambda p: p.order)] == [
            ("a", 0), ("b", 1),
        ]
        assert store.get_project("a").group_ids == ["g1"]

    @pytest.mark.parametrize("content", [
        "{ nope",
        "[1, 2, 3]",
        json.dumps({"projects": [{"name": "missing id"}]}),
        json.dumps({"projects": "nope"}),
    ])
    def test_malformed_import_leaves_state_untouched(self, store, tmp_path, content):
        store.upsert_project(make_project("keep"))
        before = store.get_all()
        source = tmp_path / "bad.json"
        source.write_text(content)

        with pytest.raises(ImportParseError):
            store.import_from(source)

        assert store.get_all() == before

    def test_deeply_nested_import_rejected(self, store, tmp_path):
        store.upsert_project(make_project("keep"))
        before = store.get_all()
        source = tmp_path / "deep.json"
        depth = 200000
        source.write_text('{"projects": ' + "[" * depth + "]" * depth + "}")

        with pytest.raises(ImportParseError):
            store.import_from(source)
        assert store.get_all() == before

    def test_missing_import_source(self, store, tmp_path):
        with pytest.raises(ImportParseError):
            store.import_from(tmp_path / "absent.json")

    def test_export_import_round_trip_is_byte_identical(self, store, tmp_path):
        store.upsert_group(ProjectGroup(id="g1", name="Work"))
        store.upsert_group(ProjectGroup(id="g2", name="Play"))
        store.upsert_project(make_project("a", ["g1"], url="http://localhost:3000"))
        store.upsert_project(make_project("b", ["g1", "g2"], thumbnail_uri="/t/b.png"))
        store.upsert_project(make_project("c"))
        store.reorder_project("c", 0)

        first = tmp_path / "first.json"
        second = tmp_path / "second.json"
        store.export_to(first)
        store.import_from(first)
        store.export_to(second)

        assert first.read_bytes() == second.read_bytes()
