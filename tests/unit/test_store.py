# Copyright 2025 Vijaykumar Singh <singhvjd@gmail.com>
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Tests for the change set store."""

import threading

import pytest

from patchwarden.engine.diff import diff_mutations
from patchwarden.engine.snapshots import SnapshotManager
from patchwarden.engine.store import ChangeSetStore
from patchwarden.engine.types import ChangeSet, ChangeSetStatus, Mutation


def make_change_set(cs_id="cs-1"):
    mutations = (Mutation.create("a.txt", "a"),)
    return ChangeSet(id=cs_id, mutations=mutations, diffs=diff_mutations(mutations))


class TestChangeSetStore:
    """Tests for basic registry operations."""

    def test_put_and_get(self):
        store = ChangeSetStore()
        cs = make_change_set()

        store.put(cs, "/tmp/project")

        record = store.get("cs-1")
        assert record.status == ChangeSetStatus.PREPARED
        assert record.change_set is cs
        assert record.project_root == "/tmp/project"
        assert "cs-1" in store
        assert len(store) == 1

    def test_get_returns_copy(self):
        store = ChangeSetStore()
        store.put(make_change_set())

        store.get("cs-1").applied_files.append("x")

        assert store.get("cs-1").applied_files == []

    def test_update(self):
        store = ChangeSetStore()
        store.put(make_change_set())

        updated = store.update("cs-1", status=ChangeSetStatus.APPLIED, applied_files=["a.txt"])

        assert updated.status == ChangeSetStatus.APPLIED
        assert store.get("cs-1").applied_files == ["a.txt"]

    def test_update_unknown(self):
        assert ChangeSetStore().update("nope", status=ChangeSetStatus.APPLIED) is None

    def test_update_rejects_unknown_field(self):
        store = ChangeSetStore()
        store.put(make_change_set())

        with pytest.raises(AttributeError):
            store.update("cs-1", colour="blue")

    def test_find_by_prefix_remove_clear(self):
        store = ChangeSetStore()
        store.put(make_change_set("cs-aa"))
        store.put(make_change_set("cs-ab"))
        store.put(make_change_set("cs-b"))

        assert sorted(store.find_by_prefix("cs-a")) == ["cs-aa", "cs-ab"]
        assert store.remove("cs-b")
        assert not store.remove("cs-b")
        store.clear()
        assert len(store) == 0

    def test_instances_are_independent(self):
        first, second = ChangeSetStore(), ChangeSetStore()
        first.put(make_change_set())

        assert second.get("cs-1") is None

    def test_concurrent_puts(self):
        store = ChangeSetStore()

        def worker(offset):
            for i in range(100):
                store.put(make_change_set(f"cs-{offset}-{i}"))

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(store) == 400


class TestRebuild:
    """Tests for rebuilding from snapshot manifests."""

    def test_rebuild_from_manifests(self, project):
        manager = SnapshotManager(project)
        applied = manager.create(["src/a.js"], change_set_id="cs-applied", status="applying")
        manager.update_manifest(applied.id, status="applied", applied_files=["src/a.js"], applied_at="t1")
        manager.create(["src/a.js"], change_set_id="cs-rolled", status="rolled_back")
        manager.create(["src/a.js"], change_set_id=None, status="applied")

        store = ChangeSetStore()
        added = store.rebuild(project)

        assert added == 2
        record = store.get("cs-applied")
        assert record.status == ChangeSetStatus.APPLIED
        assert record.snapshot_id == applied.id
        assert record.applied_files == ["src/a.js"]
        assert record.applied_at == "t1"
        assert record.change_set is None
        assert store.get("cs-rolled").status == ChangeSetStatus.ROLLED_BACK

    def test_rebuild_keeps_live_records(self, project):
        SnapshotManager(project).create(["src/a.js"], change_set_id="cs-1", status="applied")
        store = ChangeSetStore()
        cs = make_change_set("cs-1")
        store.put(cs)

        assert store.rebuild(project) == 0
        assert store.get("cs-1").change_set is cs

    def test_rebuild_skips_unknown_status(self, project):
        SnapshotManager(project).create(["src/a.js"], change_set_id="cs-1", status="exploded")

        assert ChangeSetStore().rebuild(project) == 0
