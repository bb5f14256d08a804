"""
Integration tests for entity and timestamp restore.

Tests cover:
- Reversing create, update and delete for nodes and edges
- Dangling-edge policy for entity restore
- Backup precondition and rollback on failure
- Timestamp restore ordering, idempotence and skip rules
"""

import sqlite3

from graphledger.context import Actor


def entry_for(store, entity_type, entity_id, action):
    """Most recent audit entry of ``action`` for an entity."""
    for entry in store.get_audit_history(entity_type, entity_id):
        if entry.action == action:
            return entry
    raise AssertionError(f"no {action} entry for {entity_type} {entity_id}")


def graph_state(store):
    graph = store.get()
    return (
        sorted((n["data"]["id"], repr(sorted(n["data"].items()))) for n in graph["nodes"]),
        sorted((e["data"]["id"], repr(sorted(e["data"].items()))) for e in graph["edges"]),
    )


class TestEntityRestore:
    """Tests for restore_entity."""

    def test_reverse_node_create(self, store, restorer):
        """Restoring a create removes the entity."""
        store.add_node("n1", {"name": "api"})
        entry = entry_for(store, "node", "n1", "create")

        assert restorer.restore_entity("node", "n1", entry.id) is True

        assert not store.node_exists("n1")
        latest = store.get_audit_history("node", "n1")[0]
        assert latest.action == "restore_delete"
        assert latest.old_data == {"name": "api", "id": "n1"}

    def test_reverse_node_create_detaches_edges(self, store, restorer):
        store.add_node("n1", {})
        store.add_node("n2", {})
        store.add_edge("e1", "n1", "n2")
        entry = entry_for(store, "node", "n1", "create")

        assert restorer.restore_entity("node", "n1", entry.id) is True

        assert not store.edge_exists_by_id("e1")
        assert store.get_audit_history("edge", "e1")[0].action == "restore_delete"

    def test_reverse_node_delete(self, store, restorer):
        """Restoring a delete recreates the last known data."""
        store.add_node("n1", {"name": "api", "tags": ["a", "b"]})
        store.remove_node("n1")
        entry = entry_for(store, "node", "n1", "delete")

        assert restorer.restore_entity("node", "n1", entry.id) is True

        assert store.get_node("n1") == {"name": "api", "tags": ["a", "b"], "id": "n1"}
        latest = store.get_audit_history("node", "n1")[0]
        assert latest.action == "restore"
        assert latest.new_data == {"name": "api", "tags": ["a", "b"], "id": "n1"}

    def test_reverse_node_update(self, store, restorer):
        """Restoring an update reverts to its old snapshot."""
        store.add_node("n1", {"v": 1})
        store.update_node("n1", {"v": 2})
        store.update_node("n1", {"v": 3})
        first_update = store.get_audit_history("node", "n1")[1]
        assert first_update.new_data == {"v": 2, "id": "n1"}

        assert restorer.restore_entity("node", "n1", first_update.id) is True

        assert store.get_node("n1") == {"v": 1, "id": "n1"}
        latest = store.get_audit_history("node", "n1")[0]
        assert latest.action == "restore"
        assert latest.old_data == {"v": 3, "id": "n1"}

    def test_reverse_edge_create(self, store, restorer):
        store.add_node("n1", {})
        store.add_node("n2", {})
        store.add_edge("e1", "n1", "n2")
        entry = entry_for(store, "edge", "e1", "create")

        assert restorer.restore_entity("edge", "e1", entry.id) is True

        assert not store.edge_exists_by_id("e1")
        assert store.node_exists("n1")

    def test_reverse_edge_delete(self, store, restorer):
        store.add_node("n1", {})
        store.add_node("n2", {})
        store.add_edge("e1", "n1", "n2", {"w": 5})
        store.remove_edge("e1")
        entry = entry_for(store, "edge", "e1", "delete")

        assert restorer.restore_entity("edge", "e1", entry.id) is True

        assert store.get_edge("e1") == {"w": 5, "id": "e1", "source": "n1", "target": "n2"}

    def test_edge_delete_needs_endpoints(self, store, restorer):
        """create n1, n2, e1; delete n1: e1 cannot come back until n1 does."""
        store.add_node("n1", {})
        store.add_node("n2", {})
        store.add_edge("e1", "n1", "n2")
        store.remove_node("n1")

        edge_history = store.get_audit_history("edge", "e1")
        assert [e.action for e in edge_history] == ["delete", "create"]
        edge_delete = edge_history[0]

        assert restorer.restore_entity("edge", "e1", edge_delete.id) is False
        assert not store.edge_exists_by_id("e1")

        node_delete = entry_for(store, "node", "n1", "delete")
        assert restorer.restore_entity("node", "n1", node_delete.id) is True
        assert restorer.restore_entity("edge", "e1", edge_delete.id) is True
        assert store.edge_exists("n1", "n2")

    def test_reverse_delete_of_existing_entity_fails(self, store, restorer):
        store.add_node("n1", {"v": 1})
        store.remove_node("n1")
        store.add_node("n1", {"v": 2})
        entry = entry_for(store, "node", "n1", "delete")

        assert restorer.restore_entity("node", "n1", entry.id) is False
        assert store.get_node("n1") == {"v": 2, "id": "n1"}

    def test_reverse_create_of_missing_entity_fails(self, store, restorer):
        store.add_node("n1", {})
        store.remove_node("n1")
        entry = entry_for(store, "node", "n1", "create")

        assert restorer.restore_entity("node", "n1", entry.id) is False

    def test_unknown_entry(self, store, restorer):
        store.add_node("n1", {})
        assert restorer.restore_entity("node", "n1", 9999) is False

    def test_entry_of_other_entity(self, store, restorer):
        """An entry id that belongs to another entity is rejected."""
        store.add_node("n1", {})
        store.add_node("n2", {})
        entry = entry_for(store, "node", "n1", "create")

        assert restorer.restore_entity("node", "n2", entry.id) is False
        assert store.node_exists("n1")
        assert store.node_exists("n2")

    def test_reversal_entries_are_not_reversible(self, store, restorer):
        store.add_node("n1", {})
        restorer.restore_entity("node", "n1", entry_for(store, "node", "n1", "create").id)
        reversal = entry_for(store, "node", "n1", "restore_delete")

        assert restorer.restore_entity("node", "n1", reversal.id) is False
        assert not store.node_exists("n1")

    def test_status_entries_are_not_reversible(self, store, restorer):
        store.add_node("n1", {})
        store.statuses.set_status("n1", "healthy")
        entry = entry_for(store, "node_status", "n1", "create")

        assert restorer.restore_entity("node_status", "n1", entry.id) is False
        assert store.statuses.current("n1").status == "healthy"

    def test_backup_taken_first(self, store, restorer, data_dir):
        store.add_node("n1", {})
        entry = entry_for(store, "node", "n1", "create")

        restorer.restore_entity("node", "n1", entry.id)

        backups = store.backups.list_backups()
        assert len(backups) == 1
        assert backups[0].backup_name.startswith("pre_restore_entity_node_n1_")
        assert entry_for(store, "system", "graph", "backup")

    def test_backup_failure_aborts(self, store, restorer):
        """Without a backup nothing is touched."""
        store.add_node("n1", {})
        entry = entry_for(store, "node", "n1", "create")
        store.backups.dir_name = "blocked"
        blocker = store.database.storage_dir / "blocked"
        blocker.write_text("not a directory")

        assert restorer.restore_entity("node", "n1", entry.id) is False
        assert store.node_exists("n1")

    def test_failure_rolls_back(self, store, restorer, monkeypatch):
        store.add_node("n1", {})
        store.add_node("n2", {})
        store.add_edge("e1", "n1", "n2")
        entry = entry_for(store, "node", "n1", "create")
        before = graph_state(store)

        def broken(*args, **kwargs):
            raise sqlite3.OperationalError("disk I/O error")

        monkeypatch.setattr(store, "delete_node_row", broken)

        assert restorer.restore_entity("node", "n1", entry.id) is False
        monkeypatch.undo()
        assert graph_state(store) == before

    def test_actor_recorded(self, store, restorer):
        store.add_node("n1", {})
        entry = entry_for(store, "node", "n1", "create")

        restorer.restore_entity("node", "n1", entry.id, actor=Actor(user_id="ops"))

        assert store.get_audit_history("node", "n1")[0].user_id == "ops"


class TestTimestampRestore:
    """Tests for restore_to_timestamp."""

    def test_reverts_everything_after(self, store, restorer, clock):
        store.add_node("n1", {"v": 1})
        store.add_node("n2", {})
        store.add_edge("e1", "n1", "n2")
        checkpoint = clock()
        before = graph_state(store)

        store.update_node("n1", {"v": 2})
        store.add_node("n3", {})
        store.add_edge("e2", "n3", "n1")
        store.remove_node("n2")

        assert restorer.restore_to_timestamp(checkpoint) is True

        assert graph_state(store) == before

    def test_summary_entry(self, store, restorer, clock):
        store.add_node("n1", {})
        checkpoint = clock()
        store.add_node("n2", {})
        store.update_node("n1", {"v": 1})

        restorer.restore_to_timestamp(checkpoint)

        summary = entry_for(store, "system", "graph", "restore_to_timestamp")
        assert summary.new_data["operations_reversed"] == 2
        assert summary.new_data["timestamp"].startswith(checkpoint.strftime("%Y-%m-%d %H:%M:%S"))
        assert summary.new_data["backup_name"].startswith("pre_restore_timestamp_")

    def test_accepts_string_timestamp(self, store, restorer, clock):
        store.add_node("n1", {})
        checkpoint = clock().strftime("%Y-%m-%d %H:%M:%S")
        store.add_node("n2", {})

        assert restorer.restore_to_timestamp(checkpoint) is True
        assert not store.node_exists("n2")
        assert store.node_exists("n1")

    def test_invalid_timestamp(self, store, restorer):
        store.add_node("n1", {})

        assert restorer.restore_to_timestamp("not a time") is False
        assert store.backups.list_backups() == []

    def test_idempotent(self, store, restorer, clock):
        """Two runs with the same timestamp give the same graph."""
        store.add_node("n1", {"v": 1})
        store.add_node("n2", {})
        store.add_edge("e1", "n1", "n2")
        checkpoint = clock()
        store.update_node("n1", {"v": 2})
        store.remove_node("n2")
        store.add_node("n4", {})

        assert restorer.restore_to_timestamp(checkpoint) is True
        first = graph_state(store)
        assert restorer.restore_to_timestamp(checkpoint) is True

        assert graph_state(store) == first
        summaries = [
            e for e in store.get_audit_history("system") if e.action == "restore_to_timestamp"
        ]
        assert len(summaries) == 2

    def test_never_reintroduces_dangling_edge(self, store, restorer, clock):
        """An edge whose endpoint was deleted before the checkpoint stays gone."""
        store.add_node("a", {})
        store.add_node("b", {})
        store.add_edge("e1", "a", "b")
        store.remove_node("a")
        checkpoint = clock()

        store.add_node("c", {})
        restorer.restore_to_timestamp(checkpoint)

        assert not store.node_exists("a")
        assert not store.edge_exists_by_id("e1")

    def test_skips_edge_when_endpoint_still_missing(self, store, restorer, clock):
        store.add_node("a", {})
        store.add_node("b", {})
        store.add_node("c", {})
        store.add_edge("e1", "a", "b")
        store.add_edge("e2", "b", "c")
        store.remove_node("a")
        checkpoint = clock()
        store.remove_edge("e2")

        assert restorer.restore_to_timestamp(checkpoint) is True

        assert store.edge_exists_by_id("e2")
        assert not store.edge_exists_by_id("e1")

    def test_cascade_restored_together(self, store, restorer, clock):
        """A node delete with cascade after the checkpoint is fully undone."""
        store.add_node("a", {})
        store.add_node("b", {})
        store.add_edge("e1", "a", "b")
        checkpoint = clock()
        store.remove_node("a")

        assert restorer.restore_to_timestamp(checkpoint) is True

        assert store.node_exists("a")
        assert store.edge_exists_by_id("e1")

    def test_skips_reversal_entries(self, store, restorer, clock):
        """Earlier restores are not themselves reversed."""
        store.add_node("n1", {})
        checkpoint = clock()
        store.add_node("n2", {})
        restorer.restore_entity("node", "n2", entry_for(store, "node", "n2", "create").id)
        store.add_node("n3", {})

        assert restorer.restore_to_timestamp(checkpoint) is True

        assert store.node_exists("n1")
        assert not store.node_exists("n2")
        assert not store.node_exists("n3")

    def test_ignores_status_entries(self, store, restorer, clock):
        store.add_node("n1", {})
        checkpoint = clock()
        store.statuses.set_status("n1", "healthy")

        assert restorer.restore_to_timestamp(checkpoint) is True

        assert store.statuses.current("n1").status == "healthy"
        summary = entry_for(store, "system", "graph", "restore_to_timestamp")
        assert summary.new_data["operations_reversed"] == 0

    def test_nothing_after(self, store, restorer, clock):
        store.add_node("n1", {})
        checkpoint = clock()
        before = graph_state(store)

        assert restorer.restore_to_timestamp(checkpoint) is True
        assert graph_state(store) == before

    def test_unused_store(self, store, restorer):
        """Restoring a store that was never written to succeeds and reverses nothing."""
        assert restorer.restore_to_timestamp("2020-01-01 00:00:00") is True

        [summary] = [
            e for e in store.get_audit_history("system") if e.action == "restore_to_timestamp"
        ]
        assert summary.new_data["operations_reversed"] == 0

    def test_failure_rolls_back(self, store, restorer, clock, monkeypatch):
        store.add_node("n1", {})
        checkpoint = clock()
        store.add_node("n2", {})
        store.add_node("n3", {})
        before = graph_state(store)
        original = store.delete_node_row

        def fail_on_n2(conn, node_id):
            if node_id == "n2":
                raise sqlite3.OperationalError("disk I/O error")
            return original(conn, node_id)

        monkeypatch.setattr(store, "delete_node_row", fail_on_n2)

        assert restorer.restore_to_timestamp(checkpoint) is False
        monkeypatch.undo()
        assert graph_state(store) == before
        summaries = [
            e for e in store.get_audit_history("system") if e.action == "restore_to_timestamp"
        ]
        assert summaries == []
        assert len(store.backups.list_backups()) == 1
