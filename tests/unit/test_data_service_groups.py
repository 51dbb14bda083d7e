# =============================================================================
# tests/unit/test_data_service_groups.py
# Unit Tests for DataService group operations
# =============================================================================

import pytest

from todo_core.data.backend import GROUPS_TABLE
from todo_core.models import Theme, is_temp_id
from todo_core.services import DataService

from conftest import ids, make_group, make_todo, snapshot_files


class TestLoadGroups:
    """Test cache-first and forced loads"""

    def test_empty_cache_reads_server(self, service, backend, store):
        """A cache miss loads from the server and fills the cache"""
        backend.seed(GROUPS_TABLE, [make_group("g2", 1).to_dict(), make_group("g1", 0).to_dict()])

        result = service.load_groups()

        assert result.success
        assert not result.from_cache
        assert ids(result.data) == ["g1", "g2"]
        assert ids(store.get_groups()) == ["g1", "g2"]
        assert store.get_sync_state().last_sync is not None

    def test_cached_groups_returned_first(self, service, backend, store, seeded):
        """A cache hit answers immediately with from_cache set"""
        backend.seed(GROUPS_TABLE, [make_group("g3", 2, name="Server only").to_dict()])

        result = service.load_groups()

        assert result.success
        assert result.from_cache
        assert ids(result.data) == ["g1", "g2"]

    def test_cache_hit_refreshes_in_background(self, service, backend, store, seeded):
        """After the background refresh the cache mirrors the server"""
        backend.seed(GROUPS_TABLE, [make_group("g3", 2).to_dict()])

        service.load_groups()
        assert service.wait_for_background(timeout=5)

        assert ids(store.get_groups()) == ["g1", "g2", "g3"]
        assert len(backend.calls_for("select")) == 1

    def test_background_refresh_failure_is_silent(self, service, backend, store, seeded):
        """A failing background refresh leaves the cache alone"""
        backend.fail_on("select")

        result = service.load_groups()
        service.wait_for_background(timeout=5)

        assert result.success
        assert ids(store.get_groups()) == ["g1", "g2"]

    def test_cached_groups_sorted_by_sort_order(self, service, store):
        """Results are ordered by sort_order whatever the file order"""
        store.save_groups([make_group("b", 5), make_group("a", 1)])

        result = service.load_groups()

        assert ids(result.data) == ["a", "b"]

    def test_force_refresh_skips_cache(self, service, backend, store, seeded):
        """force_refresh goes to the server first"""
        backend.tables[GROUPS_TABLE].pop("g2")

        result = service.load_groups(force_refresh=True)

        assert not result.from_cache
        assert ids(result.data) == ["g1"]
        assert ids(store.get_groups()) == ["g1"]

    def test_force_refresh_failure_falls_back_to_cache(self, service, backend, seeded):
        """Server failure with a warm cache still succeeds, flagged and with the error"""
        backend.fail_on("select")

        result = service.load_groups(force_refresh=True)

        assert result.success
        assert result.from_cache
        assert result.error == "Network down"
        assert ids(result.data) == ["g1", "g2"]

    def test_failure_with_empty_cache(self, service, backend):
        """Server failure and no cache is an explicit failure with empty data"""
        backend.fail_on("select")

        result = service.load_groups()

        assert not result.success
        assert result.data == []
        assert result.error_code == "NETWORK_ERROR"


class TestCreateGroup:
    """Test optimistic group creation"""

    def test_create_appends_confirmed_group(self, service, backend, store, seeded):
        """The server record replaces the placeholder at the end"""
        result = service.create_group("Errands", "green")

        assert result.success
        created = result.data
        assert created.id.startswith("group-srv-")
        assert created.theme is Theme.GREEN
        assert created.sort_order == 2
        assert ids(store.get_groups()) == ["g1", "g2", created.id]

        op, table, row = backend.calls_for("insert")[0]
        assert table == GROUPS_TABLE
        assert row == {"user_id": "user-1", "name": "Errands", "theme": "green", "sort_order": 2}

    def test_first_group_gets_sort_order_zero(self, service, store):
        result = service.create_group("First")

        assert result.data.sort_order == 0
        assert result.data.theme is Theme.DEFAULT

    def test_placeholder_visible_while_in_flight(self, service, backend, store, seeded):
        """The temp record is in the cache while the server call runs"""
        seen = {}

        def during_insert(op, table, payload):
            if op == "insert":
                seen["ids"] = ids(store.get_groups())

        backend.before_call = during_insert
        result = service.create_group("Errands")

        assert len(seen["ids"]) == 3
        assert is_temp_id(seen["ids"][-1])
        assert not any(is_temp_id(g.id) for g in store.get_groups())
        assert result.data.id in ids(store.get_groups())

    def test_failure_removes_placeholder(self, service, backend, store, seeded):
        """A failed insert leaves the cache as it was"""
        before = snapshot_files(store)
        backend.fail_on("insert")

        result = service.create_group("Errands")

        assert not result.success
        assert result.error == "Network down"
        assert snapshot_files(store) == before

    def test_failure_on_empty_cache_leaves_no_files(self, service, backend, store):
        """A failed first create does not make the cache look populated"""
        before = sorted(p.name for p in store.cache_dir.iterdir())
        backend.fail_on("insert")

        result = service.create_group("Errands")

        assert not result.success
        assert store.has_cached_data() is False
        assert sorted(p.name for p in store.cache_dir.iterdir()) == before

    def test_failure_keeps_other_in_flight_placeholders(self, service, backend, store, seeded):
        """Only the failing call's own temp record is removed"""
        other = make_group("temp_1_concurrent", 9)
        backend.fail_on("insert")

        def concurrent_create(op, table, payload):
            if op == "insert":
                store.add_group(other)

        backend.before_call = concurrent_create
        service.create_group("Errands")

        assert ids(store.get_groups()) == ["g1", "g2", "temp_1_concurrent"]

    def test_requires_signed_in_user(self, service, auth, backend, store, seeded):
        """No user, no create and no remote call"""
        auth.user = None

        result = service.create_group("Errands")

        assert not result.success
        assert result.error_code == "AUTH_REQUIRED"
        assert backend.calls_for("insert") == []
        assert ids(store.get_groups()) == ["g1", "g2"]

    def test_unknown_theme_rejected(self, service, backend):
        """Themes outside the fixed set are a validation error"""
        result = service.create_group("Errands", "neon")

        assert not result.success
        assert result.error_code == "VALIDATION"
        assert backend.calls == []

    def test_realtime_insert_before_confirmation_does_not_duplicate(self, service, backend, store, seeded):
        """If the push event lands first, one record remains"""
        def echo_insert(op, table, payload):
            if op == "insert":
                store.add_group(make_group("group-srv-1", 2, name="Errands"))

        backend.before_call = echo_insert
        result = service.create_group("Errands")

        assert result.data.id == "group-srv-1"
        assert ids(store.get_groups()) == ["g1", "g2", "group-srv-1"]


class TestUpdateGroup:
    """Test optimistic group updates"""

    def test_update_replaced_by_server_record(self, service, backend, store, seeded):
        """On success the cache holds the server's version"""
        result = service.update_group("g1", {"name": "Office", "theme": "purple"})

        assert result.success
        group = store.get_groups()[0]
        assert group.name == "Office"
        assert group.theme is Theme.PURPLE
        assert group.updated_at == "2024-01-02T00:00:00+00:00"
        assert backend.calls_for("update")[0][2] == {"id": "g1", "name": "Office", "theme": "purple"}

    def test_optimistic_value_visible_while_in_flight(self, service, backend, store, seeded):
        seen = {}

        def during_update(op, table, payload):
            seen["name"] = store.get_groups()[0].name

        backend.before_call = during_update
        service.update_group("g1", {"name": "Office"})

        assert seen["name"] == "Office"

    def test_failure_rolls_back(self, service, backend, store, seeded):
        """Failed update restores the previous groups exactly"""
        before = snapshot_files(store)
        backend.fail_on("update")

        result = service.update_group("g1", {"name": "Office"})

        assert not result.success
        assert snapshot_files(store) == before

    def test_server_not_found_rolls_back(self, service, backend, store, seeded):
        """A row the server does not have is reported with its code"""
        backend.tables[GROUPS_TABLE].pop("g2")

        result = service.update_group("g2", {"name": "Gone"})

        assert not result.success
        assert result.error_code == "PGRST116"
        assert store.get_groups()[1].name == "Home"

    def test_rejects_unknown_fields(self, service, backend):
        result = service.update_group("g1", {"user_id": "someone-else"})

        assert not result.success
        assert result.error_code == "VALIDATION"
        assert backend.calls == []

    def test_rejects_placeholder_ids(self, service, backend):
        result = service.update_group("temp_1_abc", {"name": "x"})

        assert result.error_code == "VALIDATION"
        assert backend.calls == []


class TestDeleteGroup:
    """Test optimistic group deletion"""

    def test_delete_cascades_locally(self, service, backend, store, seeded):
        """Group and its todos leave the cache"""
        result = service.delete_group("g1")

        assert result.success
        assert ids(store.get_groups()) == ["g2"]
        assert not store.todos_path("g1").exists()
        assert store.get_todos("g1") == []
        assert backend.calls_for("delete") == [("delete", GROUPS_TABLE, ["g1"])]

    def test_failure_restores_group_and_todos(self, service, backend, store, seeded):
        """Rollback puts the group back at its index with its todos"""
        before = snapshot_files(store)
        backend.fail_on("delete")

        result = service.delete_group("g1")

        assert not result.success
        assert ids(store.get_groups()) == ["g1", "g2"]
        assert ids(store.get_todos("g1")) == ["t1", "t2", "t3"]
        assert snapshot_files(store) == before

    def test_cascade_leaves_no_orphans(self, service, store, seeded):
        """After a delete no cached todo points at the deleted group"""
        service.delete_group("g2")

        for group in store.get_groups():
            assert all(t.group_id == group.id for t in store.get_todos(group.id))
        assert store.get_todos("g2") == []


class TestReorderGroups:
    """Test group reordering"""

    def test_reorder_scenario(self, service, backend, store):
        """[A0, B1, C2] reordered to [C, A, B]"""
        store.save_groups([make_group("A", 0), make_group("B", 1), make_group("C", 2)])

        result = service.reorder_groups(["C", "A", "B"])

        assert result.success
        assert [(g.id, g.sort_order) for g in store.get_groups()] == [("C", 0), ("A", 1), ("B", 2)]
        assert backend.calls_for("upsert")[0][2] == [
            {"id": "C", "sort_order": 0},
            {"id": "A", "sort_order": 1},
            {"id": "B", "sort_order": 2},
        ]
        assert result.data == backend.calls_for("upsert")[0][2]

    def test_reorder_is_idempotent(self, service, store):
        """Applying the same order twice gives the same cache"""
        store.save_groups([make_group("A", 0), make_group("B", 1), make_group("C", 2)])

        service.reorder_groups(["B", "C", "A"])
        once = [g.to_dict() for g in store.get_groups()]
        service.reorder_groups(["B", "C", "A"])

        assert [g.to_dict() for g in store.get_groups()] == once

    def test_reorder_failure_restores_order(self, service, backend, store):
        """Failed upsert brings back the old order"""
        store.save_groups([make_group("A", 0), make_group("B", 1)])
        backend.fail_on("upsert")

        result = service.reorder_groups(["B", "A"])

        assert not result.success
        assert [(g.id, g.sort_order) for g in store.get_groups()] == [("A", 0), ("B", 1)]

    def test_partial_id_list(self, service, backend, store):
        """Unknown ids are skipped locally; unnamed groups follow"""
        store.save_groups([make_group("A", 0), make_group("B", 1), make_group("C", 2)])

        service.reorder_groups(["C", "X", "A"])

        assert [(g.id, g.sort_order) for g in store.get_groups()] == [("C", 0), ("A", 2), ("B", 1)]
        assert [r["id"] for r in backend.calls_for("upsert")[0][2]] == ["C", "X", "A"]

    def test_duplicate_ids_rejected(self, service, backend):
        result = service.reorder_groups(["A", "A"])

        assert result.error_code == "VALIDATION"
        assert backend.calls == []

    def test_generator_of_ids(self, service, backend, store):
        """Any iterable of ids is accepted, not only lists"""
        store.save_groups([make_group("A", 0), make_group("B", 1)])

        result = service.reorder_groups(group_id for group_id in ["B", "A"])

        assert result.success
        assert [r["id"] for r in backend.calls_for("upsert")[0][2]] == ["B", "A"]
        assert ids(store.get_groups()) == ["B", "A"]

    def test_non_iterable_rejected(self, service, backend):
        result = service.reorder_groups(5)

        assert result.error_code == "VALIDATION"
        assert backend.calls == []


class TestJournal:
    """Test the in-flight operation journal"""

    def test_operation_journaled_while_in_flight(self, service, backend, store, seeded):
        """A pending operation exists during the remote call and is gone after"""
        seen = {}

        def during_update(op, table, payload):
            seen["pending"] = store.get_sync_state().pending_operations

        backend.before_call = during_update
        service.update_group("g1", {"name": "Office"})

        assert len(seen["pending"]) == 1
        assert seen["pending"][0]["type"] == "update_group"
        assert seen["pending"][0]["record_id"] == "g1"
        assert store.get_sync_state().pending_operations == []

    def test_journal_cleared_after_failure(self, service, backend, store, seeded):
        backend.fail_on("delete")

        service.delete_group("g1")

        assert store.get_sync_state().pending_operations == []

    def test_recovery_purges_placeholders(self, store, backend, auth, seeded):
        """Recovery after a crash drops every temp record and clears the journal"""
        store.add_group(make_group("temp_1_lost", 2))
        store.save_todos("temp_1_lost", [make_todo("temp_2_child", "temp_1_lost")])
        store.add_todo("g1", make_todo("temp_3_lost", "g1", 3))
        store.add_pending_operation({"id": "op1", "type": "create_group"})

        service = DataService(store, backend, auth)
        result = service.recover_interrupted_operations()

        assert result.success
        assert result.data == {"interrupted_operations": 1, "purged_records": 2}
        assert ids(store.get_groups()) == ["g1", "g2"]
        assert ids(store.get_todos("g1")) == ["t1", "t2", "t3"]
        assert not store.todos_path("temp_1_lost").exists()
        assert store.get_sync_state().pending_operations == []

    def test_recovery_noop_with_empty_journal(self, service, store, seeded):
        """Without interrupted operations nothing is touched"""
        store.add_group(make_group("temp_1_in_flight", 2))

        result = service.recover_interrupted_operations()

        assert result.data == {"interrupted_operations": 0, "purged_records": 0}
        assert "temp_1_in_flight" in ids(store.get_groups())
