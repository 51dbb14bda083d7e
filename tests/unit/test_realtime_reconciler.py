# =============================================================================
# tests/unit/test_realtime_reconciler.py
# Unit Tests for RealtimeReconciler
# =============================================================================

import pytest

from todo_core.data.backend import GROUPS_TABLE, TODOS_TABLE
from todo_core.errors import RemoteOperationError
from todo_core.models import ChangeEvent, EventType, Theme, Todo
from todo_core.offline import GROUPS_CHANNEL, RealtimeReconciler, todos_channel_name
from todo_core.offline.realtime_reconciler import fold_event

from conftest import ids, make_group, make_todo


@pytest.fixture
def reconciler(store, backend):
    return RealtimeReconciler(store, backend)


def todo_row(todo_id, group_id, sort_order=0, text="pushed", completed=False):
    return make_todo(todo_id, group_id, sort_order, text=text, completed=completed).to_dict()


class TestFoldEvent:
    """Test folding one event into a record list"""

    def test_insert_appends(self):
        records = [make_todo("t1", "g1")]
        event = ChangeEvent(EventType.INSERT, new=todo_row("t2", "g1", 1))

        assert ids(fold_event(records, event, Todo.from_dict)) == ["t1", "t2"]

    def test_insert_of_known_id_replaces(self):
        """INSERT for an id already cached does not duplicate it"""
        records = [make_todo("t1", "g1", text="old")]
        event = ChangeEvent(EventType.INSERT, new=todo_row("t1", "g1", text="new"))

        folded = fold_event(records, event, Todo.from_dict)

        assert ids(folded) == ["t1"]
        assert folded[0].text == "new"

    def test_update_of_unknown_id_is_noop(self):
        records = [make_todo("t1", "g1")]
        event = ChangeEvent(EventType.UPDATE, new=todo_row("t9", "g1"))

        assert fold_event(records, event, Todo.from_dict) is records

    def test_update_is_idempotent(self):
        """Applying the same UPDATE twice gives the same list"""
        records = [make_todo("t1", "g1"), make_todo("t2", "g1", 1)]
        event = ChangeEvent(EventType.UPDATE, new=todo_row("t2", "g1", 1, completed=True))

        once = fold_event(records, event, Todo.from_dict)
        twice = fold_event(once, event, Todo.from_dict)

        assert once == twice
        assert once[1].completed is True

    def test_delete_removes(self):
        records = [make_todo("t1", "g1"), make_todo("t2", "g1", 1)]
        event = ChangeEvent(EventType.DELETE, old={"id": "t1"})

        assert ids(fold_event(records, event, Todo.from_dict)) == ["t2"]

    def test_event_without_id_ignored(self):
        records = [make_todo("t1", "g1")]

        assert fold_event(records, ChangeEvent(EventType.DELETE, old={}), Todo.from_dict) is records


class TestApplyEvents:
    """Test folding events into the store"""

    def test_group_update(self, reconciler, store, seeded):
        row = make_group("g2", 1, name="Renamed", theme=Theme.GRAY).to_dict()

        reconciler.apply_group_event(ChangeEvent(EventType.UPDATE, GROUPS_TABLE, new=row))

        assert store.get_groups()[1].name == "Renamed"
        assert store.get_groups()[1].theme is Theme.GRAY

    def test_group_delete_drops_todo_file(self, reconciler, store, seeded):
        """A pushed group delete also forgets that group's todos"""
        reconciler.apply_group_event(ChangeEvent(EventType.DELETE, GROUPS_TABLE, old={"id": "g1"}))

        assert ids(store.get_groups()) == ["g2"]
        assert not store.todos_path("g1").exists()

    def test_todo_event_uses_row_group(self, reconciler, store, seeded):
        """The owning group comes from the pushed row"""
        reconciler.apply_todo_event("g1", ChangeEvent(EventType.INSERT, TODOS_TABLE, new=todo_row("t8", "g2", 1)))

        assert ids(store.get_todos("g2")) == ["t4", "t8"]
        assert ids(store.get_todos("g1")) == ["t1", "t2", "t3"]

    def test_todo_delete_falls_back_to_subscription_group(self, reconciler, store, seeded):
        """DELETE payloads often carry only the id"""
        reconciler.apply_todo_event("g1", ChangeEvent(EventType.DELETE, TODOS_TABLE, old={"id": "t2"}))

        assert ids(store.get_todos("g1")) == ["t1", "t3"]


class TestSubscriptions:
    """Test channel bookkeeping"""

    def test_subscribe_to_todos_uses_group_filter(self, reconciler, backend):
        name = reconciler.subscribe_to_todos("g1")

        assert name == todos_channel_name("g1") == "todos-g1"
        channel = backend.open_channels("todos-g1")[0]
        assert channel.table == TODOS_TABLE
        assert channel.filter == "group_id=eq.g1"

    def test_resubscribe_replaces_channel(self, reconciler, backend):
        """At most one channel per group id"""
        reconciler.subscribe_to_todos("g1")
        reconciler.subscribe_to_todos("g1")

        assert len(backend.open_channels("todos-g1")) == 1
        assert len(backend.channels) == 2
        assert reconciler.channel_names == ["todos-g1"]

    def test_resubscribe_groups_replaces_channel(self, reconciler, backend):
        reconciler.subscribe_to_groups()
        reconciler.subscribe_to_groups()

        assert len(backend.open_channels(GROUPS_CHANNEL)) == 1

    def test_event_updates_cache_then_calls_listener(self, reconciler, backend, store, seeded):
        """The listener sees the cache already updated"""
        seen = []
        reconciler.subscribe_to_todos("g1", lambda event: seen.append(ids(store.get_todos("g1"))))

        backend.emit("todos-g1", "INSERT", new=todo_row("t7", "g1", 3))

        assert seen == [["t1", "t2", "t3", "t7"]]

    def test_listener_error_is_contained(self, reconciler, backend, store, seeded):
        def broken(event):
            raise RuntimeError("ui crashed")

        reconciler.subscribe_to_groups(broken)
        backend.emit(GROUPS_CHANNEL, "DELETE", old={"id": "g2"})

        assert ids(store.get_groups()) == ["g1"]

    def test_unsubscribe(self, reconciler, backend):
        reconciler.subscribe_to_groups()

        assert reconciler.unsubscribe(GROUPS_CHANNEL) is True
        assert reconciler.unsubscribe(GROUPS_CHANNEL) is False
        assert backend.open_channels() == []

    def test_unsubscribe_all_forgets_failed_channels(self, reconciler, backend):
        """Channels that fail to close are still dropped from the map"""
        reconciler.subscribe_to_groups()
        reconciler.subscribe_to_todos("g1")
        backend.fail_on("unsubscribe")

        closed = reconciler.unsubscribe_all()

        assert closed == 0
        assert reconciler.channel_names == []

    def test_unsubscribe_all_closes_connection(self, reconciler, backend):
        """The backend's realtime connection goes with the last channel"""
        reconciler.subscribe_to_groups()

        reconciler.unsubscribe_all()

        assert backend.close_count == 1

    def test_subscribe_failure_propagates(self, reconciler, backend):
        backend.fail_on("subscribe")

        with pytest.raises(RemoteOperationError):
            reconciler.subscribe_to_groups()
        assert reconciler.channel_names == []


class TestGatewaySubscriptions:
    """Test the DataService realtime wrappers"""

    def test_subscribe_and_unsubscribe_all(self, service, backend):
        assert service.subscribe_to_groups().data == GROUPS_CHANNEL
        assert service.subscribe_to_todos("g1").data == "todos-g1"

        result = service.unsubscribe_all()

        assert result.success
        assert result.data == 2
        assert backend.open_channels() == []

    def test_subscribe_failure_is_a_result(self, service, backend):
        backend.fail_on("subscribe")

        result = service.subscribe_to_todos("g1")

        assert not result.success
        assert result.error_code == "NETWORK_ERROR"
