# SPDX-License-Identifier: Apache-2.0
"""
Unit tests for ReconciliationEngine.

Covers create/update/delete/clear-all against a fake remote calendar,
bulk sync (push, pull, de-duplication, single-flight) and legacy migration.
"""

import asyncio
import json

import pytest

from config.constants import LEGACY_SCHEDULES_STORAGE_KEY, SCHEDULES_STORAGE_KEY
from core.schedule.engine import OperationOutcome, ReconciliationEngine
from core.schedule.exceptions import RemoteError, StorageError, ValidationError
from core.schedule.models import Priority, SyncStatus
from data.storage.local_store import InMemoryLocalStore


STANDUP = {
    "title": "Standup",
    "date": "2025-03-10",
    "time": "09:00",
    "priority": "high",
}


def _fields(title, date="2030-05-01", time="09:00", **extra):
    fields = {"title": title, "date": date, "time": time}
    fields.update(extra)
    return fields


def _stored(store):
    return json.loads(store.data[SCHEDULES_STORAGE_KEY])


class FailingStore(InMemoryLocalStore):
    """Store whose medium rejects every write."""

    def _write(self, key, value):
        raise OSError("disk full")


class TestCreate:
    """Test record creation."""

    def test_create_without_client_is_offline(self, memory_store):
        engine = ReconciliationEngine(memory_store)

        result = asyncio.run(engine.create(STANDUP))

        assert result.outcome is OperationOutcome.LOCAL_ONLY
        assert result.record.sync_status is SyncStatus.OFFLINE
        assert result.record.remote_id is None
        assert result.record.priority is Priority.HIGH
        assert len(engine.catalog) == 1
        assert _stored(memory_store)[0]["title"] == "Standup"

    def test_create_with_disconnected_client_is_pending(self, memory_store, client_factory):
        client = client_factory(connected=False)
        engine = ReconciliationEngine(memory_store, client)

        result = asyncio.run(engine.create(STANDUP))

        assert result.record.sync_status is SyncStatus.PENDING
        assert result.record.remote_id is None
        assert client.calls == []
        assert len(engine.catalog) == 1

    def test_create_connected_mirrors_remotely(self, memory_store, fake_client):
        engine = ReconciliationEngine(memory_store, fake_client)

        result = asyncio.run(engine.create(STANDUP))

        assert result.outcome is OperationOutcome.SYNCED
        assert result.synced
        assert result.record.sync_status is SyncStatus.SYNCED
        assert result.record.remote_id == "remote-1"
        assert fake_client.count("create") == 1
        assert _stored(memory_store)[0]["remoteId"] == "remote-1"

    def test_remote_failure_keeps_record(self, memory_store, fake_client):
        fake_client.fail_ops.add("create")
        engine = ReconciliationEngine(memory_store, fake_client)

        result = asyncio.run(engine.create(STANDUP))

        assert result.outcome is OperationOutcome.LOCAL_ONLY
        assert result.record.sync_status is SyncStatus.FAILED
        assert result.record.remote_id is None
        assert "create failed" in result.error
        assert len(engine.catalog) == 1
        assert _stored(memory_store)[0]["syncStatus"] == "failed"

    def test_validation_error_mutates_nothing(self, memory_store, fake_client):
        engine = ReconciliationEngine(memory_store, fake_client)

        with pytest.raises(ValidationError) as exc_info:
            asyncio.run(engine.create({"title": "  ", "date": "2030-01-01", "time": "10:00"}))

        assert exc_info.value.fields == ["title"]
        assert len(engine.catalog) == 0
        assert memory_store.data == {}
        assert fake_client.calls == []

    def test_storage_failure_propagates(self):
        engine = ReconciliationEngine(FailingStore())

        with pytest.raises(StorageError):
            asyncio.run(engine.create(STANDUP))

    def test_render_callback_fires_after_create(self, memory_store):
        renders = []
        engine = ReconciliationEngine(memory_store, render_callback=lambda: renders.append(1))

        asyncio.run(engine.create(STANDUP))

        assert renders == [1]

    def test_render_callback_errors_are_contained(self, memory_store):
        def broken_render():
            raise RuntimeError("render broke")

        engine = ReconciliationEngine(memory_store, render_callback=broken_render)

        result = asyncio.run(engine.create(STANDUP))

        assert len(engine.catalog) == 1
        assert result.record.title == "Standup"

    def test_create_strips_and_defaults_fields(self, memory_store):
        engine = ReconciliationEngine(memory_store)

        result = asyncio.run(engine.create(_fields("  Review  ")))

        assert result.record.title == "Review"
        assert result.record.description == ""
        assert result.record.priority is Priority.MEDIUM


class TestUpdate:
    """Test record updates."""

    def test_missing_id_is_silent_noop(self, memory_store, fake_client):
        engine = ReconciliationEngine(memory_store, fake_client)

        assert asyncio.run(engine.update("does-not-exist", {"title": "x"})) is None
        assert memory_store.data == {}
        assert fake_client.calls == []

    def test_update_synced_record_pushes_remote(self, memory_store, fake_client):
        engine = ReconciliationEngine(memory_store, fake_client)

        async def _run():
            created = await engine.create(_fields("Draft"))
            return await engine.update(created.record.id, {"title": "Final", "priority": "low"})

        result = asyncio.run(_run())

        assert result.outcome is OperationOutcome.SYNCED
        assert result.record.title == "Final"
        assert result.record.priority is Priority.LOW
        assert fake_client.calls[-1] == ("update", "remote-1")
        assert fake_client.events["remote-1"].title == "Final"

    def test_update_without_remote_id_stays_local(self, memory_store, fake_client):
        fake_client.fail_ops.add("create")
        engine = ReconciliationEngine(memory_store, fake_client)

        async def _run():
            created = await engine.create(_fields("Draft"))
            fake_client.fail_ops.clear()
            return await engine.update(created.record.id, {"title": "Edited"})

        result = asyncio.run(_run())

        assert result.outcome is OperationOutcome.LOCAL_ONLY
        assert result.record.sync_status is SyncStatus.PENDING
        assert result.record.remote_id is None
        assert fake_client.count("update") == 0
        assert fake_client.count("create") == 1

    def test_update_offline_engine(self, memory_store):
        engine = ReconciliationEngine(memory_store)

        async def _run():
            created = await engine.create(_fields("Draft"))
            return await engine.update(created.record.id, {"description": "notes"})

        result = asyncio.run(_run())

        assert result.record.sync_status is SyncStatus.OFFLINE
        assert _stored(memory_store)[0]["description"] == "notes"

    def test_remote_failure_retains_remote_id(self, memory_store, fake_client):
        engine = ReconciliationEngine(memory_store, fake_client)

        async def _run():
            created = await engine.create(_fields("Draft"))
            fake_client.fail_ops.add("update")
            return await engine.update(created.record.id, {"time": "11:30"})

        result = asyncio.run(_run())

        assert result.record.sync_status is SyncStatus.FAILED
        assert result.record.remote_id == "remote-1"
        assert result.record.time == "11:30"
        assert _stored(memory_store)[0]["syncStatus"] == "failed"

    def test_invalid_change_leaves_record_untouched(self, memory_store):
        engine = ReconciliationEngine(memory_store)

        async def _run():
            created = await engine.create(_fields("Draft"))
            with pytest.raises(ValidationError):
                await engine.update(created.record.id, {"date": "10/03/2025"})
            return created.record

        record = asyncio.run(_run())

        assert record.date == "2030-05-01"

    def test_update_never_changes_identity(self, memory_store, fake_client):
        engine = ReconciliationEngine(memory_store, fake_client)

        async def _run():
            created = await engine.create(_fields("Draft"))
            original = (created.record.id, created.record.created_at)
            await engine.update(created.record.id, {"id": "hijack", "created_at": "never"})
            return original, created.record

        original, record = asyncio.run(_run())

        assert (record.id, record.created_at) == original


class TestDelete:
    """Test record deletion and clear-all."""

    def test_missing_id_is_silent_noop(self, memory_store, fake_client):
        engine = ReconciliationEngine(memory_store, fake_client)

        assert asyncio.run(engine.delete("nope")) is None
        assert fake_client.calls == []

    def test_delete_removes_remote_and_local(self, memory_store, fake_client):
        engine = ReconciliationEngine(memory_store, fake_client)

        async def _run():
            created = await engine.create(_fields("Gone"))
            return await engine.delete(created.record.id)

        result = asyncio.run(_run())

        assert result.outcome is OperationOutcome.SYNCED
        assert len(engine.catalog) == 0
        assert fake_client.events == {}
        assert _stored(memory_store) == []

    def test_remote_failure_does_not_block_local_removal(self, memory_store, fake_client):
        engine = ReconciliationEngine(memory_store, fake_client)

        async def _run():
            created = await engine.create(_fields("Sticky"))
            fake_client.fail_ops.add("delete")
            return await engine.delete(created.record.id)

        result = asyncio.run(_run())

        assert result.outcome is OperationOutcome.LOCAL_ONLY
        assert "delete failed" in result.error
        assert len(engine.catalog) == 0
        assert _stored(memory_store) == []

    def test_create_then_delete_with_failing_remote(self, memory_store, fake_client):
        fake_client.fail_ops.update({"create", "delete"})
        engine = ReconciliationEngine(memory_store, fake_client)

        async def _run():
            created = await engine.create(_fields("Flaky"))
            await engine.delete(created.record.id)

        asyncio.run(_run())

        assert len(engine.catalog) == 0
        assert fake_client.count("delete") <= 1

    def test_clear_all_empties_even_when_every_remote_delete_fails(
        self, memory_store, fake_client
    ):
        engine = ReconciliationEngine(memory_store, fake_client)

        async def _run():
            for index in range(3):
                await engine.create(_fields(f"Item {index}"))
            await engine.create(_fields("Local", time="10:00"))
            fake_client.fail_ops.add("delete")
            return await engine.clear_all()

        # the last create succeeded remotely too, so four remote ids
        outcome = asyncio.run(_run())

        assert outcome is OperationOutcome.LOCAL_ONLY
        assert len(engine.catalog) == 0
        assert _stored(memory_store) == []
        assert fake_client.count("delete") == 4

    def test_clear_all_skips_records_without_remote_id(self, memory_store, fake_client):
        engine = ReconciliationEngine(memory_store, fake_client)

        async def _run():
            await engine.create(_fields("Synced"))
            fake_client.fail_ops.add("create")
            await engine.create(_fields("Never synced"))
            return await engine.clear_all()

        outcome = asyncio.run(_run())

        assert outcome is OperationOutcome.SYNCED
        assert fake_client.count("delete") == 1
        assert len(engine.catalog) == 0

    def test_clear_all_offline(self, memory_store):
        engine = ReconciliationEngine(memory_store)

        async def _run():
            await engine.create(_fields("One"))
            await engine.create(_fields("Two"))
            return await engine.clear_all()

        assert asyncio.run(_run()) is OperationOutcome.SYNCED
        assert len(engine.catalog) == 0


class TestSync:
    """Test bidirectional bulk sync."""

    def test_sync_requires_connection(self, memory_store, client_factory):
        client = client_factory(connected=False)
        engine = ReconciliationEngine(memory_store, client)

        assert asyncio.run(engine.sync()) is None
        assert client.calls == []

    def test_sync_without_client(self, memory_store):
        engine = ReconciliationEngine(memory_store)

        assert asyncio.run(engine.sync()) is None

    def test_sync_pushes_pending_records(self, memory_store, client_factory):
        client = client_factory(connected=False)
        engine = ReconciliationEngine(memory_store, client)

        async def _run():
            await engine.create(_fields("First"))
            await engine.create(_fields("Second"))
            await client.sign_in()
            return await engine.sync()

        report = asyncio.run(_run())

        assert report.pushed == 2
        assert report.failed == 0
        assert report.pulled == 0
        assert all(record.sync_status is SyncStatus.SYNCED for record in engine.catalog)
        assert {record.remote_id for record in engine.catalog} == set(client.events)
        assert len(engine.catalog) == 2

    def test_one_failure_does_not_abort_the_batch(self, memory_store, client_factory):
        client = client_factory(connected=False)
        engine = ReconciliationEngine(memory_store, client)

        async def _run():
            good = await engine.create(_fields("Good"))
            bad = await engine.create(_fields("Bad"))
            client.fail_record_ids.add(bad.record.id)
            await client.sign_in()
            return good.record, bad.record, await engine.sync()

        good, bad, report = asyncio.run(_run())

        assert report.pushed == 1
        assert report.failed == 1
        assert report.failed_ids == [bad.id]
        assert good.sync_status is SyncStatus.SYNCED
        assert bad.sync_status is SyncStatus.FAILED
        assert len(engine.catalog) == 2
        statuses = {item["id"]: item["syncStatus"] for item in _stored(memory_store)}
        assert statuses == {good.id: "synced", bad.id: "failed"}

    def test_failed_record_with_remote_id_is_updated(self, memory_store, fake_client):
        engine = ReconciliationEngine(memory_store, fake_client)

        async def _run():
            created = await engine.create(_fields("Draft"))
            fake_client.fail_ops.add("update")
            await engine.update(created.record.id, {"title": "Retry me"})
            fake_client.fail_ops.clear()
            return created.record, await engine.sync()

        record, report = asyncio.run(_run())

        assert report.pushed == 1
        assert record.sync_status is SyncStatus.SYNCED
        assert fake_client.count("create") == 1
        assert fake_client.events[record.remote_id].title == "Retry me"

    def test_pulls_remote_origin_events(self, memory_store, fake_client):
        fake_client.add_remote_event(
            "g-100", title="Dentist", date="2030-02-02", time="14:15",
            priority=Priority.HIGH, description="Bring card",
        )
        engine = ReconciliationEngine(memory_store, fake_client)

        report = asyncio.run(engine.sync())

        assert report.pulled == 1
        record = engine.catalog.records[0]
        assert record.remote_id == "g-100"
        assert record.title == "Dentist"
        assert record.description == "Bring card"
        assert (record.date, record.time) == ("2030-02-02", "14:15")
        assert record.priority is Priority.HIGH
        assert record.sync_status is SyncStatus.SYNCED

    def test_never_duplicates_known_remote_events(self, memory_store, fake_client):
        engine = ReconciliationEngine(memory_store, fake_client)

        async def _run():
            await engine.create(_fields("Mine"))
            return await engine.sync()

        report = asyncio.run(_run())

        assert report.pulled == 0
        assert len(engine.catalog) == 1

    def test_sync_is_idempotent(self, memory_store, fake_client):
        fake_client.add_remote_event("g-1", title="External")
        engine = ReconciliationEngine(memory_store, fake_client)

        async def _run():
            await engine.create(_fields("Local"))
            fake_client.fail_ops.add("create")
            await engine.create(_fields("Retry", time="12:00"))
            fake_client.fail_ops.clear()

            await engine.sync()
            snapshot = memory_store.data[SCHEDULES_STORAGE_KEY]
            second = await engine.sync()
            return snapshot, second

        snapshot, second = asyncio.run(_run())

        assert memory_store.data[SCHEDULES_STORAGE_KEY] == snapshot
        assert (second.pushed, second.failed, second.pulled) == (0, 0, 0)
        assert len(engine.catalog) == 3

    def test_adopts_remote_copy_of_unconfirmed_create(self, memory_store, fake_client):
        engine = ReconciliationEngine(memory_store, fake_client)

        async def _run():
            fake_client.fail_ops.add("create")
            created = await engine.create(_fields("Lost response"))
            fake_client.fail_ops.clear()
            # the create reached the remote calendar but its response was lost
            fake_client.add_remote_event(
                "g-echo", title="Lost response", date="2030-05-01", time="09:00",
                app_id=created.record.id,
            )
            return created.record, await engine.sync()

        record, report = asyncio.run(_run())

        assert record.remote_id == "g-echo"
        assert record.sync_status is SyncStatus.SYNCED
        assert report.pulled == 0
        assert fake_client.count("create") == 1
        assert len(engine.catalog) == 1

    def test_concurrent_sync_is_rejected(self, memory_store, fake_client):
        engine = ReconciliationEngine(memory_store, fake_client)

        async def _run():
            fake_client.list_gate = asyncio.Event()
            first = asyncio.create_task(engine.sync())
            await asyncio.sleep(0)
            assert engine.sync_in_progress
            second = await engine.sync()
            fake_client.list_gate.set()
            return second, await first

        second, first = asyncio.run(_run())

        assert second is None
        assert first is not None
        assert fake_client.count("list") == 1
        assert not engine.sync_in_progress

    def test_edit_during_push_is_not_marked_synced(self, memory_store, fake_client):
        engine = ReconciliationEngine(memory_store, fake_client)

        async def _run():
            fake_client.fail_ops.add("create")
            created = await engine.create(_fields("Draft"))
            fake_client.fail_ops.clear()
            fake_client.push_gate = asyncio.Event()

            sync_task = asyncio.create_task(engine.sync())
            while fake_client.count("create") < 2:
                await asyncio.sleep(0)
            await engine.update(created.record.id, {"title": "Final"})
            fake_client.push_gate.set()
            await sync_task
            return created.record

        record = asyncio.run(_run())

        assert record.title == "Final"
        assert record.sync_status is SyncStatus.PENDING
        assert record.remote_id == "remote-1"
        assert _stored(memory_store)[0]["syncStatus"] == "pending"

        fake_client.push_gate = None
        report = asyncio.run(engine.sync())

        assert report.pushed == 1
        assert record.sync_status is SyncStatus.SYNCED
        assert fake_client.events["remote-1"].title == "Final"

    def test_list_failure_fails_sync_and_releases_guard(self, memory_store, fake_client):
        engine = ReconciliationEngine(memory_store, fake_client)

        async def _run():
            await engine.create(_fields("Kept"))
            fake_client.fail_ops.add("list")
            await engine.sync()

        with pytest.raises(RemoteError):
            asyncio.run(_run())

        assert not engine.sync_in_progress
        assert len(engine.catalog) == 1

    def test_sync_renders_once(self, memory_store, fake_client):
        renders = []
        fake_client.add_remote_event("g-1")
        fake_client.add_remote_event("g-2", time="11:00")
        engine = ReconciliationEngine(
            memory_store, fake_client, render_callback=lambda: renders.append(1)
        )

        asyncio.run(engine.sync())

        assert len(renders) == 1


class TestLoadAndMigration:
    """Test loading and legacy migration through the engine."""

    def test_legacy_records_migrate_offline(self):
        legacy = [
            {"id": "a1", "title": "Old one", "date": "2024-01-01", "time": "08:00",
             "priority": "low", "createdAt": "2023-12-31T10:00:00Z"},
            {"id": "a2", "title": "Old two", "date": "2024-01-02", "time": "09:00",
             "syncStatus": "synced"},
        ]
        store = InMemoryLocalStore({LEGACY_SCHEDULES_STORAGE_KEY: json.dumps(legacy)})
        engine = ReconciliationEngine(store)

        records = engine.load()

        assert [record.id for record in records] == ["a1", "a2"]
        assert all(record.sync_status is SyncStatus.OFFLINE for record in records)
        assert LEGACY_SCHEDULES_STORAGE_KEY not in store.data
        assert [item["syncStatus"] for item in _stored(store)] == ["offline", "offline"]

    def test_offline_records_are_pushed_once_connected(self, fake_client):
        legacy = [{"id": "a1", "title": "Old", "date": "2030-01-01", "time": "08:00"}]
        store = InMemoryLocalStore({LEGACY_SCHEDULES_STORAGE_KEY: json.dumps(legacy)})
        engine = ReconciliationEngine(store, fake_client)
        engine.load()

        report = asyncio.run(engine.sync())

        assert report.pushed == 1
        assert engine.catalog.records[0].sync_status is SyncStatus.SYNCED

    def test_load_replaces_catalog(self, memory_store):
        engine = ReconciliationEngine(memory_store)
        asyncio.run(engine.create(STANDUP))

        fresh = ReconciliationEngine(memory_store)
        records = fresh.load()

        assert [record.title for record in records] == ["Standup"]


class TestOrderingAndAuth:
    """Test display ordering and auth notifications."""

    def test_same_timestamp_keeps_insertion_order(self, memory_store):
        engine = ReconciliationEngine(memory_store)

        async def _run():
            first = await engine.create(_fields("A", date="2030-01-01", time="09:00"))
            second = await engine.create(_fields("B", date="2030-01-01", time="09:00"))
            earlier = await engine.create(_fields("C", date="2029-12-31", time="23:00"))
            return first.record, second.record, earlier.record

        first, second, earlier = asyncio.run(_run())

        assert engine.catalog.view("all") == [earlier, first, second]

    def test_unpadded_input_sorts_chronologically(self, memory_store):
        engine = ReconciliationEngine(memory_store)

        async def _run():
            await engine.create(_fields("Ten", date="2030-03-09", time="10:00"))
            await engine.create(_fields("Nine", date="2030-03-09", time="9:00"))
            await engine.create(_fields("Ninth", date="2030-03-09", time="08:00"))
            fifth = await engine.create(_fields("Fifth", date="2030-3-5", time="12:00"))
            return fifth.record

        fifth = asyncio.run(_run())

        assert (fifth.date, fifth.time) == ("2030-03-05", "12:00")
        assert [record.title for record in engine.catalog.view()] == [
            "Fifth", "Ninth", "Nine", "Ten",
        ]

    def test_update_with_unpadded_time_reorders(self, memory_store):
        engine = ReconciliationEngine(memory_store)

        async def _run():
            await engine.create(_fields("Early", time="08:30"))
            late = await engine.create(_fields("Late", time="10:00"))
            await engine.update(late.record.id, {"time": "7:45"})

        asyncio.run(_run())

        assert [record.title for record in engine.catalog.view()] == ["Late", "Early"]
        assert _stored(memory_store)[1]["time"] == "07:45"

    def test_auth_transition_triggers_render(self, memory_store, client_factory):
        renders = []
        client = client_factory(connected=False)
        engine = ReconciliationEngine(
            memory_store, client, render_callback=lambda: renders.append(1)
        )

        async def _run():
            await client.sign_in()
            await client.sign_in()
            await client.sign_out()

        asyncio.run(_run())

        assert len(renders) == 2

        engine.close()
        asyncio.run(client.sign_in())
        assert len(renders) == 2
