"""
Tests for the offline sync engine: ordering, failure isolation, the single
pass guard, dead-lettering and the connectivity/session triggers.
"""
import asyncio

import pytest

from conftest import PETUGAS, success_messages
from rmtracer.models.mutation import MutationType
from rmtracer.services.sync_engine import (
    REASON_MAX_ATTEMPTS,
    REASON_MISSING_PATIENT,
    REASON_PATIENT_NOT_FOUND,
    REASON_REJECTED,
    SyncEngine,
    SyncState,
)


def _enqueue(queue, no_rm, location="poli_anak", patient_id=None, petugas_id="user-petugas", **extra):
    payload = {
        "patient_id": patient_id,
        "no_rm": no_rm,
        "status_lokasi": location,
        "petugas_id": petugas_id,
    }
    payload.update(extra)
    return queue.enqueue(MutationType.LOCATION_UPDATE, payload)


@pytest.fixture()
def fast_engine(queue, backend, connectivity, session, notifications):
    sync_engine = SyncEngine(queue, backend, connectivity, session, notifications, debounce_seconds=0.05)
    yield sync_engine
    sync_engine.close()


class TestSyncPass:

    @pytest.mark.asyncio
    async def test_reconnect_drains_queue_in_order(self, engine, queue, backend, connectivity, notifications):
        for no_rm in ("RM-1", "RM-2", "RM-3"):
            backend.add_patient(f"pid-{no_rm}", no_rm)
        connectivity.set_online(False)
        items = [_enqueue(queue, no_rm) for no_rm in ("RM-1", "RM-2", "RM-3")]

        connectivity.set_online(True)
        await engine.wait_idle()

        assert [c["patient_id"] for c in backend.insert_calls] == ["pid-RM-1", "pid-RM-2", "pid-RM-3"]
        assert [c["event_time"] for c in backend.insert_calls] == [i.timestamp for i in items]
        assert len(queue) == 0
        assert engine.state == SyncState.IDLE
        assert "Berhasil menyinkronkan 3 data" in success_messages(notifications)

    @pytest.mark.asyncio
    async def test_failed_item_stays_and_does_not_block_others(self, engine, queue, backend, notifications):
        backend.add_patient("pid-1", "RM-1")
        backend.add_patient("pid-2", "RM-2")
        backend.add_patient("pid-3", "RM-3")
        backend.failing_patients.add("pid-2")
        first = _enqueue(queue, "RM-1")
        second = _enqueue(queue, "RM-2")
        third = _enqueue(queue, "RM-3")

        report = await engine.sync_queue()

        assert (report.total, report.synced, report.failed, report.remaining) == (3, 2, 1, 1)
        remaining = queue.list()
        assert [m.id for m in remaining] == [second.id]
        assert remaining[0].retry_count == 1
        assert "500" in remaining[0].last_error
        assert remaining[0].timestamp == second.timestamp
        assert [r.patient_id for r in backend.records] == ["pid-1", "pid-3"]
        assert first.id not in {m.id for m in remaining}
        assert third.id not in {m.id for m in remaining}
        assert success_messages(notifications) == ["Berhasil menyinkronkan 2 data"]

    @pytest.mark.asyncio
    async def test_failed_item_is_retried_on_next_pass(self, engine, queue, backend):
        backend.add_patient("pid-1", "RM-1")
        backend.failing_patients.add("pid-1")
        _enqueue(queue, "RM-1")

        await engine.sync_queue()
        assert len(queue) == 1

        backend.failing_patients.clear()
        report = await engine.sync_queue()
        assert report.synced == 1
        assert len(queue) == 0
        assert len(backend.insert_calls) == 2

    @pytest.mark.asyncio
    async def test_unknown_patient_is_dead_lettered(self, engine, queue, backend, notifications):
        item = _enqueue(queue, "RM-404")

        report = await engine.sync_queue()

        assert report.dropped == 1
        assert report.synced == 0
        assert len(queue) == 0
        assert backend.insert_calls == []
        letters = queue.dead_letters()
        assert letters[0].mutation.id == item.id
        assert letters[0].reason == REASON_PATIENT_NOT_FOUND
        assert success_messages(notifications) == []

    @pytest.mark.asyncio
    async def test_item_without_patient_reference_is_dead_lettered(self, engine, queue, backend):
        _enqueue(queue, "")

        report = await engine.sync_queue()

        assert report.dropped == 1
        assert backend.lookup_calls == []
        assert queue.dead_letters()[0].reason == REASON_MISSING_PATIENT

    @pytest.mark.asyncio
    async def test_lookup_failure_keeps_item(self, engine, queue, backend):
        backend.fail_lookup = True
        _enqueue(queue, "RM-1")

        report = await engine.sync_queue()

        assert report.failed == 1
        assert queue.list()[0].retry_count == 1
        assert queue.dead_letters() == []

    @pytest.mark.asyncio
    async def test_known_patient_id_skips_lookup(self, engine, queue, backend):
        _enqueue(queue, "RM-7", patient_id="pid-7", staff_id="staff-1", keterangan="dipinjam")

        await engine.sync_queue()

        assert backend.lookup_calls == []
        call = backend.insert_calls[0]
        assert call["patient_id"] == "pid-7"
        assert call["staff_id"] == "staff-1"
        assert call["note"] == "dipinjam"

    @pytest.mark.asyncio
    async def test_actor_falls_back_to_signed_in_user(self, engine, queue, backend):
        _enqueue(queue, "RM-1", patient_id="pid-1", petugas_id=None)
        _enqueue(queue, "RM-2", patient_id="pid-2", petugas_id="user-other")

        await engine.sync_queue()

        assert [c["actor_id"] for c in backend.insert_calls] == [PETUGAS.id, "user-other"]

    @pytest.mark.asyncio
    async def test_audit_entry_written_after_each_sync(self, engine, queue, backend):
        item = _enqueue(queue, "RM-1", patient_id="pid-1")

        await engine.sync_queue()

        action, no_rm, details = backend.audit_calls[0]
        assert action == "UPDATE_STATUS_OFFLINE_SYNC"
        assert no_rm == "RM-1"
        assert details["status_lokasi"] == "poli_anak"
        assert details["original_time"] == item.timestamp.isoformat()
        assert "synced_at" in details

    @pytest.mark.asyncio
    async def test_audit_failure_does_not_fail_item(self, engine, queue, backend):
        backend.fail_audit = True
        _enqueue(queue, "RM-1", patient_id="pid-1")

        report = await engine.sync_queue()

        assert report.synced == 1
        assert len(queue) == 0

    @pytest.mark.asyncio
    async def test_retry_cap_moves_item_to_dead_letters(self, queue, backend, connectivity, session, notifications):
        capped = SyncEngine(queue, backend, connectivity, session, notifications, debounce_seconds=60, max_attempts=2)
        backend.failing_patients.add("pid-1")
        _enqueue(queue, "RM-1", patient_id="pid-1")
        try:
            await capped.sync_queue()
            assert len(queue) == 1
            report = await capped.sync_queue()
        finally:
            capped.close()

        assert report.dropped == 1
        assert len(queue) == 0
        letter = queue.dead_letters()[0]
        assert letter.reason == REASON_MAX_ATTEMPTS
        assert letter.mutation.retry_count == 2

    @pytest.mark.asyncio
    async def test_rejected_item_is_dead_lettered_when_capped(self, queue, backend, connectivity, session, notifications):
        capped = SyncEngine(queue, backend, connectivity, session, notifications, debounce_seconds=60, max_attempts=5)
        backend.rejecting_patients.add("pid-1")
        _enqueue(queue, "RM-1", patient_id="pid-1")
        _enqueue(queue, "RM-2", patient_id="pid-2")
        try:
            report = await capped.sync_queue()
        finally:
            capped.close()

        assert report.dropped == 1
        assert report.synced == 1
        letter = queue.dead_letters()[0]
        assert letter.reason == REASON_REJECTED
        assert letter.mutation.last_error.endswith("409")

    @pytest.mark.asyncio
    async def test_rejected_item_stays_queued_without_cap(self, engine, queue, backend):
        backend.rejecting_patients.add("pid-1")
        _enqueue(queue, "RM-1", patient_id="pid-1")

        report = await engine.sync_queue()

        assert report.failed == 1
        assert len(queue) == 1
        assert queue.dead_letters() == []


class TestGuard:

    @pytest.mark.asyncio
    async def test_empty_queue_does_not_start_a_pass(self, engine):
        assert await engine.sync_queue() is None
        assert engine.pass_count == 0

    @pytest.mark.asyncio
    async def test_offline_does_not_start_a_pass(self, engine, queue, connectivity, backend):
        connectivity.set_online(False)
        _enqueue(queue, "RM-1", patient_id="pid-1")

        assert await engine.sync_queue() is None
        assert backend.insert_calls == []
        assert len(queue) == 1

    @pytest.mark.asyncio
    async def test_signed_out_does_not_start_a_pass(self, engine, queue, session, backend):
        session.sign_out()
        _enqueue(queue, "RM-1", patient_id="pid-1")

        assert await engine.sync_queue() is None
        assert backend.insert_calls == []

    @pytest.mark.asyncio
    async def test_concurrent_triggers_run_one_pass(self, engine, queue, backend):
        backend.insert_delay = 0.01
        _enqueue(queue, "RM-1", patient_id="pid-1")
        _enqueue(queue, "RM-2", patient_id="pid-2")

        first, second = await asyncio.gather(engine.sync_queue(), engine.sync_queue())

        assert first.synced == 2
        assert second is None
        assert engine.pass_count == 1
        assert [c["patient_id"] for c in backend.insert_calls] == ["pid-1", "pid-2"]
        assert len(backend.records) == 2


class TestTriggers:

    @pytest.mark.asyncio
    async def test_burst_of_enqueues_is_debounced_into_one_pass(self, fast_engine, queue, backend):
        for i in range(5):
            _enqueue(queue, f"RM-{i}", patient_id=f"pid-{i}")
            await asyncio.sleep(0.01)

        await fast_engine.wait_idle()

        assert fast_engine.pass_count == 1
        assert len(backend.records) == 5
        assert len(queue) == 0

    @pytest.mark.asyncio
    async def test_items_added_during_a_pass_get_their_own_pass(self, fast_engine, queue, backend):
        backend.insert_delay = 0.1
        _enqueue(queue, "RM-1", patient_id="pid-1")
        _enqueue(queue, "RM-2", patient_id="pid-2")
        await asyncio.sleep(0.1)
        assert fast_engine.is_syncing
        late = _enqueue(queue, "RM-3", patient_id="pid-3")

        await fast_engine.wait_idle()

        assert fast_engine.pass_count == 2
        assert len(queue) == 0
        assert backend.insert_calls[-1]["event_time"] == late.timestamp

    @pytest.mark.asyncio
    async def test_sign_in_triggers_sync(self, fast_engine, queue, session, backend):
        session.sign_out()
        _enqueue(queue, "RM-1", patient_id="pid-1", petugas_id=None)
        await asyncio.sleep(0.1)
        assert fast_engine.pass_count == 0

        session.sign_in(PETUGAS, "token-petugas")
        await fast_engine.wait_idle()

        assert fast_engine.pass_count == 1
        assert backend.insert_calls[0]["actor_id"] == PETUGAS.id

    def test_going_offline_posts_notice(self, engine, connectivity, notifications):
        connectivity.set_online(False)
        messages = [n.message for n in notifications.active()]
        assert messages == ["Mode Offline - Data akan disimpan lokal"]

    @pytest.mark.asyncio
    async def test_coming_back_online_posts_notice(self, engine, connectivity, notifications):
        connectivity.set_online(False)
        connectivity.set_online(True)
        await engine.wait_idle()
        messages = [n.message for n in notifications.active()]
        assert messages[-1] == "Kembali online - Mencoba sinkronisasi..."

    def test_close_stops_listening(self, engine, connectivity, notifications):
        engine.close()
        connectivity.set_online(False)
        assert notifications.active() == []

    @pytest.mark.asyncio
    async def test_schedule_after_close_arms_nothing(self, fast_engine, queue, backend):
        backend.add_patient("pid-1", "RM-1")
        fast_engine.close()
        _enqueue(queue, "RM-1")
        fast_engine.schedule()

        await asyncio.sleep(0.15)

        assert fast_engine.pass_count == 0
        assert len(queue) == 1


class TestStationShutdown:

    @pytest.mark.asyncio
    async def test_stop_lets_running_pass_finish_before_closing_backend(self, station, backend):
        backend.insert_delay = 0.2
        backend.add_patient("pid-1", "RM-1")
        backend.add_patient("pid-2", "RM-2")
        station.session.sign_in(PETUGAS, "token")
        station.connectivity.set_online(False)
        _enqueue(station.queue, "RM-1")
        _enqueue(station.queue, "RM-2")

        station.connectivity.set_online(True)
        await asyncio.sleep(0.05)
        assert station.engine.is_syncing
        await station.stop()

        assert not station.engine.is_syncing
        assert len(station.queue) == 0
        assert [r.patient_id for r in backend.records] == ["pid-1", "pid-2"]
        assert backend.closed
