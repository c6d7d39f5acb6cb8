"""Tests for autosave.py — debounce, lookup-then-write, state machine, teardown."""

from __future__ import annotations

import threading
import time
from datetime import datetime

import pytest

from autosave import AutosaveRegistry, DebouncedAutosave, EditTarget, SyncState

DELAY_MS = 40
WAIT = 2.0


class FakePersistence:
    """In-memory attendance table that records every call."""

    ENTITY_COLUMN = "student_id"
    PERIOD_COLUMN = "week_number"

    def __init__(self, fail_find=False, fail_write=False, write_delay=0.0):
        self.rows: dict[str, dict] = {}
        self.calls: list[tuple] = []
        self.fail_find = fail_find
        self.fail_write = fail_write
        self.write_delay = write_delay
        self._lock = threading.Lock()
        self._next = 0

    def find(self, entity_id, period_id):
        with self._lock:
            self.calls.append(("find", entity_id, period_id))
        if self.fail_find:
            raise ConnectionError("lookup down")
        for row in self.rows.values():
            if row["student_id"] == entity_id and row["week_number"] == period_id:
                return dict(row)
        return None

    def insert(self, record):
        if self.write_delay:
            time.sleep(self.write_delay)
        with self._lock:
            self.calls.append(("insert", dict(record)))
            if self.fail_write:
                raise RuntimeError("insert rejected")
            self._next += 1
            row = {"id": f"row-{self._next}", **record}
            self.rows[row["id"]] = row
            return dict(row)

    def update(self, record_id, fields):
        if self.write_delay:
            time.sleep(self.write_delay)
        with self._lock:
            self.calls.append(("update", record_id, dict(fields)))
            if self.fail_write:
                raise RuntimeError("update rejected")
            self.rows[record_id].update(fields)
            return dict(self.rows[record_id])

    def writes(self):
        return [c for c in self.calls if c[0] in ("insert", "update")]


class Recorder:
    """Listener capturing (target key, state, last_sync) transitions."""

    def __init__(self):
        self.events = []

    def __call__(self, target, state, last_sync):
        self.events.append((target.key, state, last_sync))

    def states(self, key):
        return [s for k, s, _ in self.events if k == key]


class ManualTimer:
    """Timer stand-in fired by the test instead of a clock."""

    def __init__(self, fn, args):
        self.fn = fn
        self.args = args
        self.cancelled = False
        self.daemon = False

    def start(self):
        pass

    def cancel(self):
        self.cancelled = True

    def fire(self):
        if not self.cancelled:
            self.fn(*self.args)


@pytest.fixture
def store():
    return FakePersistence()


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def saver(store, recorder):
    s = DebouncedAutosave({"status": store}, delay_ms=DELAY_MS, listener=recorder)
    yield s
    s.teardown()


S1_W3 = EditTarget("S1", 3, "status")


class TestDebounce:
    def test_burst_collapses_to_one_write_of_last_value(self, saver, store):
        for value in ("Present", "Late", "Absent", "Late"):
            saver.request_save(S1_W3, value)
        assert saver.wait_idle(WAIT)
        assert len(store.writes()) == 1
        assert store.writes()[0][1]["status"] == "Late"

    def test_present_then_absent_persists_absent(self, saver, store):
        saver.request_save(S1_W3, "Present")
        saver.request_save(S1_W3, "Absent")
        assert saver.wait_idle(WAIT)
        assert [c[0] for c in store.calls] == ["find", "insert"]
        assert list(store.rows.values())[0]["status"] == "Absent"

    def test_nothing_written_before_delay(self, store):
        s = DebouncedAutosave({"status": store}, delay_ms=500)
        try:
            s.request_save(S1_W3, "Late")
            time.sleep(0.05)
            assert store.calls == []
            assert s.state(S1_W3) is SyncState.PENDING
        finally:
            s.teardown()

    def test_timer_restarts_on_each_edit(self, store):
        s = DebouncedAutosave({"status": store}, delay_ms=150)
        try:
            for _ in range(4):
                s.request_save(S1_W3, "Late")
                time.sleep(0.06)
            # 240ms elapsed, but never 150ms without an edit
            assert store.calls == []
            assert s.wait_idle(WAIT)
            assert len(store.writes()) == 1
        finally:
            s.teardown()


class TestLookupThenWrite:
    def test_missing_record_is_inserted_once(self, saver, store):
        saver.request_save(S1_W3, "Present")
        assert saver.wait_idle(WAIT)
        assert store.calls == [
            ("find", "S1", 3),
            ("insert", {"student_id": "S1", "week_number": 3, "status": "Present"}),
        ]
        assert len(store.rows) == 1

    def test_existing_record_is_updated_in_place(self, saver, store):
        store.rows["row-existing"] = {"id": "row-existing", "student_id": "S1",
                                      "week_number": 3, "status": "Present"}
        saver.request_save(S1_W3, "Late")
        assert saver.wait_idle(WAIT)
        assert store.calls == [("find", "S1", 3), ("update", "row-existing", {"status": "Late"})]
        assert list(store.rows) == ["row-existing"]
        assert store.rows["row-existing"]["status"] == "Late"

    def test_sequential_saves_never_duplicate(self, saver, store):
        for value in ("Present", "Late", "Absent"):
            saver.request_save(S1_W3, value)
            assert saver.wait_idle(WAIT)
        assert len(store.rows) == 1
        assert [c[0] for c in store.writes()] == ["insert", "update", "update"]

    def test_fields_route_to_their_store(self, store):
        week_data = FakePersistence()
        s = DebouncedAutosave({"status": store, "grade": week_data}, delay_ms=DELAY_MS)
        try:
            s.request_save(EditTarget("S1", 3, "status"), "Late")
            s.request_save(EditTarget("S1", 3, "grade"), "Pass")
            assert s.wait_idle(WAIT)
            assert list(store.rows.values())[0]["status"] == "Late"
            assert list(week_data.rows.values())[0]["grade"] == "Pass"
        finally:
            s.teardown()


class TestIndependentTargets:
    def test_slow_write_does_not_block_other_target(self):
        slow = FakePersistence(write_delay=0.5)
        fast = FakePersistence()
        s = DebouncedAutosave({"status": slow, "grade": fast}, delay_ms=DELAY_MS)
        try:
            s.request_save(EditTarget("S1", 3, "status"), "Late")
            s.request_save(EditTarget("S1", 3, "grade"), "Pass")
            deadline = time.monotonic() + 0.4
            while not fast.writes() and time.monotonic() < deadline:
                time.sleep(0.01)
            assert fast.writes(), "grade write waited on the slow status write"
            assert s.state(EditTarget("S1", 3, "status")) is SyncState.SYNCING
            assert s.wait_idle(WAIT)
        finally:
            s.teardown()

    def test_bursts_on_different_targets_each_write_once(self, saver, store):
        a, b = EditTarget("S1", 3, "status"), EditTarget("S2", 3, "status")
        for value in ("Present", "Late"):
            saver.request_save(a, value)
            saver.request_save(b, value)
        assert saver.wait_idle(WAIT)
        assert len(store.writes()) == 2
        assert sorted(r["student_id"] for r in store.rows.values()) == ["S1", "S2"]

    def test_two_instances_do_not_cancel_each_other(self, store):
        first = DebouncedAutosave({"status": store}, delay_ms=DELAY_MS)
        second = DebouncedAutosave({"status": store}, delay_ms=DELAY_MS)
        try:
            first.request_save(S1_W3, "Late")
            second.request_save(EditTarget("S2", 3, "status"), "Absent")
            assert first.wait_idle(WAIT) and second.wait_idle(WAIT)
            assert len(store.writes()) == 2
        finally:
            first.teardown()
            second.teardown()


class TestInFlight:
    def test_edit_during_write_waits_then_writes_latest(self):
        store = FakePersistence(write_delay=0.3)
        s = DebouncedAutosave({"status": store}, delay_ms=DELAY_MS)
        try:
            s.request_save(S1_W3, "Late")
            time.sleep(0.15)  # first write now in flight
            assert s.state(S1_W3) is SyncState.SYNCING
            s.request_save(S1_W3, "Absent")
            assert s.wait_idle(WAIT)
            writes = store.writes()
            assert [w[0] for w in writes] == ["insert", "update"]
            assert list(store.rows.values())[0]["status"] == "Absent"
            assert len(store.rows) == 1
        finally:
            s.teardown()

    def test_edit_during_write_leaves_target_and_page_pending(self, recorder):
        store = FakePersistence()
        timers = []

        def manual_timer(interval, fn, args=()):
            timers.append(ManualTimer(fn, args))
            return timers[-1]

        s = DebouncedAutosave({"status": store}, listener=recorder, timer_factory=manual_timer)
        insert = store.insert

        def insert_then_edit(record):
            # The admin changes the field again while the first write runs
            s.request_save(S1_W3, "Absent")
            return insert(record)

        store.insert = insert_then_edit
        s.request_save(S1_W3, "Late")
        timers[0].fire()

        assert s.state(S1_W3) is SyncState.PENDING
        assert s.snapshot()["state"] == "pending"
        assert recorder.states(S1_W3.key)[-2:] == [SyncState.SYNCED, SyncState.PENDING]

        timers[1].fire()
        assert s.state(S1_W3) is SyncState.SYNCED
        assert s.snapshot()["state"] == "synced"
        assert list(store.rows.values())[0]["status"] == "Absent"
        s.teardown()


class TestStateMachine:
    def test_transitions_on_success(self, saver, recorder):
        saver.request_save(S1_W3, "Late")
        assert saver.state(S1_W3) is SyncState.PENDING
        assert saver.wait_idle(WAIT)
        assert recorder.states(S1_W3.key) == [SyncState.PENDING, SyncState.SYNCING, SyncState.SYNCED]
        assert saver.state(S1_W3) is SyncState.SYNCED

    def test_synced_carries_last_sync_timestamp(self, store, recorder):
        stamp = datetime(2026, 3, 2, 9, 30)
        s = DebouncedAutosave({"status": store}, delay_ms=DELAY_MS,
                              listener=recorder, clock=lambda: stamp)
        try:
            s.request_save(S1_W3, "Late")
            assert s.wait_idle(WAIT)
            assert recorder.events[-1] == (S1_W3.key, SyncState.SYNCED, stamp)
            snap = s.snapshot()
            assert snap["state"] == "synced"
            assert snap["last_sync"] == stamp.isoformat()
            assert snap["targets"] == {S1_W3.key: "synced"}
        finally:
            s.teardown()

    def test_unknown_target_is_idle(self, saver):
        assert saver.state(EditTarget("nobody", 1, "status")) is SyncState.IDLE
        assert saver.snapshot() == {"state": "idle", "last_sync": None, "targets": {}}


class TestFailures:
    def test_write_failure_reaches_failed_without_timestamp(self, recorder):
        store = FakePersistence(fail_write=True)
        s = DebouncedAutosave({"status": store}, delay_ms=DELAY_MS, listener=recorder)
        try:
            s.request_save(S1_W3, "Late")
            assert s.wait_idle(WAIT)
            assert s.state(S1_W3) is SyncState.FAILED
            assert s.snapshot()["last_sync"] is None
            assert recorder.events[-1] == (S1_W3.key, SyncState.FAILED, None)
            assert len(store.writes()) == 1  # no automatic retry
        finally:
            s.teardown()

    def test_target_usable_after_failure(self):
        store = FakePersistence(fail_write=True)
        s = DebouncedAutosave({"status": store}, delay_ms=DELAY_MS)
        try:
            s.request_save(S1_W3, "Late")
            assert s.wait_idle(WAIT)
            store.fail_write = False
            s.request_save(S1_W3, "Absent")
            assert s.wait_idle(WAIT)
            assert s.state(S1_W3) is SyncState.SYNCED
            assert s.snapshot()["last_sync"] is not None
            assert list(store.rows.values())[0]["status"] == "Absent"
        finally:
            s.teardown()

    def test_lookup_failure_aborts_without_insert(self):
        store = FakePersistence(fail_find=True)
        s = DebouncedAutosave({"status": store}, delay_ms=DELAY_MS)
        try:
            s.request_save(S1_W3, "Late")
            assert s.wait_idle(WAIT)
            assert s.state(S1_W3) is SyncState.FAILED
            assert store.writes() == []
        finally:
            s.teardown()

    def test_listener_error_does_not_break_save(self, store):
        def boom(target, state, last_sync):
            raise ValueError("ui gone")

        s = DebouncedAutosave({"status": store}, delay_ms=DELAY_MS, listener=boom)
        try:
            s.request_save(S1_W3, "Late")
            assert s.wait_idle(WAIT)
            assert s.state(S1_W3) is SyncState.SYNCED
        finally:
            s.teardown()

    def test_field_without_store_fails(self, saver, store):
        target = EditTarget("S1", 3, "typing_style")
        saver.request_save(target, "Homerow")
        assert saver.wait_idle(WAIT)
        assert saver.state(target) is SyncState.FAILED
        assert store.calls == []


class TestFlush:
    def test_flush_writes_pending_now(self, store):
        s = DebouncedAutosave({"status": store}, delay_ms=5000)
        try:
            s.request_save(S1_W3, "Late")
            s.request_save(EditTarget("S2", 3, "status"), "Absent")
            results = s.flush()
            assert set(results.values()) == {True}
            assert len(store.writes()) == 2
            assert s.state(S1_W3) is SyncState.SYNCED
        finally:
            s.teardown()

    def test_flush_reports_failures(self):
        store = FakePersistence(fail_write=True)
        s = DebouncedAutosave({"status": store}, delay_ms=5000)
        try:
            s.request_save(S1_W3, "Late")
            assert s.flush() == {S1_W3: False}
        finally:
            s.teardown()

    def test_flush_with_nothing_pending(self, saver):
        assert saver.flush() == {}


class TestTeardown:
    def test_pending_write_is_cancelled(self, store):
        s = DebouncedAutosave({"status": store}, delay_ms=DELAY_MS)
        s.request_save(S1_W3, "Late")
        s.teardown()
        time.sleep(DELAY_MS / 1000 * 4)
        assert store.calls == []

    def test_requests_after_teardown_are_ignored(self, store):
        s = DebouncedAutosave({"status": store}, delay_ms=DELAY_MS)
        s.teardown()
        s.request_save(S1_W3, "Late")
        time.sleep(DELAY_MS / 1000 * 4)
        assert store.calls == []
        assert s.closed

    def test_in_flight_write_completes_unreported(self, recorder):
        store = FakePersistence(write_delay=0.2)
        s = DebouncedAutosave({"status": store}, delay_ms=DELAY_MS, listener=recorder)
        s.request_save(S1_W3, "Late")
        time.sleep(0.1)
        s.teardown()
        time.sleep(0.3)
        assert len(store.writes()) == 1
        assert SyncState.SYNCED not in recorder.states(S1_W3.key)

    def test_teardown_is_idempotent(self, saver):
        saver.teardown()
        saver.teardown()
        assert saver.closed


class TestRegistry:
    def _registry(self, store):
        return AutosaveRegistry(lambda: DebouncedAutosave({"status": store}, delay_ms=DELAY_MS))

    def test_open_get_close(self, store):
        reg = self._registry(store)
        view_id = reg.open()
        assert reg.get(view_id) is not None
        assert len(reg) == 1
        assert reg.close(view_id) is True
        assert reg.get(view_id) is None
        assert reg.close(view_id) is False

    def test_views_are_separate_instances(self, store):
        reg = self._registry(store)
        a, b = reg.open(), reg.open()
        assert a != b
        assert reg.get(a) is not reg.get(b)
        reg.close_all()
        assert len(reg) == 0

    def test_close_cancels_pending(self, store):
        reg = self._registry(store)
        view_id = reg.open()
        reg.get(view_id).request_save(S1_W3, "Late")
        reg.close(view_id)
        time.sleep(DELAY_MS / 1000 * 4)
        assert store.calls == []

    def test_prune_drops_idle_views(self, store):
        reg = self._registry(store)
        stale, fresh = reg.open(), reg.open()
        reg.get(stale).last_activity -= 3600
        assert reg.prune(600) == 1
        assert reg.get(stale) is None
        assert reg.get(fresh) is not None

    def test_lookup_counts_as_activity(self, store):
        reg = self._registry(store)
        view_id = reg.open()
        saver = reg.get(view_id)
        saver.last_activity -= 3600
        assert reg.get(view_id) is saver
        assert reg.prune(600) == 0
