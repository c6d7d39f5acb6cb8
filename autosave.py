"""Debounced per-field autosave.

Collapses bursts of edits to one (student, week, field) into a single
lookup-then-write against the owning table, and tracks a sync state per
target so the page can show "syncing" / "synced".

Each DebouncedAutosave instance owns its timers; one instance is opened per
page view through AutosaveRegistry so that two open views never cancel each
other's pending writes.

    saver = DebouncedAutosave({"status": AttendanceStoreDB}, delay_ms=800)
    saver.request_save(EditTarget("stu-1", 3, "status"), "Late")
    ...
    saver.teardown()   # pending writes are dropped, not fired
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Protocol

logger = logging.getLogger(__name__)

DEFAULT_DELAY_MS = 800


class SyncState(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    SYNCING = "syncing"
    SYNCED = "synced"
    FAILED = "failed"


@dataclass(frozen=True)
class EditTarget:
    """What is being saved: one field of one student's week."""

    entity_id: str
    period_id: int
    field: str

    @property
    def key(self) -> str:
        return f"{self.entity_id}:{self.period_id}:{self.field}"


class Persistence(Protocol):
    """Per-table contract the autosave writes through."""

    ENTITY_COLUMN: str
    PERIOD_COLUMN: str

    def find(self, entity_id: str, period_id: int) -> Optional[dict]: ...
    def insert(self, record: dict) -> Optional[dict]: ...
    def update(self, record_id: str, fields: dict) -> Optional[dict]: ...


Listener = Callable[[EditTarget, SyncState, Optional[datetime]], None]


@dataclass
class _Slot:
    state: SyncState = SyncState.IDLE
    timer: Optional[threading.Timer] = None
    generation: int = 0
    value: Any = None
    has_value: bool = False
    in_flight: bool = False
    last_sync: Optional[datetime] = None


class DebouncedAutosave:
    """Debounce edits per EditTarget and persist the last value.

    ``persistence`` maps a field name to the store that owns it. ``listener``
    is called (outside the internal lock) on every state transition with
    the target, the new state and the last successful sync time.
    """

    def __init__(
        self,
        persistence: dict[str, Persistence],
        delay_ms: int = DEFAULT_DELAY_MS,
        listener: Listener | None = None,
        timer_factory: Callable[..., threading.Timer] = threading.Timer,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self._persistence = dict(persistence)
        self._delay = delay_ms / 1000.0
        self._listener = listener
        self._timer_factory = timer_factory
        self._clock = clock

        self._slots: dict[EditTarget, _Slot] = {}
        self._cond = threading.Condition()
        self._closed = False

        self._page_state = SyncState.IDLE
        self._last_sync: Optional[datetime] = None
        self.last_activity = time.monotonic()

    # ── public API ─────────────────────────────────────────────

    @property
    def closed(self) -> bool:
        return self._closed

    def request_save(self, target: EditTarget, value: Any) -> None:
        """Queue ``value`` for ``target``, restarting that target's timer."""
        with self._cond:
            if self._closed:
                logger.warning("Autosave request after teardown ignored (%s)", target.key)
                return
            self.last_activity = time.monotonic()
            slot = self._slots.setdefault(target, _Slot())
            if slot.timer is not None:
                slot.timer.cancel()
            slot.generation += 1
            slot.value = value
            slot.has_value = True
            slot.timer = self._timer_factory(self._delay, self._on_timer, args=(target, slot.generation))
            slot.timer.daemon = True
            slot.timer.start()
            self._set_state(target, slot, SyncState.PENDING)
        self._notify(target, SyncState.PENDING)
        logger.debug("Autosave queued %s=%r", target.key, value)

    def touch(self) -> None:
        """Mark the view as in use without queueing an edit."""
        self.last_activity = time.monotonic()

    def state(self, target: EditTarget) -> SyncState:
        with self._cond:
            slot = self._slots.get(target)
            return slot.state if slot else SyncState.IDLE

    def snapshot(self) -> dict:
        """Page-level view: last transition, last sync and per-target states."""
        with self._cond:
            return {
                "state": self._page_state.value,
                "last_sync": self._last_sync.isoformat() if self._last_sync else None,
                "targets": {t.key: s.state.value for t, s in self._slots.items()},
            }

    def flush(self) -> dict[EditTarget, bool]:
        """Write every pending value now, in the calling thread.

        Targets whose write is already in flight are left to that write's
        completion, which picks up the newer value.
        """
        ready: list[tuple[EditTarget, Any]] = []
        with self._cond:
            if self._closed:
                return {}
            for target, slot in self._slots.items():
                if slot.timer is None:
                    continue
                slot.timer.cancel()
                slot.timer = None
                slot.generation += 1
                if not slot.in_flight:
                    ready.append((target, self._begin_write(target, slot)))
        for target, _ in ready:
            self._notify(target, SyncState.SYNCING)
        return {target: self._run_write(target, value) for target, value in ready}

    def teardown(self) -> None:
        """Cancel every pending timer. In-flight writes finish unreported."""
        with self._cond:
            if self._closed:
                return
            self._closed = True
            dropped = 0
            for slot in self._slots.values():
                if slot.timer is not None:
                    slot.timer.cancel()
                    slot.timer = None
                    dropped += 1
                slot.has_value = False
                slot.generation += 1
            self._cond.notify_all()
        if dropped:
            logger.info("Autosave teardown dropped %d pending write(s)", dropped)

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until no timer is pending and no write is in flight."""
        with self._cond:
            return self._cond.wait_for(self._is_idle, timeout=timeout)

    # ── internals ──────────────────────────────────────────────

    def _is_idle(self) -> bool:
        return all(s.timer is None and not s.in_flight for s in self._slots.values())

    def _on_timer(self, target: EditTarget, generation: int) -> None:
        with self._cond:
            slot = self._slots.get(target)
            if self._closed or slot is None or slot.generation != generation:
                return
            slot.timer = None
            if slot.in_flight:
                # Newer value waits for the running write, then goes out once
                self._cond.notify_all()
                return
            value = self._begin_write(target, slot)
        self._notify(target, SyncState.SYNCING)
        self._run_write(target, value)

    def _begin_write(self, target: EditTarget, slot: _Slot) -> Any:
        """Take the pending value and mark the target in flight. Lock held."""
        value = slot.value
        slot.has_value = False
        slot.in_flight = True
        self._set_state(target, slot, SyncState.SYNCING)
        return value

    def _run_write(self, target: EditTarget, value: Any) -> bool:
        first_ok = None
        while True:
            ok = self._persist(target, value)
            if first_ok is None:
                first_ok = ok
            outcome = SyncState.SYNCED if ok else SyncState.FAILED
            with self._cond:
                slot = self._slots[target]
                slot.in_flight = False
                if self._closed:
                    self._cond.notify_all()
                    return first_ok
                if ok:
                    slot.last_sync = self._clock()
                    self._last_sync = slot.last_sync
                self._set_state(target, slot, outcome)
                last_sync = self._last_sync
                follow_up = slot.has_value and slot.timer is None
                still_pending = slot.has_value and not follow_up
                if follow_up:
                    value = self._begin_write(target, slot)
                elif still_pending:
                    # A newer edit is still on its timer
                    self._set_state(target, slot, SyncState.PENDING)
                self._cond.notify_all()
            self._notify(target, outcome, last_sync)
            if still_pending:
                self._notify(target, SyncState.PENDING)
            if not follow_up:
                return first_ok
            self._notify(target, SyncState.SYNCING)

    def _persist(self, target: EditTarget, value: Any) -> bool:
        """Lookup-then-write. Every failure becomes False."""
        store = self._persistence.get(target.field)
        if store is None:
            logger.error("Autosave has no store for field %r", target.field)
            return False

        try:
            existing = store.find(target.entity_id, target.period_id)
        except Exception:
            # Unknown existence: abort rather than risk a duplicate row
            logger.exception("Autosave lookup failed for %s", target.key)
            return False

        try:
            if existing:
                saved = store.update(existing["id"], {target.field: value})
            else:
                saved = store.insert({
                    store.ENTITY_COLUMN: target.entity_id,
                    store.PERIOD_COLUMN: target.period_id,
                    target.field: value,
                })
        except Exception:
            logger.exception("Autosave write failed for %s", target.key)
            return False

        if saved is None:
            logger.warning("Autosave write for %s matched no row", target.key)
            return False
        logger.debug("Autosave wrote %s=%r (%s)", target.key, value,
                     "update" if existing else "insert")
        return True

    def _set_state(self, target: EditTarget, slot: _Slot, state: SyncState) -> None:
        slot.state = state
        self._page_state = state

    def _notify(self, target: EditTarget, state: SyncState,
                last_sync: Optional[datetime] = None) -> None:
        if self._listener is None or self._closed:
            return
        try:
            self._listener(target, state, last_sync)
        except Exception:
            logger.exception("Autosave listener raised for %s", target.key)


# ── Flask wiring ───────────────────────────────────────────────


class AppContextPersistence:
    """Runs a store's find/insert/update inside a fresh app context.

    Timer callbacks fire on worker threads with no Flask context of their
    own; each call gets one (and its own DB connection).
    """

    def __init__(self, app, store):
        self._app = app
        self._store = store
        self.ENTITY_COLUMN = store.ENTITY_COLUMN
        self.PERIOD_COLUMN = store.PERIOD_COLUMN

    def find(self, entity_id, period_id):
        with self._app.app_context():
            return self._store.find(entity_id, period_id)

    def insert(self, record):
        with self._app.app_context():
            return self._store.insert(record)

    def update(self, record_id, fields):
        with self._app.app_context():
            return self._store.update(record_id, fields)


def _log_transition(target: EditTarget, state: SyncState, last_sync: Optional[datetime]) -> None:
    if state is SyncState.FAILED:
        logger.warning("Autosave failed: %s", target.key)
    elif state is SyncState.SYNCED:
        logger.debug("Autosave synced: %s at %s", target.key, last_sync)


class AutosaveRegistry:
    """Owns one DebouncedAutosave per open page view."""

    def __init__(self, factory: Callable[[], DebouncedAutosave]):
        self._factory = factory
        self._views: dict[str, DebouncedAutosave] = {}
        self._lock = threading.Lock()

    def open(self) -> str:
        view_id = uuid.uuid4().hex
        with self._lock:
            self._views[view_id] = self._factory()
        return view_id

    def get(self, view_id: str) -> Optional[DebouncedAutosave]:
        """Look up a view; any access counts as activity for ``prune``."""
        with self._lock:
            saver = self._views.get(view_id)
        if saver is not None:
            saver.touch()
        return saver

    def close(self, view_id: str) -> bool:
        with self._lock:
            saver = self._views.pop(view_id, None)
        if saver is None:
            return False
        saver.teardown()
        return True

    def close_all(self) -> None:
        with self._lock:
            savers = list(self._views.values())
            self._views.clear()
        for saver in savers:
            saver.teardown()

    def prune(self, max_idle_seconds: float) -> int:
        """Tear down views not accessed for ``max_idle_seconds``."""
        cutoff = time.monotonic() - max_idle_seconds
        with self._lock:
            stale = [vid for vid, s in self._views.items() if s.last_activity < cutoff]
        for vid in stale:
            self.close(vid)
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._views)


def init_autosave(app) -> AutosaveRegistry:
    """Attach an AutosaveRegistry to the app. Call once from create_app()."""
    from db_stores import AttendanceStoreDB, WeekDataStoreDB

    attendance = AppContextPersistence(app, AttendanceStoreDB)
    week_data = AppContextPersistence(app, WeekDataStoreDB)
    persistence = {
        "status": attendance,
        "typing_style": week_data,
        "grade": week_data,
    }

    def new_view() -> DebouncedAutosave:
        delay_ms = app.config.get("AUTOSAVE_DELAY_MS", DEFAULT_DELAY_MS)
        return DebouncedAutosave(persistence, delay_ms=delay_ms, listener=_log_transition)

    registry = AutosaveRegistry(new_view)
    app.extensions["autosave"] = registry
    app.logger.info("Autosave ready (delay=%dms)", app.config.get("AUTOSAVE_DELAY_MS", DEFAULT_DELAY_MS))
    return registry


def get_registry(app=None) -> AutosaveRegistry:
    from flask import current_app
    return (app or current_app).extensions["autosave"]
