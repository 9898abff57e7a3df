"""
Offline Sync Engine.
Drains the offline queue against the backend whenever the station is online
and a user is signed in. One pass at a time, items strictly in queue order,
each item isolated from the failures of the others.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Set

from ..core.errors import BackendError
from ..models.mutation import MutationType, QueuedMutation
from ..models.reference import ActivityAction
from .connectivity import ConnectivityMonitor
from .debounce import Debouncer, log_task_failure
from .notifications import NotificationCenter
from .offline_queue import OfflineQueueStore
from .session import SessionState

logger = logging.getLogger(__name__)

REASON_PATIENT_NOT_FOUND = "patient_not_found"
REASON_MISSING_PATIENT = "missing_patient"
REASON_MAX_ATTEMPTS = "max_attempts_exceeded"
REASON_REJECTED = "rejected"


class SyncState(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"


class ItemOutcome(str, Enum):
    SYNCED = "synced"
    DROPPED = "dropped"
    FAILED = "failed"


@dataclass
class SyncReport:
    total: int = 0
    synced: int = 0
    dropped: int = 0
    failed: int = 0
    remaining: int = 0


class SyncEngine:
    """
    States: IDLE -> SYNCING -> IDLE. A pass starts only when the queue is not
    empty, no pass is running, the station is online and an actor is signed in.

    Triggers: connectivity regained (immediate), queue or session changes
    (debounced), and ``sync_queue()`` called directly (manual "Sync now").
    """

    def __init__(
        self,
        queue: OfflineQueueStore,
        backend,
        connectivity: ConnectivityMonitor,
        session: SessionState,
        notifications: NotificationCenter,
        debounce_seconds: float = 2.0,
        max_attempts: Optional[int] = None,
    ):
        self.queue = queue
        self.backend = backend
        self.connectivity = connectivity
        self.session = session
        self.notifications = notifications
        self.max_attempts = max_attempts
        self.state = SyncState.IDLE
        self.last_report: Optional[SyncReport] = None
        self.pass_count = 0
        self._debouncer = Debouncer(debounce_seconds, self.sync_queue)
        self._tasks: Set[asyncio.Task] = set()
        self._closed = False
        self._handlers = {MutationType.LOCATION_UPDATE: self._apply_location_update}
        self._unsubscribers = [
            queue.subscribe(self._on_queue_changed),
            connectivity.subscribe(self._on_connectivity_changed),
            session.subscribe(lambda _profile: self.schedule()),
        ]

    @property
    def is_syncing(self) -> bool:
        return self.state == SyncState.SYNCING

    def can_sync(self) -> bool:
        return (
            len(self.queue) > 0
            and not self.is_syncing
            and self.connectivity.is_online
            and self.session.actor_id is not None
        )

    async def sync_queue(self) -> Optional[SyncReport]:
        """Run one drain pass. Returns None when the guard does not allow a pass."""
        if not self.can_sync():
            return None
        # No await between the guard and this line: the flag is the mutual exclusion.
        self.state = SyncState.SYNCING
        self.pass_count += 1
        actor_id = self.session.actor_id
        snapshot = self.queue.list()
        report = SyncReport(total=len(snapshot))
        logger.info("Sync pass %d started with %d pending items", self.pass_count, len(snapshot))
        try:
            for item in snapshot:
                outcome = await self._process_item(item, actor_id)
                if outcome == ItemOutcome.SYNCED:
                    report.synced += 1
                elif outcome == ItemOutcome.DROPPED:
                    report.dropped += 1
                else:
                    report.failed += 1
        finally:
            self.state = SyncState.IDLE

        report.remaining = len(self.queue)
        self.last_report = report
        logger.info(
            "Sync pass %d finished: %d synced, %d dropped, %d failed, %d remaining",
            self.pass_count, report.synced, report.dropped, report.failed, report.remaining,
        )
        if report.synced > 0:
            self.notifications.success(f"Berhasil menyinkronkan {report.synced} data")

        seen = {item.id for item in snapshot}
        if any(item.id not in seen for item in self.queue.list()):
            # Enqueued while the pass was running; their trigger hit the guard.
            self.schedule()
        return report

    def close(self) -> None:
        """Stop reacting to triggers. A pass already running is left to finish; see ``wait_idle``."""
        self._closed = True
        self._debouncer.cancel()
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

    async def wait_idle(self) -> None:
        """Wait for any scheduled or running pass to finish, including re-armed ones."""
        while True:
            await self._debouncer.wait()
            if not self._tasks:
                return
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ------------------------------------------------------------------
    # Per-item processing
    # ------------------------------------------------------------------

    async def _process_item(self, item: QueuedMutation, actor_id: str) -> ItemOutcome:
        handler = self._handlers.get(item.type)
        if handler is None:
            logger.warning("No handler for mutation type %s, leaving %s queued", item.type, item.id)
            return ItemOutcome.FAILED
        try:
            return await handler(item, actor_id)
        except Exception as exc:
            logger.warning("Failed to sync item %s, keeping it queued: %s", item.id, exc)
            attempts = self.queue.record_failure(item.id, str(exc))
            if self.max_attempts is None:
                return ItemOutcome.FAILED
            if isinstance(exc, BackendError) and not exc.transient:
                self.queue.dead_letter(item.id, REASON_REJECTED)
                return ItemOutcome.DROPPED
            if attempts >= self.max_attempts:
                self.queue.dead_letter(item.id, REASON_MAX_ATTEMPTS)
                return ItemOutcome.DROPPED
            return ItemOutcome.FAILED

    async def _apply_location_update(self, item: QueuedMutation, actor_id: str) -> ItemOutcome:
        payload = item.payload
        patient_id = payload.patient_id

        if not patient_id and payload.no_rm:
            patient = await self.backend.lookup_patient_by_record_number(payload.no_rm)
            if patient is None:
                logger.error("Patient %s not found, dropping item %s", payload.no_rm, item.id)
                self.queue.dead_letter(item.id, REASON_PATIENT_NOT_FOUND)
                return ItemOutcome.DROPPED
            patient_id = patient.id

        if not patient_id:
            logger.error("Item %s has neither patient id nor record number, dropping it", item.id)
            self.queue.dead_letter(item.id, REASON_MISSING_PATIENT)
            return ItemOutcome.DROPPED

        await self.backend.insert_location_record(
            patient_id=patient_id,
            location_id=payload.status_lokasi,
            staff_id=payload.staff_id,
            note=payload.keterangan,
            actor_id=payload.petugas_id or actor_id,
            event_time=item.timestamp,
        )

        try:
            await self.backend.append_audit_log(
                ActivityAction.UPDATE_STATUS_OFFLINE_SYNC,
                payload.no_rm,
                {
                    "status_lokasi": payload.status_lokasi,
                    "keterangan": payload.keterangan,
                    "staff_id": payload.staff_id,
                    "synced_at": datetime.now(timezone.utc).isoformat(),
                    "original_time": item.timestamp.isoformat(),
                },
            )
        except Exception as exc:
            logger.warning("Activity log for synced item %s failed: %s", item.id, exc)

        self.queue.dequeue(item.id)
        return ItemOutcome.SYNCED

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    def _on_queue_changed(self) -> None:
        self.schedule()

    def _on_connectivity_changed(self, online: bool) -> None:
        if not online:
            self.notifications.info("Mode Offline - Data akan disimpan lokal")
            return
        self.notifications.info("Kembali online - Mencoba sinkronisasi...")
        self._debouncer.cancel()
        self._spawn()

    def schedule(self) -> None:
        """Arm the debounced pass when the guard would currently let one start."""
        if self._closed or not self.can_sync():
            return
        try:
            self._debouncer.trigger()
        except RuntimeError:
            logger.debug("No running event loop; sync waits for the next trigger")

    def _spawn(self) -> None:
        if self._closed:
            return
        try:
            task = asyncio.get_running_loop().create_task(self.sync_queue())
        except RuntimeError:
            logger.debug("No running event loop; sync waits for the next trigger")
            return
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        task.add_done_callback(log_task_failure)
