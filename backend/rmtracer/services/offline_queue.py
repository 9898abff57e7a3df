"""
Offline Queue Store.
Holds location updates captured while the backend is unreachable, in scan order,
until the sync engine confirms them. The whole sequence is rewritten to storage
on every change; it is the only durable record of offline work.

A queued entry is never edited in place except for its bookkeeping fields:
``record_failure`` rewrites ``retryCount`` and ``lastError`` and nothing else.
Payload, id, type and timestamp stay exactly as captured.
"""
import logging
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Union

from pydantic import ValidationError

from ..models.base import generate_uuid
from ..models.mutation import (
    DEAD_LETTER_ADAPTER,
    QUEUE_ADAPTER,
    DeadLetter,
    LocationUpdatePayload,
    MutationType,
    QueuedMutation,
)
from .storage import KeyValueStore

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_KEY = "offline_scan_queue"
DEFAULT_DEAD_LETTER_KEY = "offline_scan_dead_letters"

QueueListener = Callable[[], None]


class OfflineQueueStore:
    """
    Ordered, persisted list of pending mutations.

    Producers (scan flow) only append; the sync engine is the only caller of
    ``dequeue``, ``record_failure`` and ``dead_letter``.
    """

    def __init__(
        self,
        storage: KeyValueStore,
        key: str = DEFAULT_QUEUE_KEY,
        dead_letter_key: str = DEFAULT_DEAD_LETTER_KEY,
    ):
        self._storage = storage
        self._key = key
        self._dead_letter_key = dead_letter_key
        self._listeners: List[QueueListener] = []
        self._queue: List[QueuedMutation] = self._load()

    def __len__(self) -> int:
        return len(self._queue)

    def enqueue(
        self,
        mutation_type: MutationType,
        payload: Union[LocationUpdatePayload, Dict],
    ) -> QueuedMutation:
        """Append a mutation, stamping id, event time and a zero retry count."""
        if isinstance(payload, dict):
            payload = LocationUpdatePayload.model_validate(payload)
        mutation = QueuedMutation(
            id=generate_uuid(),
            type=mutation_type,
            payload=payload,
            timestamp=datetime.now(timezone.utc),
            retry_count=0,
        )
        self._queue.append(mutation)
        self._persist()
        logger.info("Queued %s %s (%d pending)", mutation.type.value, mutation.id, len(self._queue))
        self._notify()
        return mutation

    def dequeue(self, mutation_id: str) -> Optional[QueuedMutation]:
        """Remove a mutation by id. No-op when it is not queued."""
        for index, mutation in enumerate(self._queue):
            if mutation.id == mutation_id:
                del self._queue[index]
                self._persist()
                self._notify()
                return mutation
        return None

    def list(self) -> List[QueuedMutation]:
        """Snapshot of the pending mutations in queue order."""
        return [m.model_copy(deep=True) for m in self._queue]

    def record_failure(self, mutation_id: str, error: str) -> int:
        """Count a failed attempt. Returns the new retry count, 0 if not queued."""
        for index, mutation in enumerate(self._queue):
            if mutation.id == mutation_id:
                self._queue[index] = mutation.model_copy(
                    update={"retry_count": mutation.retry_count + 1, "last_error": error}
                )
                self._persist()
                return mutation.retry_count + 1
        return 0

    def dead_letter(self, mutation_id: str, reason: str) -> Optional[DeadLetter]:
        """Move a mutation out of the queue into the dead-letter list."""
        mutation = self.dequeue(mutation_id)
        if mutation is None:
            return None
        entry = DeadLetter(mutation=mutation, reason=reason, dropped_at=datetime.now(timezone.utc))
        letters = self.dead_letters()
        letters.append(entry)
        self._storage.set(
            self._dead_letter_key,
            DEAD_LETTER_ADAPTER.dump_json(letters, by_alias=True).decode(),
        )
        logger.warning("Dropped %s from the offline queue: %s", mutation.id, reason)
        return entry

    def dead_letters(self) -> List[DeadLetter]:
        raw = self._storage.get(self._dead_letter_key)
        if not raw:
            return []
        try:
            return DEAD_LETTER_ADAPTER.validate_json(raw)
        except ValidationError as exc:
            logger.warning("Dead-letter list is unreadable, discarding it: %s", exc)
            self._storage.delete(self._dead_letter_key)
            return []

    def clear_dead_letters(self) -> int:
        count = len(self.dead_letters())
        self._storage.delete(self._dead_letter_key)
        return count

    def subscribe(self, listener: QueueListener) -> Callable[[], None]:
        """Call ``listener`` after every enqueue or removal. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _load(self) -> List[QueuedMutation]:
        raw = self._storage.get(self._key)
        if not raw:
            return []
        try:
            queue = QUEUE_ADAPTER.validate_json(raw)
        except ValidationError as exc:
            logger.warning("Persisted offline queue is corrupt, discarding it: %s", exc)
            self._storage.delete(self._key)
            return []
        if queue:
            logger.info("Loaded %d pending offline mutations", len(queue))
        return queue

    def _persist(self) -> None:
        self._storage.set(self._key, QUEUE_ADAPTER.dump_json(self._queue, by_alias=True).decode())

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener()
