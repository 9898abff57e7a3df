"""
Composition root: one isolated set of station services.
Nothing here is module-global, so tests build as many stations as they need.
"""
import logging
from typing import Optional

from .core.config import Settings
from .core.errors import BackendError, NotAuthenticated
from .models.base import make_engine
from .models.reference import ActivityAction, Profile
from .services.backend import SupabaseBackend
from .services.connectivity import ConnectivityMonitor
from .services.notifications import NotificationCenter
from .services.offline_queue import OfflineQueueStore
from .services.reference_data import ReferenceDataCache
from .services.session import SessionState
from .services.storage import KeyValueStore, SqlKeyValueStore
from .services.sync_engine import SyncEngine
from .services.tracer import TracerService

logger = logging.getLogger(__name__)


class Station:

    def __init__(
        self,
        settings: Settings,
        storage: KeyValueStore,
        backend,
        connectivity: Optional[ConnectivityMonitor] = None,
    ):
        self.settings = settings
        self.storage = storage
        self.backend = backend
        self.session = SessionState(storage, key=settings.PROFILE_STORAGE_KEY)
        self.connectivity = connectivity or ConnectivityMonitor(
            online=True,
            probe=getattr(backend, "ping", None),
            interval=settings.CONNECTIVITY_PROBE_INTERVAL,
        )
        self.notifications = NotificationCenter(default_duration_ms=settings.TOAST_DURATION_MS)
        self.queue = OfflineQueueStore(
            storage,
            key=settings.QUEUE_STORAGE_KEY,
            dead_letter_key=settings.DEAD_LETTER_STORAGE_KEY,
        )
        self.reference = ReferenceDataCache(backend, storage, key=settings.REFERENCE_STORAGE_KEY)
        self.engine = SyncEngine(
            self.queue,
            backend,
            self.connectivity,
            self.session,
            self.notifications,
            debounce_seconds=settings.SYNC_DEBOUNCE_SECONDS,
            max_attempts=settings.SYNC_MAX_ATTEMPTS,
        )
        self.tracer = TracerService(
            backend,
            self.queue,
            self.connectivity,
            self.session,
            self.notifications,
            self.reference,
            undo_timeout_ms=settings.UNDO_TIMEOUT_MS,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "Station":
        storage = SqlKeyValueStore(make_engine(settings.DATABASE_URL))
        backend = SupabaseBackend(
            settings.SUPABASE_URL,
            settings.SUPABASE_ANON_KEY,
            timeout=settings.BACKEND_TIMEOUT,
        )
        station = cls(settings, storage, backend)
        backend.token_provider = lambda: station.session.access_token
        return station

    async def start(self) -> None:
        self.connectivity.start()
        if self.connectivity.is_online:
            await self.reference.refresh()
        # Work left over from the previous run
        self.engine.schedule()
        logger.info(
            "Station started (%s, %d pending)",
            "online" if self.connectivity.is_online else "offline",
            len(self.queue),
        )

    async def stop(self) -> None:
        self.engine.close()
        # The backend client must outlive a pass that is still writing
        await self.engine.wait_idle()
        await self.connectivity.stop()
        close = getattr(self.backend, "aclose", None)
        if close is not None:
            await close()

    async def login(self, email: str, password: str) -> Profile:
        auth = await self.backend.sign_in(email, password)
        profile = await self.backend.fetch_profile(auth.user_id, access_token=auth.access_token)
        if profile is None:
            raise NotAuthenticated(f"No profile for user {auth.user_id}")
        self.session.sign_in(profile, auth.access_token)
        await self._log_activity(ActivityAction.LOGIN, {"email": email})
        return profile

    async def logout(self) -> None:
        if self.session.profile is not None:
            await self._log_activity(ActivityAction.LOGOUT, {})
        self.session.sign_out()

    async def _log_activity(self, action: str, details: dict) -> None:
        if not self.connectivity.is_online:
            return
        try:
            await self.backend.append_audit_log(action, None, details)
        except BackendError as exc:
            logger.warning("Activity log %s failed: %s", action, exc)
