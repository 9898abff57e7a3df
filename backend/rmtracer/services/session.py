"""
Identity of the user operating the station.
The signed-in profile is cached in local storage so the station can keep
queueing work after a restart without network access.
"""
import json
import logging
from typing import Callable, List, Optional

from pydantic import ValidationError

from ..core.permissions import home_path_for
from ..models.reference import Profile
from .storage import KeyValueStore

logger = logging.getLogger(__name__)

DEFAULT_PROFILE_KEY = "app_user_profile"

SessionListener = Callable[[Optional[Profile]], None]


class SessionState:

    def __init__(self, storage: KeyValueStore, key: str = DEFAULT_PROFILE_KEY):
        self._storage = storage
        self._key = key
        self._listeners: List[SessionListener] = []
        self.profile: Optional[Profile] = None
        self.access_token: Optional[str] = None
        self._restore()

    @property
    def actor_id(self) -> Optional[str]:
        return self.profile.id if self.profile else None

    @property
    def role(self) -> Optional[str]:
        return self.profile.role if self.profile else None

    @property
    def home_path(self) -> str:
        if self.profile is None:
            return "/login"
        return home_path_for(self.profile.role)

    def sign_in(self, profile: Profile, access_token: Optional[str] = None) -> None:
        self.profile = profile
        self.access_token = access_token
        self._storage.set(
            self._key,
            json.dumps({"profile": profile.model_dump(), "access_token": access_token}),
        )
        logger.info("Signed in as %s (%s)", profile.id, profile.role)
        self._notify()

    def sign_out(self) -> None:
        self.profile = None
        self.access_token = None
        self._storage.delete(self._key)
        self._notify()

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _restore(self) -> None:
        raw = self._storage.get(self._key)
        if not raw:
            return
        try:
            cached = json.loads(raw)
            self.profile = Profile.model_validate(cached["profile"])
            self.access_token = cached.get("access_token")
        except (ValueError, KeyError, TypeError, ValidationError) as exc:
            logger.error("Failed to load cached profile: %s", exc)
            self._storage.delete(self._key)

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self.profile)
