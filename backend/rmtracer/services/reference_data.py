"""Locations and active staff, cached locally so scans can be validated offline."""
import json
import logging
from typing import Dict, List, Optional

from pydantic import TypeAdapter, ValidationError

from ..core.errors import BackendError
from ..models.reference import Location, Staff
from .storage import KeyValueStore

logger = logging.getLogger(__name__)

DEFAULT_REFERENCE_KEY = "reference_data"

LOCATIONS_ADAPTER = TypeAdapter(List[Location])
STAFF_ADAPTER = TypeAdapter(List[Staff])


class ReferenceDataCache:

    def __init__(self, backend, storage: KeyValueStore, key: str = DEFAULT_REFERENCE_KEY):
        self._backend = backend
        self._storage = storage
        self._key = key
        self.locations: List[Location] = []
        self.staff: List[Staff] = []
        self._restore()

    async def refresh(self) -> bool:
        """Reload both lists from the backend. Keeps the cached copy on failure."""
        try:
            locations = await self._backend.fetch_locations()
            staff = await self._backend.fetch_staff()
        except BackendError as exc:
            logger.warning("Reference data refresh failed, keeping cached copy: %s", exc)
            return False
        self.locations = locations
        self.staff = staff
        self._storage.set(
            self._key,
            json.dumps({
                "locations": [loc.model_dump() for loc in locations],
                "staff": [s.model_dump() for s in staff],
            }),
        )
        logger.info("Reference data refreshed: %d locations, %d staff", len(locations), len(staff))
        return True

    def get_location(self, location_id: str) -> Optional[Location]:
        return self._locations_by_id().get(location_id)

    def location_label(self, location_id: str) -> str:
        location = self.get_location(location_id)
        return location.name if location else location_id

    def get_staff(self, staff_id: str) -> Optional[Staff]:
        for member in self.staff:
            if member.id == staff_id:
                return member
        return None

    def requires_staff(self, location_id: str) -> bool:
        """A picker must be named unless the file goes back to a known storage location."""
        location = self.get_location(location_id)
        return not (location and location.is_storage)

    def _locations_by_id(self) -> Dict[str, Location]:
        return {loc.id: loc for loc in self.locations}

    def _restore(self) -> None:
        raw = self._storage.get(self._key)
        if not raw:
            return
        try:
            cached = json.loads(raw)
            self.locations = LOCATIONS_ADAPTER.validate_python(cached.get("locations", []))
            self.staff = STAFF_ADAPTER.validate_python(cached.get("staff", []))
        except (ValueError, TypeError, AttributeError, ValidationError) as exc:
            logger.error("Cached reference data is unreadable, discarding it: %s", exc)
            self.locations, self.staff = [], []
            self._storage.delete(self._key)
