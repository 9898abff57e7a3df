import asyncio
from typing import Dict, List, Optional

import pytest

from rmtracer.core.config import Settings
from rmtracer.core.errors import BackendError
from rmtracer.models.reference import ActivityLog, AuthSession, Location, Patient, Profile, Staff, TracerRecord, UserRole
from rmtracer.services.connectivity import ConnectivityMonitor
from rmtracer.services.notifications import NotificationCenter
from rmtracer.services.offline_queue import OfflineQueueStore
from rmtracer.services.session import SessionState
from rmtracer.services.storage import MemoryKeyValueStore
from rmtracer.services.sync_engine import SyncEngine
from rmtracer.station import Station

PETUGAS = Profile(id="user-petugas", email="petugas@rs.demo", nama="Petugas Satu", role=UserRole.PETUGAS)
ADMIN = Profile(id="user-admin", email="admin@rs.demo", nama="Admin RM", role=UserRole.ADMIN)


class FakeBackend:
    """In-memory stand-in for the hosted backend, recording every call."""

    def __init__(self):
        self.patients: Dict[str, Patient] = {}
        self.records: List[TracerRecord] = []
        self.insert_calls: List[dict] = []
        self.lookup_calls: List[str] = []
        self.audit_calls: List[tuple] = []
        self.deleted: List[str] = []
        self.locations: List[Location] = []
        self.staff: List[Staff] = []
        self.profiles: Dict[str, Profile] = {}
        self.credentials: Dict[str, tuple] = {}
        self.failing_patients = set()
        self.rejecting_patients = set()
        self.activity: List[ActivityLog] = []
        self.closed = False
        self.fail_lookup = False
        self.fail_audit = False
        self.fail_reference = False
        self.insert_delay = 0.0
        self.online = True

    def add_patient(self, patient_id: str, no_rm: str, nama: Optional[str] = None) -> Patient:
        patient = Patient(id=patient_id, no_rm=no_rm, nama=nama or f"Pasien {no_rm}")
        self.patients[no_rm] = patient
        return patient

    async def lookup_patient_by_record_number(self, no_rm: str) -> Optional[Patient]:
        self.lookup_calls.append(no_rm)
        if self.fail_lookup:
            raise BackendError("GET /rest/v1/patients failed: timed out")
        return self.patients.get(no_rm)

    async def insert_location_record(self, **kwargs) -> TracerRecord:
        self.insert_calls.append(kwargs)
        if self.insert_delay:
            await asyncio.sleep(self.insert_delay)
        if self.closed:
            raise BackendError("POST /rest/v1/tracer failed: client has been closed")
        if kwargs["patient_id"] in self.rejecting_patients:
            raise BackendError("POST /rest/v1/tracer rejected with 409", status_code=409)
        if kwargs["patient_id"] in self.failing_patients:
            raise BackendError("POST /rest/v1/tracer rejected with 500", status_code=500)
        record = TracerRecord(
            id=f"tracer-{len(self.records) + 1}",
            patient_id=kwargs["patient_id"],
            status_lokasi=kwargs["location_id"],
            staff_id=kwargs.get("staff_id"),
            keterangan=kwargs.get("note"),
            petugas_id=kwargs.get("actor_id"),
            created_at=kwargs.get("event_time"),
        )
        self.records.append(record)
        return record

    async def append_audit_log(self, action: str, no_rm: Optional[str], details: dict) -> None:
        if self.fail_audit:
            raise BackendError("rpc/log_activity rejected with 500", status_code=500)
        self.audit_calls.append((action, no_rm, details))

    async def delete_location_record(self, record_id: str) -> None:
        self.deleted.append(record_id)
        self.records = [r for r in self.records if r.id != record_id]

    async def latest_location(self, patient_id: str) -> Optional[TracerRecord]:
        rows = [r for r in self.records if r.patient_id == patient_id]
        return rows[-1] if rows else None

    async def fetch_locations(self) -> List[Location]:
        if self.fail_reference:
            raise BackendError("GET /rest/v1/locations failed")
        return list(self.locations)

    async def fetch_staff(self) -> List[Staff]:
        if self.fail_reference:
            raise BackendError("GET /rest/v1/staff failed")
        return [s for s in self.staff if s.is_active]

    async def sign_in(self, email: str, password: str) -> AuthSession:
        stored = self.credentials.get(email)
        if stored is None or stored[0] != password:
            raise BackendError("POST /auth/v1/token rejected with 400", status_code=400)
        return AuthSession(access_token=f"token-{stored[1]}", user_id=stored[1])

    async def fetch_profile(self, user_id: str, access_token: Optional[str] = None) -> Optional[Profile]:
        return self.profiles.get(user_id)

    async def search_patients(self, term: str, limit: int = 20) -> List[Patient]:
        if self.fail_lookup:
            raise BackendError("GET /rest/v1/patients failed: timed out")
        needle = term.lower()
        found = [p for p in self.patients.values() if needle in p.no_rm.lower() or needle in (p.nama or "").lower()]
        return found[:limit]

    async def current_locations(self, patient_ids: List[str]) -> Dict[str, str]:
        current = {}
        for record in self.records:
            if record.patient_id in patient_ids:
                current[record.patient_id] = record.status_lokasi
        return current

    async def fetch_activity(self, user_id: str, actions=None, since=None, limit: int = 50) -> List[ActivityLog]:
        rows = [a for a in self.activity if a.user_id == user_id]
        if actions is not None:
            rows = [a for a in rows if a.aksi in actions]
        if since is not None:
            rows = [a for a in rows if a.created_at >= since]
        rows.sort(key=lambda a: a.created_at, reverse=True)
        return rows[:limit]

    async def ping(self) -> bool:
        return self.online

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture()
def backend():
    return FakeBackend()


@pytest.fixture()
def storage():
    return MemoryKeyValueStore()


@pytest.fixture()
def queue(storage):
    return OfflineQueueStore(storage)


@pytest.fixture()
def connectivity():
    return ConnectivityMonitor(online=True)


@pytest.fixture()
def session(storage):
    state = SessionState(storage)
    state.sign_in(PETUGAS, "token-petugas")
    return state


@pytest.fixture()
def notifications():
    return NotificationCenter()


@pytest.fixture()
def engine(queue, backend, connectivity, session, notifications):
    """Engine with a long debounce so only explicit passes run."""
    sync_engine = SyncEngine(queue, backend, connectivity, session, notifications, debounce_seconds=60)
    yield sync_engine
    sync_engine.close()


@pytest.fixture()
def station_settings():
    return Settings(
        DATABASE_URL="sqlite://",
        SUPABASE_URL="https://test.supabase.co",
        SUPABASE_ANON_KEY="anon",
        SYNC_DEBOUNCE_SECONDS=0.05,
        CONNECTIVITY_PROBE_INTERVAL=0,
    )


@pytest.fixture()
def station(station_settings, storage, backend):
    st = Station(station_settings, storage, backend, connectivity=ConnectivityMonitor(online=True))
    yield st
    st.engine.close()


def success_messages(center: NotificationCenter) -> List[str]:
    return [n.message for n in center.active() if n.level.value == "success"]
