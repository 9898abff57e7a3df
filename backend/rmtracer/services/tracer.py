"""
Scan and location-update flow for a petugas at the station.
Online updates go straight to the backend with an undo window; offline ones
are parked in the offline queue for the sync engine.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from ..core.errors import BackendError, InvalidQRCode, NotAuthenticated, PatientNotFound
from ..models.mutation import LocationUpdatePayload, MutationType, QueuedMutation
from ..models.reference import ActivityAction, ActivityLog, TracerRecord
from .connectivity import ConnectivityMonitor
from .notifications import NotificationCenter
from .offline_queue import OfflineQueueStore
from .reference_data import ReferenceDataCache
from .session import SessionState

logger = logging.getLogger(__name__)

QR_PREFIX = "RMTRACER:"
MIN_SEARCH_LENGTH = 2
SEARCH_LIMIT = 20
HISTORY_LIMIT = 50
HISTORY_ACTIONS = (
    ActivityAction.UPDATE_STATUS,
    ActivityAction.SCAN_QR,
    ActivityAction.UPDATE_STATUS_OFFLINE_SYNC,
)
HISTORY_PERIODS = ("today", "week", "month", "all")


def generate_qr_value(no_rm: str) -> str:
    return f"{QR_PREFIX}{no_rm}"


def parse_qr_value(value: Optional[str]) -> Optional[str]:
    """Record number carried by a QR payload; unprefixed values are taken as-is."""
    if not value:
        return None
    value = value.strip()
    if value.startswith(QR_PREFIX):
        value = value[len(QR_PREFIX):].strip()
    return value or None


@dataclass
class ScannedPatient:
    no_rm: str
    nama: str
    id: Optional[str] = None
    offline: bool = False
    current_location: Optional[str] = None


@dataclass
class LocationUpdateResult:
    queued: bool
    mutation: Optional[QueuedMutation] = None
    record: Optional[TracerRecord] = None
    notification_id: Optional[int] = None


class TracerService:

    def __init__(
        self,
        backend,
        queue: OfflineQueueStore,
        connectivity: ConnectivityMonitor,
        session: SessionState,
        notifications: NotificationCenter,
        reference: ReferenceDataCache,
        undo_timeout_ms: int = 5000,
    ):
        self.backend = backend
        self.queue = queue
        self.connectivity = connectivity
        self.session = session
        self.notifications = notifications
        self.reference = reference
        self.undo_timeout_ms = undo_timeout_ms

    async def resolve_scan(self, qr_value: str) -> ScannedPatient:
        """Turn a scanned QR value into the patient whose file is in hand."""
        no_rm = parse_qr_value(qr_value)
        if not no_rm:
            self.notifications.error("QR Code tidak valid")
            raise InvalidQRCode(qr_value)

        if not self.connectivity.is_online:
            self.notifications.warning("Mode Offline: Data pasien tidak dapat diverifikasi penuh")
            return ScannedPatient(no_rm=no_rm, nama=f"Pasien {no_rm}", offline=True)

        try:
            patient = await self.backend.lookup_patient_by_record_number(no_rm)
        except BackendError:
            self.notifications.error("Gagal memuat data pasien")
            raise
        if patient is None:
            error = PatientNotFound(no_rm)
            self.notifications.error(str(error))
            raise error

        current = None
        try:
            latest = await self.backend.latest_location(patient.id)
            current = latest.status_lokasi if latest else None
        except BackendError as exc:
            logger.warning("Could not load current location of %s: %s", no_rm, exc)

        return ScannedPatient(
            id=patient.id,
            no_rm=patient.no_rm,
            nama=patient.nama or f"Pasien {no_rm}",
            current_location=current,
        )

    async def search_patients(self, term: str) -> List[ScannedPatient]:
        """Manual lookup by record number or name, with each file's current location."""
        term = (term or "").strip()
        if len(term) < MIN_SEARCH_LENGTH:
            return []
        if not self.connectivity.is_online:
            self.notifications.warning("Mode Offline: Pencarian pasien tidak tersedia")
            return []

        try:
            patients = await self.backend.search_patients(term, limit=SEARCH_LIMIT)
        except BackendError:
            self.notifications.error("Gagal mencari pasien")
            raise

        current = {}
        if patients:
            try:
                current = await self.backend.current_locations([p.id for p in patients])
            except BackendError as exc:
                logger.warning("Could not load current locations for search %r: %s", term, exc)

        return [
            ScannedPatient(
                id=p.id,
                no_rm=p.no_rm,
                nama=p.nama or f"Pasien {p.no_rm}",
                current_location=current.get(p.id),
            )
            for p in patients
        ]

    async def history(self, period: str = "today", now: Optional[datetime] = None) -> List[ActivityLog]:
        """The signed-in petugas's own scan and move activity, newest first."""
        if period not in HISTORY_PERIODS:
            raise ValueError(f"Unknown history period: {period}")
        actor_id = self.session.actor_id
        if actor_id is None:
            raise NotAuthenticated("History requires a signed-in user")

        now = now or datetime.now(timezone.utc)
        since = None
        if period == "today":
            since = now.replace(hour=0, minute=0, second=0, microsecond=0)
        elif period == "week":
            since = now - timedelta(days=7)
        elif period == "month":
            since = now - timedelta(days=30)

        try:
            return await self.backend.fetch_activity(
                actor_id,
                actions=HISTORY_ACTIONS,
                since=since,
                limit=HISTORY_LIMIT,
            )
        except BackendError:
            self.notifications.error("Gagal memuat riwayat")
            raise

    async def update_location(
        self,
        *,
        no_rm: str,
        location_id: str,
        patient_id: Optional[str] = None,
        staff_id: Optional[str] = None,
        note: Optional[str] = None,
        previous_location: Optional[str] = None,
    ) -> LocationUpdateResult:
        """
        Record that a file moved to ``location_id``.

        Queued when the station is offline, the patient could not be verified,
        or no actor is signed in yet. Otherwise written directly.
        """
        if not no_rm and not patient_id:
            raise ValueError("Either no_rm or patient_id is required")
        if self.reference.requires_staff(location_id) and not staff_id:
            raise ValueError("Petugas pengambil wajib dipilih untuk lokasi ini")

        note = note or None
        label = self.reference.location_label(location_id)
        actor_id = self.session.actor_id

        if not self.connectivity.is_online or not patient_id or actor_id is None:
            mutation = self.queue.enqueue(
                MutationType.LOCATION_UPDATE,
                LocationUpdatePayload(
                    patient_id=patient_id,
                    no_rm=no_rm,
                    status_lokasi=location_id,
                    staff_id=staff_id,
                    keterangan=note,
                    petugas_id=actor_id,
                ),
            )
            notification = self.notifications.success(f"Disimpan ke antrian offline: {label}")
            return LocationUpdateResult(queued=True, mutation=mutation, notification_id=notification.id)

        try:
            record = await self.backend.insert_location_record(
                patient_id=patient_id,
                location_id=location_id,
                staff_id=staff_id,
                note=note,
                actor_id=actor_id,
            )
        except BackendError:
            self.notifications.error("Gagal memperbarui status")
            raise

        staff = self.reference.get_staff(staff_id) if staff_id else None
        try:
            await self.backend.append_audit_log(
                ActivityAction.UPDATE_STATUS,
                no_rm,
                {
                    "status_lokasi": location_id,
                    "keterangan": note,
                    "previous_status": previous_location,
                    "staff_id": staff_id,
                    "staff_name": staff.nama if staff else None,
                },
            )
        except BackendError as exc:
            logger.warning("Activity log for %s failed: %s", record.id, exc)

        notification = self.notifications.success(
            f"Status diperbarui ke {label}",
            duration_ms=self.undo_timeout_ms,
            on_undo=lambda: self.undo(record.id),
        )
        return LocationUpdateResult(queued=False, record=record, notification_id=notification.id)

    async def undo(self, record_id: str) -> bool:
        """Delete a just-written tracer record."""
        try:
            await self.backend.delete_location_record(record_id)
        except BackendError as exc:
            logger.error("Undo of %s failed: %s", record_id, exc)
            self.notifications.error("Gagal membatalkan perubahan")
            return False
        self.notifications.success("Perubahan dibatalkan")
        return True
