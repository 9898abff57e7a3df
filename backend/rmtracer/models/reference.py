"""Rows of the hosted backend, as the station reads them."""
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict


class UserRole:
    ADMIN = "admin"
    PETUGAS = "petugas"


class ActivityAction:
    LOGIN = "LOGIN"
    LOGOUT = "LOGOUT"
    SCAN_QR = "SCAN_QR"
    UPDATE_STATUS = "UPDATE_STATUS"
    UPDATE_STATUS_OFFLINE_SYNC = "UPDATE_STATUS_OFFLINE_SYNC"


class BackendRow(BaseModel):
    model_config = ConfigDict(extra="ignore")


class Patient(BackendRow):
    id: str
    no_rm: str
    nama: Optional[str] = None
    tanggal_lahir: Optional[str] = None


class TracerRecord(BackendRow):
    """A timestamped location-history entry for a patient's physical file."""
    id: str
    patient_id: str
    status_lokasi: str
    staff_id: Optional[str] = None
    keterangan: Optional[str] = None
    petugas_id: Optional[str] = None
    created_at: Optional[datetime] = None


class Location(BackendRow):
    id: str
    name: str
    type: Optional[str] = None
    description: Optional[str] = None
    is_storage: bool = False


class Staff(BackendRow):
    id: str
    nama: str
    is_active: bool = True


class Profile(BackendRow):
    id: str
    email: Optional[str] = None
    nama: Optional[str] = None
    role: str = UserRole.PETUGAS


class AuthSession(BackendRow):
    access_token: str
    user_id: str


class ActivityLog(BackendRow):
    """One ``activity_logs`` row written through the ``log_activity`` RPC."""
    id: str
    user_id: Optional[str] = None
    aksi: str
    no_rm: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    created_at: datetime
