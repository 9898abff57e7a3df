from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel

from ..core.errors import BackendError, InvalidQRCode, PatientNotFound
from ..core.permissions import PERM_SCAN_FILES, PERM_UPDATE_LOCATION
from ..station import Station
from .deps import get_current_profile, get_station, require_permission

router = APIRouter(prefix="/scan", tags=["scan"])


class ResolveRequest(BaseModel):
    qr_value: str


class ScannedPatientResponse(BaseModel):
    id: Optional[str]
    no_rm: str
    nama: str
    offline: bool
    current_location: Optional[str]


class LocationUpdateRequest(BaseModel):
    no_rm: str
    location_id: str
    patient_id: Optional[str] = None
    staff_id: Optional[str] = None
    keterangan: Optional[str] = None
    previous_location: Optional[str] = None


class LocationUpdateResponse(BaseModel):
    queued: bool
    mutation_id: Optional[str] = None
    record_id: Optional[str] = None
    notification_id: Optional[int] = None
    pending: int


@router.post("/resolve", response_model=ScannedPatientResponse)
async def resolve_scan(
    req: ResolveRequest,
    station: Station = Depends(get_station),
    _profile=Depends(require_permission(PERM_SCAN_FILES)),
):
    """Resolve a scanned QR value to a patient (placeholder when offline)."""
    try:
        patient = await station.tracer.resolve_scan(req.qr_value)
    except InvalidQRCode as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except PatientNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except BackendError:
        raise HTTPException(status_code=503, detail="Gagal memuat data pasien")
    return ScannedPatientResponse(
        id=patient.id,
        no_rm=patient.no_rm,
        nama=patient.nama,
        offline=patient.offline,
        current_location=patient.current_location,
    )


@router.post("/location", response_model=LocationUpdateResponse, status_code=status.HTTP_201_CREATED)
async def update_location(
    req: LocationUpdateRequest,
    station: Station = Depends(get_station),
    _profile=Depends(require_permission(PERM_UPDATE_LOCATION)),
):
    """
    Move a file to a new location.
    Written immediately when online, otherwise queued for the sync engine.
    """
    try:
        result = await station.tracer.update_location(
            no_rm=req.no_rm,
            location_id=req.location_id,
            patient_id=req.patient_id,
            staff_id=req.staff_id,
            note=req.keterangan,
            previous_location=req.previous_location,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except BackendError:
        raise HTTPException(status_code=503, detail="Gagal memperbarui status")
    return LocationUpdateResponse(
        queued=result.queued,
        mutation_id=result.mutation.id if result.mutation else None,
        record_id=result.record.id if result.record else None,
        notification_id=result.notification_id,
        pending=len(station.queue),
    )


@router.post("/undo/{record_id}", status_code=status.HTTP_204_NO_CONTENT)
async def undo_update(
    record_id: str,
    station: Station = Depends(get_station),
    _profile=Depends(require_permission(PERM_UPDATE_LOCATION)),
):
    if not await station.tracer.undo(record_id):
        raise HTTPException(status_code=503, detail="Gagal membatalkan perubahan")


class ActivityEntry(BaseModel):
    id: str
    aksi: str
    no_rm: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    created_at: datetime


class HistoryDay(BaseModel):
    date: str
    entries: List[ActivityEntry]


@router.get("/search", response_model=List[ScannedPatientResponse])
async def search_patients(
    q: str = Query("", description="Record number or name fragment"),
    station: Station = Depends(get_station),
    _profile=Depends(require_permission(PERM_SCAN_FILES)),
):
    """Find a patient without a QR code. Fewer than two characters matches nothing."""
    try:
        patients = await station.tracer.search_patients(q)
    except BackendError:
        raise HTTPException(status_code=503, detail="Gagal mencari pasien")
    return [
        ScannedPatientResponse(
            id=p.id,
            no_rm=p.no_rm,
            nama=p.nama,
            offline=p.offline,
            current_location=p.current_location,
        )
        for p in patients
    ]


@router.get("/history", response_model=List[HistoryDay])
async def history(
    period: str = Query("today", pattern="^(today|week|month|all)$"),
    station: Station = Depends(get_station),
    _profile=Depends(get_current_profile),
):
    """The signed-in user's own activity, grouped by day."""
    try:
        entries = await station.tracer.history(period)
    except BackendError:
        raise HTTPException(status_code=503, detail="Gagal memuat riwayat")

    days: List[HistoryDay] = []
    for entry in entries:
        day = entry.created_at.date().isoformat()
        if not days or days[-1].date != day:
            days.append(HistoryDay(date=day, entries=[]))
        days[-1].entries.append(ActivityEntry.model_validate(entry.model_dump()))
    return days
