"""Offline queue and sync endpoints: status badge, queue listing, manual sync, dead letters."""
from dataclasses import asdict
from datetime import datetime
from fastapi import APIRouter, Depends
from typing import List, Optional
from pydantic import BaseModel

from ..core.permissions import PERM_MANAGE_DEAD_LETTERS, PERM_RUN_SYNC, PERM_VIEW_SYNC_QUEUE
from ..station import Station
from .deps import get_station, require_permission

router = APIRouter(prefix="/sync", tags=["sync"])


class SyncReportResponse(BaseModel):
    total: int
    synced: int
    dropped: int
    failed: int
    remaining: int


class SyncStatusResponse(BaseModel):
    online: bool
    syncing: bool
    pending: int
    signed_in: bool
    last_report: Optional[SyncReportResponse] = None


class QueuedItemResponse(BaseModel):
    id: str
    type: str
    no_rm: Optional[str]
    patient_id: Optional[str]
    status_lokasi: str
    staff_id: Optional[str]
    keterangan: Optional[str]
    timestamp: datetime
    retry_count: int
    last_error: Optional[str]


class DeadLetterResponse(BaseModel):
    id: str
    no_rm: Optional[str]
    status_lokasi: str
    timestamp: datetime
    reason: str
    dropped_at: datetime


class RunSyncResponse(BaseModel):
    started: bool
    report: Optional[SyncReportResponse] = None
    pending: int


class ConnectivityRequest(BaseModel):
    online: bool


def _report(report) -> Optional[SyncReportResponse]:
    if report is None:
        return None
    return SyncReportResponse(**asdict(report))


def _status(station: Station) -> SyncStatusResponse:
    return SyncStatusResponse(
        online=station.connectivity.is_online,
        syncing=station.engine.is_syncing,
        pending=len(station.queue),
        signed_in=station.session.actor_id is not None,
        last_report=_report(station.engine.last_report),
    )


@router.get("/status", response_model=SyncStatusResponse)
def sync_status(station: Station = Depends(get_station)):
    """Online flag and "N data menunggu sinkronisasi" badge; open without sign-in."""
    return _status(station)


@router.get("/queue", response_model=List[QueuedItemResponse])
def list_queue(
    station: Station = Depends(get_station),
    _profile=Depends(require_permission(PERM_VIEW_SYNC_QUEUE)),
):
    return [
        QueuedItemResponse(
            id=item.id,
            type=item.type.value,
            no_rm=item.payload.no_rm,
            patient_id=item.payload.patient_id,
            status_lokasi=item.payload.status_lokasi,
            staff_id=item.payload.staff_id,
            keterangan=item.payload.keterangan,
            timestamp=item.timestamp,
            retry_count=item.retry_count,
            last_error=item.last_error,
        )
        for item in station.queue.list()
    ]


@router.post("/run", response_model=RunSyncResponse)
async def run_sync(
    station: Station = Depends(get_station),
    _profile=Depends(require_permission(PERM_RUN_SYNC)),
):
    """Manual "Sync now". Ignored while a pass is running or while offline."""
    report = await station.engine.sync_queue()
    return RunSyncResponse(started=report is not None, report=_report(report), pending=len(station.queue))


@router.put("/connectivity", response_model=SyncStatusResponse)
async def set_connectivity(req: ConnectivityRequest, station: Station = Depends(get_station)):
    """Report the device's network state (browser online/offline events)."""
    station.connectivity.set_online(req.online)
    return _status(station)


@router.get("/dead-letters", response_model=List[DeadLetterResponse])
def list_dead_letters(
    station: Station = Depends(get_station),
    _admin=Depends(require_permission(PERM_MANAGE_DEAD_LETTERS)),
):
    """Mutations dropped without being applied; admin only."""
    return [
        DeadLetterResponse(
            id=letter.mutation.id,
            no_rm=letter.mutation.payload.no_rm,
            status_lokasi=letter.mutation.payload.status_lokasi,
            timestamp=letter.mutation.timestamp,
            reason=letter.reason,
            dropped_at=letter.dropped_at,
        )
        for letter in station.queue.dead_letters()
    ]


@router.delete("/dead-letters")
def clear_dead_letters(
    station: Station = Depends(get_station),
    _admin=Depends(require_permission(PERM_MANAGE_DEAD_LETTERS)),
):
    return {"cleared": station.queue.clear_dead_letters()}
