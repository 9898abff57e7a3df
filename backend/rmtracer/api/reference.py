from fastapi import APIRouter, Depends
from typing import List, Optional
from pydantic import BaseModel, ConfigDict

from ..core.permissions import PERM_REFRESH_REFERENCE_DATA
from ..station import Station
from .deps import get_current_profile, get_station, require_permission

router = APIRouter(prefix="/reference", tags=["reference"])


class LocationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    type: Optional[str]
    is_storage: bool


class StaffResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    nama: str


@router.get("/locations", response_model=List[LocationResponse])
def list_locations(station: Station = Depends(get_station), _profile=Depends(get_current_profile)):
    return station.reference.locations


@router.get("/staff", response_model=List[StaffResponse])
def list_staff(station: Station = Depends(get_station), _profile=Depends(get_current_profile)):
    return station.reference.staff


@router.post("/refresh")
async def refresh_reference_data(
    station: Station = Depends(get_station),
    _profile=Depends(require_permission(PERM_REFRESH_REFERENCE_DATA)),
):
    refreshed = await station.reference.refresh()
    return {
        "refreshed": refreshed,
        "locations": len(station.reference.locations),
        "staff": len(station.reference.staff),
    }
