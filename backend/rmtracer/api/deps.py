from fastapi import Depends, HTTPException, Request, status

from ..core.permissions import has_permission
from ..models.reference import Profile
from ..station import Station


def get_station(request: Request) -> Station:
    return request.app.state.station


def get_current_profile(station: Station = Depends(get_station)) -> Profile:
    """The user signed in at this station."""
    if station.session.profile is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not signed in",
        )
    return station.session.profile


def require_permission(permission: str):
    def checker(profile: Profile = Depends(get_current_profile)) -> Profile:
        if not has_permission(profile.role, permission):
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return profile
    return checker
