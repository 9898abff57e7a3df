"""Authentication endpoints: login, logout, me."""
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from ..core.errors import BackendError, NotAuthenticated
from ..models.reference import Profile
from ..station import Station
from .deps import get_current_profile, get_station

router = APIRouter(prefix="/auth", tags=["auth"])


class LoginRequest(BaseModel):
    email: str
    password: str


class SessionResponse(BaseModel):
    id: str
    email: Optional[str]
    nama: Optional[str]
    role: str
    home: str


def _session_response(profile: Profile, station: Station) -> SessionResponse:
    return SessionResponse(
        id=profile.id,
        email=profile.email,
        nama=profile.nama,
        role=profile.role,
        home=station.session.home_path,
    )


@router.post("/login", response_model=SessionResponse)
async def login(req: LoginRequest, station: Station = Depends(get_station)):
    """Sign in against the backend and cache the profile for offline use."""
    try:
        profile = await station.login(req.email, req.password)
    except BackendError as exc:
        if exc.status_code is not None and 400 <= exc.status_code < 500:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Incorrect email or password",
            )
        raise HTTPException(status_code=503, detail="Backend unavailable")
    except NotAuthenticated as exc:
        raise HTTPException(status_code=403, detail=str(exc))
    return _session_response(profile, station)


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(station: Station = Depends(get_station)):
    await station.logout()


@router.get("/me", response_model=SessionResponse)
def get_me(
    profile: Profile = Depends(get_current_profile),
    station: Station = Depends(get_station),
):
    """Return the signed-in profile and the landing route for its role."""
    return _session_response(profile, station)
