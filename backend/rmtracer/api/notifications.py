"""Notifications API: toasts currently on screen, dismiss, undo."""
from fastapi import APIRouter, Depends, HTTPException
from typing import List, Optional
from pydantic import BaseModel

from ..station import Station
from .deps import get_station

router = APIRouter(prefix="/notifications", tags=["notifications"])


class NotificationResponse(BaseModel):
    id: int
    level: str
    message: str
    title: Optional[str]
    duration_ms: int
    undoable: bool


@router.get("/", response_model=List[NotificationResponse])
def list_notifications(station: Station = Depends(get_station)):
    return [
        NotificationResponse(
            id=n.id,
            level=n.level.value,
            message=n.message,
            title=n.title,
            duration_ms=n.duration_ms,
            undoable=n.undoable,
        )
        for n in station.notifications.active()
    ]


@router.post("/{notification_id}/dismiss")
def dismiss_notification(notification_id: int, station: Station = Depends(get_station)):
    if not station.notifications.dismiss(notification_id):
        raise HTTPException(status_code=404, detail="Notification not found")
    return {"dismissed": notification_id}


@router.post("/{notification_id}/undo")
async def undo_notification(notification_id: int, station: Station = Depends(get_station)):
    """Run the undo affordance attached to a notification, while it is still shown."""
    if not await station.notifications.undo(notification_id):
        raise HTTPException(status_code=404, detail="Nothing to undo")
    return {"undone": notification_id}
