"""
Deferred work recorded while the station cannot reach the backend.
The persisted layout is a single JSON array of QueuedMutation records.
"""
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class MutationType(str, Enum):
    LOCATION_UPDATE = "LOCATION_UPDATE"


class LocationUpdatePayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    patient_id: Optional[str] = None  # unknown when the scan happened offline
    no_rm: Optional[str] = None       # fallback lookup key
    status_lokasi: str                # destination location id
    staff_id: Optional[str] = None    # picker; not needed for storage locations
    keterangan: Optional[str] = None
    petugas_id: Optional[str] = None  # acting system user


class QueuedMutation(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    type: MutationType
    payload: LocationUpdatePayload
    timestamp: datetime  # client event time, written to the backend as-is
    retry_count: int = Field(0, alias="retryCount")
    last_error: Optional[str] = Field(None, alias="lastError")


class DeadLetter(BaseModel):
    """A mutation removed from the queue without being applied."""
    model_config = ConfigDict(populate_by_name=True)

    mutation: QueuedMutation
    reason: str
    dropped_at: datetime = Field(alias="droppedAt")


QUEUE_ADAPTER = TypeAdapter(List[QueuedMutation])
DEAD_LETTER_ADAPTER = TypeAdapter(List[DeadLetter])
