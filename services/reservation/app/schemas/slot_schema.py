from datetime import date, time
from typing import List, Optional
from uuid import UUID
from pydantic import BaseModel, ConfigDict, Field, field_serializer


class TimeSlotOut(BaseModel):
    id: UUID
    date: date
    start_time: time
    end_time: time
    is_available: bool

    model_config = ConfigDict(from_attributes=True)

    @field_serializer("start_time", "end_time")
    def hhmm(self, value: time) -> str:
        return value.strftime("%H:%M")


class NextAvailableOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    found: bool
    date: Optional[str] = None
    time: Optional[str] = Field(default=None, description="Start time as HH:MM")
    slot_ids: List[UUID] = Field(default_factory=list, alias="slotIds")
