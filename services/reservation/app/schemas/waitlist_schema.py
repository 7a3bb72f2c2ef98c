from datetime import date, datetime, time
from typing import Optional
from uuid import UUID
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator


class WaitlistCreate(BaseModel):
    """Request to be told when a slot opens up on a given date."""
    model_config = ConfigDict(populate_by_name=True)

    customer_name: str = Field(min_length=1, max_length=200)
    customer_email: EmailStr
    customer_phone: Optional[str] = None
    service_id: Optional[UUID] = None
    waitlist_date: date = Field(alias="date", examples=["2024-06-01"])
    preferred_start: Optional[time] = None
    preferred_end: Optional[time] = None
    notes: Optional[str] = Field(default=None, max_length=1000)

    @field_validator("customer_name")
    @classmethod
    def strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("customer_name is required")
        return value

    @model_validator(mode="after")
    def check_window(self):
        if self.preferred_start and self.preferred_end and self.preferred_end <= self.preferred_start:
            raise ValueError("preferred_end must be after preferred_start")
        return self


class WaitlistOut(BaseModel):
    id: UUID
    tenant_id: UUID
    customer_name: str
    customer_email: str
    customer_phone: Optional[str] = None
    service_id: Optional[UUID] = None
    date: date
    preferred_start: Optional[time] = None
    preferred_end: Optional[time] = None
    notes: Optional[str] = None
    status: str
    notified_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)
