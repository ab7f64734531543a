from typing import Literal

from pydantic import BaseModel, Field


class BloodRequestOut(BaseModel):
    id: str
    status: str | None = None
    component: str | None = None
    units_required: float | None = None
    blood_group: str | None = None
    urgency: str | None = None
    request_type: str | None = None
    hospital_preference: str | None = None
    created_at: str | None = None


class BloodRequestCreateIn(BaseModel):
    request_type: Literal["emergency", "scheduled"]
    component: str = Field(min_length=1, max_length=64)
    units_required: int = Field(ge=1, le=20)
    urgency: Literal["critical", "high", "medium", "low"]
    notes: str | None = Field(default=None, max_length=1000)


class BloodRequestCreateOut(BaseModel):
    request: BloodRequestOut
    latitude: float | None = None
    longitude: float | None = None
    location_source: Literal["device", "profile"] | None = None
