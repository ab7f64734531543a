from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from haemolink.domains.requests.schemas import BloodRequestOut


class RiderInfo(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str | None = None
    phone: str | None = None
    vehicle_number: str | None = None
    vehicle_type: str | None = None
    lat: Any = None
    lng: Any = None


class TrackingSnapshot(BaseModel):
    """
    Point-in-time read from `get_patient_tracking`. Coordinates are kept raw
    (numbers or numeric strings) and validated where they are used.
    """

    model_config = ConfigDict(extra="allow")

    delivery_id: str | None = None
    status: str | None = None
    rider: RiderInfo | None = None
    pickup: dict[str, Any] | None = None
    drop: dict[str, Any] | None = None
    otp: str | None = None
    distance_km: float | None = None
    fare_amount: float | None = None
    currency: str | None = None
    otp_verified: bool | None = None
    payment_status: str | None = None

    @field_validator("otp", "delivery_id", mode="before")
    @classmethod
    def _stringify(cls, v: Any) -> Any:
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator("distance_km", "fare_amount", mode="before")
    @classmethod
    def _lenient_number(cls, v: Any) -> Any:
        # Unparseable numbers are treated as absent rather than rejecting the snapshot.
        if v is None or isinstance(v, bool):
            return None
        if isinstance(v, (int, float)):
            return v
        if isinstance(v, str):
            try:
                return float(v.strip())
            except ValueError:
                return None
        return None

    @field_validator("otp_verified", mode="before")
    @classmethod
    def _strict_bool(cls, v: Any) -> Any:
        # Only a literal true unlocks payment.
        return v if isinstance(v, bool) else None

    @field_validator("pickup", "drop", mode="before")
    @classmethod
    def _point_or_none(cls, v: Any) -> Any:
        return v if isinstance(v, dict) else None

    @field_validator("rider", mode="before")
    @classmethod
    def _rider_or_none(cls, v: Any) -> Any:
        return v if isinstance(v, (dict, RiderInfo)) else None


class TimelineStepOut(BaseModel):
    title: str
    description: str
    status: Literal["completed", "pending"]


class DirectionOut(BaseModel):
    instruction: str
    distance_meters: float


class MarkerOut(BaseModel):
    kind: Literal["pickup", "drop", "rider"]
    lat: float
    lng: float
    icon: str


class MapOut(BaseModel):
    available: bool
    center: list[float]
    zoom: int
    tile_url: str
    markers: list[MarkerOut] = Field(default_factory=list)
    polyline: list[list[float]] = Field(default_factory=list)
    polyline_source: Literal["route", "straight"] | None = None
    color: str
    weight: int
    caption: str


class PaymentMessageOut(BaseModel):
    ok: bool
    message: str


class RouteStatsOut(BaseModel):
    distance_km: float
    duration_min: float
    fare_inr: int


class TrackingViewOut(BaseModel):
    request: BloodRequestOut | None = None
    tracking: TrackingSnapshot | None = None
    route: RouteStatsOut | None = None
    distance_km: float | None = None
    fare_inr: float | None = None
    can_pay: bool = False
    payment_label: str = "locked"
    otp_display: str = "— — — —"
    timeline: list[TimelineStepOut] = Field(default_factory=list)
    directions: list[DirectionOut] = Field(default_factory=list)
    map: MapOut
    payment_message: PaymentMessageOut | None = None
    last_updated_at: str | None = None
    refresh_interval_seconds: int
    generation: int = 0
