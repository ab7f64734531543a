from pydantic import BaseModel, Field


class FareOut(BaseModel):
    distance_km: float
    fare_inr: int


class RouteStepOut(BaseModel):
    instruction: str
    distance_meters: float


class RouteOut(BaseModel):
    distance_km: float
    duration_min: float
    fare_inr: int
    coords_lat_lng: list[list[float]] = Field(default_factory=list)
    steps: list[RouteStepOut] = Field(default_factory=list)
