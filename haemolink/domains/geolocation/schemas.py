from pydantic import BaseModel, Field


class FixIn(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)
    accuracy: float | None = Field(default=None, ge=0)
    heading: float | None = None
    speed: float | None = None


class FixAcceptedOut(BaseModel):
    ok: bool = True
    watchers: int
