from pydantic import BaseModel, Field


class OtpVerifyIn(BaseModel):
    otp: str = Field(max_length=32)


class OtpVerifyOut(BaseModel):
    ok: bool
    message: str


class RiderPositionOut(BaseModel):
    accepted: bool
    persisted: bool
    watchers: int = 0
