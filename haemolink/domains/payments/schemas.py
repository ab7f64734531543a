from typing import Literal

from pydantic import BaseModel, Field


class PaymentIn(BaseModel):
    method: Literal["cash", "upi"]


class PaymentOut(BaseModel):
    ok: bool
    message: str
    amount: float | None = None
    payment_status: str | None = None


class UpiPreferencesIn(BaseModel):
    vpa: str = Field(default="", max_length=80)
    payee_name: str = Field(default="", max_length=100)


class UpiPreferencesOut(BaseModel):
    vpa: str | None = None
    payee_name: str | None = None


class UpiLinkOut(BaseModel):
    vpa: str
    payee_name: str
    valid_vpa: bool
    amount: int | None = None
    uri: str | None = None
    qr_image_url: str | None = None
