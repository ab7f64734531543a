from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from haemolink.core.deps import get_db, get_gateway, require_patient
from haemolink.core.security import Principal
from haemolink.core.supabase import SupabaseGateway
from haemolink.domains.payments.schemas import (
    PaymentIn,
    PaymentOut,
    UpiLinkOut,
    UpiPreferencesIn,
    UpiPreferencesOut,
)
from haemolink.domains.payments.service import (
    PaymentInitiator,
    get_upi_preferences,
    pay_for_session,
    put_upi_preferences,
)
from haemolink.domains.payments.upi import build_upi_uri, is_likely_upi_vpa, upi_amount, upi_qr_image_url
from haemolink.domains.tracking.router import get_tracking_sessions
from haemolink.domains.tracking.service import TrackingSessionRegistry, displayed_fare, open_session


router = APIRouter()


def get_payment_initiator(gateway: SupabaseGateway = Depends(get_gateway)) -> PaymentInitiator:
    return PaymentInitiator(gateway.transports(apikey_in_query=True))


@router.post("/tracking/{request_id}/payments", response_model=PaymentOut)
def pay(
    request_id: str,
    payload: PaymentIn,
    principal: Principal = Depends(require_patient),
    gateway: SupabaseGateway = Depends(get_gateway),
    sessions: TrackingSessionRegistry = Depends(get_tracking_sessions),
    initiator: PaymentInitiator = Depends(get_payment_initiator),
) -> PaymentOut:
    session = open_session(
        sessions, user_id=principal.sub, request_id=request_id, transports=gateway.transports(), refresh=False
    )
    result = pay_for_session(session, initiator, payload.method)
    return PaymentOut(
        ok=result.ok,
        message=result.message,
        amount=result.amount,
        payment_status=session.tracking.payment_status if session.tracking is not None else None,
    )


@router.get("/tracking/{request_id}/upi", response_model=UpiLinkOut)
def upi_link(
    request_id: str,
    vpa: str | None = Query(default=None, max_length=80),
    payee: str | None = Query(default=None, max_length=100),
    principal: Principal = Depends(require_patient),
    gateway: SupabaseGateway = Depends(get_gateway),
    sessions: TrackingSessionRegistry = Depends(get_tracking_sessions),
    db: Session = Depends(get_db),
) -> UpiLinkOut:
    """The QR is only offered once the VPA looks like name@handle."""
    session = open_session(
        sessions, user_id=principal.sub, request_id=request_id, transports=gateway.transports(), refresh=False
    )
    prefs = get_upi_preferences(db, user_id=principal.sub)
    vpa = (vpa if vpa is not None else prefs["vpa"]) or ""
    payee = (payee if payee is not None else prefs["payee_name"]) or ""

    fare = displayed_fare(session.tracking, session.route)
    out = UpiLinkOut(vpa=vpa, payee_name=payee, valid_vpa=is_likely_upi_vpa(vpa), amount=upi_amount(fare))
    if out.valid_vpa:
        delivery_id = session.tracking.delivery_id if session.tracking is not None else None
        out.uri = build_upi_uri(vpa=vpa, payee_name=payee, fare=fare, delivery_id=delivery_id)
        out.qr_image_url = upi_qr_image_url(out.uri)
    return out


@router.get("/patients/me/upi-preferences", response_model=UpiPreferencesOut)
def read_upi_preferences(
    principal: Principal = Depends(require_patient),
    db: Session = Depends(get_db),
) -> UpiPreferencesOut:
    return UpiPreferencesOut(**get_upi_preferences(db, user_id=principal.sub))


@router.put("/patients/me/upi-preferences", response_model=UpiPreferencesOut)
def save_upi_preferences(
    payload: UpiPreferencesIn,
    principal: Principal = Depends(require_patient),
    db: Session = Depends(get_db),
) -> UpiPreferencesOut:
    return UpiPreferencesOut(
        **put_upi_preferences(db, user_id=principal.sub, vpa=payload.vpa, payee_name=payload.payee_name)
    )
