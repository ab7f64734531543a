from fastapi import APIRouter, Depends, HTTPException, status

from haemolink.core.deps import get_gateway, require_rider
from haemolink.core.security import Principal, is_uuid
from haemolink.core.supabase import SupabaseGateway
from haemolink.domains.geolocation.schemas import FixIn
from haemolink.domains.geolocation.service import Fix
from haemolink.domains.rider.schemas import OtpVerifyIn, OtpVerifyOut, RiderPositionOut
from haemolink.domains.rider.service import RiderPositionReporter, rider_position_reporter, verify_delivery_otp


router = APIRouter(prefix="/riders")


def get_position_reporter() -> RiderPositionReporter:
    return rider_position_reporter


@router.post("/deliveries/{delivery_id}/otp/verify", response_model=OtpVerifyOut)
def verify_otp(
    delivery_id: str,
    payload: OtpVerifyIn,
    principal: Principal = Depends(require_rider),
    gateway: SupabaseGateway = Depends(get_gateway),
) -> OtpVerifyOut:
    result = verify_delivery_otp(gateway.transports(), delivery_id=delivery_id, otp=payload.otp)
    return OtpVerifyOut(ok=result.ok, message=result.message)


@router.post("/deliveries/{delivery_id}/positions", response_model=RiderPositionOut)
def report_position(
    delivery_id: str,
    payload: FixIn,
    principal: Principal = Depends(require_rider),
    gateway: SupabaseGateway = Depends(get_gateway),
    reporter: RiderPositionReporter = Depends(get_position_reporter),
) -> RiderPositionOut:
    if not is_uuid(delivery_id):
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="Invalid delivery id")
    fix = Fix(lat=payload.lat, lng=payload.lng, accuracy=payload.accuracy, heading=payload.heading, speed=payload.speed)
    report = reporter.report(gateway, rider_id=principal.sub, delivery_id=delivery_id.strip(), fix=fix)
    return RiderPositionOut(accepted=report.accepted, persisted=report.persisted, watchers=report.watchers)
