from fastapi import APIRouter, Depends

from haemolink.core.deps import get_gateway, require_patient
from haemolink.core.security import Principal
from haemolink.core.supabase import SupabaseGateway
from haemolink.domains.geolocation.router import get_position_feed
from haemolink.domains.geolocation.service import PositionFeed
from haemolink.domains.requests.schemas import BloodRequestCreateIn, BloodRequestCreateOut, BloodRequestOut
from haemolink.domains.requests.service import create_patient_request, list_patient_requests


router = APIRouter(prefix="/patients")


@router.get("/requests", response_model=list[BloodRequestOut])
def list_requests(
    principal: Principal = Depends(require_patient),
    gateway: SupabaseGateway = Depends(get_gateway),
) -> list[BloodRequestOut]:
    return list_patient_requests(gateway, patient_id=principal.sub)


@router.post("/requests", response_model=BloodRequestCreateOut)
def create_request(
    payload: BloodRequestCreateIn,
    principal: Principal = Depends(require_patient),
    gateway: SupabaseGateway = Depends(get_gateway),
    feed: PositionFeed = Depends(get_position_feed),
) -> BloodRequestCreateOut:
    """
    A fix the patient's device pushed to /positions within `geo_fix_max_age_seconds`
    is used at once when it meets `geo_desired_accuracy_m`. Otherwise this waits for
    a pushed fix for up to `geo_fix_timeout_ms`, then for one more fix for up to
    min(`geo_fix_timeout_ms`, `geo_single_shot_cap_ms`) plus 0.25 s (about 35 s with
    the defaults) before falling back to the profile location.
    """
    created, lat, lng, source = create_patient_request(gateway, patient_id=principal.sub, payload=payload, feed=feed)
    return BloodRequestCreateOut(request=created, latitude=lat, longitude=lng, location_source=source)
