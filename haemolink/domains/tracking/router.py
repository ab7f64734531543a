from fastapi import APIRouter, Depends

from haemolink.core.deps import get_gateway, require_patient
from haemolink.core.security import Principal
from haemolink.core.supabase import SupabaseGateway
from haemolink.domains.requests.service import active_request, get_patient_request, list_patient_requests
from haemolink.domains.tracking.schemas import MapOut, TrackingViewOut
from haemolink.domains.tracking.service import (
    TrackingSessionRegistry,
    empty_view,
    open_session,
    tracking_sessions,
)


router = APIRouter(prefix="/tracking")


def get_tracking_sessions() -> TrackingSessionRegistry:
    return tracking_sessions


# Declared before /{request_id} so "active" is not taken as an id.
@router.get("/active", response_model=TrackingViewOut)
def active_tracking(
    principal: Principal = Depends(require_patient),
    gateway: SupabaseGateway = Depends(get_gateway),
    sessions: TrackingSessionRegistry = Depends(get_tracking_sessions),
) -> TrackingViewOut:
    request = active_request(list_patient_requests(gateway, patient_id=principal.sub))
    if request is None:
        return empty_view()
    session = open_session(sessions, user_id=principal.sub, request_id=request.id, transports=gateway.transports())
    return session.view(request)


@router.get("/{request_id}", response_model=TrackingViewOut)
def tracking_view(
    request_id: str,
    principal: Principal = Depends(require_patient),
    gateway: SupabaseGateway = Depends(get_gateway),
    sessions: TrackingSessionRegistry = Depends(get_tracking_sessions),
) -> TrackingViewOut:
    request = get_patient_request(gateway, patient_id=principal.sub, request_id=request_id)
    session = open_session(sessions, user_id=principal.sub, request_id=request_id, transports=gateway.transports())
    return session.view(request)


@router.get("/{request_id}/map", response_model=MapOut)
def tracking_map(
    request_id: str,
    principal: Principal = Depends(require_patient),
    gateway: SupabaseGateway = Depends(get_gateway),
    sessions: TrackingSessionRegistry = Depends(get_tracking_sessions),
) -> MapOut:
    session = open_session(
        sessions, user_id=principal.sub, request_id=request_id, transports=gateway.transports(), refresh=False
    )
    return MapOut(**session.map_view().to_public_dict())


@router.get("/{request_id}/map.geojson")
def tracking_map_geojson(
    request_id: str,
    principal: Principal = Depends(require_patient),
    gateway: SupabaseGateway = Depends(get_gateway),
    sessions: TrackingSessionRegistry = Depends(get_tracking_sessions),
) -> dict:
    session = open_session(
        sessions, user_id=principal.sub, request_id=request_id, transports=gateway.transports(), refresh=False
    )
    return session.map_view().to_geojson()
