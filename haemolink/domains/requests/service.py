import logging
from typing import Any

from fastapi import HTTPException, status

from haemolink.core.config import settings
from haemolink.core.security import is_uuid
from haemolink.core.supabase import RpcError, SupabaseGateway, rpc_error_from_exception
from haemolink.domains.geolocation.service import PositionFeed, acquire_best_fix
from haemolink.domains.requests.schemas import BloodRequestCreateIn, BloodRequestOut
from haemolink.utils.geo import as_coord

logger = logging.getLogger(__name__)


def _rows(resp: Any) -> list[dict]:
    data = getattr(resp, "data", None) if resp is not None else None
    if isinstance(data, dict):
        return [data]
    return [r for r in (data or []) if isinstance(r, dict)]


def _backend_error(action: str, exc: Exception) -> HTTPException:
    err = rpc_error_from_exception(exc)
    logger.warning("%s failed: %s", action, err.message)
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=err.message or f"{action} failed")


def normalize_request_row(row: dict) -> BloodRequestOut:
    # Older schemas call the column `quantity_units`.
    units = row.get("units_required")
    if units is None:
        units = row.get("quantity_units")
    created_at = row.get("created_at")
    return BloodRequestOut(
        id=str(row.get("id")),
        status=row.get("status"),
        component=row.get("component"),
        units_required=units if isinstance(units, (int, float)) and not isinstance(units, bool) else None,
        blood_group=row.get("blood_group"),
        urgency=row.get("urgency"),
        request_type=row.get("request_type"),
        hospital_preference=row.get("hospital_preference"),
        created_at=str(created_at) if created_at is not None else None,
    )


def list_patient_requests(gateway: SupabaseGateway, *, patient_id: str) -> list[BloodRequestOut]:
    try:
        resp = (
            gateway.table("blood_requests")
            .select("*")
            .eq("patient_id", patient_id)
            .order("created_at", desc=True)
            .execute()
        )
    except Exception as e:
        raise _backend_error("list blood_requests", e)
    return [normalize_request_row(r) for r in _rows(resp) if r.get("id")]


def get_patient_request(gateway: SupabaseGateway, *, patient_id: str, request_id: str) -> BloodRequestOut:
    if not is_uuid(request_id):
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="Invalid request id")
    try:
        resp = (
            gateway.table("blood_requests")
            .select("*")
            .eq("id", request_id.strip())
            .eq("patient_id", patient_id)
            .limit(1)
            .execute()
        )
    except Exception as e:
        raise _backend_error("get blood_request", e)
    rows = _rows(resp)
    if not rows:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Request not found")
    return normalize_request_row(rows[0])


def active_request(requests: list[BloodRequestOut]) -> BloodRequestOut | None:
    """The newest request is the one being tracked."""
    if not requests:
        return None
    first = requests[0]
    return first if is_uuid(first.id) else None


def get_patient_profile(gateway: SupabaseGateway, *, patient_id: str) -> dict | None:
    try:
        resp = gateway.table("patient_profiles").select("*").eq("user_id", patient_id).limit(1).execute()
    except Exception as e:
        raise _backend_error("get patient_profile", e)
    rows = _rows(resp)
    return rows[0] if rows else None


def create_patient_request(
    gateway: SupabaseGateway,
    *,
    patient_id: str,
    payload: BloodRequestCreateIn,
    feed: PositionFeed,
    fix_timeout_ms: int | None = None,
) -> tuple[BloodRequestOut, float | None, float | None, str | None]:
    """
    Insert the request, seed its location from the patient's device (or profile),
    then ask the backend to broadcast it to nearby donors.
    Returns: (request, latitude, longitude, location_source)
    """
    profile = get_patient_profile(gateway, patient_id=patient_id)
    blood_group = (profile or {}).get("blood_group")
    if not blood_group:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="MISSING_BLOOD_GROUP")

    latitude: float | None = None
    longitude: float | None = None
    accuracy: float | None = None
    source: str | None = None
    fix = acquire_best_fix(
        feed.source_for(patient_id),
        fix_timeout_ms if fix_timeout_ms is not None else settings.geo_fix_timeout_ms,
        settings.geo_desired_accuracy_m,
    )
    if fix is not None:
        latitude, longitude, accuracy, source = fix.lat, fix.lng, fix.accuracy, "device"
    if (latitude is None or longitude is None) and profile:
        plat, plng = as_coord(profile.get("latitude")), as_coord(profile.get("longitude"))
        if plat is not None and plng is not None:
            latitude, longitude, source = plat, plng, "profile"

    logger.info(
        "submitting blood request patient=%s type=%s group=%s component=%s units=%s urgency=%s",
        patient_id,
        payload.request_type,
        blood_group,
        payload.component,
        payload.units_required,
        payload.urgency,
    )
    row = {
        "patient_id": patient_id,
        "request_type": payload.request_type,
        "blood_group": blood_group,
        "component": payload.component,
        "quantity_units": payload.units_required,
        "urgency": payload.urgency,
        "status": "pending",
        "patient_latitude": latitude,
        "patient_longitude": longitude,
        "notes": payload.notes,
    }
    try:
        resp = gateway.table("blood_requests").insert(row).execute()
    except Exception as e:
        raise _backend_error("insert blood_request", e)
    rows = _rows(resp)
    if not rows or not rows[0].get("id"):
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Blood request was not created")
    created = normalize_request_row(rows[0])

    if latitude is not None and longitude is not None:
        try:
            gateway.table("request_waypoints").insert(
                {
                    "request_id": created.id,
                    "actor_type": "patient",
                    "actor_id": patient_id,
                    "latitude": latitude,
                    "longitude": longitude,
                    "accuracy": accuracy,
                }
            ).execute()
        except Exception as e:
            logger.warning("request_waypoints insert failed request_id=%s err=%s", created.id, e)

    try:
        gateway.rpc(
            "emit_notification",
            {
                "p_user_id": patient_id,
                "p_role": "patient",
                "p_title": "🩸 New Blood Request",
                "p_message": "Your blood request has been created.",
                "p_event_type": "patient_request_created",
                "p_entity_id": created.id,
            },
        )
    except RpcError as e:
        logger.warning("emit_notification failed request_id=%s err=%s", created.id, e.message)

    try:
        gateway.rpc(
            "broadcast_blood_request",
            {
                "p_request_id": created.id,
                "p_patient_lat": latitude,
                "p_patient_lng": longitude,
                "p_blood_group": blood_group,
                "p_radius_km": settings.broadcast_radius_km,
            },
        )
    except RpcError as e:
        logger.error("broadcast_blood_request failed request_id=%s err=%s", created.id, e.message)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=e.message or "Broadcast failed")

    return created, latitude, longitude, source
