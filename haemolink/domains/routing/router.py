from fastapi import APIRouter, Depends, HTTPException, Query, status

from haemolink.domains.routing.fare import compute_fare_inr
from haemolink.domains.routing.schemas import FareOut, RouteOut
from haemolink.domains.routing.service import RouteClient
from haemolink.utils.geo import LatLng


router = APIRouter()


def get_route_client() -> RouteClient:
    return RouteClient()


@router.get("/fare", response_model=FareOut)
def fare(distance_km: float = Query(...)) -> FareOut:
    return FareOut(distance_km=distance_km, fare_inr=compute_fare_inr(distance_km))


@router.get("/routes", response_model=RouteOut)
def route(
    pickup_lat: float = Query(..., ge=-90, le=90),
    pickup_lng: float = Query(..., ge=-180, le=180),
    drop_lat: float = Query(..., ge=-90, le=90),
    drop_lng: float = Query(..., ge=-180, le=180),
    client: RouteClient = Depends(get_route_client),
) -> RouteOut:
    r = client.get_route(LatLng(pickup_lat, pickup_lng), LatLng(drop_lat, drop_lng))
    if r is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Route unavailable")
    return RouteOut(**r.to_public_dict(), fare_inr=compute_fare_inr(r.distance_km))
