import logging
from dataclasses import dataclass, field
from typing import Any

import requests

from haemolink.core.config import settings
from haemolink.utils.geo import LatLng, is_finite_number

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RouteStep:
    instruction: str
    distance_meters: float


@dataclass(frozen=True)
class Route:
    distance_km: float
    duration_min: float
    coords_lat_lng: list[tuple[float, float]] = field(default_factory=list)
    steps: list[RouteStep] = field(default_factory=list)

    def to_public_dict(self) -> dict:
        return {
            "distance_km": self.distance_km,
            "duration_min": self.duration_min,
            "coords_lat_lng": [list(c) for c in self.coords_lat_lng],
            "steps": [{"instruction": s.instruction, "distance_meters": s.distance_meters} for s in self.steps],
        }


def _step_from_osrm(s: dict) -> RouteStep:
    maneuver = s.get("maneuver") or {}
    instruction = maneuver.get("instruction") or s.get("name") or "Continue"
    distance = s.get("distance")
    return RouteStep(
        instruction=str(instruction),
        distance_meters=float(distance) if is_finite_number(distance) else 0.0,
    )


def parse_osrm_route(data: dict) -> Route | None:
    """
    Takes the first route of an OSRM `route/v1` response.
    Geometry arrives as GeoJSON [lon, lat] pairs and is flipped to [lat, lon] for the map.
    """
    routes = data.get("routes") or []
    if not routes:
        return None
    r0 = routes[0] or {}
    coords = (r0.get("geometry") or {}).get("coordinates") or []
    steps: list[RouteStep] = []
    for leg in r0.get("legs") or []:
        for s in (leg or {}).get("steps") or []:
            steps.append(_step_from_osrm(s or {}))

    distance_m = r0.get("distance")
    duration_s = r0.get("duration")
    return Route(
        distance_km=(float(distance_m) if is_finite_number(distance_m) else 0.0) / 1000.0,
        duration_min=(float(duration_s) if is_finite_number(duration_s) else 0.0) / 60.0,
        coords_lat_lng=[(float(c[1]), float(c[0])) for c in coords if isinstance(c, (list, tuple)) and len(c) >= 2],
        steps=steps,
    )


class RouteClient:
    def __init__(
        self,
        *,
        base_url: str | None = None,
        session: requests.Session | None = None,
        timeout: float | None = None,
    ) -> None:
        self.base_url = (base_url or settings.osrm_base_url).rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout if timeout is not None else settings.route_timeout_seconds

    def get_route(self, pickup: LatLng | None, drop: LatLng | None) -> Route | None:
        """Driving route between two points, or None. Never raises."""
        if pickup is None or drop is None or not pickup.is_valid() or not drop.is_valid():
            return None

        url = f"{self.base_url}/route/v1/driving/{pickup.lng},{pickup.lat};{drop.lng},{drop.lat}"
        params = {"overview": "full", "geometries": "geojson", "steps": "true"}
        try:
            resp = self.session.get(url, params=params, timeout=self.timeout)
        except requests.RequestException as e:
            logger.warning("OSRM route fetch failed: %s", e)
            return None
        if resp.status_code // 100 != 2:
            logger.warning("OSRM route fetch failed: status=%s body=%s", resp.status_code, resp.text[:200])
            return None
        try:
            data: Any = resp.json()
        except ValueError:
            logger.warning("OSRM route response was not JSON")
            return None
        if not isinstance(data, dict):
            return None
        return parse_osrm_route(data)
