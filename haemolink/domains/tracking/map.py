from dataclasses import dataclass, field
from typing import Sequence

from haemolink.core.config import settings
from haemolink.utils.geo import LatLng


MARKER_ICONS = {"pickup": "🏥", "drop": "📍", "rider": "🛵"}
ROUTE_COLOR = "#2563eb"
ROUTE_WEIGHT = 6


@dataclass(frozen=True)
class Marker:
    kind: str
    point: LatLng

    @property
    def icon(self) -> str:
        return MARKER_ICONS[self.kind]


@dataclass(frozen=True)
class MapView:
    available: bool
    center: LatLng
    zoom: int
    tile_url: str
    markers: list[Marker] = field(default_factory=list)
    polyline: list[tuple[float, float]] = field(default_factory=list)
    polyline_source: str | None = None

    @property
    def caption(self) -> str:
        return "Tracking active" if self.available else "Map unavailable"

    def to_public_dict(self) -> dict:
        return {
            "available": self.available,
            "center": list(self.center.as_pair()),
            "zoom": self.zoom,
            "tile_url": self.tile_url,
            "markers": [{"kind": m.kind, "lat": m.point.lat, "lng": m.point.lng, "icon": m.icon} for m in self.markers],
            "polyline": [list(p) for p in self.polyline],
            "polyline_source": self.polyline_source,
            "color": ROUTE_COLOR,
            "weight": ROUTE_WEIGHT,
            "caption": self.caption,
        }

    def to_geojson(self) -> dict:
        features = [
            {
                "type": "Feature",
                "geometry": {"type": "Point", "coordinates": [m.point.lng, m.point.lat]},
                "properties": {"kind": m.kind, "icon": m.icon},
            }
            for m in self.markers
        ]
        if self.polyline:
            features.append(
                {
                    "type": "Feature",
                    "geometry": {"type": "LineString", "coordinates": [[lng, lat] for lat, lng in self.polyline]},
                    "properties": {"source": self.polyline_source, "color": ROUTE_COLOR, "weight": ROUTE_WEIGHT},
                }
            )
        return {"type": "FeatureCollection", "features": features}


def render_map(
    *,
    pickup: LatLng | None,
    drop: LatLng | None,
    rider: LatLng | None,
    route_coords: Sequence[tuple[float, float]] | None = None,
) -> MapView:
    """
    Centered on the most specific point available (rider, then pickup, then drop).
    Without a fetched route, pickup and drop are joined by a straight line through the rider.
    """
    default_center = LatLng(settings.map_default_lat, settings.map_default_lng)
    center = rider or pickup or drop or default_center

    markers: list[Marker] = []
    if pickup is not None:
        markers.append(Marker("pickup", pickup))
    if drop is not None:
        markers.append(Marker("drop", drop))
    if rider is not None:
        markers.append(Marker("rider", rider))

    polyline: list[tuple[float, float]] = []
    source = None
    if route_coords and markers:
        polyline = [tuple(c) for c in route_coords]
        source = "route"
    elif pickup is not None and drop is not None:
        polyline = [pickup.as_pair()]
        if rider is not None:
            polyline.append(rider.as_pair())
        polyline.append(drop.as_pair())
        source = "straight"

    return MapView(
        available=bool(markers),
        center=center,
        zoom=settings.map_zoom,
        tile_url=settings.map_tile_url,
        markers=markers,
        polyline=polyline,
        polyline_source=source,
    )
